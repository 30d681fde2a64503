"""
DuckDB Output for BRFSS Tables

Stores the appended or harmonized table in a local DuckDB file so it can be
queried from R or Python without reloading Feather files. DuckDB is used as
a file format here; nothing is served.

Functions:
    write_table_to_duckdb: Create/replace or append a table, chunked inserts
    count_rows_by_year: Row counts per survey year from a stored table

Author: Survey Data Platform
Date: 2026-09-16
"""

import re
from pathlib import Path
from typing import Dict

import duckdb
import pandas as pd
import structlog

from survey_data.brfss.loader import YEAR_COLUMN

# Configure structured logging
log = structlog.get_logger()

TABLE_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _check_table_name(table_name: str) -> str:
    if not TABLE_NAME_PATTERN.match(table_name):
        raise ValueError(
            f"Invalid table name: {table_name!r}. Use letters, digits and underscores."
        )
    return table_name


def create_table(conn, table_name: str, df: pd.DataFrame, mode: str) -> None:
    """Create the table from the DataFrame's schema (dropping it first in replace mode)."""
    if mode == "replace":
        log.info("Dropping existing table (replace mode)", table=table_name)
        conn.execute(f'DROP TABLE IF EXISTS "{table_name}"')

    table_exists = conn.execute(
        "SELECT COUNT(*) FROM information_schema.tables WHERE table_name = ?",
        [table_name]
    ).fetchone()[0] > 0

    if not table_exists:
        conn.register("temp_schema_df", df.head(0))
        conn.execute(f'CREATE TABLE "{table_name}" AS SELECT * FROM temp_schema_df')
        conn.unregister("temp_schema_df")
        log.info("Table created", table=table_name, columns=len(df.columns))
    else:
        log.info("Table already exists (append mode)", table=table_name)


def insert_data_chunked(conn, table_name: str, df: pd.DataFrame, chunk_size: int = 10000) -> int:
    """Insert rows in batches of `chunk_size`. Returns rows inserted."""
    total_rows = len(df)
    num_chunks = (total_rows + chunk_size - 1) // chunk_size

    log.info(
        "Inserting data in chunks",
        table=table_name,
        total_rows=total_rows,
        chunk_size=chunk_size,
        num_chunks=num_chunks
    )

    rows_inserted = 0
    for i in range(num_chunks):
        chunk_df = df.iloc[i * chunk_size:min((i + 1) * chunk_size, total_rows)]
        conn.register("temp_chunk", chunk_df)
        conn.execute(f'INSERT INTO "{table_name}" SELECT * FROM temp_chunk')
        conn.unregister("temp_chunk")
        rows_inserted += len(chunk_df)

        log.debug("Chunk inserted", chunk=i + 1, of=num_chunks, rows_inserted=rows_inserted)

    return rows_inserted


def write_table_to_duckdb(
    df: pd.DataFrame,
    db_path: str,
    table_name: str,
    mode: str = "replace",
    chunk_size: int = 10000
) -> int:
    """Store a DataFrame as a DuckDB table.

    Args:
        df: Table to store
        db_path: DuckDB database file (created if needed)
        table_name: Target table
        mode: 'replace' drops the table first, 'append' adds rows
        chunk_size: Rows per insert batch

    Returns:
        int: Rows inserted

    Raises:
        ValueError: Invalid mode or table name
    """
    if mode not in ("replace", "append"):
        raise ValueError(f"Invalid mode: {mode!r}. Must be 'replace' or 'append'.")
    _check_table_name(table_name)

    db_file = Path(db_path)
    db_file.parent.mkdir(parents=True, exist_ok=True)

    log.info("Writing table to DuckDB", database=str(db_file), table=table_name, mode=mode, rows=len(df))

    conn = duckdb.connect(str(db_file))
    try:
        create_table(conn, table_name, df, mode)
        rows = insert_data_chunked(conn, table_name, df.reset_index(drop=True), chunk_size)
    finally:
        conn.close()

    log.info("DuckDB write complete", table=table_name, rows_inserted=rows)
    return rows


def count_rows_by_year(db_path: str, table_name: str) -> Dict[int, int]:
    """Row counts per survey year of a stored table."""
    _check_table_name(table_name)
    conn = duckdb.connect(str(db_path), read_only=True)
    try:
        rows = conn.execute(
            f'SELECT {YEAR_COLUMN}, COUNT(*) FROM "{table_name}" GROUP BY {YEAR_COLUMN} ORDER BY {YEAR_COLUMN}'
        ).fetchall()
    finally:
        conn.close()
    return {int(year): int(n) for year, n in rows}
