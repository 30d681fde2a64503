"""
Tests for storing pipeline tables in DuckDB.
"""

import duckdb
import pandas as pd
import pytest

from survey_data.brfss.database import count_rows_by_year, write_table_to_duckdb


@pytest.fixture
def harmonized():
    return pd.DataFrame({
        "surveyyear": [2023, 2023, 2024],
        "female": pd.array([0, None, 1], dtype="Int64"),
        "bmi": pd.array([25.34, 31.0, None], dtype="Float64"),
        "_llcpwt": [10.5, 20.25, 30.125],
    })


class TestWriteTable:

    def test_replace_then_count(self, harmonized, tmp_path):
        db_path = str(tmp_path / "db" / "brfss.duckdb")
        rows = write_table_to_duckdb(harmonized, db_path, "brfss_clean")
        assert rows == 3
        assert count_rows_by_year(db_path, "brfss_clean") == {2023: 2, 2024: 1}

    def test_nulls_and_values_preserved(self, harmonized, tmp_path):
        db_path = str(tmp_path / "brfss.duckdb")
        write_table_to_duckdb(harmonized, db_path, "brfss_clean")

        conn = duckdb.connect(db_path, read_only=True)
        try:
            stored = conn.execute("SELECT * FROM brfss_clean ORDER BY _llcpwt").fetchdf()
        finally:
            conn.close()

        assert stored["female"].isna().tolist() == [False, True, False]
        assert stored["_llcpwt"].tolist() == [10.5, 20.25, 30.125]

    def test_small_chunks(self, harmonized, tmp_path):
        db_path = str(tmp_path / "brfss.duckdb")
        assert write_table_to_duckdb(harmonized, db_path, "t", chunk_size=2) == 3
        assert sum(count_rows_by_year(db_path, "t").values()) == 3

    def test_append_mode(self, harmonized, tmp_path):
        db_path = str(tmp_path / "brfss.duckdb")
        write_table_to_duckdb(harmonized, db_path, "brfss_clean")
        write_table_to_duckdb(harmonized, db_path, "brfss_clean", mode="append")
        assert count_rows_by_year(db_path, "brfss_clean") == {2023: 4, 2024: 2}

    def test_replace_mode_drops_previous_rows(self, harmonized, tmp_path):
        db_path = str(tmp_path / "brfss.duckdb")
        write_table_to_duckdb(harmonized, db_path, "brfss_clean")
        write_table_to_duckdb(harmonized.head(1), db_path, "brfss_clean")
        assert count_rows_by_year(db_path, "brfss_clean") == {2023: 1}

    def test_invalid_mode(self, harmonized, tmp_path):
        with pytest.raises(ValueError, match="mode"):
            write_table_to_duckdb(harmonized, str(tmp_path / "x.duckdb"), "t", mode="upsert")

    def test_invalid_table_name(self, harmonized, tmp_path):
        with pytest.raises(ValueError, match="table name"):
            write_table_to_duckdb(harmonized, str(tmp_path / "x.duckdb"), "brfss; DROP TABLE x")
