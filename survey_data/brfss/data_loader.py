"""
Data Persistence Utilities for BRFSS Pipeline

Writes and reads the pipeline's table artifacts:
- Feather (zstd) as the primary format, readable from R via arrow
- a JSON sidecar with the per-year column manifest and row counts
- an optional Stata .dta copy for Stata users

Functions:
    convert_to_feather: Write DataFrame to Feather format
    load_feather: Load Feather file back to DataFrame
    write_stata: Best-effort Stata export
    save_appended_table: Persist an AppendedTable with its manifest
    load_appended_table: Rebuild an AppendedTable from disk
    save_harmonized_table: Persist harmonized output and its report

Author: Survey Data Platform
Date: 2026-09-08
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import pandas as pd
import pyarrow.feather as feather
import structlog

from survey_data.brfss.loader import YEAR_COLUMN, AppendedTable
from survey_data.harmonization.engine import HarmonizationReport, infer_year_columns

# Configure structured logging
log = structlog.get_logger()


def convert_to_feather(df: pd.DataFrame, output_path: str, compression: str = 'zstd') -> Path:
    """Write DataFrame to Feather format.

    Nullable integer columns and missing values are preserved, and the file
    opens directly with R's arrow::read_feather().

    Raises:
        IOError: If file cannot be written
    """
    output_file = Path(output_path)

    log.info(
        "Converting DataFrame to Feather",
        path=str(output_file),
        rows=len(df),
        columns=len(df.columns),
        compression=compression
    )

    output_file.parent.mkdir(parents=True, exist_ok=True)

    try:
        feather.write_feather(df.reset_index(drop=True), output_file, compression=compression)
    except Exception as e:
        log.error("Failed to write Feather file", path=str(output_file), error=str(e))
        raise IOError(f"Failed to write Feather file {output_file}: {e}") from e

    file_size_mb = output_file.stat().st_size / (1024 * 1024)
    log.info("Feather file created successfully", path=str(output_file), size_mb=round(file_size_mb, 2))
    return output_file


def load_feather(feather_path: str) -> pd.DataFrame:
    """Load Feather file back to pandas DataFrame.

    Raises:
        FileNotFoundError: If Feather file doesn't exist
    """
    feather_file = Path(feather_path)

    log.info("Loading Feather file", path=str(feather_file))

    if not feather_file.exists():
        log.error("Feather file not found", path=str(feather_file))
        raise FileNotFoundError(f"Feather file not found: {feather_file}")

    try:
        df = feather.read_feather(feather_file)
    except Exception as e:
        log.error("Failed to load Feather file", path=str(feather_file), error=str(e))
        raise Exception(f"Failed to load Feather file {feather_file}: {e}") from e

    log.info("Feather file loaded successfully", path=str(feather_file), rows=len(df), columns=len(df.columns))
    return df


def write_stata(df: pd.DataFrame, output_path: str) -> Optional[Path]:
    """Write a Stata .dta copy; failures are logged, not raised.

    Stata caps variables at 32,767 and names at 32 characters, so very wide
    tables may not convert. The Feather file stays the authoritative output.
    """
    output_file = Path(output_path)
    output_file.parent.mkdir(parents=True, exist_ok=True)

    # Stata has no nullable integer type; missing values need float columns.
    nullable = [c for c in df.columns if isinstance(df[c].dtype, pd.api.extensions.ExtensionDtype)
                and pd.api.types.is_numeric_dtype(df[c].dtype)]
    stata_df = df.astype({c: "float64" for c in nullable})

    try:
        stata_df.to_stata(output_file, write_index=False, version=118)
    except Exception as e:
        log.warning(
            "Could not save Stata file; Feather output is unaffected",
            path=str(output_file), error=str(e)
        )
        return None

    log.info("Stata file created", path=str(output_file))
    return output_file


def _write_json(payload: Dict[str, Any], path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(payload, f, indent=2)
    except Exception as e:
        log.error("Failed to write JSON sidecar", path=str(path), error=str(e))
        raise IOError(f"Failed to write {path}: {e}") from e


def save_appended_table(
    table: AppendedTable,
    output_dir: str,
    name: str = "brfss_appended",
    stata: bool = False
) -> Dict[str, str]:
    """Persist the appended table, its column manifest, and optionally .dta.

    Returns:
        Dict of artifact kind -> path
    """
    output_path = Path(output_dir)
    feather_path = convert_to_feather(table.frame, str(output_path / f"{name}.feather"))

    metadata = {
        "name": name,
        "created_at": datetime.now().isoformat(),
        "years": table.years,
        "record_count": len(table.frame),
        "rows_by_year": {str(y): n for y, n in table.rows_by_year().items()},
        "variable_count": len(table.frame.columns),
        "variables": list(table.frame.columns),
        "year_columns": {str(y): sorted(cols) for y, cols in sorted(table.year_columns.items())},
    }
    metadata_path = output_path / f"{name}.metadata.json"
    _write_json(metadata, metadata_path)
    log.info("Metadata saved", path=str(metadata_path))

    artifacts = {"feather": str(feather_path), "metadata": str(metadata_path)}
    if stata:
        dta_path = write_stata(table.frame, str(output_path / f"{name}.dta"))
        if dta_path is not None:
            artifacts["stata"] = str(dta_path)
    return artifacts


def load_appended_table(feather_path: str) -> AppendedTable:
    """Rebuild an AppendedTable from its Feather file and metadata sidecar.

    When the sidecar is missing, each year's columns are inferred as those
    holding at least one non-blank value.
    """
    feather_file = Path(feather_path)
    frame = load_feather(str(feather_file))

    metadata_path = feather_file.with_name(feather_file.stem + ".metadata.json")
    if metadata_path.exists():
        with open(metadata_path, 'r', encoding='utf-8') as f:
            metadata = json.load(f)
        year_columns = {
            int(year): frozenset(columns)
            for year, columns in metadata.get("year_columns", {}).items()
        }
        log.debug("Column manifest loaded", path=str(metadata_path), years=sorted(year_columns))
    else:
        log.warning("No column manifest found; inferring from data", path=str(metadata_path))
        year_columns = infer_year_columns(frame, YEAR_COLUMN)

    return AppendedTable(frame=frame, year_columns=year_columns)


def save_harmonized_table(
    harmonized: pd.DataFrame,
    report: HarmonizationReport,
    output_dir: str,
    name: str = "brfss_clean",
    rule_signature: Optional[str] = None,
    stata: bool = False
) -> Dict[str, str]:
    """Persist harmonized output with its harmonization report.

    Returns:
        Dict of artifact kind -> path
    """
    output_path = Path(output_dir)
    feather_path = convert_to_feather(harmonized, str(output_path / f"{name}.feather"))

    report_payload = {
        "name": name,
        "created_at": datetime.now().isoformat(),
        "rule_signature": rule_signature,
        "variables": list(harmonized.columns),
        **report.to_dict(),
    }
    report_path = output_path / f"{name}.harmonization_report.json"
    _write_json(report_payload, report_path)
    log.info("Harmonization report saved", path=str(report_path))

    artifacts = {"feather": str(feather_path), "report": str(report_path)}
    if stata:
        dta_path = write_stata(harmonized, str(output_path / f"{name}.dta"))
        if dta_path is not None:
            artifacts["stata"] = str(dta_path)
    return artifacts
