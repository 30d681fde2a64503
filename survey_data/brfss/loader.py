"""
BRFSS Source File Loader

Reads one source file per survey year, tags every record with its year, and
stacks all years into one appended table.

Functions:
    source_path: Resolve the year-parameterised path of a source file
    check_source_files: Confirm every requested year has a file on disk
    read_source_file: Read one year's file into a DataFrame
    load_brfss_years: Build the AppendedTable for a set of years
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List

import pandas as pd
import pyarrow.feather as feather
import pyreadstat
import structlog

from survey_data.exceptions import MissingFileError

# Configure structured logging
log = structlog.get_logger()

YEAR_COLUMN = "surveyyear"
DEFAULT_PATTERN = "LLCP{year}.XPT"


@dataclass(frozen=True)
class AppendedTable:
    """All requested years stacked, ordered by year then source row order.

    Attributes:
        frame: Union of every year's columns plus `surveyyear`; a column a
            year's file lacks holds missing values for that year's rows.
        year_columns: Columns each year's source file actually contained.
    """

    frame: pd.DataFrame
    year_columns: Dict[int, FrozenSet[str]] = field(default_factory=dict)

    @property
    def years(self) -> List[int]:
        return sorted(self.year_columns)

    def rows_by_year(self) -> Dict[int, int]:
        counts = self.frame[YEAR_COLUMN].value_counts()
        return {year: int(counts.get(year, 0)) for year in self.years}


def source_path(raw_dir: str, year: int, pattern: str = DEFAULT_PATTERN) -> Path:
    """Path of the source file for `year`, e.g. data/brfss/raw/LLCP2024.XPT."""
    return Path(raw_dir) / pattern.format(year=year)


def check_source_files(
    years: Iterable[int],
    raw_dir: str,
    pattern: str = DEFAULT_PATTERN
) -> Dict[int, Path]:
    """Resolve every year's source file before anything is read.

    Raises:
        MissingFileError: For the first requested year without a file
    """
    paths = {}
    for year in years:
        path = source_path(raw_dir, year, pattern)
        if not path.exists():
            log.error("Source file not found", year=year, path=str(path))
            raise MissingFileError(year, str(path))
        paths[year] = path
    return paths


def read_source_file(path: Path) -> pd.DataFrame:
    """Read one survey year's file. Reader is chosen by file extension.

    Supported: .xpt (SAS Transport), .sav (SPSS), .csv, .feather

    Raises:
        ValueError: If the extension is not supported
        Exception: If the reader fails
    """
    suffix = path.suffix.lower()

    try:
        if suffix == ".xpt":
            df, _meta = pyreadstat.read_xport(str(path))
        elif suffix == ".sav":
            df, _meta = pyreadstat.read_sav(str(path))
        elif suffix == ".csv":
            df = pd.read_csv(path)
        elif suffix == ".feather":
            df = feather.read_feather(path)
        else:
            raise ValueError(
                f"Unsupported source file type '{path.suffix}' for {path}. "
                f"Expected .XPT, .sav, .csv or .feather"
            )
    except ValueError:
        raise
    except Exception as e:
        log.error("Failed to read source file", path=str(path), error=str(e))
        raise Exception(f"Failed to read source file {path}: {e}") from e

    return df


def load_one_year(year: int, path: Path) -> pd.DataFrame:
    """Read a year's file, lower-case its column names, and add `surveyyear`."""
    log.info("Reading survey year", year=year, path=str(path))

    df = read_source_file(path)
    df.columns = [str(c).lower() for c in df.columns]

    if YEAR_COLUMN in df.columns:
        raise ValueError(f"Source file {path} already has a '{YEAR_COLUMN}' column")
    df[YEAR_COLUMN] = year

    log.info("Imported survey year", year=year, rows=len(df), columns=len(df.columns) - 1)
    return df


def load_brfss_years(
    years: Iterable[int],
    raw_dir: str,
    pattern: str = DEFAULT_PATTERN
) -> AppendedTable:
    """Load and stack the requested survey years.

    Every year's file is checked for existence first, so a missing year fails
    the run before any data is read. Values pass through unchanged apart from
    the injected `surveyyear` column.

    Args:
        years: Survey years to load (duplicates ignored, loaded ascending)
        raw_dir: Directory holding the per-year source files
        pattern: File name pattern with a `{year}` placeholder

    Returns:
        AppendedTable: Stacked rows and per-year column manifest

    Raises:
        MissingFileError: If any requested year has no source file
        ValueError: If no years are requested

    Example:
        >>> table = load_brfss_years([2023, 2024], "data/brfss/raw")
        >>> table.rows_by_year()
        {2023: 433323, 2024: 457670}
    """
    years = sorted(set(int(y) for y in years))
    if not years:
        raise ValueError("At least one survey year must be requested")

    log.info("Loading BRFSS survey years", years=years, raw_dir=str(raw_dir), pattern=pattern)

    paths = check_source_files(years, raw_dir, pattern)

    frames = []
    year_columns = {}
    for year in years:
        df = load_one_year(year, paths[year])
        year_columns[year] = frozenset(df.columns)
        frames.append(df)

    # Columns absent from a year come through as NaN for that year's rows.
    appended = pd.concat(frames, ignore_index=True, sort=False)

    log.info(
        "Appended survey years",
        years=years,
        rows=len(appended),
        columns=len(appended.columns)
    )

    return AppendedTable(frame=appended, year_columns=year_columns)
