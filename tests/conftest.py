"""
Shared fixtures: small per-year BRFSS files written as CSV.

Each year's file carries the variable names BRFSS actually used that year
(upper-case, as in the XPT files), so year splits such as SEX -> SEXVAR or
INCOME2 -> INCOME3 are exercised by the real rule table.
"""

from pathlib import Path
from typing import Dict, Optional

import pandas as pd
import pytest

from survey_data.brfss.harmonizer import load_brfss_rules

CSV_PATTERN = "LLCP{year}.csv"


def brfss_record(year: int) -> Dict[str, object]:
    """One plausible respondent, using the source names of `year`."""
    if year <= 2017:
        sex = "SEX"
    elif year == 2018:
        sex = "SEX1"
    else:
        sex = "SEXVAR"

    if year <= 2018:
        copd = "CHCCOPD1"
    elif year <= 2020:
        copd = "CHCCOPD2"
    else:
        copd = "CHCCOPD3"

    return {
        "_STATE": 31,
        "_AGE80": 45,
        "_AGEG5YR": 6,
        sex: 2,
        "_RACEGR3" if year <= 2021 else "_RACEGR4": 1,
        "EDUCA": 6,
        "MARITAL": 1,
        "INCOME2" if year <= 2020 else "INCOME3": 7,
        "EMPLOY1": 1,
        "GENHLTH": 2,
        "MENTHLTH": 88,
        "PHYSHLTH": 5,
        "_BMI5": 2534,
        "_BMI5CAT": 3,
        "_SMOKER3": 4,
        "DIABETE3" if year <= 2018 else "DIABETE4": 3,
        "ASTHMA3": 2,
        "ASTHNOW": 2,
        "CVDCRHD4": 2,
        "CVDINFR4": 2,
        copd: 2,
        "_LLCPWT": 123.456789,
        "_STSTR": 31011,
        "_PSU": year * 1000000 + 1,
    }


def make_year_frame(year: int, n: int = 3, columns: Optional[Dict[str, list]] = None) -> pd.DataFrame:
    """`n` copies of brfss_record(year), with per-column value overrides."""
    frame = pd.DataFrame([brfss_record(year)] * n)
    for name, values in (columns or {}).items():
        frame[name] = values
    return frame


@pytest.fixture
def raw_dir(tmp_path) -> Path:
    path = tmp_path / "raw"
    path.mkdir()
    return path


@pytest.fixture
def write_year(raw_dir):
    """Write one year's file into raw_dir; returns its path."""
    def _write(year: int, frame: Optional[pd.DataFrame] = None, n: int = 3,
               columns: Optional[Dict[str, list]] = None) -> Path:
        if frame is None:
            frame = make_year_frame(year, n, columns)
        path = raw_dir / CSV_PATTERN.format(year=year)
        frame.to_csv(path, index=False)
        return path
    return _write


@pytest.fixture(scope="session")
def brfss_rules():
    return load_brfss_rules()
