"""
Sentinel (non-response) code handling.

Survey codebooks reserve the top values of a field's width for "don't know /
not sure" and "refused": 7/9 for one-digit fields, 77/99 for two digits, and
so on. The table below is the single place those conventions live; rules only
state the field width they use.
"""

from typing import FrozenSet, Iterable, Optional

import numpy as np
import pandas as pd


SENTINEL_CODES = {
    1: frozenset({7, 9}),
    2: frozenset({77, 99}),
    3: frozenset({777, 999}),
    4: frozenset({7777, 9999}),
}


def sentinels_for_width(width: Optional[int]) -> FrozenSet[float]:
    """Return the sentinel set for a field width (empty when width is None)."""
    if width is None:
        return frozenset()
    if width not in SENTINEL_CODES:
        raise ValueError(
            f"No sentinel convention for field width {width}. "
            f"Known widths: {sorted(SENTINEL_CODES)}"
        )
    return SENTINEL_CODES[width]


def is_blank(values: pd.Series) -> pd.Series:
    """Blank marker: NaN/None, or an empty / whitespace-only string."""
    blank = values.isna()
    if values.dtype == object:
        blank |= values.map(lambda v: isinstance(v, str) and v.strip() == "")
    return blank


def to_numeric_codes(values: pd.Series) -> pd.Series:
    """Coerce raw values to float codes, blanks become NaN."""
    numeric = pd.to_numeric(values.where(~is_blank(values)), errors="coerce")
    return numeric.astype("float64")


def recode_sentinels(values: pd.Series, codes: Iterable[float]) -> pd.Series:
    """Replace sentinel codes with NaN. Never raises on routine data."""
    numeric = to_numeric_codes(values)
    codes = list(codes)
    if not codes:
        return numeric
    return numeric.mask(numeric.isin(codes), np.nan)
