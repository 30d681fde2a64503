"""
Descriptive summary of harmonized BRFSS data (unweighted).

Quick look at sample sizes and category shares for checking a run. These are
not population estimates; weighted analysis needs the design fields and a
survey statistics package.
"""

from typing import Dict, List, Optional

import pandas as pd
from tabulate import tabulate

from survey_data.brfss.loader import YEAR_COLUMN

RACE_LABELS = {1: "White NH", 2: "Black NH", 3: "Hispanic", 4: "Other/Multi NH"}
EDUC_LABELS = {1: "Less than HS", 2: "HS grad/GED", 3: "Some college", 4: "College grad"}
INCOME_LABELS = {
    1: "<$10K", 2: "$10-15K", 3: "$15-20K", 4: "$20-25K",
    5: "$25-35K", 6: "$35-50K", 7: "$50-75K", 8: "$75K+",
}

LABELLED_VARIABLES = {
    "race_eth": RACE_LABELS,
    "educ_cat": EDUC_LABELS,
    "income_cat": INCOME_LABELS,
}


def year_counts(harmonized: pd.DataFrame) -> pd.DataFrame:
    """Observations per survey year."""
    counts = harmonized[YEAR_COLUMN].value_counts().sort_index()
    return pd.DataFrame({YEAR_COLUMN: counts.index.astype(int), "n": counts.to_numpy(dtype="int64")})


def frequency_table(
    harmonized: pd.DataFrame,
    variable: str,
    labels: Optional[Dict[int, str]] = None
) -> pd.DataFrame:
    """Counts and percentages of a coded variable, missing values excluded."""
    counts = harmonized[variable].dropna().value_counts().sort_index()
    n = counts.to_numpy(dtype="int64")
    total = n.sum()
    table = pd.DataFrame({
        variable: counts.index.astype(int),
        "n": n,
        "pct": (n / total * 100).round(1) if total else n,
    })
    if labels:
        table["label"] = table[variable].map(labels)
    return table


def render_summary(harmonized: pd.DataFrame, variables: Optional[List[str]] = None) -> str:
    """Plain-text summary: counts by year plus labelled frequency tables."""
    sections = [
        "--- Sample sizes by year ---",
        tabulate(year_counts(harmonized), headers="keys", tablefmt="simple", showindex=False),
    ]

    for variable in variables or list(LABELLED_VARIABLES):
        if variable not in harmonized.columns:
            continue
        table = frequency_table(harmonized, variable, LABELLED_VARIABLES.get(variable))
        sections.append(f"\n--- {variable} ---")
        sections.append(tabulate(table, headers="keys", tablefmt="simple", showindex=False))

    return "\n".join(sections)
