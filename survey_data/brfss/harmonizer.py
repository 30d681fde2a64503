"""
BRFSS Harmonization

Applies the BRFSS rule table to an appended multi-year table and carries the
survey design fields (final weight, stratum, PSU) through unchanged so that
weighted estimation downstream sees their original coding and precision.

Key year splits handled by the rule table:
    - Sex:            SEX / SEX1 / SEXVAR (2011-2021) vs SEXVAR, BIRTHSEX (2022+)
    - Race/ethnicity: _RACEGR3 (2011-2021) vs _RACEGR4 (2022+)
    - Income:         INCOME2 (2011-2021) vs INCOME3 (2021+)
    - Diabetes:       DIABETE3 (2011-2018) vs DIABETE4 (2019+)
    - COPD:           CHCCOPD1 / CHCCOPD2 / CHCCOPD3
"""

from typing import Dict, Mapping, Optional, Sequence, Tuple

import pandas as pd
import structlog

from survey_data.brfss.config_manager import DEFAULT_RULES_PATH
from survey_data.brfss.loader import YEAR_COLUMN, AppendedTable
from survey_data.harmonization.engine import (
    HarmonizationReport,
    harmonize_frame,
    resolve_passthrough,
)
from survey_data.harmonization.rules import RuleSet, load_rule_set

log = structlog.get_logger()

DESIGN_FIELDS: Dict[str, Tuple[str, ...]] = {
    "_llcpwt": ("_llcpwt", "x_llcpwt"),
    "_ststr": ("_ststr", "x_ststr"),
    "_psu": ("_psu", "x_psu"),
}


def load_brfss_rules(rules_path: Optional[str] = None) -> RuleSet:
    """Load and validate the BRFSS rule table (defaults to the shipped YAML)."""
    return load_rule_set(str(rules_path or DEFAULT_RULES_PATH), validate=True)


def check_design_fields(
    table: AppendedTable,
    design_fields: Optional[Mapping[str, Sequence[str]]] = None
) -> Dict[str, Dict[int, str]]:
    """Confirm each survey design field exists for every loaded year.

    Values are never inspected; only presence is checked.

    Returns:
        Dict of design field -> {year: source column used}

    Raises:
        UnresolvedSourceVariableError: If a year lacks a design field
    """
    return resolve_passthrough(design_fields or DESIGN_FIELDS, table.years, table.year_columns)


def harmonize_brfss(
    table: AppendedTable,
    rule_set: Optional[RuleSet] = None,
    design_fields: Optional[Mapping[str, Sequence[str]]] = None,
    strict: bool = False
) -> Tuple[pd.DataFrame, HarmonizationReport]:
    """Produce the harmonized BRFSS table.

    The rule table is validated and every source variable and design field
    is resolved for every loaded year before any row is processed.

    Args:
        table: Output of load_brfss_years() or load_appended_table()
        rule_set: Rule table (defaults to the shipped BRFSS rules)
        design_fields: Design field name -> candidate source names
        strict: Raise on undocumented codes instead of recoding to missing

    Returns:
        Tuple of (harmonized DataFrame, HarmonizationReport). One row per
        appended row: surveyyear, harmonized variables, indicators, design
        fields.

    Raises:
        RuleCoverageError: Rule ranges have gaps/overlaps, or a loaded year
            is outside the rule span
        UnresolvedSourceVariableError: A rule's source or a design field is
            absent for a loaded year
        UnexpectedCodeError: Undocumented code found (strict mode only)
    """
    rule_set = rule_set or load_brfss_rules()
    design_fields = design_fields or DESIGN_FIELDS

    log.info(
        "Harmonizing BRFSS",
        years=table.years,
        rows=len(table.frame),
        rule_set=rule_set.name,
        strict=strict
    )

    return harmonize_frame(
        table.frame,
        rule_set,
        year_columns=table.year_columns,
        passthrough={name: tuple(c) for name, c in design_fields.items()},
        strict=strict,
        year_column=YEAR_COLUMN,
    )
