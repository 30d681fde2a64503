"""
Cross-year harmonization engine.

Modules:
    sentinels: Field-width sentinel conventions and blank handling
    rules: Rule records, YAML rule tables, coverage validation
    engine: Applies a RuleSet to a stacked multi-year table
"""

from survey_data.harmonization.engine import (
    HarmonizationReport,
    harmonize_frame,
    infer_year_columns,
)
from survey_data.harmonization.rules import (
    CodeMapping,
    HarmonizationRule,
    IndicatorRule,
    RuleSet,
    YearRange,
    load_rule_set,
    parse_rule_set,
)
from survey_data.harmonization.sentinels import SENTINEL_CODES, recode_sentinels

__all__ = [
    "CodeMapping",
    "HarmonizationReport",
    "HarmonizationRule",
    "IndicatorRule",
    "RuleSet",
    "SENTINEL_CODES",
    "YearRange",
    "harmonize_frame",
    "infer_year_columns",
    "load_rule_set",
    "parse_rule_set",
    "recode_sentinels",
]
