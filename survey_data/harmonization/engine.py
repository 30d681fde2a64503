"""
Rule Interpreter

Applies a validated RuleSet to a stacked multi-year table. Work is done one
(rule, survey year) slice at a time with vectorised pandas operations:

    1. pick the rule whose year range holds the slice's year
    2. resolve the source column(s) present in that year's file
    3. recode sentinel / blank values to missing
    4. apply the rule's code mapping, then its derivation; non-integer
       values left in an integer target count as undocumented codes
    5. anything missing after step 3 stays missing

Source resolution for every (target, year) pair happens before any values are
computed, so a rule-table defect aborts the run without partial output.

Functions:
    infer_year_columns: Reconstruct which columns each year actually carried
    resolve_sources: Pre-flight resolution of rule sources per year
    harmonize_frame: Produce the harmonized table and a HarmonizationReport
    resolve_passthrough: Pick the column carrying each passthrough field per year
"""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import structlog

from survey_data.exceptions import (
    RuleCoverageError,
    UnexpectedCodeError,
    UnresolvedSourceVariableError,
)
from survey_data.harmonization.rules import (
    DERIVATIONS,
    CodeMapping,
    HarmonizationRule,
    RuleSet,
)
from survey_data.harmonization.sentinels import is_blank, recode_sentinels

log = structlog.get_logger()

YEAR_COLUMN = "surveyyear"


@dataclass
class HarmonizationReport:
    """Per-target counts collected while harmonizing."""

    rows: int = 0
    rows_by_year: Dict[int, int] = field(default_factory=dict)
    sources: Dict[str, Dict[int, List[str]]] = field(default_factory=dict)
    non_response: Dict[str, int] = field(default_factory=dict)
    missing: Dict[str, int] = field(default_factory=dict)
    unexpected: Dict[str, Dict[int, Dict[str, int]]] = field(default_factory=dict)

    @property
    def unexpected_total(self) -> int:
        return sum(
            count
            for by_year in self.unexpected.values()
            for codes in by_year.values()
            for count in codes.values()
        )

    def to_dict(self) -> Dict:
        return {
            "rows": self.rows,
            "rows_by_year": {str(y): n for y, n in sorted(self.rows_by_year.items())},
            "sources": {
                t: {str(y): s for y, s in sorted(by_year.items())}
                for t, by_year in self.sources.items()
            },
            "non_response": dict(self.non_response),
            "missing": dict(self.missing),
            "unexpected": {
                t: {str(y): codes for y, codes in sorted(by_year.items())}
                for t, by_year in self.unexpected.items()
            },
            "unexpected_total": self.unexpected_total,
        }


def infer_year_columns(frame: pd.DataFrame, year_column: str = YEAR_COLUMN) -> Dict[int, frozenset]:
    """Columns holding at least one non-blank value, per survey year.

    Used when a stacked table arrives without its per-year column manifest;
    a column that is blank for every row of a year is treated as absent.
    """
    year_columns = {}
    for year, group in frame.groupby(year_column, sort=True):
        present = [c for c in group.columns if not is_blank(group[c]).all()]
        year_columns[int(year)] = frozenset(present)
    return year_columns


def _years_in(frame: pd.DataFrame, year_column: str) -> List[int]:
    if year_column not in frame.columns:
        raise ValueError(f"Table has no '{year_column}' column")
    if frame[year_column].isna().any():
        raise ValueError(f"Every row must carry a '{year_column}' value")
    return sorted(int(y) for y in frame[year_column].unique())


def resolve_sources(
    rule_set: RuleSet,
    years: Sequence[int],
    year_columns: Mapping[int, Iterable[str]],
) -> Dict[Tuple[str, int], Tuple[HarmonizationRule, List[str]]]:
    """Find, for every target and year, the rule and source columns to read.

    Returns:
        Dict keyed by (target, year) -> (rule, present candidate sources in
        rule order)

    Raises:
        RuleCoverageError: A year lies outside the rule set's span
        UnresolvedSourceVariableError: No candidate source exists for a year
    """
    for year in years:
        if not rule_set.span.contains(year):
            raise RuleCoverageError(
                YEAR_COLUMN, year,
                f"survey year outside supported span {rule_set.span}"
            )

    plan = {}
    for target in rule_set.targets:
        for year in years:
            rule = rule_set.rule_for(target, year)
            available = set(year_columns.get(year, ()))
            present = [s for s in rule.sources if s in available]
            if not present:
                log.error(
                    "Source variable missing for year",
                    target=target, year=year, sources=list(rule.sources)
                )
                raise UnresolvedSourceVariableError(year, rule.sources, target=target)
            plan[(target, year)] = (rule, present)
    return plan


def coalesce(frame: pd.DataFrame, columns: Sequence[str]) -> pd.Series:
    """First non-blank value across `columns`, row by row."""
    result = frame[columns[0]]
    for column in columns[1:]:
        result = result.where(~is_blank(result), frame[column])
    return result


def apply_mapping(values: pd.Series, mapping: Sequence[CodeMapping]) -> Tuple[pd.Series, pd.Series]:
    """Map codes through ordered entries; first match wins.

    Returns:
        (mapped values, mask of non-missing values no entry matched)
    """
    if not mapping:
        return values.copy(), pd.Series(False, index=values.index)

    result = pd.Series(np.nan, index=values.index, dtype="float64")
    matched = pd.Series(False, index=values.index)
    for entry in mapping:
        hit = entry.matches(values) & ~matched
        if entry.keeps:
            result.loc[hit] = values[hit]
        else:
            result.loc[hit] = entry.value
        matched |= hit
    return result, values.notna() & ~matched


def _count_codes(values: pd.Series) -> Dict[str, int]:
    counts = values.value_counts(sort=False)
    return {_format_code(code): int(n) for code, n in sorted(counts.items())}


def _format_code(code: float) -> str:
    return str(int(code)) if float(code).is_integer() else str(code)


def _cast(values: pd.Series, dtype: str) -> pd.Series:
    if dtype == "int":
        return values.astype("Int64")
    return values.astype("Float64")


def harmonize_frame(
    frame: pd.DataFrame,
    rule_set: RuleSet,
    year_columns: Optional[Mapping[int, Iterable[str]]] = None,
    passthrough: Optional[Mapping[str, Sequence[str]]] = None,
    strict: bool = False,
    year_column: str = YEAR_COLUMN,
) -> Tuple[pd.DataFrame, HarmonizationReport]:
    """Harmonize a stacked table with a rule set.

    Args:
        frame: Stacked table with a survey year column
        rule_set: Rule table; validated here before any row is processed
        year_columns: Columns each year's source file contained. Inferred
            from non-blank values when omitted.
        passthrough: Output column -> candidate source names, copied
            unchanged (e.g. survey design fields)
        strict: Raise UnexpectedCodeError on undocumented codes instead of
            recoding them to missing
        year_column: Name of the survey year column

    Returns:
        Tuple of (harmonized DataFrame, HarmonizationReport). Output columns
        are the year column, harmonized targets, indicators, then
        passthrough fields, one row per input row in input order.
    """
    rule_set.validate()

    years = _years_in(frame, year_column)
    if year_columns is None:
        year_columns = infer_year_columns(frame, year_column)

    plan = resolve_sources(rule_set, years, year_columns)
    passthrough_plan = resolve_passthrough(passthrough or {}, years, year_columns)

    log.info(
        "Harmonizing table",
        rows=len(frame),
        years=years,
        targets=len(rule_set.targets),
        indicators=len(rule_set.indicators),
        strict=strict,
    )

    frame = frame.reset_index(drop=True)
    year_values = frame[year_column].astype(int)
    year_masks = {year: year_values == year for year in years}

    report = HarmonizationReport(
        rows=len(frame),
        rows_by_year={year: int(mask.sum()) for year, mask in year_masks.items()},
    )
    output = {year_column: frame[year_column].copy()}

    for target in rule_set.targets:
        values = pd.Series(np.nan, index=frame.index, dtype="float64")
        dtype = "int"
        non_response = 0
        unexpected = defaultdict(dict)

        for year in years:
            rule, sources = plan[(target, year)]
            dtype = rule.dtype
            report.sources.setdefault(target, {})[year] = sources

            mask = year_masks[year]
            if not mask.any():
                continue
            raw = coalesce(frame.loc[mask], sources)
            recoded = recode_sentinels(raw, rule.non_response_codes)
            non_response += int((recoded.isna() & ~is_blank(raw)).sum())

            mapped, undocumented = apply_mapping(recoded, rule.mapping)
            if dtype == "int":
                fractional = mapped.notna() & (mapped % 1 != 0)
                undocumented |= fractional
                mapped[fractional] = np.nan
            if undocumented.any():
                codes = _count_codes(recoded[undocumented])
                if strict:
                    log.error("Undocumented codes", target=target, year=year, codes=codes)
                    raise UnexpectedCodeError(
                        target, year, "/".join(sources), recoded[undocumented].unique()
                    )
                unexpected[year] = codes
                log.warning(
                    "Undocumented codes recoded to missing",
                    target=target, year=year, sources=sources, codes=codes
                )

            if rule.derive is not None:
                mapped = DERIVATIONS[rule.derive](mapped)
            values.loc[mask] = mapped

        result = _cast(values, dtype)
        output[target] = result
        report.non_response[target] = non_response
        report.missing[target] = int(result.isna().sum())
        if unexpected:
            report.unexpected[target] = dict(unexpected)

    for indicator in rule_set.indicators:
        result = indicator.apply(output[indicator.source])
        output[indicator.target] = result
        report.missing[indicator.target] = int(result.isna().sum())

    for name, by_year in passthrough_plan.items():
        output[name] = _passthrough_column(frame, by_year, year_masks)

    harmonized = pd.DataFrame(output, index=frame.index)

    log.info(
        "Harmonization complete",
        rows=len(harmonized),
        columns=len(harmonized.columns),
        undocumented_codes=report.unexpected_total,
    )
    return harmonized, report


def resolve_passthrough(
    passthrough: Mapping[str, Sequence[str]],
    years: Sequence[int],
    year_columns: Mapping[int, Iterable[str]],
) -> Dict[str, Dict[int, str]]:
    """Map each passthrough field to its first candidate column present per year.

    Raises:
        UnresolvedSourceVariableError: If a year carries none of the candidates
    """
    plan = {}
    for name, candidates in passthrough.items():
        plan[name] = {}
        for year in years:
            available = set(year_columns.get(year, ()))
            found = [c for c in candidates if c in available]
            if not found:
                log.error("Passthrough field missing", field=name, year=year, candidates=list(candidates))
                raise UnresolvedSourceVariableError(year, candidates, target=name)
            plan[name][year] = found[0]
    return plan


def _passthrough_column(
    frame: pd.DataFrame,
    by_year: Mapping[int, str],
    year_masks: Mapping[int, pd.Series],
) -> pd.Series:
    columns = set(by_year.values())
    if len(columns) == 1:
        return frame[columns.pop()].copy()
    # Different aliases in different years: stitch the per-year slices.
    pieces = [frame.loc[year_masks[year], column] for year, column in by_year.items()]
    return pd.concat(pieces).reindex(frame.index)
