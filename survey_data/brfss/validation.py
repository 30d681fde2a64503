"""
Validation Checks for BRFSS Outputs

Sanity checks run after loading and after harmonizing. Checks report
PASS/FAIL results rather than raising, so a run can print every finding at
once; callers decide whether a failure should stop the pipeline.

Appended table checks:
    - survey year range matches the request
    - every requested year has observations
    - observations per year fall in a plausible range
    - survey design fields are present

Harmonized table checks:
    - no harmonized column still holds one of its sentinel codes
    - row counts per year equal the appended table's
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

import pandas as pd
import structlog

from survey_data.brfss.harmonizer import DESIGN_FIELDS, check_design_fields
from survey_data.brfss.loader import YEAR_COLUMN, AppendedTable
from survey_data.exceptions import UnresolvedSourceVariableError
from survey_data.harmonization.rules import RuleSet

log = structlog.get_logger()


@dataclass(frozen=True)
class CheckResult:
    name: str
    passed: bool
    detail: str

    def __str__(self) -> str:
        return f"[{'PASS' if self.passed else 'FAIL'}] {self.name}: {self.detail}"


def check_year_range(table: AppendedTable, first_year: int, last_year: int) -> CheckResult:
    years = table.frame[YEAR_COLUMN]
    if years.empty:
        return CheckResult("year_range", False, "table is empty")
    found = (int(years.min()), int(years.max()))
    passed = found == (first_year, last_year)
    return CheckResult(
        "year_range", passed,
        f"expected {first_year}-{last_year}, found {found[0]}-{found[1]}"
    )


def check_no_empty_years(table: AppendedTable) -> CheckResult:
    empty = [year for year, n in table.rows_by_year().items() if n == 0]
    if empty:
        return CheckResult("no_empty_years", False, f"years with 0 observations: {empty}")
    return CheckResult("no_empty_years", True, "all years have observations")


def check_rows_per_year(
    table: AppendedTable,
    min_rows: Optional[int] = None,
    max_rows: Optional[int] = None
) -> CheckResult:
    counts = table.rows_by_year()
    implausible = {
        year: n for year, n in counts.items()
        if (min_rows is not None and n < min_rows) or (max_rows is not None and n > max_rows)
    }
    bounds = f"{min_rows if min_rows is not None else '-'}..{max_rows if max_rows is not None else '-'}"
    if implausible:
        return CheckResult("rows_per_year", False, f"outside {bounds}: {implausible}")
    return CheckResult("rows_per_year", True, f"{len(counts)} year(s) within {bounds}")


def check_design_presence(
    table: AppendedTable,
    design_fields: Optional[Mapping[str, Sequence[str]]] = None
) -> CheckResult:
    try:
        resolved = check_design_fields(table, design_fields or DESIGN_FIELDS)
    except UnresolvedSourceVariableError as e:
        return CheckResult("design_fields", False, str(e))
    used = sorted({column for by_year in resolved.values() for column in by_year.values()})
    return CheckResult("design_fields", True, f"present: {', '.join(used)}")


def check_sentinel_leaks(harmonized: pd.DataFrame, rule_set: RuleSet) -> CheckResult:
    """No harmonized column may still hold one of its own non-response codes."""
    leaks = {}
    for target in rule_set.targets:
        if target not in harmonized.columns:
            continue
        codes = set()
        for rule in rule_set.rules_for(target):
            codes |= rule.non_response_codes
        if not codes:
            continue
        n = int(harmonized[target].isin(sorted(codes)).sum())
        if n:
            leaks[target] = n
    if leaks:
        return CheckResult("sentinel_leaks", False, f"sentinel codes remain: {leaks}")
    return CheckResult("sentinel_leaks", True, "no sentinel codes in harmonized columns")


def check_row_counts_match(table: AppendedTable, harmonized: pd.DataFrame) -> CheckResult:
    expected = table.rows_by_year()
    counts = harmonized[YEAR_COLUMN].value_counts()
    found = {year: int(counts.get(year, 0)) for year in expected}
    extra = sorted(set(int(y) for y in counts.index) - set(expected))
    if found != expected or extra:
        return CheckResult(
            "row_counts_match", False,
            f"appended {expected}, harmonized {found}" + (f", unexpected years {extra}" if extra else "")
        )
    return CheckResult("row_counts_match", True, f"{sum(expected.values())} rows across {len(expected)} year(s)")


def validate_appended(
    table: AppendedTable,
    first_year: int,
    last_year: int,
    min_rows: Optional[int] = None,
    max_rows: Optional[int] = None,
    design_fields: Optional[Mapping[str, Sequence[str]]] = None
) -> List[CheckResult]:
    """Run all appended-table checks."""
    results = [
        check_year_range(table, first_year, last_year),
        check_no_empty_years(table),
        check_rows_per_year(table, min_rows, max_rows),
        check_design_presence(table, design_fields),
    ]
    _log_results("appended", results)
    return results


def validate_harmonized(
    table: AppendedTable,
    harmonized: pd.DataFrame,
    rule_set: RuleSet
) -> List[CheckResult]:
    """Run all harmonized-table checks."""
    results = [
        check_row_counts_match(table, harmonized),
        check_sentinel_leaks(harmonized, rule_set),
    ]
    _log_results("harmonized", results)
    return results


def _log_results(stage: str, results: List[CheckResult]) -> None:
    for result in results:
        if result.passed:
            log.info("Validation check passed", stage=stage, check=result.name, detail=result.detail)
        else:
            log.warning("Validation check failed", stage=stage, check=result.name, detail=result.detail)


def summarize_results(results: Iterable[CheckResult]) -> Dict[str, int]:
    results = list(results)
    return {
        "passed": sum(r.passed for r in results),
        "failed": sum(not r.passed for r in results),
    }
