"""
BRFSS Pipeline Orchestration

Runs the full load-and-harmonize sequence for a configured year range:

    1. Load and append the requested survey years
    2. Save the appended table (Feather + column manifest)
    3. Validate the appended table
    4. Harmonize with the BRFSS rule table
    5. Validate the harmonized table
    6. Save the harmonized table and its report
    7. Optionally store the harmonized table in DuckDB

Failed validation checks are logged and returned; they do not stop the run.
Missing files and rule-table defects do.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import pandas as pd
import structlog

from survey_data.brfss.config_manager import get_years
from survey_data.brfss.data_loader import save_appended_table, save_harmonized_table
from survey_data.brfss.database import write_table_to_duckdb
from survey_data.brfss.harmonizer import harmonize_brfss, load_brfss_rules
from survey_data.brfss.loader import AppendedTable, load_brfss_years
from survey_data.brfss.validation import CheckResult, validate_appended, validate_harmonized
from survey_data.harmonization.engine import HarmonizationReport
from survey_data.utils.logging import PerformanceLogger

log = structlog.get_logger()


@dataclass
class PipelineResult:
    """Everything a run produced."""

    appended: AppendedTable
    harmonized: pd.DataFrame
    report: HarmonizationReport
    rule_signature: str
    artifacts: Dict[str, Dict[str, str]] = field(default_factory=dict)
    checks: List[CheckResult] = field(default_factory=list)
    database_rows: Optional[int] = None

    @property
    def failed_checks(self) -> List[CheckResult]:
        return [c for c in self.checks if not c.passed]


def run_pipeline(
    config: Dict[str, Any],
    strict: bool = False,
    stata: Optional[bool] = None,
    database: Optional[str] = None
) -> PipelineResult:
    """Run load, append, harmonize and save for the configured years.

    Args:
        config: Output of get_brfss_config()
        strict: Raise on undocumented codes instead of recoding to missing
        stata: Also write .dta copies (defaults to config outputs.stata)
        database: DuckDB file to store the harmonized table in (defaults to
            config outputs.database; None skips the database step)

    Returns:
        PipelineResult

    Raises:
        MissingFileError: A requested year has no source file
        RuleCoverageError: Rule table gaps/overlaps or an unsupported year
        UnresolvedSourceVariableError: A source or design field is absent
        UnexpectedCodeError: Undocumented code found (strict mode only)
    """
    outputs = config.get('outputs') or {}
    if stata is None:
        stata = bool(outputs.get('stata', False))
    if database is None:
        database = outputs.get('database')

    years = get_years(config)
    design_fields = config.get('design_fields')
    validation = config.get('validation') or {}
    output_dir = config['output_directory']

    # Rule table is validated before any file is read
    rule_set = load_brfss_rules(config.get('rules_path'))

    with PerformanceLogger(log, "load_and_append", years=f"{years[0]}-{years[-1]}"):
        appended = load_brfss_years(years, config['raw_directory'], config['file_pattern'])

    artifacts = {}
    with PerformanceLogger(log, "save_appended"):
        artifacts['appended'] = save_appended_table(
            appended, output_dir, config.get('appended_name', 'brfss_appended'), stata=stata
        )

    checks = validate_appended(
        appended,
        years[0],
        years[-1],
        min_rows=validation.get('min_rows_per_year'),
        max_rows=validation.get('max_rows_per_year'),
        design_fields=design_fields,
    )

    with PerformanceLogger(log, "harmonize", strict=strict):
        harmonized, report = harmonize_brfss(
            appended, rule_set, design_fields=design_fields, strict=strict
        )

    checks += validate_harmonized(appended, harmonized, rule_set)

    signature = rule_set.signature()
    with PerformanceLogger(log, "save_harmonized"):
        artifacts['harmonized'] = save_harmonized_table(
            harmonized,
            report,
            output_dir,
            config.get('harmonized_name', 'brfss_clean'),
            rule_signature=signature,
            stata=stata,
        )

    database_rows = None
    if database:
        table_name = outputs.get('table_name', 'brfss_clean')
        with PerformanceLogger(log, "database_insert", table=table_name):
            database_rows = write_table_to_duckdb(harmonized, database, table_name)

    result = PipelineResult(
        appended=appended,
        harmonized=harmonized,
        report=report,
        rule_signature=signature,
        artifacts=artifacts,
        checks=checks,
        database_rows=database_rows,
    )

    log.info(
        "BRFSS pipeline complete",
        years=years,
        rows=len(harmonized),
        columns=len(harmonized.columns),
        failed_checks=len(result.failed_checks),
        undocumented_codes=report.unexpected_total,
    )
    return result
