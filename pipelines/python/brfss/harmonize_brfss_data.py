"""
BRFSS Harmonization of an Existing Appended Table

Re-runs harmonization on a previously saved brfss_appended.feather without
re-reading the XPT files, e.g. after editing the rule table.

Usage:
    python pipelines/python/brfss/harmonize_brfss_data.py
    python pipelines/python/brfss/harmonize_brfss_data.py --input data/brfss/output/brfss_appended.feather
    python pipelines/python/brfss/harmonize_brfss_data.py --rules my_rules.yaml --strict

Command-line Arguments:
    --input: Appended Feather file (default from config)
    --config: Custom config merged over the template
    --rules: Rule table YAML (default from config)
    --output-dir: Output directory (default from config)
    --strict: Fail on undocumented codes instead of recoding to missing
    --stata: Also write a .dta copy
    --database: DuckDB file for the harmonized table
    --verbose: Enable verbose logging

Output:
    - {output_dir}/brfss_clean.feather (+ .harmonization_report.json)

Author: Survey Data Platform
Date: 2026-09-21
"""

import argparse
import sys
from pathlib import Path

import structlog

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent.parent))

from survey_data.brfss.config_manager import get_brfss_config, resolve_cli_path
from survey_data.brfss.data_loader import load_appended_table, save_harmonized_table
from survey_data.brfss.database import write_table_to_duckdb
from survey_data.brfss.harmonizer import harmonize_brfss, load_brfss_rules
from survey_data.brfss.validation import validate_harmonized
from survey_data.exceptions import SurveyDataError
from survey_data.utils.logging import setup_logging

log = structlog.get_logger()


def main():
    parser = argparse.ArgumentParser(
        description="Harmonize an existing appended BRFSS Feather file",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument("--input", type=str, help="Appended Feather file (default from config)")
    parser.add_argument("--config", type=str, help="Custom config merged over the template")
    parser.add_argument("--rules", type=str, help="Rule table YAML (default from config)")
    parser.add_argument("--output-dir", type=str, help="Output directory (default from config)")
    parser.add_argument("--strict", action="store_true", help="Fail on undocumented codes")
    parser.add_argument("--stata", action="store_true", help="Also write a Stata .dta file")
    parser.add_argument("--database", type=str, help="DuckDB file for the harmonized table")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")
    args = parser.parse_args()

    setup_logging(level="DEBUG" if args.verbose else "INFO")

    try:
        config = get_brfss_config(
            config_path=resolve_cli_path(args.config),
            overrides={
                "output_directory": resolve_cli_path(args.output_dir),
                "rules_path": resolve_cli_path(args.rules),
            },
        )
    except (FileNotFoundError, ValueError) as e:
        log.error("Invalid configuration", error=str(e), error_type=type(e).__name__)
        print(f"[ERROR] Invalid configuration: {e}")
        return 1

    input_path = Path(resolve_cli_path(args.input)) if args.input else (
        Path(config['output_directory']) / f"{config.get('appended_name', 'brfss_appended')}.feather"
    )

    print("[INFO] BRFSS Harmonization")
    print("=" * 70)
    print(f"[INFO] Input: {input_path}")
    print(f"[INFO] Rules: {config['rules_path']}")
    print("=" * 70)

    if not input_path.exists():
        log.error("Appended file not found", path=str(input_path))
        print(f"[ERROR] Appended file not found: {input_path}")
        print("[ERROR] Run pipelines/python/brfss/run_brfss_pipeline.py first")
        return 1

    try:
        print("\n[1/3] Loading appended table...")
        table = load_appended_table(str(input_path))
        print(f"[OK] {len(table.frame):,} records, years {table.years[0]}-{table.years[-1]}")

        print("\n[2/3] Harmonizing...")
        rule_set = load_brfss_rules(config['rules_path'])
        harmonized, report = harmonize_brfss(
            table, rule_set, design_fields=config.get('design_fields'), strict=args.strict
        )
        for check in validate_harmonized(table, harmonized, rule_set):
            print(f"  {check}")

        print("\n[3/3] Saving harmonized table...")
        artifacts = save_harmonized_table(
            harmonized,
            report,
            config['output_directory'],
            config.get('harmonized_name', 'brfss_clean'),
            rule_signature=rule_set.signature(),
            stata=args.stata,
        )
        database = resolve_cli_path(args.database)
        if database:
            table_name = (config.get('outputs') or {}).get('table_name', 'brfss_clean')
            rows = write_table_to_duckdb(harmonized, database, table_name)
            artifacts['duckdb'] = f"{database} ({rows:,} rows in {table_name})"
    except SurveyDataError as e:
        log.error("Harmonization failed", error=str(e), error_type=type(e).__name__)
        print(f"\n[ERROR] {type(e).__name__}: {e}")
        return 1
    except Exception as e:
        log.exception("Harmonization failed", error=str(e), error_type=type(e).__name__)
        print(f"\n[ERROR] Harmonization failed: {e}")
        return 1

    print("\n" + "=" * 70)
    print("[SUCCESS] Harmonization complete")
    print("=" * 70)
    print(f"Variables: {len(harmonized.columns)}")
    print(f"Undocumented codes recoded to missing: {report.unexpected_total:,}")
    for kind, path in artifacts.items():
        print(f"  - {kind}: {path}")
    print("=" * 70)

    return 0


if __name__ == "__main__":
    sys.exit(main())
