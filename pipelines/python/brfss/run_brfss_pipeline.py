"""
BRFSS Load, Append and Harmonize Pipeline

Main pipeline script that:
1. Loads the BRFSS configuration (template + optional custom config)
2. Reads and appends one LLCP{year}.XPT file per requested year
3. Saves the appended table to Feather with its column manifest
4. Harmonizes variables across years and carries the design fields through
5. Runs validation checks and saves the harmonized table
6. Optionally stores the harmonized table in DuckDB
7. Prints summary statistics

Usage:
    python pipelines/python/brfss/run_brfss_pipeline.py
    python pipelines/python/brfss/run_brfss_pipeline.py --first-year 2011 --last-year 2024
    python pipelines/python/brfss/run_brfss_pipeline.py --strict --stata

Command-line Arguments:
    --first-year: First survey year (default from config)
    --last-year: Last survey year (default from config)
    --config: Custom config merged over the template
    --output-dir: Output directory (default from config)
    --strict: Fail on undocumented codes instead of recoding to missing
    --stata: Also write .dta copies
    --database: DuckDB file for the harmonized table
    --verbose: Enable verbose logging

Output:
    - {output_dir}/brfss_appended.feather (+ .metadata.json)
    - {output_dir}/brfss_clean.feather (+ .harmonization_report.json)

Author: Survey Data Platform
Date: 2026-09-14
"""

import argparse
import sys
import time
from pathlib import Path

import structlog

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent.parent))

from survey_data.brfss.config_manager import get_brfss_config, resolve_cli_path
from survey_data.brfss.pipeline import run_pipeline
from survey_data.brfss.summary import render_summary
from survey_data.exceptions import SurveyDataError
from survey_data.utils.logging import setup_logging

log = structlog.get_logger()


def parse_arguments():
    parser = argparse.ArgumentParser(
        description="Load, append and harmonize BRFSS survey years",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Default years from config (2023-2024)
  python pipelines/python/brfss/run_brfss_pipeline.py

  # Full 2011-2024 range
  python pipelines/python/brfss/run_brfss_pipeline.py --first-year 2011 --last-year 2024

  # Fail on undocumented codes, also write Stata files
  python pipelines/python/brfss/run_brfss_pipeline.py --strict --stata

  # Store harmonized table in DuckDB
  python pipelines/python/brfss/run_brfss_pipeline.py --database data/duckdb/brfss.duckdb
        """
    )

    parser.add_argument("--first-year", type=int, help="First survey year (default from config)")
    parser.add_argument("--last-year", type=int, help="Last survey year (default from config)")
    parser.add_argument("--config", type=str, help="Custom config merged over the template")
    parser.add_argument("--output-dir", type=str, help="Output directory (default from config)")
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Fail on undocumented codes instead of recoding them to missing"
    )
    parser.add_argument("--stata", action="store_true", help="Also write Stata .dta files")
    parser.add_argument("--database", type=str, help="DuckDB file for the harmonized table")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")

    return parser.parse_args()


def main():
    args = parse_arguments()
    setup_logging(level="DEBUG" if args.verbose else "INFO")

    print("[INFO] BRFSS Load, Append and Harmonize Pipeline")
    print("=" * 70)

    start_time = time.time()

    try:
        config = get_brfss_config(
            config_path=resolve_cli_path(args.config),
            overrides={
                "first_year": args.first_year,
                "last_year": args.last_year,
                "output_directory": resolve_cli_path(args.output_dir),
            },
        )
    except (FileNotFoundError, ValueError) as e:
        log.error("Invalid configuration", error=str(e), error_type=type(e).__name__)
        print(f"[ERROR] Invalid configuration: {e}")
        return 1

    print(f"[INFO] Years: {config['first_year']}-{config['last_year']}")
    print(f"[INFO] Raw directory: {config['raw_directory']}")
    print(f"[INFO] Output directory: {config['output_directory']}")
    print(f"[INFO] Strict mode: {args.strict}")
    print("=" * 70)

    try:
        result = run_pipeline(
            config,
            strict=args.strict,
            stata=True if args.stata else None,
            database=resolve_cli_path(args.database),
        )
    except SurveyDataError as e:
        log.error("Pipeline failed", error=str(e), error_type=type(e).__name__)
        print(f"\n[ERROR] {type(e).__name__}: {e}")
        return 1
    except Exception as e:
        log.exception("Pipeline failed", error=str(e), error_type=type(e).__name__)
        print(f"\n[ERROR] Pipeline failed: {e}")
        return 1

    elapsed = time.time() - start_time

    print("\n[VALIDATION]")
    for check in result.checks:
        print(f"  {check}")

    print("\n[SUMMARY]")
    print(render_summary(result.harmonized))

    if result.report.unexpected_total:
        print(f"\n[WARN] {result.report.unexpected_total:,} undocumented code(s) recoded to missing")
        for target, by_year in result.report.unexpected.items():
            for year, codes in by_year.items():
                print(f"  {target} {year}: {codes}")

    print("\n" + "=" * 70)
    print("[SUCCESS] Pipeline completed successfully!")
    print("=" * 70)
    print(f"Records: {len(result.harmonized):,}")
    print(f"Harmonized variables: {len(result.harmonized.columns)}")
    print(f"Rule signature: {result.rule_signature[:16]}")
    print("Output files:")
    for stage, artifacts in result.artifacts.items():
        for kind, path in artifacts.items():
            print(f"  - {stage} {kind}: {path}")
    if result.database_rows is not None:
        print(f"  - DuckDB: {args.database or config['outputs'].get('database')} "
              f"({result.database_rows:,} rows)")
    if result.failed_checks:
        print(f"[WARN] {len(result.failed_checks)} validation check(s) failed; see above")
    print(f"Elapsed: {elapsed:.1f}s")
    print("=" * 70)

    return 0


if __name__ == "__main__":
    sys.exit(main())
