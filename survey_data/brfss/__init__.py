"""
BRFSS Data Pipeline Module

Loads CDC Behavioral Risk Factor Surveillance System annual files (2011-2024)
and produces an appended and a harmonized multi-year table, including:
- Configuration management
- Year-by-year loading and appending
- Cross-year harmonization with survey design passthrough
- Validation checks and descriptive summaries
- Feather / Stata / DuckDB outputs

Author: Survey Data Platform
Created: 2026-09-08
"""

__version__ = "1.0.0"

# Module exports
__all__ = [
    "get_brfss_config",
    "load_brfss_years",
    "harmonize_brfss",
    "run_pipeline",
    "write_table_to_duckdb",
]

# Lazy imports to avoid circular dependencies
def __getattr__(name):
    if name == "get_brfss_config":
        from .config_manager import get_brfss_config
        return get_brfss_config
    elif name == "load_brfss_years":
        from .loader import load_brfss_years
        return load_brfss_years
    elif name == "harmonize_brfss":
        from .harmonizer import harmonize_brfss
        return harmonize_brfss
    elif name == "run_pipeline":
        from .pipeline import run_pipeline
        return run_pipeline
    elif name == "write_table_to_duckdb":
        from .database import write_table_to_duckdb
        return write_table_to_duckdb
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
