"""
Configuration Manager for BRFSS Pipeline

Handles loading, merging, and validating the YAML configuration that drives a
BRFSS load-and-harmonize run. The only user-facing knobs for the core logic
are the first and last survey year; everything else has a default in the
template.

Functions:
    load_config: Load configuration from YAML file
    merge_configs: Merge template with run-specific overrides
    validate_config: Validate configuration parameters
    get_brfss_config: Convenience function to load BRFSS config
    get_years: Requested survey years as a list
    resolve_cli_path: Absolute form of a path given on the command line

Author: Survey Data Platform
Date: 2026-09-08
"""

import os
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog
import yaml
from dotenv import load_dotenv

# Configure structured logging
log = structlog.get_logger()

PROJECT_ROOT = Path(__file__).parent.parent.parent

# Default paths
DEFAULT_TEMPLATE_PATH = PROJECT_ROOT / "config" / "sources" / "brfss" / "brfss-template.yaml"
DEFAULT_RULES_PATH = PROJECT_ROOT / "config" / "sources" / "brfss" / "harmonization_rules.yaml"

# BRFSS moved to a dual-frame design in 2011; earlier files are not comparable.
SUPPORTED_FIRST_YEAR = 2011
SUPPORTED_LAST_YEAR = 2024

PATH_KEYS = ("raw_directory", "output_directory", "rules_path")

ENV_OVERRIDES = {
    "BRFSS_RAW_DIR": "raw_directory",
    "BRFSS_OUTPUT_DIR": "output_directory",
}


def load_config(config_path: str) -> Dict[str, Any]:
    """Load configuration from YAML file.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Dict[str, Any]: Parsed configuration dictionary

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML parsing fails
        ValueError: If the file is empty

    Example:
        >>> config = load_config("config/sources/brfss/brfss-template.yaml")
        >>> print(config['first_year'], config['last_year'])
        2023 2024
    """
    config_file = Path(config_path)

    log.debug("Loading configuration", path=str(config_file))

    if not config_file.exists():
        log.error("Configuration file not found", path=str(config_file))
        raise FileNotFoundError(
            f"Configuration file not found: {config_file}\n"
            f"Available configs should be in: config/sources/brfss/"
        )

    try:
        with open(config_file, 'r', encoding='utf-8') as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        log.error("Failed to parse YAML configuration", path=str(config_file), error=str(e))
        raise yaml.YAMLError(
            f"Failed to parse YAML configuration: {config_file}\n"
            f"Error: {e}"
        ) from e

    if config is None:
        log.error("Configuration file is empty", path=str(config_file))
        raise ValueError(f"Configuration file is empty: {config_file}")

    log.info("Configuration loaded successfully", path=str(config_file), keys=list(config.keys()))
    return config


def merge_configs(
    base_config: Dict[str, Any],
    override_config: Dict[str, Any],
    deep: bool = True
) -> Dict[str, Any]:
    """Merge two configuration dictionaries.

    The override_config values take precedence over base_config. Nested
    dictionaries are merged recursively unless deep=False.

    Example:
        >>> template = load_config(DEFAULT_TEMPLATE_PATH)
        >>> merged = merge_configs(template, {"first_year": 2011})
        >>> print(merged['first_year'])
        2011
    """
    if not deep:
        return {**base_config, **override_config}

    def _deep_merge(base_dict: Dict, override_dict: Dict) -> Dict:
        for key, value in override_dict.items():
            if key in base_dict and isinstance(base_dict[key], dict) and isinstance(value, dict):
                base_dict[key] = _deep_merge(base_dict[key], value)
            else:
                base_dict[key] = value
        return base_dict

    merged = _deep_merge(deepcopy(base_config), override_config)

    log.debug("Configuration merge complete", merged_keys=list(merged.keys()))
    return merged


def validate_config(config: Dict[str, Any]) -> bool:
    """Validate BRFSS pipeline configuration parameters.

    Collects every problem before failing so one run reports them all.

    Args:
        config: Configuration dictionary to validate

    Returns:
        bool: True if valid

    Raises:
        ValueError: If configuration is invalid, listing each problem
    """
    log.debug("Validating configuration")

    errors = []

    required_fields = [
        'first_year', 'last_year', 'raw_directory', 'file_pattern',
        'output_directory', 'rules_path', 'design_fields'
    ]
    for field in required_fields:
        if field not in config:
            errors.append(f"Missing required field: '{field}'")

    years_ok = True
    for field in ('first_year', 'last_year'):
        if field not in config:
            years_ok = False
            continue
        value = config[field]
        if isinstance(value, bool) or not isinstance(value, int):
            errors.append(f"{field} must be an integer year, got {value!r}")
            years_ok = False
        elif not (SUPPORTED_FIRST_YEAR <= value <= SUPPORTED_LAST_YEAR):
            # Out-of-span years are allowed through when the caller asks for
            # them explicitly; the loader reports the missing file.
            log.warning(
                "Year outside supported BRFSS span",
                field=field, year=value,
                span=f"{SUPPORTED_FIRST_YEAR}-{SUPPORTED_LAST_YEAR}"
            )

    if years_ok and config['first_year'] > config['last_year']:
        errors.append(
            f"first_year ({config['first_year']}) must not be after last_year ({config['last_year']})"
        )

    if 'file_pattern' in config and '{year}' not in str(config['file_pattern']):
        errors.append("file_pattern must contain a '{year}' placeholder (e.g. 'LLCP{year}.XPT')")

    if 'design_fields' in config:
        design = config['design_fields']
        if not isinstance(design, dict) or not design:
            errors.append("design_fields must map output names to candidate source names")
        else:
            for name, candidates in design.items():
                if not isinstance(candidates, list) or not candidates:
                    errors.append(f"design_fields.{name} must be a non-empty list of source names")

    validation = config.get('validation') or {}
    low = validation.get('min_rows_per_year')
    high = validation.get('max_rows_per_year')
    if low is not None and high is not None and low > high:
        errors.append("validation.min_rows_per_year must not exceed validation.max_rows_per_year")

    if errors:
        error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        log.error("Configuration validation failed", errors=errors)
        raise ValueError(error_msg)

    log.info("Configuration validation passed")
    return True


def _apply_environment(config: Dict[str, Any]) -> Dict[str, Any]:
    load_dotenv()
    for env_var, key in ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value:
            log.debug("Environment override", variable=env_var, key=key)
            config[key] = value
    return config


def _resolve_paths(config: Dict[str, Any], project_root: Path) -> Dict[str, Any]:
    for key in PATH_KEYS:
        if key in config and config[key] is not None:
            path = Path(config[key])
            if not path.is_absolute():
                path = project_root / path
            config[key] = str(path)
    return config


def get_brfss_config(
    config_path: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None,
    validate: bool = True,
    project_root: Path = PROJECT_ROOT
) -> Dict[str, Any]:
    """Load and validate the BRFSS configuration.

    Convenience function that:
    1. Loads the template (or a custom config merged over the template)
    2. Applies environment overrides (BRFSS_RAW_DIR, BRFSS_OUTPUT_DIR)
    3. Applies explicit overrides (e.g. first/last year from the command line)
    4. Resolves relative paths against the project root
    5. Optionally validates the result

    Args:
        config_path: Optional custom config merged over the template
        overrides: Values taking precedence over files and environment
        validate: Whether to validate merged configuration
        project_root: Base for relative paths

    Returns:
        Dict[str, Any]: Merged configuration

    Example:
        >>> config = get_brfss_config(overrides={"first_year": 2011})
        >>> get_years(config)[:3]
        [2011, 2012, 2013]
    """
    config = load_config(DEFAULT_TEMPLATE_PATH)

    if config_path:
        log.info("Loading custom config", config_path=str(config_path))
        config = merge_configs(config, load_config(config_path))

    config = _apply_environment(config)

    if overrides:
        config = merge_configs(config, {k: v for k, v in overrides.items() if v is not None})

    config = _resolve_paths(config, project_root)

    if validate:
        validate_config(config)

    log.info(
        "BRFSS configuration ready",
        first_year=config.get('first_year'),
        last_year=config.get('last_year'),
        raw_directory=config.get('raw_directory')
    )
    return config


def resolve_cli_path(value: Optional[str]) -> Optional[str]:
    """Absolute form of a command-line path, taken relative to the working directory.

    Paths in config files resolve against the project root; paths typed at a
    shell prompt resolve against where the command was run.
    """
    if value is None:
        return None
    return str(Path(value).resolve())


def get_years(config: Dict[str, Any]) -> List[int]:
    """Requested survey years, ascending and inclusive."""
    return list(range(int(config['first_year']), int(config['last_year']) + 1))
