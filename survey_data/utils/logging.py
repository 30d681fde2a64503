"""
Logging utilities for the survey data pipeline.

Provides structured logging for pipeline stages and command-line scripts.
"""

import logging
import sys
import time
from pathlib import Path
from typing import Optional

import structlog


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    structured: bool = False,
    console_output: bool = True
) -> structlog.stdlib.BoundLogger:
    """
    Set up logging for the application.

    structlog events are routed through the standard library so that console
    and file handlers receive the same records.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file to write logs to
        structured: JSON lines when True, human-readable key=value otherwise
        console_output: Whether to log to stderr

    Returns:
        Configured structlog logger
    """
    renderer = (
        structlog.processors.JSONRenderer()
        if structured
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper()))

    # Remove existing handlers
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    formatter = logging.Formatter("%(message)s")

    if console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(formatter)
        root.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    return structlog.get_logger("survey_data")


class PerformanceLogger:
    """
    Context manager timing one pipeline stage.

    Example:
        >>> with PerformanceLogger(log, "load", years=[2023, 2024]):
        ...     table = load_brfss_years([2023, 2024], raw_dir)
    """

    def __init__(self, logger, operation_name: str, **context):
        self.logger = logger
        self.operation_name = operation_name
        self.context = context
        self.start_time = None
        self.duration = None

    def __enter__(self):
        self.start_time = time.time()
        self.logger.info("Starting operation", operation=self.operation_name, **self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration = time.time() - self.start_time

        if exc_type is None:
            self.logger.info(
                "Completed operation",
                operation=self.operation_name,
                duration_seconds=round(self.duration, 2),
                **self.context
            )
        else:
            self.logger.error(
                "Failed operation",
                operation=self.operation_name,
                duration_seconds=round(self.duration, 2),
                error_type=exc_type.__name__,
                error_message=str(exc_val),
                **self.context
            )
        # Never suppress the exception
        return False
