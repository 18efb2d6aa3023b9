"""Structured logging configuration for the couchauth probe.

Log events are rendered as JSON lines with ISO timestamps on stderr, leaving
stdout to the step-by-step console report.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any, TextIO

import structlog


def configure_logging(log_level: str | None = None, stream: TextIO | None = None) -> None:
    """Configure structured logging.

    Sets up:
    - JSON output format
    - ISO timestamp format
    - Log level filtering (``log_level`` argument, else the LOG_LEVEL env var,
      else WARNING)
    - Exception formatting

    Call this once from the entry point.
    """
    level_name = (log_level or os.environ.get("LOG_LEVEL") or "WARNING").upper()
    level = getattr(logging, level_name, logging.WARNING)

    logging.basicConfig(
        format="%(message)s",
        stream=stream or sys.stderr,
        level=level,
        force=True,
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger instance.

    Example:
        logger = get_logger(__name__)
        logger.info("step_passed", step="create-database", status=201)
    """
    return structlog.get_logger(name)
