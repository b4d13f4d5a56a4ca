"""Structured logging for marketcharts."""

from marketcharts.core.logging.config import LogConfig
from marketcharts.core.logging.logger import (
    PROMOTED_FIELDS,
    bind,
    configure_logging,
    log_context,
    logger,
)

__all__ = [
    "LogConfig",
    "PROMOTED_FIELDS",
    "bind",
    "configure_logging",
    "log_context",
    "logger",
]
