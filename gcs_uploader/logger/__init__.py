"""Public logging helpers for the uploader."""

from .custom_logger import (
    LoggerConfig,
    configure_logging,
    get_context,
    get_logger,
    log_context,
)

__all__ = [
    "LoggerConfig",
    "configure_logging",
    "get_context",
    "get_logger",
    "log_context",
]
