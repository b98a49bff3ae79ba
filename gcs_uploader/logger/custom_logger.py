"""
Logging setup for the uploader process.

Every module retrieves its logger through ``get_logger`` so that the first
call configures handlers from the environment. Records emitted while a
message is being handled carry that message's correlation id through
``log_context``.
"""

from __future__ import annotations

import contextvars
import json
import logging
import logging.config
import logging.handlers
import os
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_LOG_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(name)s | %(upload_id)s | %(message)s"
)
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_LOG_RECORD_RESERVED_ATTRS = {
    "args",
    "asctime",
    "created",
    "exc_info",
    "exc_text",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "message",
    "module",
    "msecs",
    "msg",
    "name",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "stack_info",
    "taskName",
    "thread",
    "threadName",
}

UPLOADER_LOG_LEVEL = "UPLOADER_LOG_LEVEL"
UPLOADER_LOG_FORMAT = "UPLOADER_LOG_FORMAT"
UPLOADER_LOG_DATEFMT = "UPLOADER_LOG_DATEFMT"
UPLOADER_LOG_FILE = "UPLOADER_LOG_FILE"
UPLOADER_LOG_JSON = "UPLOADER_LOG_JSON"

_TRUTHY = {"1", "true", "True", "yes"}

_context_data: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar(
    "uploader_log_context", default={}
)
_configured = False


class ContextFilter(logging.Filter):
    """Copy the bound context onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _context_data.get({}).items():
            if key not in _LOG_RECORD_RESERVED_ATTRS:
                setattr(record, key, value)
        if not hasattr(record, "upload_id"):
            record.upload_id = "-"
        return True


def _json_default(value: Any) -> Any:
    if isinstance(value, bytes):
        return f"<{len(value)} bytes>"
    return repr(value)


class JsonFormatter(logging.Formatter):
    """One JSON object per line, keyed the way Cloud Logging expects."""

    def format(self, record: logging.LogRecord) -> str:
        log_payload: Dict[str, Any] = {
            "time": self.formatTime(record, self.datefmt),
            "severity": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_payload["exc_info"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in _LOG_RECORD_RESERVED_ATTRS or key in log_payload:
                continue
            log_payload[key] = value

        return json.dumps(log_payload, default=_json_default, separators=(",", ":"))


@dataclass
class LoggerConfig:
    """Handler and format options for ``configure_logging``."""

    level: str = field(default=DEFAULT_LOG_LEVEL)
    fmt: str = field(default=DEFAULT_LOG_FORMAT)
    datefmt: str = field(default=DEFAULT_DATE_FORMAT)
    log_file: Optional[Path] = field(default=None)
    max_bytes: int = field(default=5 * 1024 * 1024)  # 5 MiB
    backup_count: int = field(default=3)
    json_logs: bool = field(default=False)

    @classmethod
    def from_env(cls) -> "LoggerConfig":
        """Build a configuration from ``UPLOADER_LOG_*`` environment variables."""
        config = cls()

        level = os.getenv(UPLOADER_LOG_LEVEL)
        if level:
            config.level = level.upper()

        log_format = os.getenv(UPLOADER_LOG_FORMAT)
        if log_format:
            config.fmt = log_format

        date_format = os.getenv(UPLOADER_LOG_DATEFMT)
        if date_format:
            config.datefmt = date_format

        file_path = os.getenv(UPLOADER_LOG_FILE)
        if file_path:
            config.log_file = Path(file_path)

        json_logs = os.getenv(UPLOADER_LOG_JSON)
        if json_logs is not None:
            config.json_logs = json_logs in _TRUTHY

        return config

    def to_dict(self) -> Dict[str, Any]:
        """Translate this config into a ``logging.config.dictConfig`` payload."""
        if self.log_file:
            try:
                self.log_file.parent.mkdir(parents=True, exist_ok=True)
            except OSError:
                # Read-only filesystems keep console output only.
                self.log_file = None

        if self.json_logs:
            formatter_config: Dict[str, Any] = {
                "()": "gcs_uploader.logger.custom_logger.JsonFormatter",
                "datefmt": self.datefmt,
            }
        else:
            formatter_config = {"format": self.fmt, "datefmt": self.datefmt}

        handlers: Dict[str, Dict[str, Any]] = {
            "console": {
                "class": "logging.StreamHandler",
                "level": self.level,
                "formatter": "structured",
                "filters": ["context"],
            }
        }
        if self.log_file:
            handlers["rotating_file"] = {
                "class": "logging.handlers.RotatingFileHandler",
                "level": self.level,
                "formatter": "structured",
                "filename": str(self.log_file),
                "maxBytes": self.max_bytes,
                "backupCount": self.backup_count,
                "encoding": "utf-8",
                "filters": ["context"],
            }

        return {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {
                "context": {"()": "gcs_uploader.logger.custom_logger.ContextFilter"}
            },
            "formatters": {"structured": formatter_config},
            "handlers": handlers,
            "root": {"level": self.level, "handlers": list(handlers)},
        }


def configure_logging(
    config: Optional[LoggerConfig] = None,
    *,
    debug: bool = False,
    force: bool = False,
) -> None:
    """
    Initialise logging for the process.

    Args:
        config: Explicit configuration. Defaults to ``LoggerConfig.from_env()``.
        debug: Lower the level to DEBUG regardless of the configured level.
        force: Reconfigure even if logging was already set up.
    """
    global _configured

    if _configured and not force:
        return

    config = config or LoggerConfig.from_env()
    if debug:
        config.level = "DEBUG"
    logging.config.dictConfig(config.to_dict())
    logging.captureWarnings(True)
    _configured = True


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a logger, configuring the process defaults on first use."""
    if not _configured:
        configure_logging()
    return logging.getLogger(name)


def get_context() -> Dict[str, Any]:
    """Return a shallow copy of the current logging context."""
    return dict(_context_data.get({}))


@contextmanager
def log_context(**kwargs: Any):
    """
    Bind key/value pairs to every record logged inside the block.

        with log_context(upload_id=42):
            logger.info("Object written.")
    """
    scoped_values = {
        key: value
        for key, value in kwargs.items()
        if value is not None and key not in _LOG_RECORD_RESERVED_ATTRS
    }
    token = _context_data.set({**_context_data.get({}), **scoped_values})
    try:
        yield
    finally:
        _context_data.reset(token)
