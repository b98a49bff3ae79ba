"""
Exception hierarchy for the uploader.

Each error carries a stable ``code``, an optional structured ``detail`` and
the logging context that was bound when it was raised, so a single
``exc.log(logger)`` call produces a complete, correlated log record.
Startup errors are fatal; per-message errors are logged by the pipeline and
never escape the consume loop.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from gcs_uploader.logger import get_context, get_logger


class UploaderError(Exception):
    """
    Base class for all uploader-defined exceptions.

    Args:
        message: Human-readable error description.
        code: Stable error code used in log queries.
        detail: Optional structured detail payload.
        context: Extra diagnostic metadata merged over the logging context.
        log_level: Logging level name used by ``log``.
    """

    def __init__(
        self,
        message: str,
        *,
        code: str = "uploader_error",
        detail: Optional[Dict[str, Any]] = None,
        context: Optional[Dict[str, Any]] = None,
        log_level: str = "ERROR",
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.detail = detail
        self.context = {
            key: value
            for key, value in {**get_context(), **(context or {})}.items()
            if value is not None
        }
        self.log_level = log_level.upper()

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.detail is not None:
            payload["detail"] = self.detail
        if self.context:
            payload["context"] = self.context
        if self.__cause__ is not None:
            payload["cause"] = repr(self.__cause__)
        return payload

    def log(self, logger: Optional[logging.Logger] = None) -> "UploaderError":
        """Emit the exception through ``logger`` and return it for chaining."""
        logger = logger or get_logger(__name__)
        level = getattr(logging, self.log_level, logging.ERROR)
        extra: Dict[str, Any] = {"error_code": self.code, **self.context}
        if self.detail is not None:
            extra["error_detail"] = self.detail
        if self.__cause__ is not None:
            extra["error_cause"] = repr(self.__cause__)
        logger.log(level, self.message, extra=extra)
        return self

    def enrich(self, **context: Any) -> "UploaderError":
        for key, value in context.items():
            if value is not None:
                self.context[key] = value
        return self


class ConfigurationError(UploaderError):
    """Startup configuration is unusable."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("code", "invalid_configuration")
        super().__init__(message, **kwargs)


class BrokerConnectionError(UploaderError):
    """The AMQP broker could not be reached or the queues could not be declared."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("code", "broker_connection_failed")
        super().__init__(message, **kwargs)


class StorageConnectionError(UploaderError):
    """The Cloud Storage client could not be constructed."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("code", "storage_connection_failed")
        super().__init__(message, **kwargs)


class MessageDecodeError(UploaderError):
    """An inbound body is not a valid upload request."""

    def __init__(self, message: str = "Failed to decode upload request.", **kwargs: Any) -> None:
        kwargs.setdefault("code", "message_decode_failed")
        super().__init__(message, **kwargs)


class ObjectStoreError(UploaderError):
    """A storage call failed at a given stage (``write`` or ``acl``)."""

    stage = "unknown"

    def __init__(self, message: str, *, object_name: str, **kwargs: Any) -> None:
        detail = {"object_name": object_name, "stage": self.stage}
        detail.update(kwargs.pop("detail", None) or {})
        kwargs.setdefault("code", f"object_{self.stage}_failed")
        super().__init__(message, detail=detail, **kwargs)
        self.object_name = object_name


class ObjectWriteError(ObjectStoreError):
    stage = "write"


class ObjectAclError(ObjectStoreError):
    stage = "acl"


class NotificationPublishError(UploaderError):
    """A completion notification could not be encoded or published."""

    def __init__(self, message: str = "Failed to publish completion notification.", **kwargs: Any) -> None:
        kwargs.setdefault("code", "notification_publish_failed")
        super().__init__(message, **kwargs)
