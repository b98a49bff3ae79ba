"""Uploader exception helpers."""

from .custom_exception import (
    BrokerConnectionError,
    ConfigurationError,
    MessageDecodeError,
    NotificationPublishError,
    ObjectAclError,
    ObjectStoreError,
    ObjectWriteError,
    StorageConnectionError,
    UploaderError,
)

__all__ = [
    "BrokerConnectionError",
    "ConfigurationError",
    "MessageDecodeError",
    "NotificationPublishError",
    "ObjectAclError",
    "ObjectStoreError",
    "ObjectWriteError",
    "StorageConnectionError",
    "UploaderError",
]
