from __future__ import annotations

import mimetypes
from contextlib import suppress
from typing import Any

from google.api_core import exceptions as gcloud_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import storage

from gcs_uploader.core.config import Settings
from gcs_uploader.exception import ObjectAclError, ObjectWriteError, StorageConnectionError
from gcs_uploader.logger import get_logger

logger = get_logger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"

# Transport failures from google-auth/requests surface as OSError subclasses.
_STORAGE_ERRORS = (
    gcloud_exceptions.GoogleAPIError,
    auth_exceptions.GoogleAuthError,
    OSError,
)


def object_name(path: str, name: str) -> str:
    return f"{path}/{name}"


def guess_content_type(name: str) -> str:
    content_type, _ = mimetypes.guess_type(name)
    return content_type or DEFAULT_CONTENT_TYPE


class ObjectStore:
    """Cloud Storage access for one bucket.

    The underlying client is created once per process and closed when the
    store is used as a context manager. Calls are issued with ``retry=None``:
    each stage is attempted exactly once.
    """

    def __init__(self, settings: Settings, client: Any | None = None) -> None:
        self.bucket_name = settings.bucket_name
        self.storage_host = settings.storage_host
        self.timeout = settings.storage_timeout_seconds
        if client is None:
            client = self._create_client(settings)
        self._client = client
        self._bucket = client.bucket(self.bucket_name)

    @staticmethod
    def _create_client(settings: Settings) -> storage.Client:
        try:
            return storage.Client(project=settings.gcp_project_id)
        except (auth_exceptions.GoogleAuthError, gcloud_exceptions.GoogleAPIError) as exc:
            raise StorageConnectionError(
                "Failed to create Cloud Storage client.",
                detail={"project": settings.gcp_project_id},
            ) from exc

    def __enter__(self) -> "ObjectStore":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        with suppress(Exception):
            self._client.close()

    def public_url(self, name: str) -> str:
        return f"https://{self.storage_host}/{self.bucket_name}/{name}"

    def write_bytes(self, name: str, data: bytes) -> None:
        """Create or overwrite ``name`` with ``data``."""
        blob = self._bucket.blob(name)
        try:
            blob.upload_from_string(
                data,
                content_type=guess_content_type(name),
                timeout=self.timeout,
                retry=None,
            )
        except _STORAGE_ERRORS as exc:
            raise ObjectWriteError(
                "Failed to write object to Cloud Storage.",
                object_name=name,
                detail={"bucket": self.bucket_name, "size": len(data)},
            ) from exc
        logger.debug(
            "Object bytes written.",
            extra={"bucket": self.bucket_name, "object_name": name, "size": len(data)},
        )

    def make_public(self, name: str) -> None:
        """Grant allUsers READER on ``name``."""
        blob = self._bucket.blob(name)
        try:
            blob.make_public(timeout=self.timeout, retry=None)
        except _STORAGE_ERRORS as exc:
            raise ObjectAclError(
                "Failed to set read only for anyone.",
                object_name=name,
                detail={"bucket": self.bucket_name},
            ) from exc
