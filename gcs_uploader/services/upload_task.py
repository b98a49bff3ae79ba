from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from gcs_uploader.exception import ObjectStoreError
from gcs_uploader.logger import get_logger
from gcs_uploader.services.object_store import ObjectStore, object_name

logger = get_logger(__name__)


class UploadStage(str, Enum):
    WRITE = "write"
    ACL = "acl"


@dataclass(frozen=True, slots=True)
class UploadOutcome:
    """Result of one upload: a public URL, or the failed stage and its cause."""

    url: str | None = None
    stage: UploadStage | None = None
    error: ObjectStoreError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, url: str) -> "UploadOutcome":
        return cls(url=url)

    @classmethod
    def failure(cls, error: ObjectStoreError) -> "UploadOutcome":
        return cls(stage=UploadStage(error.stage), error=error)


class UploadTask:
    """Write the payload, then make it publicly readable."""

    def __init__(self, store: ObjectStore) -> None:
        self._store = store

    def run(self, *, path: str, name: str, data: bytes) -> UploadOutcome:
        target = object_name(path, name)
        try:
            self._store.write_bytes(target, data)
        except ObjectStoreError as exc:
            return UploadOutcome.failure(exc)

        try:
            self._store.make_public(target)
        except ObjectStoreError as exc:
            # The written object stays; there is no compensating delete.
            logger.warning(
                "Object written but left private.",
                extra={"object_name": target},
            )
            return UploadOutcome.failure(exc)

        url = self._store.public_url(target)
        logger.info(
            "Upload complete.",
            extra={"object_name": target, "size": len(data), "url": url},
        )
        return UploadOutcome.success(url)
