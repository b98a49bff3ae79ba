"""
Consume loop for upload requests.

Each delivery is decoded, uploaded and, when the producer asked for it,
answered with a completion notification. Failures are contained within the
delivery that caused them: they are logged and the loop moves on to the next
message. Upload and notification are not transactional, so a failed publish
never undoes a committed upload.
"""

from __future__ import annotations

from collections import Counter
from enum import Enum
from typing import Iterable, Protocol

from gcs_uploader.exception import MessageDecodeError, NotificationPublishError
from gcs_uploader.logger import get_logger, log_context
from gcs_uploader.schemas.messages import CompletionNotification, decode_upload_request
from gcs_uploader.services.broker import Delivery
from gcs_uploader.services.upload_task import UploadTask

logger = get_logger(__name__)


class NotificationPublisher(Protocol):
    def publish(self, notification: CompletionNotification) -> None: ...


class HandlingResult(str, Enum):
    DECODE_FAILED = "decode_failed"
    UPLOAD_FAILED = "upload_failed"
    UPLOADED = "uploaded"
    NOTIFIED = "notified"
    NOTIFY_FAILED = "notify_failed"
    UNEXPECTED_ERROR = "unexpected_error"

    @property
    def upload_committed(self) -> bool:
        return self in {
            HandlingResult.UPLOADED,
            HandlingResult.NOTIFIED,
            HandlingResult.NOTIFY_FAILED,
        }


class PipelineController:
    """Drive deliveries one at a time through decode, upload and notify."""

    def __init__(self, upload_task: UploadTask, publisher: NotificationPublisher) -> None:
        self._upload_task = upload_task
        self._publisher = publisher
        self.stats: Counter[str] = Counter()

    def run(self, deliveries: Iterable[Delivery]) -> None:
        """Handle deliveries until the stream ends."""
        for delivery in deliveries:
            try:
                result = self.handle(delivery.body)
            except Exception:  # noqa: BLE001 - one message must not stop the loop
                logger.exception("Unexpected failure while handling message.")
                result = HandlingResult.UNEXPECTED_ERROR
                self.stats[result.value] += 1
            self._settle(delivery, result)
        logger.info("Inbound stream ended.", extra={"handled": dict(self.stats)})

    def handle(self, body: bytes) -> HandlingResult:
        result = self._handle(body)
        self.stats[result.value] += 1
        return result

    def _handle(self, body: bytes) -> HandlingResult:
        try:
            request = decode_upload_request(body)
        except MessageDecodeError as exc:
            exc.log(logger)
            return HandlingResult.DECODE_FAILED

        with log_context(upload_id=request.id):
            logger.info(
                "Received upload request.",
                extra={
                    "file_name": request.name,
                    "file_path": request.path,
                    "file_size": request.file_size,
                    "payload_size": len(request.data),
                    "callback_key": request.callback_key,
                },
            )

            outcome = self._upload_task.run(
                path=request.path, name=request.name, data=request.data
            )
            if not outcome.ok:
                outcome.error.log(logger)
                logger.error(
                    "Upload failed; dropping message.",
                    extra={"stage": outcome.stage.value},
                )
                return HandlingResult.UPLOAD_FAILED

            if not request.wants_notification:
                return HandlingResult.UPLOADED

            notification = CompletionNotification(id=request.id, image_url=outcome.url)
            logger.info(
                "Publishing completion notification.",
                extra={"image_url": notification.image_url},
            )
            try:
                self._publisher.publish(notification)
            except NotificationPublishError as exc:
                exc.log(logger)
                return HandlingResult.NOTIFY_FAILED
            return HandlingResult.NOTIFIED

    @staticmethod
    def _settle(delivery: Delivery, result: HandlingResult) -> None:
        # No-op hooks under auto-ack; explicit mode routes failures to the DLX.
        try:
            if result.upload_committed:
                delivery.ack()
            else:
                delivery.reject()
        except Exception:  # noqa: BLE001 - a lost ack surfaces as a redelivery
            logger.exception("Failed to settle message.", extra={"result": result.value})
