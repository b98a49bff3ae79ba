from __future__ import annotations

import socket
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Iterator

from kombu import Connection, Consumer, Producer, Queue
from kombu.exceptions import KombuError

from gcs_uploader.core.config import Settings
from gcs_uploader.exception import BrokerConnectionError, NotificationPublishError
from gcs_uploader.logger import get_logger
from gcs_uploader.schemas.messages import CompletionNotification

logger = get_logger(__name__)

JSON_CONTENT_TYPE = "application/json"


def _noop() -> None:
    return None


@dataclass(slots=True)
class Delivery:
    """One inbound message: the raw body plus hooks to settle it with the broker."""

    body: bytes
    ack: Callable[[], None] = field(default=_noop)
    reject: Callable[[], None] = field(default=_noop)


def declare_queue(name: str, arguments: dict | None = None) -> Queue:
    # Default exchange: routing key is the queue name.
    return Queue(
        name,
        routing_key=name,
        durable=True,
        exclusive=False,
        auto_delete=False,
        queue_arguments=arguments or None,
    )


class BrokerSession:
    """AMQP connection with one consume channel and one publish channel.

    Entering the session connects and declares both queues; leaving it closes
    the channels and the connection. Connection failures at that point are
    fatal and raised as ``BrokerConnectionError``.
    """

    def __init__(self, settings: Settings, connection: Connection | None = None) -> None:
        self.settings = settings
        self.auto_ack = settings.ack_mode == "auto"
        listen_arguments = {}
        if settings.amqp_dead_letter_exchange:
            listen_arguments["x-dead-letter-exchange"] = settings.amqp_dead_letter_exchange
        self.listen_queue = declare_queue(settings.amqp_listen_key, listen_arguments)
        self.response_queue = declare_queue(settings.amqp_response_key)
        self._connection = connection or Connection(
            hostname=settings.amqp_ip,
            port=settings.amqp_port,
            userid=settings.amqp_user_name,
            password=settings.amqp_password,
            virtual_host=settings.amqp_virtual_host,
            transport=settings.amqp_transport,
        )
        self._consume_channel = None
        self._producer: Producer | None = None

    @property
    def _errors(self) -> tuple[type[BaseException], ...]:
        return (
            *self._connection.connection_errors,
            *self._connection.channel_errors,
            KombuError,
        )

    def __enter__(self) -> "BrokerSession":
        self.open()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def open(self) -> None:
        logger.info(
            "Connecting to AMQP broker.",
            extra={"amqp_url": self.settings.redacted_amqp_url()},
        )
        try:
            self._connection.ensure_connection(max_retries=1)
            self._consume_channel = self._connection.channel()
            self.listen_queue.bind(self._consume_channel).declare()
            publish_channel = self._connection.channel()
            self.response_queue.bind(publish_channel).declare()
            self._producer = Producer(publish_channel)
        except self._errors as exc:
            self.close()
            raise BrokerConnectionError(
                "Failed to connect AMQP.",
                detail={
                    "amqp_url": self.settings.redacted_amqp_url(),
                    "listen_queue": self.listen_queue.name,
                    "response_queue": self.response_queue.name,
                },
            ) from exc
        logger.info(
            "Queues declared.",
            extra={
                "listen_queue": self.listen_queue.name,
                "response_queue": self.response_queue.name,
                "ack_mode": self.settings.ack_mode,
            },
        )

    def close(self) -> None:
        for channel in (
            self._producer.channel if self._producer else None,
            self._consume_channel,
        ):
            if channel is None:
                continue
            try:
                channel.close()
            except self._errors:
                logger.debug("Channel already closed.")
        self._producer = None
        self._consume_channel = None
        self._connection.release()

    def deliveries(
        self,
        stop_event: threading.Event,
        poll_interval: float | None = None,
    ) -> Iterator[Delivery]:
        """Yield inbound messages until ``stop_event`` is set.

        Waits at most ``poll_interval`` seconds per poll so a stop request is
        observed promptly. Connection errors propagate and end the stream.
        """
        if self._consume_channel is None:
            raise RuntimeError("BrokerSession must be opened before consuming.")
        interval = self.settings.amqp_poll_interval if poll_interval is None else poll_interval
        received: deque = deque()

        consumer = Consumer(
            self._consume_channel,
            queues=[self.listen_queue],
            on_message=received.append,
            no_ack=self.auto_ack,
        )
        if not self.auto_ack:
            consumer.qos(prefetch_count=1)

        with consumer:
            while not stop_event.is_set():
                try:
                    self._connection.drain_events(timeout=interval)
                except socket.timeout:
                    continue
                while received:
                    yield self._to_delivery(received.popleft())

    def _to_delivery(self, message) -> Delivery:
        body = message.body
        if isinstance(body, str):
            body = body.encode("utf-8")
        if self.auto_ack:
            return Delivery(body=body)
        return Delivery(
            body=body,
            ack=message.ack,
            reject=lambda: message.reject(requeue=False),
        )

    def publish(self, notification: CompletionNotification) -> None:
        """Publish one completion notification to the response queue."""
        if self._producer is None:
            raise RuntimeError("BrokerSession must be opened before publishing.")
        try:
            self._producer.publish(
                notification.to_body(),
                exchange="",
                routing_key=self.response_queue.name,
                content_type=JSON_CONTENT_TYPE,
                content_encoding="utf-8",
                retry=False,
            )
        except (*self._errors, ValueError) as exc:
            raise NotificationPublishError(
                "Failed to send callback message to MQ.",
                detail={"response_queue": self.response_queue.name, "id": notification.id},
            ) from exc
