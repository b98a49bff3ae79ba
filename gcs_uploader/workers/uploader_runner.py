from __future__ import annotations

import argparse
import signal
import sys
import threading
from contextlib import ExitStack
from typing import Any, Callable, Sequence

from gcs_uploader.core.config import Settings, get_settings
from gcs_uploader.exception import ConfigurationError, UploaderError
from gcs_uploader.logger import configure_logging, get_logger
from gcs_uploader.services.broker import BrokerSession
from gcs_uploader.services.object_store import ObjectStore
from gcs_uploader.services.upload_task import UploadTask
from gcs_uploader.workers.pipeline import PipelineController

logger = get_logger(__name__)


class UploaderWorker:
    """Consumes upload requests from AMQP and stores them in Cloud Storage."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        store_factory: Callable[[Settings], ObjectStore] = ObjectStore,
        broker_factory: Callable[[Settings], BrokerSession] = BrokerSession,
    ) -> None:
        self.settings = settings or get_settings()
        self._store_factory = store_factory
        self._broker_factory = broker_factory
        self._stop_event = threading.Event()
        self.controller: PipelineController | None = None

    @property
    def stats(self) -> dict[str, int]:
        return dict(self.controller.stats) if self.controller else {}

    def stop(self) -> None:
        self._stop_event.set()

    def start(self, *, install_signal_handlers: bool = True) -> None:
        """Open the storage client and broker session, then consume until stopped."""
        if not self.settings.bucket_name:
            raise ConfigurationError(
                "Bucket name must be set (BUCKET_NAME or --bucket-name).",
                detail={"setting": "bucket_name"},
            )

        with ExitStack() as resources:
            store = resources.enter_context(self._store_factory(self.settings))
            session = resources.enter_context(self._broker_factory(self.settings))
            self.controller = PipelineController(UploadTask(store), publisher=session)

            if install_signal_handlers:
                self._install_signal_handlers()

            logger.info(
                " [*] Waiting for messages. To exit press CTRL+C",
                extra={"listen_queue": self.settings.amqp_listen_key},
            )
            try:
                self.controller.run(session.deliveries(self._stop_event))
            finally:
                logger.info("Uploader worker stopped.", extra={"handled": self.stats})

    def _install_signal_handlers(self) -> None:
        def _shutdown(signum: int, _frame) -> None:  # type: ignore[override]
            logger.info("Shutdown signal received.", extra={"signal": signum})
            self.stop()

        for sig in (signal.SIGINT, signal.SIGTERM):
            signal.signal(sig, _shutdown)


_FLAGS: tuple[tuple[str, str, type], ...] = (
    ("bucket_name", "Bucket name", str),
    ("bucket_folder_path", "Bucket folder path", str),
    ("amqp_user_name", "AMQP user name", str),
    ("amqp_password", "AMQP password", str),
    ("amqp_ip", "AMQP host", str),
    ("amqp_port", "AMQP port", int),
    ("amqp_listen_key", "Queue consumed for upload requests", str),
    ("amqp_response_key", "Queue receiving completion notifications", str),
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gcs-uploader",
        description="Google Cloud Storage Uploader",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=None,
        help="Debug (env: DEBUG)",
    )
    for name, help_text, value_type in _FLAGS:
        parser.add_argument(
            f"--{name.replace('_', '-')}",
            dest=name,
            type=value_type,
            default=None,
            help=f"{help_text} (env: {name.upper()})",
        )
    parser.add_argument(
        "--ack-mode",
        dest="ack_mode",
        choices=("auto", "explicit"),
        default=None,
        help="Acknowledge on receipt (auto) or after handling (explicit) (env: ACK_MODE)",
    )
    return parser


def load_settings(argv: Sequence[str] | None = None) -> Settings:
    """Resolve settings from flags over environment over YAML."""
    args = build_parser().parse_args(argv)
    overrides: dict[str, Any] = {
        key: value for key, value in vars(args).items() if value is not None
    }
    # Flag values arrive already converted to their field types.
    return get_settings().model_copy(update=overrides)


def main(argv: Sequence[str] | None = None) -> int:
    settings = load_settings(argv)
    configure_logging(debug=settings.debug, force=True)
    logger.info("Effective configuration.", extra={"settings": settings.redacted()})

    worker = UploaderWorker(settings)
    try:
        worker.start()
    except UploaderError as exc:
        exc.log(logger)
        return 1
    except Exception:  # noqa: BLE001 - broker connection dropped mid-stream
        logger.exception("Uploader worker terminated.")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
