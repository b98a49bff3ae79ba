from __future__ import annotations

import threading
from contextlib import asynccontextmanager
from typing import Callable

from fastapi import FastAPI, status
from fastapi.responses import JSONResponse

from gcs_uploader.logger import get_logger
from gcs_uploader.workers.uploader_runner import UploaderWorker

logger = get_logger(__name__)

SHUTDOWN_JOIN_TIMEOUT_SECONDS = 10.0


class SupervisedWorker:
    """Runs an ``UploaderWorker`` on a background thread tied to an app lifespan."""

    def __init__(self, worker: UploaderWorker) -> None:
        self.worker = worker
        self._thread: threading.Thread | None = None

    @property
    def alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.alive:
            logger.info("Uploader worker already running.")
            return
        self._thread = threading.Thread(
            target=self._run, name="uploader-worker", daemon=True
        )
        self._thread.start()
        logger.info("Background uploader worker thread started.")

    def _run(self) -> None:
        # Signals are only deliverable to the main thread; the lifespan stops us.
        try:
            self.worker.start(install_signal_handlers=False)
        except Exception:  # noqa: BLE001 - reported through /healthz
            logger.exception("Uploader worker thread died.")

    def stop(self, timeout: float = SHUTDOWN_JOIN_TIMEOUT_SECONDS) -> None:
        if self._thread is None:
            return
        logger.info("Shutting down uploader worker thread.")
        self.worker.stop()
        self._thread.join(timeout)
        if self._thread.is_alive():
            logger.warning("Uploader worker did not stop in time.")
        self._thread = None


def create_app(worker_factory: Callable[[], UploaderWorker] = UploaderWorker) -> FastAPI:
    supervisor = SupervisedWorker(worker_factory())

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        supervisor.start()
        try:
            yield
        finally:
            supervisor.stop()

    application = FastAPI(title="GCS Uploader Health", lifespan=lifespan)
    application.state.supervisor = supervisor

    @application.get("/healthz", tags=["health"])
    def health_check():
        """Return 200 while the worker thread is alive, 503 once it has died."""
        body = {
            "status": "ok" if supervisor.alive else "worker_stopped",
            "service": supervisor.worker.settings.service_name,
            "handled": supervisor.worker.stats,
        }
        if not supervisor.alive:
            return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=body)
        return body

    return application
