import json
import threading
import time

import pytest

from gcs_uploader.exception import ConfigurationError, StorageConnectionError
from gcs_uploader.services.object_store import ObjectStore
from gcs_uploader.workers import uploader_runner
from gcs_uploader.workers.uploader_runner import UploaderWorker, load_settings
from tests.fakes import drain, make_body, publish_raw


def wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return False


@pytest.fixture
def worker(settings, storage_client):
    return UploaderWorker(
        settings,
        store_factory=lambda s: ObjectStore(s, client=storage_client),
    )


def run_in_thread(worker):
    thread = threading.Thread(
        target=worker.start, kwargs={"install_signal_handlers": False}, daemon=True
    )
    thread.start()
    return thread


def test_worker_survives_malformed_message_and_notifies(worker, settings, bucket, storage_client):
    thread = run_in_thread(worker)
    assert wait_for(lambda: worker.controller is not None)

    publish_raw(settings.amqp_listen_key, b"{malformed")
    publish_raw(
        settings.amqp_listen_key,
        make_body(ID=1, Name="a.png", Path="test", Data=b"12345", CallbackKey="cb"),
    )
    notifications = []
    assert wait_for(lambda: notifications.extend(drain(settings.amqp_response_key)) or notifications)

    worker.stop()
    thread.join(timeout=5)

    assert not thread.is_alive()
    assert [json.loads(body) for body in notifications] == [
        {"ID": 1, "ImageURL": "https://storage.googleapis.com/mybucket/test/a.png"}
    ]
    assert bucket.objects["test/a.png"] == b"12345"
    assert worker.stats == {"decode_failed": 1, "notified": 1}
    assert storage_client.closed


def test_worker_requires_bucket_name(settings, storage_client):
    worker = UploaderWorker(
        settings.model_copy(update={"bucket_name": ""}),
        store_factory=lambda s: ObjectStore(s, client=storage_client),
    )

    with pytest.raises(ConfigurationError):
        worker.start(install_signal_handlers=False)


def test_storage_client_failure_is_fatal(settings):
    def failing_store(_settings):
        raise StorageConnectionError("no credentials")

    worker = UploaderWorker(settings, store_factory=failing_store)

    with pytest.raises(StorageConnectionError):
        worker.start(install_signal_handlers=False)
    assert worker.controller is None


def test_flags_override_environment(monkeypatch):
    monkeypatch.setenv("AMQP_IP", "rabbit.internal")
    monkeypatch.setenv("BUCKET_NAME", "from-env")
    uploader_runner.get_settings.cache_clear()

    settings = load_settings(["--bucket-name", "from-flag", "--amqp-port", "5673", "--debug"])

    assert settings.bucket_name == "from-flag"
    assert settings.amqp_port == 5673
    assert settings.amqp_ip == "rabbit.internal"
    assert settings.debug is True
    assert settings.amqp_listen_key == "FILES"
    uploader_runner.get_settings.cache_clear()


def test_main_exits_non_zero_on_startup_error(monkeypatch):
    monkeypatch.delenv("BUCKET_NAME", raising=False)
    uploader_runner.get_settings.cache_clear()

    assert uploader_runner.main(["--bucket-name", ""]) == 1
    uploader_runner.get_settings.cache_clear()
