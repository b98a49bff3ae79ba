import uuid

import pytest

from gcs_uploader.core.config import Settings
from gcs_uploader.services.object_store import ObjectStore
from gcs_uploader.services.upload_task import UploadTask
from tests.fakes import FakeStorageClient, RecordingPublisher


@pytest.fixture
def settings():
    # Unique queue names: the memory transport shares state across connections.
    suffix = uuid.uuid4().hex[:8]
    return Settings(
        bucket_name="mybucket",
        bucket_folder_path="default-folder",
        storage_host="storage.googleapis.com",
        amqp_transport="memory",
        amqp_listen_key=f"FILES-{suffix}",
        amqp_response_key=f"UPLOAD_COMPLETED-{suffix}",
        amqp_poll_interval=0.05,
        ack_mode="auto",
        amqp_dead_letter_exchange=None,
    )


@pytest.fixture
def storage_client():
    return FakeStorageClient()


@pytest.fixture
def bucket(storage_client, settings):
    return storage_client.bucket(settings.bucket_name)


@pytest.fixture
def store(settings, storage_client):
    return ObjectStore(settings, client=storage_client)


@pytest.fixture
def upload_task(store):
    return UploadTask(store)


@pytest.fixture
def publisher():
    return RecordingPublisher()
