"""Test doubles for Cloud Storage and helpers for the in-process broker."""

import base64
import json

from google.api_core import exceptions as gcloud_exceptions
from kombu import Connection, Producer


class FakeBlob:
    def __init__(self, bucket, name):
        self.bucket = bucket
        self.name = name

    def upload_from_string(self, data, content_type=None, timeout=None, retry=None):
        self.bucket.calls.append(("write", self.name))
        if self.name in self.bucket.fail_write:
            raise gcloud_exceptions.ServiceUnavailable("storage unavailable")
        self.bucket.objects[self.name] = data
        self.bucket.content_types[self.name] = content_type
        self.bucket.public.discard(self.name)

    def make_public(self, timeout=None, retry=None):
        self.bucket.calls.append(("acl", self.name))
        if self.name in self.bucket.fail_acl:
            raise gcloud_exceptions.Forbidden("acl update denied")
        self.bucket.public.add(self.name)


class FakeBucket:
    def __init__(self, name):
        self.name = name
        self.objects = {}
        self.content_types = {}
        self.public = set()
        self.calls = []
        self.fail_write = set()
        self.fail_acl = set()

    def blob(self, name):
        return FakeBlob(self, name)


class FakeStorageClient:
    """The slice of ``google.cloud.storage.Client`` the uploader touches."""

    def __init__(self):
        self.buckets = {}
        self.closed = False

    def bucket(self, name):
        return self.buckets.setdefault(name, FakeBucket(name))

    def close(self):
        self.closed = True


class RecordingPublisher:
    def __init__(self, error=None):
        self.published = []
        self.error = error

    def publish(self, notification):
        if self.error is not None:
            raise self.error
        self.published.append(notification)


def make_body(**fields):
    """Encode an upload request the way producers put it on the wire."""
    payload = dict(fields)
    if isinstance(payload.get("Data"), bytes):
        payload["Data"] = base64.b64encode(payload["Data"]).decode("ascii")
    return json.dumps(payload).encode("utf-8")


def publish_raw(queue_name, body):
    """Put a raw body on a queue of the in-process ``memory://`` broker."""
    with Connection("memory://") as conn:
        Producer(conn.channel()).publish(
            body,
            exchange="",
            routing_key=queue_name,
            content_type="application/json",
            content_encoding="utf-8",
        )


def drain(queue_name):
    bodies = []
    with Connection("memory://") as conn:
        channel = conn.channel()
        while True:
            message = channel.basic_get(queue_name, no_ack=True)
            if message is None:
                return bodies
            bodies.append(message.body)
