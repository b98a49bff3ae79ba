import base64
import json

import pytest

from gcs_uploader.exception import MessageDecodeError
from gcs_uploader.schemas.messages import (
    MAX_UINT64,
    CompletionNotification,
    decode_upload_request,
)
from tests.fakes import make_body


def test_decode_full_request():
    body = make_body(
        ID=7,
        Name="a.png",
        FileSize=999,
        Data=b"\x89PNG\x00",
        Path="test",
        CallbackKey="cb",
    )

    request = decode_upload_request(body)

    assert request.id == 7
    assert request.name == "a.png"
    assert request.path == "test"
    assert request.data == b"\x89PNG\x00"
    # Declared size is informational only.
    assert request.file_size == 999
    assert request.wants_notification


def test_missing_fields_take_zero_values():
    request = decode_upload_request(b'{"Name": "a.txt"}')

    assert request.id == 0
    assert request.data == b""
    assert request.path == ""
    assert request.callback_key == ""
    assert not request.wants_notification


def test_null_fields_take_zero_values_and_unknown_keys_are_ignored():
    body = json.dumps({"ID": 3, "Data": None, "CallbackKey": None, "Extra": [1]})

    request = decode_upload_request(body)

    assert request.id == 3
    assert request.data == b""
    assert request.callback_key == ""


def test_keys_match_case_insensitively():
    body = b'{"Id": 5, "name": "a.png", "PATH": "test", "callbackkey": "cb"}'

    request = decode_upload_request(body)

    assert request.id == 5
    assert request.name == "a.png"
    assert request.path == "test"
    assert request.callback_key == "cb"
    assert request.wants_notification


def test_last_matching_key_wins_and_python_names_are_unknown():
    body = b'{"ID": 1, "id": 2, "callback_key": "cb", "file_size": 10}'

    request = decode_upload_request(body)

    assert request.id == 2
    assert request.callback_key == ""
    assert request.file_size == 0
    assert not request.wants_notification


def test_line_wrapped_base64_is_accepted():
    payload = bytes(range(256))
    encoded = base64.encodebytes(payload).decode("ascii").replace("\n", "\r\n")

    request = decode_upload_request(json.dumps({"Data": encoded}))

    assert request.data == payload


def test_largest_unsigned_id_is_accepted():
    request = decode_upload_request(make_body(ID=MAX_UINT64, Name="x"))

    assert request.id == MAX_UINT64


@pytest.mark.parametrize(
    "body",
    [
        b"{not json",
        b"\xc3\x28",
        b'["ID", 1]',
        b'{"ID": -1}',
        b'{"ID": "1"}',
        b'{"ID": 1.5}',
        b'{"Name": 12}',
        b'{"Data": "***not base64***"}',
    ],
)
def test_invalid_bodies_raise_decode_error(body):
    with pytest.raises(MessageDecodeError) as excinfo:
        decode_upload_request(body)

    assert excinfo.value.code == "message_decode_failed"


def test_notification_wire_format():
    notification = CompletionNotification(
        id=1, image_url="https://storage.googleapis.com/mybucket/test/a.png"
    )

    assert json.loads(notification.to_body()) == {
        "ID": 1,
        "ImageURL": "https://storage.googleapis.com/mybucket/test/a.png",
    }
    assert notification.to_body().startswith(b'{"ID":1,')
