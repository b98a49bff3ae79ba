"""Wire formats for the inbound upload queue and the completion queue."""

from __future__ import annotations

import base64
import binascii
import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from gcs_uploader.exception import MessageDecodeError

MAX_UINT64 = 2**64 - 1


class UploadRequest(BaseModel):
    """One file-upload request as published by producers.

    Keys are matched to ``ID``, ``Name``, ... case-insensitively, and when
    several keys match the same field the last one wins. Keys missing from the
    JSON object take their zero value; unknown keys are ignored. ``FileSize``
    is informational and never checked against ``Data``.
    """

    model_config = ConfigDict(strict=True, extra="ignore", frozen=True)

    id: int = Field(default=0, ge=0, le=MAX_UINT64, alias="ID")
    name: str = Field(default="", alias="Name")
    file_size: int = Field(default=0, alias="FileSize")
    data: bytes = Field(default=b"", alias="Data", repr=False)
    path: str = Field(default="", alias="Path")
    callback_key: str = Field(default="", alias="CallbackKey")

    @model_validator(mode="before")
    @classmethod
    def _normalise_keys(cls, values: Any) -> Any:
        # JSON null leaves the field at its zero value.
        if not isinstance(values, dict):
            return values
        aliases = {field.alias.lower(): field.alias for field in cls.model_fields.values()}
        normalised = {}
        for key, value in values.items():
            alias = aliases.get(key.lower())
            if alias is not None and value is not None:
                normalised[alias] = value
        return normalised

    @field_validator("data", mode="before")
    @classmethod
    def _decode_base64(cls, value: Any) -> Any:
        if isinstance(value, str):
            # Line breaks in wrapped base64 are skipped, not rejected.
            value = value.replace("\r", "").replace("\n", "")
            try:
                return base64.b64decode(value, validate=True)
            except binascii.Error as exc:
                raise ValueError("Data must be standard base64") from exc
        return value

    @property
    def wants_notification(self) -> bool:
        return self.callback_key != ""


class CompletionNotification(BaseModel):
    """Published once per successful upload whose request had a callback key."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: int = Field(alias="ID")
    image_url: str = Field(alias="ImageURL")

    def to_body(self) -> bytes:
        return self.model_dump_json(by_alias=True).encode("utf-8")


def decode_upload_request(body: bytes | str) -> UploadRequest:
    """Parse one inbound message body.

    Raises:
        MessageDecodeError: the body is not UTF-8 JSON, not an object, or a
            field has the wrong type.
    """
    size = len(body)
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise MessageDecodeError(
            "Failed to unmarshal upload request JSON.",
            detail={"body_size": size},
        ) from exc

    if not isinstance(payload, dict):
        raise MessageDecodeError(
            "Upload request must be a JSON object.",
            detail={"body_size": size, "json_type": type(payload).__name__},
        )

    try:
        return UploadRequest.model_validate(payload)
    except ValidationError as exc:
        raise MessageDecodeError(
            "Upload request has invalid fields.",
            detail={
                "body_size": size,
                "fields": sorted({".".join(map(str, err["loc"])) for err in exc.errors()}),
            },
        ) from exc
