"""Domain models used across chatline.

These models provide strict typing and validation for data exchanged between the
local caches, the remote collaborators and the UI layer.
"""

from __future__ import annotations

import base64
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

PLACEHOLDER_NAME = "Anon"
DEFAULT_IMAGE_MIME = "image/jpeg"


class MessageKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"


class AuthUser(BaseModel):
    """Account as reported by the remote identity provider."""

    user_id: str = Field(..., description="Provider-assigned stable id")
    email: str | None = Field(None, description="Contact address of the account")


class Identity(BaseModel):
    """The authenticated principal a session acts as."""

    user_id: str
    email: str | None = None
    display_name: str = Field(..., min_length=1)


class Profile(BaseModel):
    """Display metadata stored remotely per user id."""

    display_name: str
    email: str | None = None


class CredentialRecord(BaseModel):
    """Last-known credentials, as persisted in the local cache."""

    email: str | None = None
    secret: str | None = None
    cached_display_name: str | None = None

    @property
    def has_credentials(self) -> bool:
        return bool(self.email) and bool(self.secret)


class Message(BaseModel):
    """Represents a single chat message."""

    id: str = Field(..., description="Remote document id")
    author: str = Field(..., description="Display name of the sender")
    kind: MessageKind
    body: str | None = Field(None, description="Text content, text messages only")
    image_payload: str | None = Field(
        None, description="Inline data URI, image messages only"
    )
    created_at: datetime | None = Field(
        None, description="Server timestamp; missing until the write is acked"
    )

    @field_validator("created_at", mode="before")
    @classmethod
    def _coerce_created_at(cls, v: Any) -> datetime | None:
        return coerce_timestamp(v)

    @model_validator(mode="after")
    def _check_payload(self) -> Message:
        if self.kind is MessageKind.TEXT:
            if self.body is None or self.image_payload is not None:
                raise ValueError("text messages carry a body and no image payload")
        elif not self.image_payload or self.body is not None:
            raise ValueError("image messages carry an image payload and no body")
        return self


def coerce_timestamp(value: Any) -> datetime | None:
    """Normalize the timestamp shapes seen on the wire to an aware datetime.

    Accepts datetimes, ISO strings, epoch seconds and ``{"seconds", "nanoseconds"}``
    mappings. Anything unrecognized or out of range becomes ``None``.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(float(value), tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    if isinstance(value, Mapping) and "seconds" in value:
        try:
            seconds = float(value.get("seconds") or 0)
            nanos = float(value.get("nanoseconds") or 0)
            return datetime.fromtimestamp(seconds + nanos / 1e9, tz=timezone.utc)
        except (TypeError, ValueError, OverflowError, OSError):
            return None
    return None


def infer_kind(record: Mapping[str, Any]) -> MessageKind:
    """Use the record's ``type`` when valid, otherwise guess from its payload."""
    declared = record.get("type")
    if declared in (MessageKind.TEXT.value, MessageKind.IMAGE.value):
        return MessageKind(declared)
    return MessageKind.IMAGE if record.get("imageBase64") else MessageKind.TEXT


def message_from_record(doc_id: str, record: Mapping[str, Any]) -> Message:
    """Transform a remote message document into a ``Message``."""
    kind = infer_kind(record)
    image_payload = record.get("imageBase64") or None
    if kind is MessageKind.IMAGE and not image_payload:
        # typed as image but nothing to show
        kind = MessageKind.TEXT

    author = record.get("user") or PLACEHOLDER_NAME
    if kind is MessageKind.IMAGE:
        return Message(
            id=doc_id,
            author=str(author),
            kind=kind,
            image_payload=str(image_payload),
            created_at=record.get("createdAt"),
        )
    text = record.get("text")
    return Message(
        id=doc_id,
        author=str(author),
        kind=kind,
        body="" if text is None else str(text),
        created_at=record.get("createdAt"),
    )


def order_messages(messages: Iterable[Message]) -> list[Message]:
    """Ascending ``created_at``; unacknowledged messages go last in arrival order."""
    items = list(messages)
    stamped = [m for m in items if m.created_at is not None]
    pending = [m for m in items if m.created_at is None]
    stamped.sort(key=lambda m: m.created_at)  # type: ignore[arg-type,return-value]
    return stamped + pending


def build_image_payload(data: bytes | str, mime_type: str = DEFAULT_IMAGE_MIME) -> str:
    """Return a ``data:`` URI for raw bytes or a bare base64 string."""
    if isinstance(data, bytes):
        encoded = base64.b64encode(data).decode("ascii")
        return f"data:{mime_type};base64,{encoded}"
    if data.startswith("data:"):
        return data
    return f"data:{mime_type};base64,{data}"
