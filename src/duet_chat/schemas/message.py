"""Message-related Pydantic schemas used on the wire."""

from __future__ import annotations

import base64
import binascii
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from duet_chat.db.time import format_wire_timestamp
from duet_chat.models import BODY_FIELDS, Message


class MessageRecord(BaseModel):
    """One encrypted message slot as carried by ``/message`` and ``/sync-message``.

    Byte fields travel as standard padded base64 and are omitted when the
    record was soft-deleted. ``user_token`` is only present on requests sent
    to the hub; the hub never echoes it back.
    """

    created_at: str | None = Field(None, description="YYYY-MM-DD HH:MM:SS.mmm +HHMM")
    from_user: int = Field(..., ge=0)
    to_user: int = Field(..., ge=0)
    message_number: int = Field(0, ge=0)
    sender_message: bytes | None = None
    receiver_message: bytes | None = None
    sender_key: bytes | None = None
    receiver_key: bytes | None = None
    sender_nonce: bytes | None = None
    receiver_nonce: bytes | None = None
    user_token: str | None = None

    model_config = ConfigDict(extra="ignore")

    @field_validator(*BODY_FIELDS, mode="before")
    @classmethod
    def decode_base64(cls, value: Any) -> Any:
        """Accept base64 text for the body fields."""
        if isinstance(value, str):
            try:
                return base64.b64decode(value, validate=True)
            except (binascii.Error, ValueError) as exc:
                raise ValueError("byte fields must be valid base64") from exc
        return value

    @field_serializer(*BODY_FIELDS)
    def encode_base64(self, value: bytes | None) -> str | None:
        """Encode the binary body fields as base64."""
        if not value:
            return None
        return base64.b64encode(value).decode()

    @property
    def is_deleted(self) -> bool:
        """Return True when every body field is absent."""
        return not any(getattr(self, name) for name in BODY_FIELDS)

    @property
    def is_complete(self) -> bool:
        """Return True when all six body fields are present."""
        return all(getattr(self, name) for name in BODY_FIELDS)

    @classmethod
    def from_message(cls, message: Message) -> MessageRecord:
        """Build the wire form of a stored message."""
        return cls(
            created_at=format_wire_timestamp(message.created_at),
            from_user=message.message_sender,
            to_user=message.message_receiver,
            message_number=message.message_number,
            **{name: getattr(message, name) or None for name in BODY_FIELDS},
        )

    def to_wire(self) -> str:
        """Serialize for hub output: no token, no absent fields."""
        return self.model_dump_json(exclude_none=True, exclude={"user_token"})


class SyncRequest(BaseModel):
    """Request for the records of one conversation in ``(start_at, end_at]``."""

    user_id: int = Field(..., ge=0, description="Peer whose conversation is requested")
    start_at: int = Field(0, ge=0)
    end_at: int = Field(..., ge=0)
    user_token: str = ""


class SyncReply(BaseModel):
    """Reply to ``sync-message``; ``user_id`` names the peer it concerns."""

    user_id: int = 0
    message_data: list[MessageRecord] = Field(default_factory=list)
    last_message_number: int = 0
    start_at: int = 0
    ends_at: int = 0

    def to_wire(self) -> str:
        """Serialize with every record in hub output form."""
        return self.model_dump_json(
            exclude_none=True,
            exclude={"message_data": {"__all__": {"user_token"}}},
        )


class DeleteMessage(BaseModel):
    """Request to soft-delete one message of a conversation."""

    user_id: int = Field(..., ge=0, description="Peer of the conversation")
    message_number: int = Field(..., ge=1)
    user_token: str = ""
