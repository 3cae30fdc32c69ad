"""Line-framed command set shared by the hub and the client.

Each text frame carries exactly one command: a ``/``-prefixed verb, then
optionally a single space and the payload. The payload is a bare numeric
id, a JSON object, or a short space-separated tuple, depending on the verb.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel


class ProtocolError(ValueError):
    """Raised when a frame or its payload cannot be understood."""


class UnknownPeerError(LookupError):
    """Raised when a frame names a user that is not known."""


class Verb(str, Enum):
    """Every verb that may appear on the wire, in either direction."""

    CREATE_NEW_USER = "create-new-user"
    RECONNECT_USER = "reconnect-user"
    GET_USER_DATA = "get-user-data"
    MESSAGE_NUMBER = "message-number"
    SYNC_MESSAGE = "sync-message"
    MESSAGE = "message"
    NAME_UPDATED = "name-updated"
    IMAGE_UPDATED = "image-updated"
    DELETE_MESSAGE = "delete-message"
    UPDATE_CHATTING_WITH = "update-chatting-with"
    # hub -> client only
    UPDATE_SESSION_ID = "update-session-id"
    UPDATE_USER_ID = "update-user-id"
    NEW_USER_MESSAGE = "new-user-message"

    @property
    def command(self) -> str:
        """Return the verb with its ``/`` prefix."""
        return f"/{self.value}"


_VERBS = {verb.command: verb for verb in Verb}


@dataclass(frozen=True)
class Frame:
    """A parsed protocol frame."""

    verb: Verb
    payload: str = ""


def parse_frame(text: str) -> Frame:
    """Split a raw text frame into verb and payload.

    Raises:
        ProtocolError: If the frame has no ``/`` prefix or an unknown verb.
    """
    stripped = text.strip()
    if not stripped.startswith("/"):
        raise ProtocolError("frame does not start with '/'")
    head, _, payload = stripped.partition(" ")
    verb = _VERBS.get(head)
    if verb is None:
        raise ProtocolError(f"unknown verb {head[:40]!r}")
    return Frame(verb=verb, payload=payload.strip())


def format_frame(verb: Verb, *parts: object) -> str:
    """Render a frame; pydantic models are serialized to compact JSON."""
    rendered: list[str] = [verb.command]
    for part in parts:
        if part is None:
            continue
        if isinstance(part, BaseModel):
            rendered.append(part.model_dump_json(exclude_none=True))
        else:
            rendered.append(str(part))
    return " ".join(rendered)


def parse_id(payload: str) -> int:
    """Parse a bare, non-negative numeric id.

    Raises:
        ProtocolError: If the payload is not a decimal integer.
    """
    text = payload.strip()
    if not (text.isascii() and text.isdigit()):
        raise ProtocolError(f"expected a numeric id, got {text[:40]!r}")
    return int(text)


def split_args(payload: str, count: int) -> list[str]:
    """Split ``payload`` into at most ``count`` space-separated fields.

    The last field keeps any embedded spaces, so names survive intact.
    """
    parts = payload.split(" ", count - 1) if payload else []
    if len(parts) < count:
        parts.extend([""] * (count - len(parts)))
    return parts
