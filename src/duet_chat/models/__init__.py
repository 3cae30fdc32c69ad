# src/duet_chat/models/__init__.py
"""SQLAlchemy models for the Duet hub."""

from .message import BODY_FIELDS, Message
from .user import User

__all__ = [
    "BODY_FIELDS",
    "Message",
    "User",
]
