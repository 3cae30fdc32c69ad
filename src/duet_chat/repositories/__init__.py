"""Persistence repositories used by the hub."""

from .errors import DuplicateMessageError, StoreError
from .message_repo import MessageStore
from .user_repo import UserDirectory

__all__ = [
    "DuplicateMessageError",
    "MessageStore",
    "StoreError",
    "UserDirectory",
]
