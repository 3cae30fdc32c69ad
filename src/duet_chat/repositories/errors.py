"""Errors raised by the persistence layer."""

from __future__ import annotations


class StoreError(RuntimeError):
    """Base exception raised when the persistence backend fails.

    The hub treats it as fatal to the request being processed: the error is
    logged and the client receives no reply.
    """


class DuplicateMessageError(StoreError):
    """Raised when a record already occupies the (group, number) slot."""
