"""
Pydantic schemas for the hub wire protocol.

These schemas define the JSON payloads carried by protocol frames.
"""

from .message import DeleteMessage, MessageRecord, SyncReply, SyncRequest
from .user import FullUser, IDInfo, ImageUpdate, NameUpdate

__all__ = [
    "DeleteMessage", "MessageRecord", "SyncReply", "SyncRequest",
    "FullUser", "IDInfo", "ImageUpdate", "NameUpdate",
]
