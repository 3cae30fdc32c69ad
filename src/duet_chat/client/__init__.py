"""Asyncio client for the Duet hub."""

from .backoff import Backoff
from .controller import ConnectionState, TransportClosed, TransportController, websocket_connector
from .events import (
    Connected,
    ConnectionLost,
    Event,
    EventBus,
    Identified,
    MessageDeleted,
    MessageRendered,
    PeerUpdated,
    Reconnected,
    SyncCompleted,
)
from .message_log import DELETED_PLACEHOLDER, MessageLog, RenderedMessage
from .profile_store import PeerProfile, Profile, ProfileStore
from .settings import ClientSettings

__all__ = [
    "Backoff",
    "ClientSettings",
    "Connected",
    "ConnectionLost",
    "ConnectionState",
    "DELETED_PLACEHOLDER",
    "Event",
    "EventBus",
    "Identified",
    "MessageDeleted",
    "MessageLog",
    "MessageRendered",
    "PeerProfile",
    "PeerUpdated",
    "Profile",
    "ProfileStore",
    "Reconnected",
    "RenderedMessage",
    "SyncCompleted",
    "TransportClosed",
    "TransportController",
    "websocket_connector",
]
