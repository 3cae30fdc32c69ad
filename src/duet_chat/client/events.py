"""Events the transport controller publishes to its front-end."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Connected:
    """The transport opened; the hub assigned ``transport_id``."""

    transport_id: int = 0


@dataclass(frozen=True)
class ConnectionLost:
    """The transport closed; a reconnect is scheduled after ``retry_in`` seconds."""

    retry_in: float
    kind: str = "ws-reconnect"


@dataclass(frozen=True)
class Reconnected:
    """A transport opened again after a loss."""


@dataclass(frozen=True)
class Identified:
    """The hub accepted this client as ``owner_id``."""

    owner_id: int
    new_user: bool = False


@dataclass(frozen=True)
class MessageRendered:
    """A message was decrypted and added to the log."""

    peer_id: int
    number: int
    from_user: int
    to_user: int
    created_at: datetime | None
    text: str | None


@dataclass(frozen=True)
class MessageDeleted:
    """A rendered message was replaced by its placeholder."""

    peer_id: int
    number: int


@dataclass(frozen=True)
class PeerUpdated:
    """A peer's profile changed (first seen, renamed or new image)."""

    peer_id: int
    user_name: str
    image_link: str | None


@dataclass(frozen=True)
class SyncCompleted:
    """Every pending conversation caught up with the hub."""

    peers: tuple[int, ...] = ()


Event = (
    Connected
    | ConnectionLost
    | Reconnected
    | Identified
    | MessageRendered
    | MessageDeleted
    | PeerUpdated
    | SyncCompleted
)


class EventBus:
    """Fan-out of controller events to any number of subscribers.

    Each subscriber owns an unbounded queue. ``close`` delivers ``None`` as a
    sentinel so consumers blocked on ``get`` wake up and exit.
    """

    def __init__(self) -> None:
        self._queues: list[asyncio.Queue[Event | None]] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self) -> asyncio.Queue[Event | None]:
        queue: asyncio.Queue[Event | None] = asyncio.Queue()
        if self._closed:
            queue.put_nowait(None)
        else:
            self._queues.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[Event | None]) -> None:
        if queue in self._queues:
            self._queues.remove(queue)

    def publish(self, event: Event) -> None:
        if self._closed:
            logger.debug("Dropping %s published after close", type(event).__name__)
            return
        for queue in self._queues:
            queue.put_nowait(event)

    def close(self) -> None:
        """Send the sentinel to every subscriber and detach them all."""
        if self._closed:
            return
        self._closed = True
        for queue in self._queues:
            queue.put_nowait(None)
        self._queues.clear()
