"""Live transport sessions and the owner index used for fan-out."""

from __future__ import annotations

import logging
import secrets
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

# Pushes one text frame onto a transport's outbox; must not block.
FrameSender = Callable[[str], None]


@dataclass
class TransportSession:
    """State the hub keeps for one open transport."""

    transport_id: int
    sender: FrameSender
    owner_id: int = 0
    peer_of_interest: int = 0
    last_seen: float = field(default_factory=time.monotonic)

    @property
    def is_anonymous(self) -> bool:
        return self.owner_id == 0


class SessionRegistry:
    """Transport sessions keyed by id plus an owner -> transports index.

    The registry belongs to the hub's dispatch task and is never shared
    across tasks, so it takes no locks.
    """

    def __init__(self, id_source: Callable[[], int] | None = None) -> None:
        self._sessions: dict[int, TransportSession] = {}
        self._by_owner: dict[int, set[int]] = {}
        self._issued: set[int] = set()
        self._id_source = id_source or (lambda: secrets.randbits(63))

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, transport_id: object) -> bool:
        return transport_id in self._sessions

    def get(self, transport_id: int) -> TransportSession | None:
        return self._sessions.get(transport_id)

    def register(self, sender: FrameSender, now: float | None = None) -> int:
        """Add a new anonymous session and return its transport id.

        Ids are never reused within the lifetime of the registry.
        """
        transport_id = self._id_source()
        while transport_id == 0 or transport_id in self._issued:
            transport_id = self._id_source()
        self._issued.add(transport_id)
        self._sessions[transport_id] = TransportSession(
            transport_id=transport_id,
            sender=sender,
            last_seen=time.monotonic() if now is None else now,
        )
        logger.debug("Registered transport %s", transport_id)
        return transport_id

    def bind_owner(self, transport_id: int, owner_id: int) -> None:
        """Attach a transport to an owner, moving it off any previous owner."""
        session = self._sessions.get(transport_id)
        if session is None:
            return
        if session.owner_id == owner_id:
            return
        self._detach(session)
        session.owner_id = owner_id
        if owner_id:
            self._by_owner.setdefault(owner_id, set()).add(transport_id)
        logger.info("Transport %s bound to user %s", transport_id, owner_id)

    def set_peer(self, transport_id: int, peer_id: int) -> None:
        session = self._sessions.get(transport_id)
        if session is not None:
            session.peer_of_interest = peer_id

    def unregister(self, transport_id: int) -> None:
        """Forget a transport; unknown ids are ignored."""
        session = self._sessions.pop(transport_id, None)
        if session is None:
            return
        self._detach(session)
        logger.debug("Unregistered transport %s", transport_id)

    def _detach(self, session: TransportSession) -> None:
        if not session.owner_id:
            return
        members = self._by_owner.get(session.owner_id)
        if members is None:
            return
        members.discard(session.transport_id)
        if not members:
            del self._by_owner[session.owner_id]

    def transports_of(self, owner_id: int) -> set[int]:
        """Return a copy of the transport ids currently bound to ``owner_id``."""
        return set(self._by_owner.get(owner_id, ()))

    def owners(self) -> set[int]:
        return set(self._by_owner)

    def watchers_of(self, peer_id: int) -> set[int]:
        """Return transports whose peer of interest is ``peer_id``."""
        return {
            tid for tid, session in self._sessions.items() if peer_id and session.peer_of_interest == peer_id
        }

    def touch(self, transport_id: int, now: float | None = None) -> None:
        session = self._sessions.get(transport_id)
        if session is not None:
            session.last_seen = time.monotonic() if now is None else now

    def stale(self, cutoff: float) -> list[int]:
        """Return transports not seen since ``cutoff``."""
        return [tid for tid, session in self._sessions.items() if session.last_seen < cutoff]

    def send(self, transport_id: int, text: str) -> bool:
        """Push ``text`` to a single transport.

        A sender that fails is treated as a dead transport and unregistered.

        Returns:
            True if the frame was handed to the transport.
        """
        session = self._sessions.get(transport_id)
        if session is None:
            return False
        try:
            session.sender(text)
        except Exception:  # noqa: BLE001
            logger.warning("Dropping transport %s after send failure", transport_id, exc_info=True)
            self.unregister(transport_id)
            return False
        return True

    def send_many(self, transport_ids: Iterable[int], text: str) -> int:
        """Send ``text`` once to each distinct transport; returns the delivered count."""
        return sum(1 for tid in set(transport_ids) if self.send(tid, text))

    def fanout(self, owner_id: int, text: str) -> int:
        """Send ``text`` to every transport of ``owner_id``."""
        return self.send_many(self.transports_of(owner_id), text)

    def fanout_many(self, owner_ids: Iterable[int], text: str) -> int:
        """Send ``text`` to the union of the owners' transports, each exactly once."""
        targets: set[int] = set()
        for owner_id in set(owner_ids):
            targets |= self.transports_of(owner_id)
        return self.send_many(targets, text)
