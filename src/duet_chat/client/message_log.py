"""Per-peer record of rendered messages."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

DELETED_PLACEHOLDER = "This message was deleted"


@dataclass
class RenderedMessage:
    """A decrypted message as shown to the user; ``text`` is None once deleted."""

    peer_id: int
    number: int
    from_user: int
    to_user: int
    created_at: datetime | None
    text: str | None

    @property
    def deleted(self) -> bool:
        return self.text is None

    @property
    def display_text(self) -> str:
        return DELETED_PLACEHOLDER if self.text is None else self.text


class MessageLog:
    """Rendered messages indexed by (peer, number).

    A slot is rendered at most once. ``known_number`` is the contiguous
    high-water mark for a peer, so a message that arrives live ahead of a
    gap does not hide the gap from the next sync.
    """

    def __init__(self) -> None:
        self._by_peer: dict[int, dict[int, RenderedMessage]] = {}
        self._contiguous: dict[int, int] = {}

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, tuple) or len(key) != 2:
            return False
        peer_id, number = key
        return number in self._by_peer.get(peer_id, {})

    def peers(self) -> list[int]:
        return list(self._by_peer)

    def add(self, message: RenderedMessage) -> bool:
        """Store ``message``; returns False when its slot was already rendered."""
        slots = self._by_peer.setdefault(message.peer_id, {})
        if message.number in slots:
            return False
        slots[message.number] = message
        mark = self._contiguous.get(message.peer_id, 0)
        while mark + 1 in slots:
            mark += 1
        self._contiguous[message.peer_id] = mark
        return True

    def get(self, peer_id: int, number: int) -> RenderedMessage | None:
        return self._by_peer.get(peer_id, {}).get(number)

    def mark_deleted(self, peer_id: int, number: int) -> bool:
        """Replace a rendered body with the placeholder.

        Returns:
            True if the slot was rendered and not yet deleted.
        """
        message = self.get(peer_id, number)
        if message is None or message.deleted:
            return False
        message.text = None
        return True

    def known_number(self, peer_id: int) -> int:
        """Return the highest number n such that 1..n are all rendered."""
        return self._contiguous.get(peer_id, 0)

    def messages(self, peer_id: int) -> list[RenderedMessage]:
        """Return a peer's messages in number order."""
        slots = self._by_peer.get(peer_id, {})
        return [slots[number] for number in sorted(slots)]

    def latest(self, peer_id: int) -> RenderedMessage | None:
        slots = self._by_peer.get(peer_id)
        if not slots:
            return None
        return slots[max(slots)]
