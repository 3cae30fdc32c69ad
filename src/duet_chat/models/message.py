# src/duet_chat/models/message.py
"""Models describing encrypted direct messages between two users."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Integer, LargeBinary, String
from sqlalchemy.orm import Mapped, mapped_column

from duet_chat.db.session import Base
from duet_chat.db.time import utcnow

BODY_FIELDS = (
    "sender_message",
    "receiver_message",
    "sender_key",
    "receiver_key",
    "sender_nonce",
    "receiver_nonce",
)


class Message(Base):
    """Encrypted message slot within a pair group.

    Messages are stored on the hub but are never decrypted there. Each slot
    carries one envelope for the sender and one for the receiver. A soft
    delete clears the six body columns and keeps the slot, so numbering
    inside a group stays dense.
    """

    __tablename__ = "messages"

    message_group: Mapped[str] = mapped_column(String(40), primary_key=True)
    message_number: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)

    message_sender: Mapped[int] = mapped_column(BigInteger, nullable=False)
    message_receiver: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    sender_message: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)
    receiver_message: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)
    sender_key: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)
    receiver_key: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)
    sender_nonce: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)
    receiver_nonce: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)

    @property
    def is_deleted(self) -> bool:
        """Return True when the body columns were cleared by a soft delete."""
        return not any(getattr(self, name) for name in BODY_FIELDS)

    def clear_body(self) -> None:
        """Blank every body column, preserving routing metadata."""
        for name in BODY_FIELDS:
            setattr(self, name, None)
