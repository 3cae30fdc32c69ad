"""Data access helpers for encrypted message records."""
from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from duet_chat.db.time import utcnow
from duet_chat.models import Message

from .errors import DuplicateMessageError, StoreError

__all__ = ["MessageStore"]


class MessageStore:
    """Append-only log of encrypted messages keyed by (group, number).

    The store is the sole authoritative holder of message numbers. Every
    call runs in its own short-lived session obtained from the factory.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        """Initialize the store with a synchronous session factory."""
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
        except IntegrityError as err:
            db.rollback()
            raise DuplicateMessageError(str(err.orig)) from err
        except SQLAlchemyError as err:
            db.rollback()
            raise StoreError(str(err)) from err
        finally:
            db.close()

    def insert(self, record: Message) -> Message:
        """Persist a record whose group and number were chosen by the caller.

        Raises:
            DuplicateMessageError: If (group, number) is already taken.
        """
        with self._session() as db:
            db.add(record)
            db.commit()
            db.refresh(record)
            db.expunge(record)
            return record

    def append(
        self,
        *,
        group: str,
        sender: int,
        receiver: int,
        sender_message: bytes,
        receiver_message: bytes,
        sender_key: bytes,
        receiver_key: bytes,
        sender_nonce: bytes,
        receiver_nonce: bytes,
        created_at: datetime | None = None,
    ) -> Message:
        """Assign the next number in ``group`` and persist the record.

        Numbering and insertion happen in one transaction. The hub calls this
        from its single dispatch task, so no other writer can interleave.
        """
        with self._session() as db:
            number = self._last_number(db, group) + 1
            record = Message(
                message_group=group,
                message_number=number,
                message_sender=sender,
                message_receiver=receiver,
                created_at=created_at or utcnow(),
                sender_message=sender_message,
                receiver_message=receiver_message,
                sender_key=sender_key,
                receiver_key=receiver_key,
                sender_nonce=sender_nonce,
                receiver_nonce=receiver_nonce,
            )
            db.add(record)
            db.commit()
            db.refresh(record)
            db.expunge(record)
            return record

    @staticmethod
    def _last_number(db: Session, group: str) -> int:
        result = db.execute(
            select(func.max(Message.message_number)).where(Message.message_group == group)
        ).scalar()
        return int(result or 0)

    def last_number(self, group: str) -> int:
        """Return the highest number in ``group``, or 0 when it is empty."""
        with self._session() as db:
            return self._last_number(db, group)

    def get(self, group: str, number: int) -> Message | None:
        """Return a single record by its slot."""
        with self._session() as db:
            record = db.get(Message, (group, number))
            if record is not None:
                db.expunge(record)
            return record

    def latest(self, group: str) -> Message | None:
        """Return the newest record in ``group`` if any."""
        with self._session() as db:
            record = db.execute(
                select(Message)
                .where(Message.message_group == group)
                .order_by(Message.message_number.desc())
                .limit(1)
            ).scalars().first()
            if record is not None:
                db.expunge(record)
            return record

    def range(self, group: str, after: int, through: int) -> list[Message]:
        """Return records with ``after < number <= through`` in ascending order."""
        with self._session() as db:
            records = list(
                db.execute(
                    select(Message)
                    .where(
                        Message.message_group == group,
                        Message.message_number > after,
                        Message.message_number <= through,
                    )
                    .order_by(Message.message_number.asc())
                ).scalars()
            )
            db.expunge_all()
            return records

    def count(self, group: str) -> int:
        """Return the number of slots in ``group``."""
        with self._session() as db:
            return int(
                db.execute(
                    select(func.count()).select_from(Message).where(Message.message_group == group)
                ).scalar_one()
            )

    def soft_delete(self, group: str, number: int) -> bool:
        """Clear the body of one record, keeping its slot, uids and timestamp.

        Returns:
            True if the record existed, False otherwise.
        """
        with self._session() as db:
            record = db.get(Message, (group, number))
            if record is None:
                return False
            record.clear_body()
            db.commit()
            return True
