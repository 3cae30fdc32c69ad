"""Data access helpers for chat identities."""
from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from duet_chat.models import User

from .errors import StoreError

__all__ = ["UserDirectory"]


class UserDirectory:
    """Thin wrapper around database access for user identities."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        """Initialize the directory with a synchronous session factory."""
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
        except SQLAlchemyError as err:
            db.rollback()
            raise StoreError(str(err)) from err
        finally:
            db.close()

    def create(
        self,
        *,
        user_id: int,
        user_name: str,
        user_token: str,
        rsa_public_key: str,
        image_link: str | None = None,
    ) -> User:
        """Insert a new user and return the detached ORM instance."""
        with self._session() as db:
            user = User(
                user_id=user_id,
                user_name=user_name,
                image_link=image_link,
                user_token=user_token,
                rsa_public_key=rsa_public_key,
            )
            db.add(user)
            db.commit()
            db.refresh(user)
            db.expunge(user)
            return user

    def by_id(self, user_id: int) -> User | None:
        """Return a user by identifier."""
        with self._session() as db:
            user = db.get(User, user_id)
            if user is not None:
                db.expunge(user)
            return user

    def by_token(self, token: str) -> User | None:
        """Return the user owning ``token``."""
        with self._session() as db:
            user = db.execute(select(User).where(User.user_token == token)).scalars().first()
            if user is not None:
                db.expunge(user)
            return user

    def exists(self, user_id: int) -> bool:
        """Return True if ``user_id`` is taken."""
        return self.by_id(user_id) is not None

    def update_name(self, user_id: int, name: str) -> bool:
        """Rename a user. Returns False when the user does not exist."""
        with self._session() as db:
            user = db.get(User, user_id)
            if user is None:
                return False
            user.user_name = name
            db.commit()
            return True

    def update_image(self, user_id: int, link: str | None) -> bool:
        """Set or clear a user's image link. Returns False when the user does not exist."""
        with self._session() as db:
            user = db.get(User, user_id)
            if user is None:
                return False
            user.image_link = link
            db.commit()
            return True
