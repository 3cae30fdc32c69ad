# src/duet_chat/models/user.py
"""SQLAlchemy model for chat identities."""

from __future__ import annotations

from sqlalchemy import BigInteger, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from duet_chat.db.session import Base


class User(Base):
    """A chat identity created by ``create-new-user``.

    The token is issued once and never rotated; the RSA public key is the
    PEM text uploaded by the client that owns the matching private key.
    """

    __tablename__ = "users"

    user_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    user_name: Mapped[str] = mapped_column(String(250), nullable=False, default="")
    image_link: Mapped[str | None] = mapped_column(Text, nullable=True)
    user_token: Mapped[str] = mapped_column(String(70), nullable=False, unique=True, index=True)
    rsa_public_key: Mapped[str] = mapped_column(Text, nullable=False)
