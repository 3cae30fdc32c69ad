"""initial schema

Revision ID: 5c1e2a7d9b40
Revises:
Create Date: 2026-10-16 09:12:44.318205

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "5c1e2a7d9b40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the users and messages tables."""
    op.create_table(
        "users",
        sa.Column("user_id", sa.BigInteger(), autoincrement=False, nullable=False),
        sa.Column("user_name", sa.String(length=250), nullable=False),
        sa.Column("image_link", sa.Text(), nullable=True),
        sa.Column("user_token", sa.String(length=70), nullable=False),
        sa.Column("rsa_public_key", sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint("user_id"),
    )
    op.create_index(op.f("ix_users_user_token"), "users", ["user_token"], unique=True)

    op.create_table(
        "messages",
        sa.Column("message_group", sa.String(length=40), nullable=False),
        sa.Column("message_number", sa.Integer(), autoincrement=False, nullable=False),
        sa.Column("message_sender", sa.BigInteger(), nullable=False),
        sa.Column("message_receiver", sa.BigInteger(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("sender_message", sa.LargeBinary(), nullable=True),
        sa.Column("receiver_message", sa.LargeBinary(), nullable=True),
        sa.Column("sender_key", sa.LargeBinary(), nullable=True),
        sa.Column("receiver_key", sa.LargeBinary(), nullable=True),
        sa.Column("sender_nonce", sa.LargeBinary(), nullable=True),
        sa.Column("receiver_nonce", sa.LargeBinary(), nullable=True),
        sa.PrimaryKeyConstraint("message_group", "message_number"),
    )


def downgrade() -> None:
    """Drop the users and messages tables."""
    op.drop_table("messages")
    op.drop_index(op.f("ix_users_user_token"), table_name="users")
    op.drop_table("users")
