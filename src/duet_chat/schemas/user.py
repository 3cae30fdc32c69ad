"""User-related Pydantic schemas used on the wire."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from duet_chat.models import User

from .message import MessageRecord


class FullUser(BaseModel):
    """Profile of a user as exchanged by ``create-new-user`` and ``get-user-data``.

    ``message`` optionally inlines the latest record of the conversation
    between the requester and this user.
    """

    user_id: int = Field(0, ge=0)
    user_name: str = Field("", max_length=250)
    image_link: str | None = None
    user_token: str = ""
    rsa_public_key: str = ""
    message: MessageRecord | None = None

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_user(
        cls,
        user: User,
        *,
        include_token: bool = False,
        message: MessageRecord | None = None,
    ) -> FullUser:
        """Build the wire profile of a stored user; the token is blanked by default."""
        return cls(
            user_id=user.user_id,
            user_name=user.user_name,
            image_link=user.image_link,
            user_token=user.user_token if include_token else "",
            rsa_public_key=user.rsa_public_key,
            message=message,
        )

    def to_wire(self) -> str:
        """Serialize, omitting an absent inline message."""
        return self.model_dump_json(
            exclude_none=True,
            exclude={"message": {"user_token"}},
        )


class IDInfo(BaseModel):
    """Identity triple used by ``reconnect-user`` and ``message-number``."""

    owner_id: int = Field(0, ge=0)
    user_id: int = Field(0, ge=0)
    user_token: str = ""


class NameUpdate(BaseModel):
    """Request to rename the caller."""

    new_name: str = Field(..., max_length=250)
    user_token: str = ""


class ImageUpdate(BaseModel):
    """Request to set or clear the caller's image link."""

    image_link: str | None = None
    user_token: str = ""
