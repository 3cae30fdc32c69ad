"""Command dispatch for the hub.

``HubRouter`` turns one inbound text frame into store operations and
outbound frames. It is synchronous and is only ever driven from the hub's
single dispatch task, so the registry and the per-group counters need no
locking.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from pydantic import ValidationError

from duet_chat.core.security import (
    allocate_user_id,
    generate_user_token,
    message_group,
    tokens_match,
)
from duet_chat.db.time import utcnow
from duet_chat.models import User
from duet_chat.protocol import (
    ProtocolError,
    UnknownPeerError,
    Verb,
    format_frame,
    parse_frame,
    parse_id,
)
from duet_chat.repositories import MessageStore, StoreError, UserDirectory
from duet_chat.schemas import (
    DeleteMessage,
    FullUser,
    IDInfo,
    ImageUpdate,
    MessageRecord,
    NameUpdate,
    SyncReply,
    SyncRequest,
)
from duet_chat.services.envelope import EnvelopeService
from duet_chat.services.registry import SessionRegistry

logger = logging.getLogger(__name__)

DEFAULT_MAX_FRAME_BYTES = 1024 * 1024

Handler = Callable[[int, str], None]


class AuthenticationError(PermissionError):
    """Raised when a request's token does not belong to its declared owner."""


class HubRouter:
    """Parses frames, authenticates them and applies their effects."""

    def __init__(
        self,
        registry: SessionRegistry,
        users: UserDirectory,
        messages: MessageStore,
        *,
        max_frame_bytes: int = DEFAULT_MAX_FRAME_BYTES,
        id_source: Callable[[], int] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.registry = registry
        self.users = users
        self.messages = messages
        self.max_frame_bytes = max_frame_bytes
        self._id_source = id_source
        self._clock = clock
        self._handlers: dict[Verb, Handler] = {
            Verb.CREATE_NEW_USER: self._create_new_user,
            Verb.RECONNECT_USER: self._reconnect_user,
            Verb.GET_USER_DATA: self._get_user_data,
            Verb.MESSAGE_NUMBER: self._message_number,
            Verb.SYNC_MESSAGE: self._sync_message,
            Verb.MESSAGE: self._message,
            Verb.NAME_UPDATED: self._name_updated,
            Verb.IMAGE_UPDATED: self._image_updated,
            Verb.DELETE_MESSAGE: self._delete_message,
            Verb.UPDATE_CHATTING_WITH: self._update_chatting_with,
        }

    # ------------------------------------------------------------------
    # Transport lifecycle
    # ------------------------------------------------------------------

    def on_connect(self, transport_id: int) -> None:
        """Tell a freshly registered transport its id."""
        logger.info("Transport %s connected", transport_id)
        self.registry.send(transport_id, format_frame(Verb.UPDATE_SESSION_ID, transport_id))

    def on_disconnect(self, transport_id: int) -> None:
        session = self.registry.get(transport_id)
        if session is None:
            return
        logger.info("Transport %s disconnected (user %s)", transport_id, session.owner_id)
        self.registry.unregister(transport_id)

    def handle(self, transport_id: int, text: str) -> None:
        """Process one inbound frame to completion.

        Every failure is logged and the frame dropped; the sender never
        receives an error reply.
        """
        if transport_id not in self.registry:
            logger.debug("Frame for unknown transport %s ignored", transport_id)
            return
        if len(text.encode("utf-8")) > self.max_frame_bytes:
            logger.warning("Dropping oversize frame from transport %s", transport_id)
            return
        self.registry.touch(transport_id)

        try:
            frame = parse_frame(text)
            handler = self._handlers.get(frame.verb)
            if handler is None:
                raise ProtocolError(f"verb {frame.verb.value} is not accepted by the hub")
            handler(transport_id, frame.payload)
        except AuthenticationError as exc:
            logger.warning("Dropping unauthenticated frame from transport %s: %s", transport_id, exc)
        except UnknownPeerError as exc:
            logger.warning("Dropping frame from transport %s: %s", transport_id, exc)
        except (ProtocolError, ValidationError) as exc:
            logger.warning("Dropping malformed frame from transport %s: %s", transport_id, exc)
        except StoreError:
            logger.error("Store failure while handling frame from transport %s", transport_id, exc_info=True)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _owner_of(self, transport_id: int) -> int:
        session = self.registry.get(transport_id)
        return session.owner_id if session else 0

    def _authenticate(self, transport_id: int, token: str | None, declared_owner: int = 0) -> User:
        """Resolve the user a request acts for and check its token.

        The owner is the declared one when given, else the session's bound
        owner, else whoever the token belongs to.

        Raises:
            AuthenticationError: If the token is missing or does not match.
        """
        if not token:
            raise AuthenticationError("missing token")
        owner_id = declared_owner or self._owner_of(transport_id)
        if owner_id:
            user = self.users.by_id(owner_id)
            if user is None or not tokens_match(user.user_token, token):
                raise AuthenticationError(f"token does not match user {owner_id}")
            return user
        user = self.users.by_token(token)
        if user is None:
            raise AuthenticationError("token does not belong to any user")
        return user

    def _latest_record(self, owner_id: int, peer_id: int) -> MessageRecord | None:
        if not owner_id:
            return None
        latest = self.messages.latest(message_group(owner_id, peer_id))
        return MessageRecord.from_message(latest) if latest else None

    # ------------------------------------------------------------------
    # Verb handlers
    # ------------------------------------------------------------------

    def _create_new_user(self, transport_id: int, payload: str) -> None:
        request = FullUser.model_validate_json(payload)
        if not EnvelopeService.is_valid_public_pem(request.rsa_public_key):
            raise ProtocolError("create-new-user without a usable RSA public key")

        user_id = allocate_user_id(self.users.exists, self._id_source)
        user = self.users.create(
            user_id=user_id,
            user_name=request.user_name,
            user_token=generate_user_token(),
            rsa_public_key=request.rsa_public_key,
            image_link=request.image_link,
        )
        self.registry.bind_owner(transport_id, user.user_id)
        logger.info("Created user %s on transport %s", user.user_id, transport_id)

        self.registry.send(transport_id, format_frame(Verb.UPDATE_USER_ID, user.user_id))
        profile = FullUser.from_user(user, include_token=True)
        self.registry.send(transport_id, format_frame(Verb.NEW_USER_MESSAGE, profile.to_wire()))

    def _reconnect_user(self, transport_id: int, payload: str) -> None:
        info = IDInfo.model_validate_json(payload)
        user = self._authenticate(transport_id, info.user_token, info.owner_id or info.user_id)
        self.registry.bind_owner(transport_id, user.user_id)
        logger.info("User %s reconnected on transport %s", user.user_id, transport_id)

    def _get_user_data(self, transport_id: int, payload: str) -> None:
        if payload.lstrip().startswith("{"):
            user_id = IDInfo.model_validate_json(payload).user_id
        else:
            user_id = parse_id(payload)

        user = self.users.by_id(user_id) if user_id else None
        if user is None:
            reply = FullUser(user_id=0)
        else:
            latest = self._latest_record(self._owner_of(transport_id), user.user_id)
            reply = FullUser.from_user(user, message=latest)
        self.registry.send(transport_id, format_frame(Verb.GET_USER_DATA, reply.to_wire()))

    def _message_number(self, transport_id: int, payload: str) -> None:
        info = IDInfo.model_validate_json(payload)
        owner = self._authenticate(transport_id, info.user_token, info.owner_id)
        last = self.messages.last_number(message_group(owner.user_id, info.user_id))
        self.registry.send(transport_id, format_frame(Verb.MESSAGE_NUMBER, info.user_id, last))

    def _sync_message(self, transport_id: int, payload: str) -> None:
        request = SyncRequest.model_validate_json(payload)
        owner = self._authenticate(transport_id, request.user_token)
        group = message_group(owner.user_id, request.user_id)

        last = self.messages.last_number(group)
        ends_at = min(request.end_at, last)
        records = self.messages.range(group, request.start_at, ends_at) if ends_at > request.start_at else []
        reply = SyncReply(
            user_id=request.user_id,
            message_data=[MessageRecord.from_message(record) for record in records],
            last_message_number=last,
            start_at=request.start_at,
            ends_at=max(ends_at, request.start_at),
        )
        self.registry.send(transport_id, format_frame(Verb.SYNC_MESSAGE, reply.to_wire()))

    def _message(self, transport_id: int, payload: str) -> None:
        record = MessageRecord.model_validate_json(payload)
        if not record.from_user or record.from_user != self._owner_of(transport_id):
            raise AuthenticationError(
                f"from_user {record.from_user} is not the owner of transport {transport_id}"
            )
        self._authenticate(transport_id, record.user_token, record.from_user)
        if not record.is_complete:
            raise ProtocolError("message without a complete envelope")
        if not self.users.exists(record.to_user):
            raise UnknownPeerError(f"receiver {record.to_user} is not a known user")

        stored = self.messages.append(
            group=message_group(record.from_user, record.to_user),
            sender=record.from_user,
            receiver=record.to_user,
            sender_message=record.sender_message,
            receiver_message=record.receiver_message,
            sender_key=record.sender_key,
            receiver_key=record.receiver_key,
            sender_nonce=record.sender_nonce,
            receiver_nonce=record.receiver_nonce,
            created_at=self._clock(),
        )
        logger.info(
            "Stored message %s in %s (%s -> %s)",
            stored.message_number,
            stored.message_group,
            stored.message_sender,
            stored.message_receiver,
        )
        frame = format_frame(Verb.MESSAGE, MessageRecord.from_message(stored).to_wire())
        self.registry.fanout_many((record.from_user, record.to_user), frame)

    def _name_updated(self, transport_id: int, payload: str) -> None:
        request = NameUpdate.model_validate_json(payload)
        user = self._authenticate(transport_id, request.user_token)
        if not self.users.update_name(user.user_id, request.new_name):
            raise UnknownPeerError(f"user {user.user_id} vanished during rename")
        frame = format_frame(Verb.NAME_UPDATED, user.user_id, request.new_name)
        self.registry.send_many(self.registry.watchers_of(user.user_id), frame)

    def _image_updated(self, transport_id: int, payload: str) -> None:
        request = ImageUpdate.model_validate_json(payload)
        user = self._authenticate(transport_id, request.user_token)
        link = request.image_link or None
        if not self.users.update_image(user.user_id, link):
            raise UnknownPeerError(f"user {user.user_id} vanished during image update")
        frame = format_frame(Verb.IMAGE_UPDATED, user.user_id, link)
        self.registry.send_many(self.registry.watchers_of(user.user_id), frame)

    def _delete_message(self, transport_id: int, payload: str) -> None:
        request = DeleteMessage.model_validate_json(payload)
        owner = self._authenticate(transport_id, request.user_token)
        if request.user_id == owner.user_id:
            raise UnknownPeerError(f"user {owner.user_id} cannot delete from a conversation with themself")
        group = message_group(owner.user_id, request.user_id)
        if not self.messages.soft_delete(group, request.message_number):
            logger.warning("No message %s in %s to delete", request.message_number, group)
            return
        logger.info("Soft-deleted message %s in %s", request.message_number, group)
        frame = format_frame(Verb.DELETE_MESSAGE, owner.user_id, request.message_number)
        self.registry.fanout_many((owner.user_id, request.user_id), frame)

    def _update_chatting_with(self, transport_id: int, payload: str) -> None:
        if payload.lstrip().startswith("{"):
            peer_id = IDInfo.model_validate_json(payload).user_id
        else:
            peer_id = parse_id(payload)
        self.registry.set_peer(transport_id, peer_id)
