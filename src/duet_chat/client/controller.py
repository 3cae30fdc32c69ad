"""Client side of the hub connection.

``TransportController`` keeps one WebSocket to the hub alive, identifies
the local user, brings every known conversation up to date and renders
incoming messages. It runs entirely on one asyncio loop; the only work
pushed off the loop is RSA key generation.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey
from pydantic import BaseModel, ValidationError
from websockets.asyncio.client import connect
from websockets.exceptions import WebSocketException

from duet_chat.client.backoff import Backoff
from duet_chat.client.events import (
    Connected,
    ConnectionLost,
    EventBus,
    Identified,
    MessageDeleted,
    MessageRendered,
    PeerUpdated,
    Reconnected,
    SyncCompleted,
)
from duet_chat.client.message_log import MessageLog, RenderedMessage
from duet_chat.client.profile_store import PeerProfile, Profile, ProfileStore
from duet_chat.client.settings import ClientSettings
from duet_chat.db.time import parse_wire_timestamp
from duet_chat.protocol import (
    ProtocolError,
    UnknownPeerError,
    Verb,
    format_frame,
    parse_frame,
    parse_id,
    split_args,
)
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
from duet_chat.services.envelope import EnvelopeError, EnvelopeService

logger = logging.getLogger(__name__)

NORMAL_CLOSURE = 1000


class TransportClosed(ConnectionError):
    """Raised when a frame is sent while no transport is open."""


class ConnectionState(str, Enum):
    """Lifecycle of the controller's hub connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    IDENTIFYING = "identifying"
    READY = "ready"
    SYNCING = "syncing"


class Connection(Protocol):
    """The subset of a WebSocket client connection the controller uses."""

    async def send(self, message: str) -> None: ...

    async def recv(self) -> str | bytes: ...

    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None: ...


Connector = Callable[[str], Awaitable[Connection]]

# Built at drain time so the current owner id and token are used.
PayloadBuilder = Callable[[], BaseModel | str | int]


@dataclass
class OutboundRequest:
    """A request waiting for the controller to become ready."""

    verb: Verb
    build: PayloadBuilder


def websocket_connector(settings: ClientSettings) -> Connector:
    """Return a connector that opens a ``websockets`` client connection.

    Protocol-level pings keep the transport honest; a missed pong closes it
    and the controller reconnects.
    """

    async def _connect(url: str) -> Connection:
        return await connect(
            url,
            ping_interval=settings.ping_interval,
            ping_timeout=settings.ping_timeout,
            max_size=None,
        )

    return _connect


class TransportController:
    """Reconnecting, self-synchronizing connection to the hub."""

    def __init__(
        self,
        settings: ClientSettings | None = None,
        *,
        connector: Connector | None = None,
        profile_store: ProfileStore | None = None,
        profile: Profile | None = None,
        events: EventBus | None = None,
        message_log: MessageLog | None = None,
    ) -> None:
        """Initialize the controller.

        Args:
            settings: Client settings; read from the environment when omitted.
            connector: Coroutine factory opening a transport to a URL.
            profile_store: Where the profile is persisted; defaults to the data dir.
            profile: Profile to start from instead of the stored one.
            events: Bus receiving controller events.
            message_log: Log receiving rendered messages.
        """
        self.settings = settings or ClientSettings()
        self.profile_store = profile_store or ProfileStore(self.settings.profile_path)
        self.profile = profile or self.profile_store.load()
        self.events = events or EventBus()
        self.log = message_log or MessageLog()
        self.backoff = Backoff(
            initial=self.settings.initial_backoff,
            factor=self.settings.backoff_factor,
            maximum=self.settings.max_backoff,
        )
        self._connector = connector or websocket_connector(self.settings)
        self._connection: Connection | None = None
        self._state = ConnectionState.DISCONNECTED
        self._private_key: RSAPrivateKey | None = None
        self._aes_cache: dict[int, bytes] = {}
        self._requests: deque[OutboundRequest] = deque()
        self._sync_targets: dict[int, int | None] = {}
        self._synced_peers: list[int] = []
        self._requested_peers: set[int] = set()
        self._pending_deletes: deque[tuple[int, int]] = deque()
        self._drain_lock = asyncio.Lock()
        self._pending_owner_id = 0
        self._chatting_with = 0
        self._transport_id = 0
        self._was_connected = False
        self._skip_wait = False
        self._stopping = asyncio.Event()
        self._wake = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._handlers: dict[Verb, Callable[[str], Awaitable[None]]] = {
            Verb.UPDATE_SESSION_ID: self._on_session_id,
            Verb.UPDATE_USER_ID: self._on_user_id,
            Verb.NEW_USER_MESSAGE: self._on_new_user,
            Verb.GET_USER_DATA: self._on_user_data,
            Verb.MESSAGE_NUMBER: self._on_message_number,
            Verb.SYNC_MESSAGE: self._on_sync_reply,
            Verb.MESSAGE: self._on_message,
            Verb.DELETE_MESSAGE: self._on_delete,
            Verb.NAME_UPDATED: self._on_name_updated,
            Verb.IMAGE_UPDATED: self._on_image_updated,
        }

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def owner_id(self) -> int:
        return self.profile.owner_id

    @property
    def transport_id(self) -> int:
        return self._transport_id

    @property
    def pending_requests(self) -> int:
        return len(self._requests)

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self._state:
            logger.debug("Transport state %s -> %s", self._state.value, state.value)
            self._state = state

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Run the connection loop in a background task."""
        if self._task is None or self._task.done():
            self._stopping.clear()
            self._task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        """Close the transport with a normal closure and release subscribers."""
        self._stopping.set()
        self._wake.set()
        if self._connection is not None:
            await self._close_quietly(self._connection)
        self.events.close()
        if self._task is not None:
            await self._task
            self._task = None
        self._set_state(ConnectionState.DISCONNECTED)

    async def reload(self) -> None:
        """Skip the remaining backoff and reconnect now."""
        self._skip_wait = True
        self._wake.set()
        connection = self._connection
        if connection is not None:
            await connection.close(code=NORMAL_CLOSURE)

    async def run(self) -> None:
        """Connect, serve and reconnect until ``stop`` is called."""
        await self._ensure_keys()
        while not self._stopping.is_set():
            self._set_state(ConnectionState.CONNECTING)
            try:
                connection = await self._connector(self.settings.hub_url)
            except (OSError, TimeoutError, WebSocketException) as exc:
                logger.warning("Could not connect to %s: %s", self.settings.hub_url, exc)
                await self._lost()
                continue

            if self._stopping.is_set():
                await self._close_quietly(connection)
                break

            self._connection = connection
            self.backoff.reset()
            self._set_state(ConnectionState.CONNECTED)
            if self._was_connected:
                logger.info("Reconnected to %s", self.settings.hub_url)
                self.events.publish(Reconnected())
            self._was_connected = True

            try:
                await self._identify()
                await self._receive_loop(connection)
            except (TransportClosed, WebSocketException, OSError) as exc:
                logger.info("Transport closed: %s", exc)
            finally:
                self._connection = None
                if self._stopping.is_set():
                    await self._close_quietly(connection)

            if self._stopping.is_set():
                break
            await self._lost()
        self._set_state(ConnectionState.DISCONNECTED)

    async def _close_quietly(self, connection: Connection) -> None:
        try:
            await connection.close(code=NORMAL_CLOSURE)
        except (WebSocketException, OSError) as exc:
            logger.debug("Error while closing transport: %s", exc)

    async def _lost(self) -> None:
        self._set_state(ConnectionState.DISCONNECTED)
        self._sync_targets.clear()
        if self._stopping.is_set():
            return
        delay = 0.0 if self._skip_wait else self.backoff.next_delay()
        self.events.publish(ConnectionLost(retry_in=delay))
        await self._wait(delay)

    async def _wait(self, delay: float) -> None:
        if self._skip_wait:
            self._skip_wait = False
            self._wake.clear()
            return
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=delay)
        except TimeoutError:
            pass
        self._wake.clear()
        self._skip_wait = False

    async def _receive_loop(self, connection: Connection) -> None:
        while not self._stopping.is_set():
            raw = await connection.recv()
            if isinstance(raw, bytes):
                logger.debug("Ignoring binary frame from hub")
                continue
            await self.handle_frame(raw)

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    async def _ensure_keys(self) -> RSAPrivateKey:
        if self._private_key is not None:
            return self._private_key
        if self.profile.private_key_pem:
            self._private_key = EnvelopeService.load_private_pem(self.profile.private_key_pem)
        else:
            self._private_key = await asyncio.to_thread(EnvelopeService.generate_keypair)
            self.profile.private_key_pem = EnvelopeService.private_pem(self._private_key)
            self._save_profile()
        return self._private_key

    async def _identify(self) -> None:
        self._set_state(ConnectionState.IDENTIFYING)
        if self.profile.has_identity:
            await self._send(
                Verb.RECONNECT_USER,
                IDInfo(
                    owner_id=self.profile.owner_id,
                    user_id=self.profile.owner_id,
                    user_token=self.profile.user_token,
                ),
            )
            logger.info("Reconnecting as user %s", self.profile.owner_id)
            self.events.publish(Identified(owner_id=self.profile.owner_id))
            await self._enter_ready()
            return

        key = await self._ensure_keys()
        self._pending_owner_id = 0
        await self._send(
            Verb.CREATE_NEW_USER,
            FullUser(
                user_name=self.profile.user_name,
                image_link=self.profile.image_link,
                rsa_public_key=EnvelopeService.public_pem(key),
            ),
        )
        logger.info("Requested a new user identity")

    def _save_profile(self) -> None:
        try:
            self.profile_store.save(self.profile)
        except OSError as exc:
            logger.error("Could not save profile: %s", exc, exc_info=True)

    # ------------------------------------------------------------------
    # Ready, sync and the request queue
    # ------------------------------------------------------------------

    async def _enter_ready(self) -> None:
        self._set_state(ConnectionState.READY)
        if self._chatting_with:
            await self._send(Verb.UPDATE_CHATTING_WITH, self._chatting_with)
        peers = [peer for peer in self.profile.peers if peer not in self._sync_targets]
        if not peers and not self._sync_targets:
            await self._drain_requests()
            return
        for peer in peers:
            await self._request_message_number(peer)

    async def _request_message_number(self, peer_id: int) -> None:
        self._sync_targets[peer_id] = None
        if self._state is ConnectionState.READY:
            self._set_state(ConnectionState.SYNCING)
        await self._send(
            Verb.MESSAGE_NUMBER,
            IDInfo(owner_id=self.profile.owner_id, user_id=peer_id, user_token=self.profile.user_token),
        )

    async def _request_window(self, peer_id: int, start_at: int, last: int) -> None:
        end_at = min(last, start_at + self.settings.sync_batch_size)
        await self._send(
            Verb.SYNC_MESSAGE,
            SyncRequest(user_id=peer_id, start_at=start_at, end_at=end_at, user_token=self.profile.user_token),
        )

    async def _finish_sync(self, peer_id: int) -> None:
        if peer_id in self._sync_targets:
            del self._sync_targets[peer_id]
            self._synced_peers.append(peer_id)
        if self._sync_targets or self._state is not ConnectionState.SYNCING:
            return
        self._set_state(ConnectionState.READY)
        peers = tuple(self._synced_peers)
        self._synced_peers.clear()
        logger.debug("Sync finished for %d peers", len(peers))
        self.events.publish(SyncCompleted(peers=peers))
        await self._drain_requests()

    async def _drain_requests(self) -> None:
        if self._drain_lock.locked():
            return
        async with self._drain_lock:
            while self._requests and self._state is ConnectionState.READY:
                request = self._requests[0]
                try:
                    payload = request.build()
                except (EnvelopeError, UnknownPeerError, ValueError) as exc:
                    logger.error("Dropping queued %s request: %s", request.verb.value, exc, exc_info=True)
                    self._requests.popleft()
                    continue
                await self._send(request.verb, payload)
                self._requests.popleft()

    async def _submit(self, verb: Verb, build: PayloadBuilder) -> None:
        self._requests.append(OutboundRequest(verb=verb, build=build))
        if self._state is not ConnectionState.READY:
            return
        try:
            await self._drain_requests()
        except (TransportClosed, WebSocketException, OSError) as exc:
            logger.info("Request kept queued until the next connection: %s", exc)

    async def _send(self, verb: Verb, payload: BaseModel | str | int | None = None) -> None:
        connection = self._connection
        if connection is None:
            raise TransportClosed("no open transport")
        await connection.send(format_frame(verb, payload))

    # ------------------------------------------------------------------
    # Public intents
    # ------------------------------------------------------------------

    async def send_message(self, peer_id: int, text: str) -> None:
        """Encrypt ``text`` for ``peer_id`` and send it once the controller is ready.

        Raises:
            UnknownPeerError: If no public key is known for the peer.
        """
        peer = self.profile.peers.get(peer_id)
        if peer is None or not peer.rsa_public_key:
            raise UnknownPeerError(f"no public key for user {peer_id}")
        await self._submit(Verb.MESSAGE, lambda: self._seal(peer_id, text))

    async def add_peer(self, peer_id: int) -> None:
        """Look up a user so they can be messaged."""
        self._requested_peers.add(peer_id)
        await self._submit(Verb.GET_USER_DATA, lambda: peer_id)

    async def delete_message(self, peer_id: int, number: int) -> None:
        def build() -> DeleteMessage:
            self._pending_deletes.append((peer_id, number))
            return DeleteMessage(user_id=peer_id, message_number=number, user_token=self.profile.user_token)

        await self._submit(Verb.DELETE_MESSAGE, build)

    async def update_name(self, name: str) -> None:
        self.profile.user_name = name
        self._save_profile()
        await self._submit(Verb.NAME_UPDATED, lambda: NameUpdate(new_name=name, user_token=self.profile.user_token))

    async def update_image(self, link: str | None) -> None:
        self.profile.image_link = link or None
        self._save_profile()
        await self._submit(
            Verb.IMAGE_UPDATED,
            lambda: ImageUpdate(image_link=link or None, user_token=self.profile.user_token),
        )

    async def chatting_with(self, peer_id: int) -> None:
        """Tell the hub which conversation is open; re-sent after reconnects."""
        self._chatting_with = peer_id
        if self._state not in (ConnectionState.READY, ConnectionState.SYNCING):
            return
        try:
            await self._send(Verb.UPDATE_CHATTING_WITH, peer_id)
        except (TransportClosed, WebSocketException, OSError) as exc:
            logger.info("Peer of interest will be sent on the next connection: %s", exc)

    async def resync(self, peer_id: int) -> None:
        """Ask the hub for a peer's last number and fetch anything missing."""
        if self._state in (ConnectionState.READY, ConnectionState.SYNCING):
            await self._request_message_number(peer_id)
        # otherwise the next READY entry syncs every known peer anyway

    def _seal(self, peer_id: int, text: str) -> MessageRecord:
        if self._private_key is None:
            raise EnvelopeError("no private key loaded")
        peer = self.profile.peers.get(peer_id)
        if peer is None:
            raise UnknownPeerError(f"user {peer_id} is not a known peer")
        sealed = EnvelopeService.encrypt(
            text,
            self._private_key.public_key(),
            EnvelopeService.load_public_pem(peer.rsa_public_key),
        )
        record = MessageRecord(
            from_user=self.profile.owner_id,
            to_user=peer_id,
            user_token=self.profile.user_token,
        )
        return sealed.fill(record)

    # ------------------------------------------------------------------
    # Inbound frames
    # ------------------------------------------------------------------

    async def handle_frame(self, text: str) -> None:
        """Apply one frame received from the hub."""
        try:
            frame = parse_frame(text)
        except ProtocolError as exc:
            logger.debug("Dropping unrecognized frame: %s", exc)
            return

        handler = self._handlers.get(frame.verb)
        if handler is None:
            logger.debug("Ignoring %s from hub", frame.verb.value)
            return
        try:
            await handler(frame.payload)
        except (ProtocolError, ValidationError) as exc:
            logger.warning("Dropping malformed %s frame: %s", frame.verb.value, exc)

    async def _on_session_id(self, payload: str) -> None:
        self._transport_id = parse_id(payload)
        self.events.publish(Connected(transport_id=self._transport_id))

    async def _on_user_id(self, payload: str) -> None:
        if self._state is ConnectionState.IDENTIFYING:
            self._pending_owner_id = parse_id(payload)

    async def _on_new_user(self, payload: str) -> None:
        user = FullUser.model_validate_json(payload)
        if (
            self._state is ConnectionState.IDENTIFYING
            and user.user_id
            and user.user_id == self._pending_owner_id
            and user.user_token
        ):
            self.profile.owner_id = user.user_id
            self.profile.user_token = user.user_token
            self._save_profile()
            logger.info("Hub created user %s", user.user_id)
            self.events.publish(Identified(owner_id=user.user_id, new_user=True))
            await self._enter_ready()
            return
        await self._remember_peer(user)

    async def _on_user_data(self, payload: str) -> None:
        user = FullUser.model_validate_json(payload)
        if not user.user_id:
            logger.info("Hub does not know a requested user")
            return
        await self._remember_peer(user)
        if user.message is not None:
            self._render(user.message)

    async def _remember_peer(self, user: FullUser) -> None:
        if not user.user_id or user.user_id == self.profile.owner_id:
            return
        is_new = user.user_id not in self.profile.peers
        changed = self.profile.upsert_peer(
            PeerProfile(
                user_id=user.user_id,
                user_name=user.user_name,
                image_link=user.image_link,
                rsa_public_key=user.rsa_public_key,
            )
        )
        self._requested_peers.discard(user.user_id)
        if not changed:
            return
        self._save_profile()
        self.events.publish(PeerUpdated(peer_id=user.user_id, user_name=user.user_name, image_link=user.image_link))
        if is_new:
            await self.resync(user.user_id)

    async def _on_message_number(self, payload: str) -> None:
        peer_text, last_text = split_args(payload, 2)
        peer_id, last = parse_id(peer_text), parse_id(last_text)
        known = self.log.known_number(peer_id)
        if last <= known:
            await self._finish_sync(peer_id)
            return
        self._sync_targets[peer_id] = last
        if self._state is ConnectionState.READY:
            self._set_state(ConnectionState.SYNCING)
        await self._request_window(peer_id, known, last)

    async def _on_sync_reply(self, payload: str) -> None:
        reply = SyncReply.model_validate_json(payload)
        rendered = (self._render(record) for record in reply.message_data)
        await self._look_up_unknown({peer_id for peer_id in rendered if peer_id is not None})

        peer_id = reply.user_id
        target = self._sync_targets.get(peer_id)
        if target is None:
            return
        target = max(target, reply.last_message_number)
        if reply.ends_at >= target or reply.ends_at <= reply.start_at:
            await self._finish_sync(peer_id)
            return
        self._sync_targets[peer_id] = target
        await self._request_window(peer_id, reply.ends_at, target)

    async def _on_message(self, payload: str) -> None:
        record = MessageRecord.model_validate_json(payload)
        peer_id = self._render(record)
        if peer_id is not None:
            await self._look_up_unknown({peer_id})

    async def _on_delete(self, payload: str) -> None:
        user_text, number_text = split_args(payload, 2)
        user_id, number = parse_id(user_text), parse_id(number_text)
        if user_id != self.profile.owner_id:
            self._apply_delete(user_id, number)
            return
        for entry in self._pending_deletes:
            peer_id, pending = entry
            if pending == number:
                self._pending_deletes.remove(entry)
                self._apply_delete(peer_id, number)
                return

    def _apply_delete(self, peer_id: int, number: int) -> None:
        if self.log.mark_deleted(peer_id, number):
            self.events.publish(MessageDeleted(peer_id=peer_id, number=number))

    async def _on_name_updated(self, payload: str) -> None:
        user_text, name = split_args(payload, 2)
        peer = self.profile.peers.get(parse_id(user_text))
        if peer is None:
            return
        peer.user_name = name
        self._save_profile()
        self.events.publish(PeerUpdated(peer_id=peer.user_id, user_name=name, image_link=peer.image_link))

    async def _on_image_updated(self, payload: str) -> None:
        user_text, link = split_args(payload, 2)
        peer = self.profile.peers.get(parse_id(user_text))
        if peer is None:
            return
        peer.image_link = link or None
        self._save_profile()
        self.events.publish(PeerUpdated(peer_id=peer.user_id, user_name=peer.user_name, image_link=peer.image_link))

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def _render(self, record: MessageRecord) -> int | None:
        """Decrypt and log one record; returns the peer id when it was rendered."""
        owner_id = self.profile.owner_id
        if owner_id not in (record.from_user, record.to_user):
            logger.warning("Ignoring message %s not addressed to this user", record.message_number)
            return None
        peer_id = record.to_user if record.from_user == owner_id else record.from_user

        if (peer_id, record.message_number) in self.log:
            if record.is_deleted:
                self._apply_delete(peer_id, record.message_number)
            return None

        text: str | None = None
        if not record.is_deleted:
            if self._private_key is None:
                logger.error("Cannot open message %s without a private key", record.message_number)
                return None
            try:
                opened = EnvelopeService.decrypt(
                    record,
                    self._private_key,
                    EnvelopeService.role_for(owner_id, record),
                    self._aes_cache.get(peer_id),
                )
            except EnvelopeError:
                logger.error(
                    "Could not open message %s from conversation with %s",
                    record.message_number,
                    peer_id,
                    exc_info=True,
                )
                return None
            self._aes_cache[peer_id] = opened.aes_key
            text = str(opened.plaintext)

        created_at = None
        if record.created_at:
            try:
                created_at = parse_wire_timestamp(record.created_at)
            except ValueError:
                logger.debug("Unparseable timestamp on message %s", record.message_number)

        rendered = RenderedMessage(
            peer_id=peer_id,
            number=record.message_number,
            from_user=record.from_user,
            to_user=record.to_user,
            created_at=created_at,
            text=text,
        )
        if not self.log.add(rendered):
            return None
        self.events.publish(
            MessageRendered(
                peer_id=peer_id,
                number=rendered.number,
                from_user=rendered.from_user,
                to_user=rendered.to_user,
                created_at=created_at,
                text=text,
            )
        )
        return peer_id

    async def _look_up_unknown(self, peer_ids: set[int]) -> None:
        """Fetch profiles for conversation partners seen for the first time."""
        for peer_id in peer_ids:
            if peer_id in self.profile.peers or peer_id in self._requested_peers:
                continue
            if peer_id == self.profile.owner_id:
                continue
            self._requested_peers.add(peer_id)
            await self._send(Verb.GET_USER_DATA, peer_id)
