"""Single-task actor that owns all hub state.

Transports never touch the registry or the store directly. They post
``Connect``, ``Inbound`` and ``Disconnect`` requests to the hub's inbox and
one dispatch task processes them to completion, in arrival order.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from sqlalchemy.orm import Session, sessionmaker

from duet_chat.core.settings import Settings
from duet_chat.repositories import MessageStore, UserDirectory
from duet_chat.services.registry import FrameSender, SessionRegistry
from duet_chat.services.router import HubRouter

logger = logging.getLogger(__name__)


@dataclass
class Connect:
    """A new transport asks to be registered; the id is set on ``reply``."""

    sender: FrameSender
    reply: asyncio.Future[int]
    close: Callable[[], None] | None = None


@dataclass(frozen=True)
class Inbound:
    """One text frame received from a transport."""

    transport_id: int
    text: str


@dataclass(frozen=True)
class Disconnect:
    """A transport has closed."""

    transport_id: int


@dataclass(frozen=True)
class Sweep:
    """Evict transports idle since before ``now - idle_timeout``."""

    now: float = field(default_factory=time.monotonic)


HubRequest = Connect | Inbound | Disconnect | Sweep


class Hub:
    """Serializes every hub operation through one asyncio task."""

    def __init__(
        self,
        router: HubRouter,
        *,
        idle_timeout: float = 0.0,
        sweep_interval: float = 5.0,
    ) -> None:
        """Initialize the hub.

        Args:
            router: Dispatcher that owns the registry and the stores.
            idle_timeout: Seconds without inbound frames before a transport is
                evicted. 0 disables the sweep.
            sweep_interval: Seconds between idle sweeps.
        """
        self.router = router
        self.idle_timeout = idle_timeout
        self.sweep_interval = max(0.1, sweep_interval)
        self._inbox: asyncio.Queue[HubRequest | None] = asyncio.Queue()
        self._closers: dict[int, Callable[[], None]] = {}
        self._task: asyncio.Task[None] | None = None
        self._sweeper: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    @property
    def registry(self) -> SessionRegistry:
        return self.router.registry

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the dispatch task and, when enabled, the idle sweep."""
        if self.running:
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._run())
        if self.idle_timeout > 0:
            self._sweeper = asyncio.create_task(self._sweep_loop())
        logger.info("Hub started")

    async def stop(self) -> None:
        """Finish queued requests and stop the dispatch task."""
        if self._task is None:
            return
        self._stopping.set()
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None
        await self._inbox.put(None)
        await self._task
        self._task = None
        logger.info("Hub stopped")

    async def connect(self, sender: FrameSender, close: Callable[[], None] | None = None) -> int:
        """Register a transport and wait for its id."""
        reply: asyncio.Future[int] = asyncio.get_running_loop().create_future()
        await self._inbox.put(Connect(sender=sender, reply=reply, close=close))
        return await reply

    def submit(self, transport_id: int, text: str) -> None:
        """Queue one inbound frame."""
        self._inbox.put_nowait(Inbound(transport_id, text))

    def disconnect(self, transport_id: int) -> None:
        self._inbox.put_nowait(Disconnect(transport_id))

    def sweep(self, now: float | None = None) -> None:
        self._inbox.put_nowait(Sweep() if now is None else Sweep(now))

    async def join(self) -> None:
        """Wait until every queued request has been processed."""
        await self._inbox.join()

    async def _run(self) -> None:
        while True:
            request = await self._inbox.get()
            try:
                if request is None:
                    return
                self._dispatch(request)
            except (ValueError, TypeError, KeyError, AttributeError) as e:
                logger.error("Hub failed to process %s: %s", type(request).__name__, e, exc_info=True)
            finally:
                self._inbox.task_done()

    def _dispatch(self, request: HubRequest) -> None:
        if isinstance(request, Inbound):
            self.router.handle(request.transport_id, request.text)
        elif isinstance(request, Connect):
            transport_id = self.registry.register(request.sender)
            if request.close is not None:
                self._closers[transport_id] = request.close
            self.router.on_connect(transport_id)
            if not request.reply.done():
                request.reply.set_result(transport_id)
        elif isinstance(request, Disconnect):
            self._closers.pop(request.transport_id, None)
            self.router.on_disconnect(request.transport_id)
        elif isinstance(request, Sweep):
            self._evict_idle(request.now)

    def _evict_idle(self, now: float) -> None:
        if self.idle_timeout <= 0:
            return
        for transport_id in self.registry.stale(now - self.idle_timeout):
            logger.info("Evicting idle transport %s", transport_id)
            self.router.on_disconnect(transport_id)
            close = self._closers.pop(transport_id, None)
            if close is not None:
                close()

    async def _sweep_loop(self) -> None:
        while not self._stopping.is_set():
            await asyncio.sleep(self.sweep_interval)
            self.sweep()


def build_hub(session_factory: sessionmaker[Session], config: Settings) -> Hub:
    """Wire stores, registry and router into a hub configured from ``config``."""
    router = HubRouter(
        SessionRegistry(),
        UserDirectory(session_factory),
        MessageStore(session_factory),
        max_frame_bytes=config.max_frame_bytes,
    )
    return Hub(
        router,
        idle_timeout=config.idle_timeout_seconds,
        sweep_interval=config.sweep_interval_seconds,
    )
