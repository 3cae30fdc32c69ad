"""WebSocket endpoint that feeds transports into the hub actor."""

from __future__ import annotations

import asyncio
import contextlib
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from duet_chat.services.hub import Hub

logger = logging.getLogger(__name__)

router = APIRouter(tags=["hub"])


def get_hub(websocket: WebSocket) -> Hub:
    """Return the hub started by the application lifespan."""
    hub: Hub | None = getattr(websocket.app.state, "hub", None)
    if hub is None:
        raise RuntimeError("Hub is not running")
    return hub


async def _drain_outbox(websocket: WebSocket, outbox: asyncio.Queue[str | None]) -> None:
    """Write queued frames in order; a ``None`` entry closes the socket."""
    while True:
        text = await outbox.get()
        if text is None:
            with contextlib.suppress(RuntimeError):
                await websocket.close(code=1000)
            return
        try:
            await websocket.send_text(text)
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            logger.debug("Outbound write failed: %s", exc)
            return


@router.websocket("/ws/")
async def hub_socket(websocket: WebSocket) -> None:
    """Relay text frames between one client and the hub.

    Each transport gets its own outbox queue drained by a single writer
    task, so frames leave in the order the hub produced them.
    """
    hub = get_hub(websocket)
    await websocket.accept()

    outbox: asyncio.Queue[str | None] = asyncio.Queue()
    transport_id = await hub.connect(outbox.put_nowait, close=lambda: outbox.put_nowait(None))
    writer = asyncio.create_task(_drain_outbox(websocket, outbox))

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            text = message.get("text")
            if text is None:
                logger.warning("Ignoring binary frame from transport %s", transport_id)
                continue
            hub.submit(transport_id, text)
    except WebSocketDisconnect:
        pass
    except RuntimeError as exc:
        logger.debug("Transport %s receive ended: %s", transport_id, exc)
    finally:
        hub.disconnect(transport_id)
        writer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await writer
