# tests/services/test_hub.py
from __future__ import annotations

import pytest

from duet_chat.core.settings import Settings
from duet_chat.protocol import Verb, format_frame
from duet_chat.schemas import FullUser
from duet_chat.services.envelope import EnvelopeService
from duet_chat.services.hub import Hub, build_hub
from duet_chat.services.router import HubRouter


@pytest.mark.asyncio
async def test_connect_returns_id_and_announces_it(router: HubRouter, make_sender) -> None:
    hub = Hub(router)
    await hub.start()
    try:
        sender = make_sender()
        transport_id = await hub.connect(sender)
        assert transport_id in hub.registry
        assert sender.frames == [f"/update-session-id {transport_id}"]
    finally:
        await hub.stop()
    assert not hub.running


@pytest.mark.asyncio
async def test_requests_are_processed_in_order(router: HubRouter, make_sender, alice_key) -> None:
    hub = Hub(router)
    await hub.start()
    try:
        sender = make_sender()
        transport_id = await hub.connect(sender)
        sender.take()
        request = FullUser(user_name="A", rsa_public_key=EnvelopeService.public_pem(alice_key))
        hub.submit(transport_id, format_frame(Verb.CREATE_NEW_USER, request))
        hub.submit(transport_id, "/get-user-data 1001")
        await hub.join()
    finally:
        await hub.stop()

    assert sender.verbs() == ["/update-user-id", "/new-user-message", "/get-user-data"]
    assert hub.registry.transports_of(1001) == {transport_id}


@pytest.mark.asyncio
async def test_disconnect_unregisters(router: HubRouter, make_sender) -> None:
    hub = Hub(router)
    await hub.start()
    try:
        transport_id = await hub.connect(make_sender())
        hub.disconnect(transport_id)
        await hub.join()
        assert transport_id not in hub.registry
    finally:
        await hub.stop()


@pytest.mark.asyncio
async def test_sweep_evicts_idle_transports_and_closes_them(router: HubRouter, make_sender) -> None:
    hub = Hub(router, idle_timeout=30.0, sweep_interval=3600.0)
    closed: list[int] = []
    await hub.start()
    try:
        stale_id = await hub.connect(make_sender(), close=lambda: closed.append(1))
        fresh_id = await hub.connect(make_sender(), close=lambda: closed.append(2))
        hub.registry.touch(stale_id, now=0.0)
        hub.registry.touch(fresh_id, now=100.0)

        hub.sweep(now=110.0)
        await hub.join()
    finally:
        await hub.stop()

    assert closed == [1]
    assert stale_id not in hub.registry
    assert fresh_id in hub.registry


@pytest.mark.asyncio
async def test_sweep_is_disabled_without_timeout(router: HubRouter, make_sender) -> None:
    hub = Hub(router)
    closed: list[int] = []
    await hub.start()
    try:
        transport_id = await hub.connect(make_sender(), close=lambda: closed.append(1))
        hub.registry.touch(transport_id, now=0.0)
        hub.sweep(now=1e9)
        await hub.join()
    finally:
        await hub.stop()
    assert closed == []
    assert transport_id in hub.registry


@pytest.mark.asyncio
async def test_stop_is_idempotent(router: HubRouter) -> None:
    hub = Hub(router)
    await hub.stop()
    await hub.start()
    assert hub.running
    await hub.stop()
    await hub.stop()
    assert not hub.running


def test_build_hub_uses_settings(session_factory) -> None:
    config = Settings(MAX_FRAME_BYTES=2048, IDLE_TIMEOUT_SECONDS=45.0, SWEEP_INTERVAL_SECONDS=2.0)
    hub = build_hub(session_factory, config)
    assert hub.router.max_frame_bytes == 2048
    assert hub.idle_timeout == 45.0
    assert hub.sweep_interval == 2.0
