# tests/services/test_registry.py
from itertools import chain, count

from duet_chat.services.registry import SessionRegistry


class Sink:
    def __init__(self) -> None:
        self.frames: list[str] = []

    def __call__(self, text: str) -> None:
        self.frames.append(text)


def test_register_issues_unique_nonzero_ids() -> None:
    ids = chain([0, 5, 5, 6], count(100))
    registry = SessionRegistry(id_source=lambda: next(ids))
    first = registry.register(Sink())
    second = registry.register(Sink())
    registry.unregister(first)
    third = registry.register(Sink())

    assert (first, second) == (5, 6)
    assert third == 100
    assert len(registry) == 2


def test_new_sessions_are_anonymous(registry: SessionRegistry) -> None:
    transport_id = registry.register(Sink())
    session = registry.get(transport_id)
    assert session is not None
    assert session.is_anonymous
    assert session.peer_of_interest == 0


def test_bind_owner_moves_between_owner_sets(registry: SessionRegistry) -> None:
    transport_id = registry.register(Sink())
    registry.bind_owner(transport_id, 7)
    assert registry.transports_of(7) == {transport_id}

    registry.bind_owner(transport_id, 9)
    assert registry.transports_of(7) == set()
    assert 7 not in registry.owners()
    assert registry.transports_of(9) == {transport_id}


def test_unregister_prunes_empty_owner_sets(registry: SessionRegistry) -> None:
    first = registry.register(Sink())
    second = registry.register(Sink())
    registry.bind_owner(first, 7)
    registry.bind_owner(second, 7)

    registry.unregister(first)
    assert registry.transports_of(7) == {second}
    registry.unregister(second)
    assert registry.owners() == set()

    registry.unregister(12345)


def test_fanout_reaches_every_transport_of_owner(registry: SessionRegistry) -> None:
    sinks = [Sink() for _ in range(3)]
    ids = [registry.register(sink) for sink in sinks]
    registry.bind_owner(ids[0], 7)
    registry.bind_owner(ids[1], 7)
    registry.bind_owner(ids[2], 9)

    assert registry.fanout(7, "/message {}") == 2
    assert [len(sink.frames) for sink in sinks] == [1, 1, 0]


def test_fanout_many_sends_once_per_transport(registry: SessionRegistry) -> None:
    sink = Sink()
    transport_id = registry.register(sink)
    registry.bind_owner(transport_id, 7)

    delivered = registry.fanout_many([7, 7], "/message {}")

    assert delivered == 1
    assert sink.frames == ["/message {}"]


def test_watchers_of(registry: SessionRegistry) -> None:
    watching = registry.register(Sink())
    idle = registry.register(Sink())
    registry.set_peer(watching, 9)

    assert registry.watchers_of(9) == {watching}
    assert idle not in registry.watchers_of(0)


def test_failing_sender_is_unregistered(registry: SessionRegistry) -> None:
    def broken(text: str) -> None:
        raise ConnectionError("gone")

    transport_id = registry.register(broken)
    registry.bind_owner(transport_id, 7)

    assert not registry.send(transport_id, "/update-session-id 1")
    assert transport_id not in registry
    assert registry.transports_of(7) == set()


def test_stale_transports(registry: SessionRegistry) -> None:
    old = registry.register(Sink(), now=10.0)
    fresh = registry.register(Sink(), now=10.0)
    registry.touch(fresh, now=50.0)

    assert registry.stale(cutoff=30.0) == [old]


def test_binding_to_anonymous_keeps_index_empty(registry: SessionRegistry) -> None:
    transport_id = registry.register(Sink())
    registry.bind_owner(transport_id, 7)
    registry.bind_owner(transport_id, 0)
    assert registry.owners() == set()
