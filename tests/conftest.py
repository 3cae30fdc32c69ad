# tests/conftest.py
from __future__ import annotations

from collections.abc import Callable, Generator, Iterator
from itertools import count

import pytest
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from duet_chat.core.security import generate_user_token
from duet_chat.db.session import Base
from duet_chat.main import app as fastapi_app
from duet_chat.models import User
from duet_chat.repositories import MessageStore, UserDirectory
from duet_chat.services.envelope import EnvelopeService
from duet_chat.services.registry import SessionRegistry
from duet_chat.services.router import HubRouter

TEST_DB_URL = "sqlite://"


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def message_store(session_factory: sessionmaker[Session]) -> MessageStore:
    return MessageStore(session_factory)


@pytest.fixture()
def user_directory(session_factory: sessionmaker[Session]) -> UserDirectory:
    return UserDirectory(session_factory)


@pytest.fixture(scope="session")
def alice_key() -> RSAPrivateKey:
    """RSA key for the first test identity; generated once per run."""
    return EnvelopeService.generate_keypair()


@pytest.fixture(scope="session")
def bob_key() -> RSAPrivateKey:
    """RSA key for the second test identity."""
    return EnvelopeService.generate_keypair()


@pytest.fixture(scope="session")
def carol_key() -> RSAPrivateKey:
    """RSA key for a bystander identity."""
    return EnvelopeService.generate_keypair()


@pytest.fixture()
def make_user(user_directory: UserDirectory) -> Callable[..., User]:
    """Persist a user directly through the directory."""

    def _make(user_id: int, key: RSAPrivateKey, name: str = "") -> User:
        return user_directory.create(
            user_id=user_id,
            user_name=name or f"user-{user_id}",
            user_token=generate_user_token(),
            rsa_public_key=EnvelopeService.public_pem(key),
        )

    return _make


@pytest.fixture()
def alice(make_user: Callable[..., User], alice_key: RSAPrivateKey) -> User:
    return make_user(7, alice_key, "Alice")


@pytest.fixture()
def bob(make_user: Callable[..., User], bob_key: RSAPrivateKey) -> User:
    return make_user(9, bob_key, "Bob")


@pytest.fixture()
def carol(make_user: Callable[..., User], carol_key: RSAPrivateKey) -> User:
    return make_user(11, carol_key, "Carol")


class RecordingSender:
    """Frame sender that keeps everything pushed to one transport."""

    def __init__(self) -> None:
        self.frames: list[str] = []

    def __call__(self, text: str) -> None:
        self.frames.append(text)

    def verbs(self) -> list[str]:
        return [frame.split(" ", 1)[0] for frame in self.frames]

    def take(self) -> list[str]:
        frames, self.frames = self.frames, []
        return frames


@pytest.fixture()
def make_sender() -> type[RecordingSender]:
    return RecordingSender


@pytest.fixture()
def registry() -> SessionRegistry:
    return SessionRegistry()


@pytest.fixture()
def id_source() -> Callable[[], int]:
    """Deterministic user ids for create-new-user."""
    ids = count(1001)
    return lambda: next(ids)


@pytest.fixture()
def router(
    registry: SessionRegistry,
    user_directory: UserDirectory,
    message_store: MessageStore,
    id_source: Callable[[], int],
) -> HubRouter:
    return HubRouter(registry, user_directory, message_store, id_source=id_source)


@pytest.fixture()
def connect(router: HubRouter) -> Callable[..., tuple[int, RecordingSender]]:
    """Open a transport on the router, optionally bound to an owner."""

    def _connect(owner_id: int = 0) -> tuple[int, RecordingSender]:
        sender = RecordingSender()
        transport_id = router.registry.register(sender)
        router.on_connect(transport_id)
        if owner_id:
            router.registry.bind_owner(transport_id, owner_id)
        sender.take()
        return transport_id, sender

    return _connect


@pytest.fixture()
def app(session_factory: sessionmaker[Session]) -> Iterator[FastAPI]:
    fastapi_app.state.session_factory = session_factory
    try:
        yield fastapi_app
    finally:
        fastapi_app.state.session_factory = None


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client
