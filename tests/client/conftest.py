# tests/client/conftest.py
from __future__ import annotations

from pathlib import Path

import pytest
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from duet_chat.client import ClientSettings, PeerProfile, Profile, ProfileStore
from duet_chat.services.envelope import EnvelopeService


@pytest.fixture()
def client_settings(tmp_path: Path) -> ClientSettings:
    return ClientSettings(
        hub_url="ws://hub.test/ws/",
        data_dir=tmp_path,
        initial_backoff=0.01,
        max_backoff=0.05,
        sync_batch_size=2,
    )


@pytest.fixture()
def profile_store(client_settings: ClientSettings) -> ProfileStore:
    return ProfileStore(client_settings.profile_path)


@pytest.fixture()
def owner_profile(alice_key: RSAPrivateKey, bob_key: RSAPrivateKey) -> Profile:
    """Identity 7 with peer 9 already known."""
    profile = Profile(
        owner_id=7,
        user_token="a" * 64,
        user_name="Alice",
        private_key_pem=EnvelopeService.private_pem(alice_key),
    )
    profile.upsert_peer(
        PeerProfile(user_id=9, user_name="Bob", rsa_public_key=EnvelopeService.public_pem(bob_key))
    )
    return profile
