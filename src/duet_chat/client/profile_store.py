"""On-disk persistence of the client's identity and known peers."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)


class PeerProfile(BaseModel):
    """What the client knows about one conversation partner."""

    user_id: int = Field(..., gt=0)
    user_name: str = ""
    image_link: str | None = None
    rsa_public_key: str = ""


class Profile(BaseModel):
    """The owner's identity, private key and peer list.

    ``owner_id`` is 0 and ``user_token`` empty until the hub has created the
    user; a profile in that state triggers ``create-new-user`` on connect.
    """

    owner_id: int = 0
    user_token: str = ""
    user_name: str = ""
    image_link: str | None = None
    private_key_pem: str = ""
    peers: dict[int, PeerProfile] = Field(default_factory=dict)

    @property
    def has_identity(self) -> bool:
        return bool(self.owner_id and self.user_token)

    def upsert_peer(self, peer: PeerProfile) -> bool:
        """Add or refresh a peer; returns True when anything changed."""
        current = self.peers.get(peer.user_id)
        if current == peer:
            return False
        self.peers[peer.user_id] = peer
        return True


class ProfileStore:
    """Loads and saves a ``Profile`` as JSON in the client's data directory."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> Profile:
        """Return the stored profile, or a blank one when none is usable."""
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return Profile()
        try:
            return Profile.model_validate_json(raw)
        except ValidationError as exc:
            logger.error("Ignoring unreadable profile at %s: %s", self.path, exc)
            return Profile()

    def save(self, profile: Profile) -> None:
        """Write the profile atomically, readable only by the current user."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(profile.model_dump_json(indent=2), encoding="utf-8")
        os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, self.path)
