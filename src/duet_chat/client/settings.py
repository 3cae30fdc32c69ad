"""Client settings.

The hub URL is the only value a deployment normally needs to set; the rest
tune reconnection and sync behaviour.
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ClientSettings(BaseSettings):
    """Client settings loaded from ``DUET_*`` environment variables."""

    hub_url: str = Field(default="ws://localhost:8080/ws/", alias="DUET_HUB_URL")
    data_dir: Path = Field(default=Path.home() / ".duet", alias="DUET_DATA_DIR")

    # Reconnection backoff, in seconds
    initial_backoff: float = Field(default=10.0, alias="DUET_INITIAL_BACKOFF")
    max_backoff: float = Field(default=300.0, alias="DUET_MAX_BACKOFF")
    backoff_factor: float = Field(default=1.5, alias="DUET_BACKOFF_FACTOR")

    # Transport heartbeats
    ping_interval: float = Field(default=5.0, alias="DUET_PING_INTERVAL")
    ping_timeout: float = Field(default=10.0, alias="DUET_PING_TIMEOUT")

    # Largest window requested by a single sync-message
    sync_batch_size: int = Field(default=100, ge=1, alias="DUET_SYNC_BATCH_SIZE")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def profile_path(self) -> Path:
        """Return the file holding the persisted profile."""
        return self.data_dir / "profile.json"
