"""Hub settings and configuration.

This module defines all configuration options for the Duet hub process.
Settings are loaded from environment variables with sensible defaults.
"""

import logging

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Hub settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="Duet Hub", alias="APP_NAME")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Database configuration
    database_url: str = Field(default="sqlite:///./duet.db", alias="DATABASE_URL")
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Listener
    hub_host: str = Field(default="127.0.0.1", alias="HUB_HOST")
    hub_port: int = Field(default=8080, alias="HUB_PORT")

    # Transport heartbeats, applied to uvicorn's WebSocket protocol
    ws_ping_interval: float = Field(default=5.0, alias="WS_PING_INTERVAL")
    ws_ping_timeout: float = Field(default=10.0, alias="WS_PING_TIMEOUT")

    # Application-level idle sweep; 0 disables it
    idle_timeout_seconds: float = Field(default=0.0, alias="IDLE_TIMEOUT_SECONDS")
    sweep_interval_seconds: float = Field(default=5.0, alias="SWEEP_INTERVAL_SECONDS")

    # Frames above this size are dropped without being parsed
    max_frame_bytes: int = Field(default=1024 * 1024, alias="MAX_FRAME_BYTES")

    # CORS configuration for the HTTP side of the hub
    cors_origins: list[str] = Field(default=["*"], alias="CORS_ORIGINS")
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(default=["GET", "OPTIONS"], alias="CORS_ALLOW_METHODS")
    cors_allow_headers: list[str] = Field(default=["*"], alias="CORS_ALLOW_HEADERS")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def effective_database_url(self) -> str:
        """Return the database URL respecting testing overrides.

        Returns:
            The active database URL (test database if in testing mode, otherwise production)
        """
        if self.use_testing_database and self.test_database_url:
            return self.test_database_url
        return self.database_url


def configure_logging(level: str | None = None) -> None:
    """Apply the configured log level to the root logger."""
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


settings = Settings()
