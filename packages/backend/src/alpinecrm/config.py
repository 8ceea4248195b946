"""Application configuration via environment variables.

Uses pydantic-settings to load config from env vars with ALPINECRM_ prefix.
The same settings object serves the realtime server and the sync client.

Learn: one Settings class for both sides keeps the socket URL, the token
path and the reconnection policy in one place.
"""

from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings

DATA_PROVIDERS = ("api", "demo")


class Settings(BaseSettings):
    """All app configuration. Set via ALPINECRM_* env vars."""

    # Redis (event fan-out between mutation services and WebSockets)
    redis_url: str = "redis://localhost:6379/0"

    # Auth
    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24 * 7

    # Server
    environment: str = "development"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 5000

    # CORS
    cors_origins: list[str] = [
        "http://localhost:5173",
    ]

    # Client: REST collaborator + realtime socket
    api_url: str = "http://localhost:5000/api"
    socket_url: str = "ws://localhost:5000/ws"
    reconnection_delay: float = 1.0  # seconds, fixed between attempts
    reconnection_attempts: int = 10

    # Client: notifications
    notification_limit: int = 50  # max entries kept in the local log
    notification_page_size: int = 20  # first page fetched at session start

    # Client: "api" talks to the REST API, "demo" serves canned data
    data_provider: str = "api"
    token_path: Path = Path.home() / ".alpinecrm" / "token.json"

    model_config = {"env_prefix": "ALPINECRM_"}

    @model_validator(mode="after")
    def validate_settings(self):
        """Reject insecure or unknown values outside development."""
        if (
            self.environment != "development"
            and self.jwt_secret == "change-me-in-production"
        ):
            raise ValueError(
                "ALPINECRM_JWT_SECRET must be set to a secure value in "
                "non-development environments. Generate one with: "
                'python -c "import secrets; print(secrets.token_urlsafe(32))"'
            )
        if self.data_provider not in DATA_PROVIDERS:
            raise ValueError(
                f"ALPINECRM_DATA_PROVIDER must be one of {DATA_PROVIDERS}, "
                f"got {self.data_provider!r}"
            )
        return self


# Singleton — import this everywhere
settings = Settings()
