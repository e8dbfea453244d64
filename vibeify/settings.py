"""Runtime configuration resolved once at startup.

Values come from the process environment, optionally seeded from a ``.env``
file in the working directory. ``validate_settings`` is the fail-fast gate the
app factory calls before wiring any service.
"""

from __future__ import annotations

import logging
from pathlib import Path

from dotenv import load_dotenv
from pydantic import ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError

logger = logging.getLogger(__name__)

_ENV_PATH = Path(".env").resolve()

# Space-separated
_SCOPES_DEFAULT = (
    "user-read-private "
    "user-read-email "
    "user-top-read "
    "user-read-recently-played "
    "playlist-read-private "
    "user-read-playback-state"
)

REQUIRED_SECRETS = ("SPOTIFY_CLIENT_ID", "SPOTIFY_CLIENT_SECRET", "SESSION_SECRET")


def _truthy(v: str | None) -> bool:
    return (v or "").strip().lower() in {"1", "true", "yes", "on"}


def load_env() -> None:
    """Load ``.env`` without overriding variables already set in the process."""
    if _ENV_PATH.exists():
        load_dotenv(dotenv_path=_ENV_PATH, override=False)
        logger.debug("env loaded", extra={"meta": {"path": str(_ENV_PATH)}})


class Settings(BaseSettings):
    model_config = SettingsConfigDict(case_sensitive=False, extra="ignore")

    SPOTIFY_CLIENT_ID: str = ""
    SPOTIFY_CLIENT_SECRET: str = ""
    SPOTIFY_REDIRECT_URI: str = "http://127.0.0.1:5000/auth/callback"
    # Space- or comma-separated
    SPOTIFY_SCOPES: str = _SCOPES_DEFAULT
    SPOTIFY_ACCOUNTS_URL: str = "https://accounts.spotify.com"
    SPOTIFY_API_URL: str = "https://api.spotify.com/v1"

    SESSION_SECRET: str = ""
    SESSION_COOKIE_NAME: str = "vibeify_session"
    SESSION_TTL_SECONDS: int = 7 * 24 * 60 * 60
    SESSION_SWEEP_INTERVAL: float = 3600.0
    STATE_TTL_SECONDS: int = 600

    FRONTEND_URI: str = "http://localhost:3000"
    PORT: int = 5000
    ENV: str = "dev"

    # Empty means "decide from ENV"
    COOKIE_SECURE: str = ""
    COOKIE_SAMESITE: str = "lax"

    HTTP_CLIENT_TIMEOUT: float = 10.0
    RETRY_ATTEMPTS: int = 3
    RETRY_BASE_DELAY: float = 0.5

    @field_validator("COOKIE_SAMESITE")
    @classmethod
    def _check_samesite(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in {"lax", "strict", "none"}:
            raise ValueError("COOKIE_SAMESITE must be one of lax, strict, none")
        return v

    @field_validator("FRONTEND_URI")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def scopes(self) -> list[str]:
        return [s for s in self.SPOTIFY_SCOPES.replace(",", " ").split() if s]

    @property
    def is_production(self) -> bool:
        return self.ENV.strip().lower() in {"prod", "production"}

    @property
    def cookie_secure(self) -> bool:
        # SameSite=None is rejected by browsers unless Secure is set
        if self.COOKIE_SAMESITE == "none":
            return True
        if self.COOKIE_SECURE.strip():
            return _truthy(self.COOKIE_SECURE)
        return self.is_production

    @property
    def authorize_url(self) -> str:
        return f"{self.SPOTIFY_ACCOUNTS_URL.rstrip('/')}/authorize"

    @property
    def token_url(self) -> str:
        return f"{self.SPOTIFY_ACCOUNTS_URL.rstrip('/')}/api/token"


def validate_settings(settings: Settings) -> Settings:
    """Raise ``ConfigError`` naming every missing credential-bearing variable."""
    missing = [name for name in REQUIRED_SECRETS if not getattr(settings, name).strip()]
    if missing:
        raise ConfigError(f"Missing required configuration: {', '.join(missing)}")
    if settings.RETRY_ATTEMPTS < 1:
        raise ConfigError("RETRY_ATTEMPTS must be at least 1")
    if settings.HTTP_CLIENT_TIMEOUT <= 0:
        raise ConfigError("HTTP_CLIENT_TIMEOUT must be positive")
    return settings


def get_settings() -> Settings:
    load_env()
    try:
        settings = Settings()
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
    return validate_settings(settings)
