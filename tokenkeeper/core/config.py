"""
Application configuration models and helpers.

Centralizes settings management so the FastAPI app, the credential services
and the operator scripts share a consistent configuration surface. Provider
credentials are loaded once at process start and injected into the clients
that need them; nothing reads the environment at request time.
"""

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Optional

import os

from pydantic import AnyHttpUrl, Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _load_env_file(path: str = ".env") -> None:
    """Best-effort load key=value pairs from a .env file without extra deps."""
    env_path = Path(path)
    if not env_path.exists():
        return
    for raw_line in env_path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key = key.strip()
        if not key or key in os.environ:
            continue
        cleaned = value.strip().strip('"').strip("'")
        os.environ[key] = cleaned


_load_env_file()


def _split_values(value: str | tuple[str, ...] | list[str] | None) -> tuple[str, ...]:
    """Accept comma or whitespace separated strings as well as sequences."""
    if value is None:
        return ()
    if isinstance(value, tuple):
        return value
    if isinstance(value, list):
        return tuple(value)
    return tuple(part for part in value.replace(",", " ").split() if part)


class SpotifySettings(BaseSettings):
    """Configuration required for talking to the Spotify accounts service."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    client_id: str = Field(..., validation_alias="SPOTIFY_CLIENT_ID")
    client_secret: str = Field(..., validation_alias="SPOTIFY_CLIENT_SECRET")
    redirect_uri: AnyHttpUrl = Field(..., validation_alias="SPOTIFY_REDIRECT_URI")
    accounts_base_url: str = Field(
        "https://accounts.spotify.com",
        validation_alias="SPOTIFY_ACCOUNTS_BASE_URL",
        description="Base URL of the authorization server (authorize + token endpoints).",
    )
    scopes: Annotated[tuple[str, ...], NoDecode] = Field(
        ("streaming", "user-read-email", "user-read-private"),
        validation_alias="SPOTIFY_SCOPES",
    )
    request_timeout: float = Field(
        10.0,
        gt=0,
        validation_alias="SPOTIFY_REQUEST_TIMEOUT",
        description="Upper bound in seconds for a single token endpoint call.",
    )
    show_dialog: bool = Field(
        False,
        validation_alias="SPOTIFY_SHOW_DIALOG",
        description="Force the consent dialog even when the user already approved.",
    )

    @field_validator("scopes", mode="before")
    @classmethod
    def _split_scopes(cls, value):
        """Support providing scopes as a comma or space separated string."""
        return _split_values(value)

    @field_validator("accounts_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


class SecuritySettings(BaseSettings):
    """Security-related configuration."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    token_encryption_secret: Optional[str] = Field(
        None,
        validation_alias="TOKEN_ENCRYPTION_SECRET",
        description=(
            "Secret used to derive the symmetric key for encrypting stored tokens."
        ),
    )
    previous_encryption_secrets: Annotated[tuple[str, ...], NoDecode] = Field(
        (),
        validation_alias="TOKEN_ENCRYPTION_PREVIOUS_SECRETS",
        description="Retired secrets still accepted for decryption during rotation.",
    )
    oauth_state_secret: Optional[str] = Field(
        None,
        validation_alias="OAUTH_STATE_SECRET",
        description="HMAC key for signing OAuth state values.",
    )

    @field_validator("previous_encryption_secrets", mode="before")
    @classmethod
    def _split_previous(cls, value):
        if isinstance(value, str):
            return tuple(part.strip() for part in value.split(",") if part.strip())
        return _split_values(value)


class AppSettings(BaseSettings):
    """Root settings object for the FastAPI application."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    environment: str = Field("development", validation_alias="APP_ENV")
    log_level: str = Field("INFO", validation_alias="APP_LOG_LEVEL")
    frontend_base_url: Optional[HttpUrl] = Field(
        None,
        validation_alias="FRONTEND_BASE_URL",
        description="Optional URL for redirecting users back to the front-end.",
    )
    credential_db_path: str = Field(
        "data/credentials.db",
        validation_alias="CREDENTIAL_DB_PATH",
        description="SQLite database holding one authorization record per account.",
    )
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    spotify: SpotifySettings = Field(default_factory=SpotifySettings)


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()  # type: ignore[call-arg]


__all__ = [
    "AppSettings",
    "SecuritySettings",
    "SpotifySettings",
    "get_settings",
]
