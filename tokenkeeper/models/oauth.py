"""
Domain models for OAuth token persistence.
"""

from __future__ import annotations

import enum
from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Spotify issues one-hour tokens; anything past a year is a malformed payload.
MAX_LIFETIME_SECONDS = 365 * 24 * 60 * 60


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class AuthorizationStatus(str, enum.Enum):
    """Coarse authorization state of an account."""

    UNAUTHORIZED = "unauthorized"
    AUTHORIZED = "authorized"


class AuthorizationRecord(BaseModel):
    """The single stored Spotify credential of an account."""

    model_config = ConfigDict(frozen=True)

    account_id: str
    access_token: str
    refresh_token: str
    expires_at: datetime = Field(
        ..., description="Absolute instant after which the access token is unusable."
    )

    @field_validator("expires_at")
    @classmethod
    def _normalize_expiry(cls, value: datetime) -> datetime:
        return _as_utc(value)

    def is_usable(self, now: datetime) -> bool:
        """True while ``now`` is strictly before the expiry instant."""
        return _as_utc(now) < self.expires_at


class TokenGrant(BaseModel):
    """Tokens issued by the provider for a code or refresh exchange."""

    access_token: str
    refresh_token: Optional[str] = None
    lifetime_seconds: int = Field(..., ge=0, le=MAX_LIFETIME_SECONDS)
    scope: Optional[str] = None

    def to_record(
        self,
        *,
        account_id: str,
        issued_at: datetime,
        previous_refresh_token: Optional[str] = None,
    ) -> AuthorizationRecord:
        """
        Build the record to persist for this grant.

        The provider may omit ``refresh_token`` on refresh; the previous one
        then stays in force.
        """
        refresh_token = self.refresh_token or previous_refresh_token
        if not refresh_token:
            raise ValueError("Grant carries no refresh token and none was stored.")
        return AuthorizationRecord(
            account_id=account_id,
            access_token=self.access_token,
            refresh_token=refresh_token,
            expires_at=_as_utc(issued_at) + timedelta(seconds=self.lifetime_seconds),
        )


__all__ = ["MAX_LIFETIME_SECONDS", "AuthorizationRecord", "AuthorizationStatus", "TokenGrant"]
