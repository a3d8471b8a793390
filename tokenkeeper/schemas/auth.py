"""Schemas related to the Spotify OAuth flow and token lookups."""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field


class OAuthCallbackPayload(BaseModel):
    """Payload sent to complete the OAuth callback exchange."""

    code: str = Field(..., min_length=1, description="Authorization code returned by Spotify.")
    state: str = Field(..., min_length=1, description="Opaque state token issued when starting OAuth.")


class ConsentUrlResponse(BaseModel):
    authorization_url: str
    state: str


class CallbackResult(BaseModel):
    status: Literal["connected"] = "connected"
    account_id: str


class AccessTokenResponse(BaseModel):
    """
    Token lookup result.

    ``not_connected`` is a normal answer for accounts that never authorized
    Spotify (or revoked it) and is returned with HTTP 200.
    """

    status: Literal["connected", "not_connected"]
    access_token: Optional[str] = None
    expires_at: Optional[datetime] = None


class AuthorizationStatusResponse(BaseModel):
    account_id: str
    status: Literal["authorized", "unauthorized"]


__all__ = [
    "AccessTokenResponse",
    "AuthorizationStatusResponse",
    "CallbackResult",
    "ConsentUrlResponse",
    "OAuthCallbackPayload",
]
