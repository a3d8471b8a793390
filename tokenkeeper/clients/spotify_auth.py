"""
Spotify OAuth utilities.

These helpers build the consent URL, sign the correlation state carried
through the provider redirect, and call the token endpoint for the two
token-issuing grants.
"""

from __future__ import annotations

import base64
import binascii
import hmac
import json
import logging
import re
from hashlib import sha256
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx

from fastapi import status
from pydantic import ValidationError

from tokenkeeper.core.config import SpotifySettings
from tokenkeeper.models.oauth import MAX_LIFETIME_SECONDS, TokenGrant

logger = logging.getLogger(__name__)

ACCOUNT_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.@-]{0,127}$")


class InvalidAccountIdError(ValueError):
    """Raised when an account identifier does not match the expected format."""


class OAuthStateError(ValueError):
    """Raised when a callback carries a forged or malformed state value."""


def validate_account_id(account_id: Any) -> str:
    """Return ``account_id`` unchanged when it is a well-formed identifier."""
    if not isinstance(account_id, str) or not ACCOUNT_ID_PATTERN.match(account_id):
        raise InvalidAccountIdError("Account identifier has an invalid format.")
    return account_id


class OAuthStateEncoder:
    """Encode and decode OAuth state values to guard against tampering."""

    _SIGNATURE_SIZE = 32

    def __init__(self, secret_key: str) -> None:
        self._secret_key = secret_key.encode("utf-8")

    def encode(self, payload: Dict[str, Any]) -> str:
        serialized = json.dumps(payload, separators=(",", ":"), sort_keys=True)
        signature = hmac.new(self._secret_key, serialized.encode("utf-8"), sha256).digest()
        return base64.urlsafe_b64encode(signature + serialized.encode("utf-8")).decode("utf-8")

    def decode(self, token: str) -> Dict[str, Any]:
        try:
            decoded = base64.urlsafe_b64decode(token.encode("utf-8"))
        except (binascii.Error, ValueError) as exc:
            raise OAuthStateError("OAuth state is not valid base64.") from exc
        signature, serialized = decoded[: self._SIGNATURE_SIZE], decoded[self._SIGNATURE_SIZE :]
        expected_signature = hmac.new(self._secret_key, serialized, sha256).digest()
        if not hmac.compare_digest(signature, expected_signature):
            raise OAuthStateError("Invalid OAuth state signature.")
        try:
            payload = json.loads(serialized)
        except ValueError as exc:
            raise OAuthStateError("OAuth state payload is not valid JSON.") from exc
        if not isinstance(payload, dict):
            raise OAuthStateError("OAuth state payload must be an object.")
        return payload


class OAuthTokenExchangeError(Exception):
    """
    Raised when the token endpoint rejects a request or cannot be reached.

    ``transient`` separates failures worth retrying later (network trouble,
    rate limiting, provider outages) from rejections that require the account
    holder to go through the consent flow again.
    """

    def __init__(
        self,
        message: str,
        *,
        transient: bool,
        status_code: Optional[int] = None,
        error: Optional[str] = None,
        description: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.transient = transient
        self.status_code = status_code
        self.error = error
        self.description = description

    @property
    def requires_reauthorization(self) -> bool:
        return not self.transient


class AuthorizationCodeExchangeError(OAuthTokenExchangeError):
    """Raised when an authorization code cannot be traded for tokens."""


class TokenRefreshError(OAuthTokenExchangeError):
    """Raised when a refresh token cannot be traded for a new access token."""


def _is_transient_status(status_code: int) -> bool:
    return (
        status_code == status.HTTP_429_TOO_MANY_REQUESTS
        or status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR
    )


class SpotifyOAuthClient:
    """Build Spotify authorization URLs and call the token endpoint."""

    AUTHORIZE_PATH = "/authorize"
    TOKEN_PATH = "/api/token"

    def __init__(
        self,
        spotify_settings: SpotifySettings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._spotify = spotify_settings
        self._transport = transport

    @property
    def token_url(self) -> str:
        return f"{self._spotify.accounts_base_url}{self.TOKEN_PATH}"

    def build_authorization_url(self, state: str) -> str:
        """Construct the Spotify consent URL."""
        params = {
            "response_type": "code",
            "client_id": self._spotify.client_id,
            "scope": " ".join(self._spotify.scopes),
            "redirect_uri": str(self._spotify.redirect_uri),
            "state": state,
        }
        if self._spotify.show_dialog:
            params["show_dialog"] = "true"
        return f"{self._spotify.accounts_base_url}{self.AUTHORIZE_PATH}?{urlencode(params)}"

    async def exchange_authorization_code(self, code: str) -> TokenGrant:
        """
        Exchange an authorization code for the initial token pair.

        Codes are single use, so this is attempted exactly once.
        """
        payload = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": str(self._spotify.redirect_uri),
        }
        grant = await self._request_grant(payload, AuthorizationCodeExchangeError)
        if not grant.refresh_token:
            raise AuthorizationCodeExchangeError(
                "Token endpoint issued no refresh token for the authorization code.",
                transient=False,
            )
        return grant

    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        """Mint a new access token; the result may omit a rotated refresh token."""
        payload = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        }
        return await self._request_grant(payload, TokenRefreshError)

    async def _request_grant(
        self,
        payload: Dict[str, str],
        error_cls: type[OAuthTokenExchangeError],
    ) -> TokenGrant:
        grant_type = payload["grant_type"]
        try:
            async with httpx.AsyncClient(
                timeout=self._spotify.request_timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    self.token_url,
                    data=payload,
                    auth=(self._spotify.client_id, self._spotify.client_secret),
                )
        except httpx.TimeoutException as exc:
            logger.warning("Token endpoint timed out for grant_type=%s", grant_type)
            raise error_cls(
                f"Token endpoint timed out after {self._spotify.request_timeout}s.",
                transient=True,
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning(
                "Token endpoint unreachable for grant_type=%s: %s", grant_type, exc
            )
            raise error_cls("Token endpoint unreachable.", transient=True) from exc

        if response.status_code != status.HTTP_200_OK:
            error, description = _parse_error_body(response)
            logger.warning(
                "Token endpoint rejected grant_type=%s with status=%s error=%s",
                grant_type,
                response.status_code,
                error,
            )
            raise error_cls(
                description or error or response.text or "Token request rejected.",
                transient=_is_transient_status(response.status_code),
                status_code=response.status_code,
                error=error,
                description=description,
            )

        try:
            token_payload = response.json()
        except ValueError as exc:
            raise error_cls(
                "Token endpoint returned a non-JSON body.", transient=False
            ) from exc
        if not isinstance(token_payload, dict):
            raise error_cls("Token payload must be a JSON object.", transient=False)

        access_token = token_payload.get("access_token")
        expires_in = token_payload.get("expires_in")
        if not access_token or expires_in is None:
            raise error_cls(
                "Incomplete token payload returned from Spotify.", transient=False
            )
        refresh_token = token_payload.get("refresh_token") or None
        scope = token_payload.get("scope")
        if not isinstance(access_token, str) or not all(
            value is None or isinstance(value, str) for value in (refresh_token, scope)
        ):
            raise error_cls(
                "Token payload carried a non-string token or scope.", transient=False
            )

        try:
            lifetime_seconds = int(expires_in)
        except (TypeError, ValueError, OverflowError) as exc:
            raise error_cls(
                "Token payload carried a non-numeric expires_in.", transient=False
            ) from exc
        if not 0 <= lifetime_seconds <= MAX_LIFETIME_SECONDS:
            raise error_cls(
                f"Token payload carried an out-of-range expires_in ({lifetime_seconds}).",
                transient=False,
            )

        try:
            return TokenGrant(
                access_token=access_token,
                refresh_token=refresh_token,
                lifetime_seconds=lifetime_seconds,
                scope=scope,
            )
        except ValidationError as exc:
            raise error_cls("Token payload failed validation.", transient=False) from exc


def _parse_error_body(response: httpx.Response) -> tuple[Optional[str], Optional[str]]:
    try:
        body = response.json()
    except ValueError:
        return None, None
    if not isinstance(body, dict):
        return None, None
    error = body.get("error")
    # Some Spotify endpoints nest the error object.
    if isinstance(error, dict):
        return None, error.get("message")
    return error, body.get("error_description")


__all__ = [
    "ACCOUNT_ID_PATTERN",
    "AuthorizationCodeExchangeError",
    "InvalidAccountIdError",
    "OAuthStateEncoder",
    "OAuthStateError",
    "OAuthTokenExchangeError",
    "SpotifyOAuthClient",
    "TokenRefreshError",
    "validate_account_id",
]
