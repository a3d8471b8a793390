"""
Drives an account from "not authorized" to "authorized" and back.
"""

from __future__ import annotations

import logging
from typing import Optional

from tokenkeeper.clients import CredentialStoreError, OAuthStateEncoder, SpotifyOAuthClient
from tokenkeeper.clients.spotify_auth import OAuthStateError, validate_account_id
from tokenkeeper.models.oauth import AuthorizationRecord, AuthorizationStatus
from tokenkeeper.services.token_lifecycle import (
    Clock,
    CredentialStore,
    TokenLifecycleManager,
    utcnow,
)

logger = logging.getLogger(__name__)


class AuthorizationFlowController:
    """Consent URL, callback completion and revocation for Spotify."""

    def __init__(
        self,
        oauth_client: SpotifyOAuthClient,
        state_encoder: OAuthStateEncoder,
        lifecycle: TokenLifecycleManager,
        store: CredentialStore,
        *,
        clock: Optional[Clock] = None,
    ) -> None:
        self._oauth = oauth_client
        self._state = state_encoder
        self._lifecycle = lifecycle
        self._store = store
        self._clock = clock or utcnow

    def build_state(self, account_id: str) -> str:
        """Signed correlation value; identical for repeated calls."""
        validate_account_id(account_id)
        return self._state.encode({"account_id": account_id})

    def build_consent_url(self, account_id: str) -> str:
        return self._oauth.build_authorization_url(state=self.build_state(account_id))

    def resolve_state(self, state: str) -> str:
        """Return the account id carried by a callback's ``state`` parameter."""
        payload = self._state.decode(state)
        account_id = payload.get("account_id")
        if account_id is None:
            raise OAuthStateError("Missing account identifier in state token.")
        # Signed by us, but still validated before it reaches the store.
        try:
            return validate_account_id(account_id)
        except ValueError as exc:
            raise OAuthStateError("State token carries a malformed account id.") from exc

    async def complete_authorization(
        self, *, account_id: str, code: str
    ) -> AuthorizationRecord:
        """
        Trade ``code`` for tokens and store them as the account's record.

        Raises ``AuthorizationCodeExchangeError`` when the provider refuses the
        code and ``CredentialStoreError`` when the issued tokens cannot be
        saved. In the latter case the grant stays live at Spotify.
        """
        validate_account_id(account_id)
        issued_at = self._clock()
        grant = await self._oauth.exchange_authorization_code(code)
        try:
            record = await self._lifecycle.store_grant(
                account_id=account_id, grant=grant, issued_at=issued_at
            )
        except CredentialStoreError:
            logger.error(
                "Spotify issued tokens for account %s but they could not be stored; "
                "the account must re-authorize once storage is available",
                account_id,
            )
            raise
        logger.info(
            "Spotify authorization completed for account %s (scope=%s)",
            account_id,
            grant.scope,
        )
        return record

    async def revoke(self, *, account_id: str) -> None:
        """Forget the account's credential. Revoking twice is not an error."""
        validate_account_id(account_id)
        await self._lifecycle.discard(account_id=account_id)
        logger.info("Spotify authorization revoked for account %s", account_id)

    def authorization_status(self, *, account_id: str) -> AuthorizationStatus:
        validate_account_id(account_id)
        if self._store.get(account_id) is None:
            return AuthorizationStatus.UNAUTHORIZED
        return AuthorizationStatus.AUTHORIZED


__all__ = ["AuthorizationFlowController"]
