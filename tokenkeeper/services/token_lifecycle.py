"""
Keeps each account's stored Spotify access token usable.

Callers ask for a token and get the stored one while it is unexpired. Once it
has expired the manager refreshes it, and at most one refresh per account runs
at any moment: every caller that arrives while a refresh is in flight awaits
that same refresh and sees its outcome, success or failure. Refresh tokens
may be single use at the provider, so two concurrent refreshes with the same
token would leave the stored record pointing at a revoked credential.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Protocol

from tokenkeeper.clients.spotify_auth import TokenRefreshError
from tokenkeeper.clients.sqlite_store import CredentialStoreError
from tokenkeeper.models.oauth import AuthorizationRecord, TokenGrant

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CredentialStore(Protocol):
    def get(self, account_id: str) -> Optional[AuthorizationRecord]: ...

    def put(self, record: AuthorizationRecord) -> None: ...

    def delete(self, account_id: str) -> None: ...


class RefreshingOAuthClient(Protocol):
    async def refresh_access_token(self, refresh_token: str) -> TokenGrant: ...


class TokenLifecycleManager:
    """Serve valid access tokens, refreshing expired ones once per account."""

    def __init__(
        self,
        store: CredentialStore,
        oauth_client: RefreshingOAuthClient,
        *,
        clock: Optional[Clock] = None,
        refresh_timeout: Optional[float] = None,
    ) -> None:
        self._store = store
        self._oauth = oauth_client
        self._clock = clock or utcnow
        self._refresh_timeout = refresh_timeout
        self._refreshes: Dict[str, asyncio.Task[Optional[AuthorizationRecord]]] = {}

    async def get_access_token(self, *, account_id: str) -> Optional[str]:
        """
        Return a usable access token, or ``None`` when the account has not
        authorized Spotify.

        Raises ``TokenRefreshError`` when an expired token could not be
        refreshed and ``CredentialStoreError`` when the store fails.
        """
        record = await self.get_valid_record(account_id=account_id)
        if record is None:
            return None
        return record.access_token

    async def get_valid_record(self, *, account_id: str) -> Optional[AuthorizationRecord]:
        """Like ``get_access_token`` but returns the whole record."""
        record = self._store.get(account_id)
        if record is None:
            logger.debug("No Spotify authorization stored for account %s", account_id)
            return None
        if record.is_usable(self._clock()):
            return record
        return await self._join_refresh(account_id)

    async def store_grant(
        self, *, account_id: str, grant: TokenGrant, issued_at: datetime
    ) -> AuthorizationRecord:
        """Persist the record for a freshly issued grant, replacing any prior one."""
        await self._wait_for_refresh(account_id)
        record = grant.to_record(account_id=account_id, issued_at=issued_at)
        self._store.put(record)
        return record

    async def discard(self, *, account_id: str) -> None:
        """Delete the account's record once any in-flight refresh has settled."""
        await self._wait_for_refresh(account_id)
        self._store.delete(account_id)

    async def _wait_for_refresh(self, account_id: str) -> None:
        # The episode's outcome belongs to its own callers; writers only need
        # it to finish so their write lands after the refresh's write.
        episode = self._refreshes.get(account_id)
        if episode is not None:
            await asyncio.wait({episode})

    async def _join_refresh(self, account_id: str) -> Optional[AuthorizationRecord]:
        episode = self._refreshes.get(account_id)
        if episode is None or episode.done():
            episode = asyncio.create_task(
                self._run_refresh(account_id), name=f"spotify-refresh:{account_id}"
            )
            self._refreshes[account_id] = episode
        else:
            logger.debug("Joining in-flight refresh for account %s", account_id)
        # A caller giving up must not cancel the refresh for everyone else.
        return await asyncio.shield(episode)

    async def _request_refresh(self, refresh_token: str) -> TokenGrant:
        try:
            return await asyncio.wait_for(
                self._oauth.refresh_access_token(refresh_token),
                timeout=self._refresh_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise TokenRefreshError(
                f"Token refresh did not complete within {self._refresh_timeout}s.",
                transient=True,
            ) from exc

    async def _run_refresh(self, account_id: str) -> Optional[AuthorizationRecord]:
        try:
            # Re-read: a refresh that finished after our caller's read has
            # already stored a usable token.
            record = self._store.get(account_id)
            if record is None:
                return None
            refreshed_at = self._clock()
            if record.is_usable(refreshed_at):
                return record

            logger.info("Refreshing expired Spotify token for account %s", account_id)
            try:
                grant = await self._request_refresh(record.refresh_token)
            except TokenRefreshError as exc:
                logger.warning(
                    "Spotify token refresh failed for account %s (transient=%s): %s",
                    account_id,
                    exc.transient,
                    exc,
                )
                raise

            refreshed = grant.to_record(
                account_id=account_id,
                issued_at=refreshed_at,
                previous_refresh_token=record.refresh_token,
            )
            try:
                self._store.put(refreshed)
            except CredentialStoreError:
                logger.error(
                    "Refreshed Spotify token for account %s could not be stored; "
                    "the stored refresh token may no longer be accepted",
                    account_id,
                )
                raise
            logger.info(
                "Stored refreshed Spotify token for account %s (expires_at=%s)",
                account_id,
                refreshed.expires_at.isoformat(),
            )
            return refreshed
        finally:
            if self._refreshes.get(account_id) is asyncio.current_task():
                del self._refreshes[account_id]


__all__ = ["Clock", "CredentialStore", "TokenLifecycleManager", "utcnow"]
