"""SQLite-backed persistence for per-account Spotify authorization records."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from tokenkeeper.models.oauth import AuthorizationRecord

if TYPE_CHECKING:
    from tokenkeeper.services.token_cipher import TokenCipherService


class CredentialStoreError(Exception):
    """Raised when the credential database cannot be read or written."""


class SQLiteCredentialStore:
    """
    One row per account, keyed by ``account_id``.

    Tokens are encrypted before they touch disk. ``put`` replaces every token
    field in a single statement so a reader never sees a new access token
    paired with a stale refresh token.
    """

    def __init__(self, db_path: str, *, cipher: TokenCipherService) -> None:
        self._db_path = Path(db_path)
        self._cipher = cipher
        try:
            if self._db_path.parent and not self._db_path.parent.exists():
                self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._ensure_schema()
        except (OSError, sqlite3.Error) as exc:
            raise CredentialStoreError(
                f"Unable to initialise credential store at {self._db_path}."
            ) from exc

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS spotify_authorizations (
                    account_id TEXT PRIMARY KEY,
                    access_token_encrypted TEXT NOT NULL,
                    refresh_token_encrypted TEXT NOT NULL,
                    expires_at TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )

    def get(self, account_id: str) -> Optional[AuthorizationRecord]:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    SELECT access_token_encrypted, refresh_token_encrypted, expires_at
                    FROM spotify_authorizations WHERE account_id = ?
                    """,
                    (account_id,),
                ).fetchone()
        except sqlite3.Error as exc:
            raise CredentialStoreError(
                f"Failed to load authorization for account {account_id}."
            ) from exc
        if not row:
            return None

        try:
            return AuthorizationRecord(
                account_id=account_id,
                access_token=self._cipher.decrypt(row["access_token_encrypted"]),
                refresh_token=self._cipher.decrypt(row["refresh_token_encrypted"]),
                expires_at=datetime.fromisoformat(row["expires_at"]),
            )
        except ValueError as exc:
            raise CredentialStoreError(
                f"Stored authorization for account {account_id} is unreadable."
            ) from exc

    def put(self, record: AuthorizationRecord) -> None:
        now = datetime.now(timezone.utc).isoformat()
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO spotify_authorizations (
                        account_id,
                        access_token_encrypted,
                        refresh_token_encrypted,
                        expires_at,
                        created_at,
                        updated_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(account_id) DO UPDATE SET
                        access_token_encrypted = excluded.access_token_encrypted,
                        refresh_token_encrypted = excluded.refresh_token_encrypted,
                        expires_at = excluded.expires_at,
                        updated_at = excluded.updated_at
                    """,
                    (
                        record.account_id,
                        self._cipher.encrypt(record.access_token),
                        self._cipher.encrypt(record.refresh_token),
                        record.expires_at.isoformat(),
                        now,
                        now,
                    ),
                )
        except sqlite3.Error as exc:
            raise CredentialStoreError(
                f"Failed to persist authorization for account {record.account_id}."
            ) from exc

    def delete(self, account_id: str) -> None:
        try:
            with self._connect() as conn:
                conn.execute(
                    "DELETE FROM spotify_authorizations WHERE account_id = ?",
                    (account_id,),
                )
        except sqlite3.Error as exc:
            raise CredentialStoreError(
                f"Failed to delete authorization for account {account_id}."
            ) from exc

    def ping(self) -> int:
        """Return the number of stored authorizations; used by health checks."""
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT COUNT(*) AS total FROM spotify_authorizations"
                ).fetchone()
        except sqlite3.Error as exc:
            raise CredentialStoreError("Credential store is unreachable.") from exc
        return int(row["total"])


__all__ = ["CredentialStoreError", "SQLiteCredentialStore"]
