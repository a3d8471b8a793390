try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from tokenkeeper.clients.sqlite_store import CredentialStoreError, SQLiteCredentialStore
from tokenkeeper.models.oauth import AuthorizationRecord
from tokenkeeper.services.token_cipher import TokenCipherService

EXPIRES_AT = datetime(2026, 3, 1, 13, 0, 30, 123456, tzinfo=timezone.utc)


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "nested" / "credentials.db"


@pytest.fixture()
def store(db_path: Path) -> SQLiteCredentialStore:
    return SQLiteCredentialStore(str(db_path), cipher=TokenCipherService(secret="s3cret"))


def _record(**overrides) -> AuthorizationRecord:
    values = {
        "account_id": "acct-1",
        "access_token": "A1",
        "refresh_token": "R1",
        "expires_at": EXPIRES_AT,
    }
    values.update(overrides)
    return AuthorizationRecord(**values)


def test_missing_record_is_none(store: SQLiteCredentialStore) -> None:
    assert store.get("acct-1") is None


def test_record_round_trips_exactly(store: SQLiteCredentialStore) -> None:
    record = _record()
    store.put(record)

    assert store.get("acct-1") == record


def test_tokens_are_encrypted_on_disk(store: SQLiteCredentialStore, db_path: Path) -> None:
    store.put(_record(access_token="plain-access", refresh_token="plain-refresh"))

    with sqlite3.connect(db_path) as conn:
        row = conn.execute(
            "SELECT access_token_encrypted, refresh_token_encrypted FROM spotify_authorizations"
        ).fetchone()

    assert "plain-access" not in row[0]
    assert "plain-refresh" not in row[1]


def test_put_replaces_every_token_field(store: SQLiteCredentialStore) -> None:
    store.put(_record())
    replacement = _record(
        access_token="A2", refresh_token="R2", expires_at=EXPIRES_AT + timedelta(hours=1)
    )
    store.put(replacement)

    assert store.get("acct-1") == replacement
    assert store.ping() == 1


def test_delete_is_idempotent(store: SQLiteCredentialStore) -> None:
    store.put(_record())

    store.delete("acct-1")
    store.delete("acct-1")

    assert store.get("acct-1") is None


def test_unreadable_ciphertext_surfaces_as_store_error(db_path: Path) -> None:
    writer = SQLiteCredentialStore(str(db_path), cipher=TokenCipherService(secret="one"))
    writer.put(_record())
    reader = SQLiteCredentialStore(str(db_path), cipher=TokenCipherService(secret="two"))

    with pytest.raises(CredentialStoreError):
        reader.get("acct-1")


def test_database_failures_surface_as_store_error(
    store: SQLiteCredentialStore, db_path: Path
) -> None:
    with sqlite3.connect(db_path) as conn:
        conn.execute("DROP TABLE spotify_authorizations")

    with pytest.raises(CredentialStoreError):
        store.put(_record())
    with pytest.raises(CredentialStoreError):
        store.get("acct-1")
