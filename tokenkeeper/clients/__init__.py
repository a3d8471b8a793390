"""Expose constructed client wrappers."""

from .spotify_auth import OAuthStateEncoder, SpotifyOAuthClient
from .sqlite_store import CredentialStoreError, SQLiteCredentialStore

__all__ = [
    "CredentialStoreError",
    "OAuthStateEncoder",
    "SQLiteCredentialStore",
    "SpotifyOAuthClient",
]
