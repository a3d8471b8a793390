"""
Factory functions to provide shared clients and services as FastAPI dependencies.

Everything here is a process singleton. The lifecycle manager in particular
must be shared by all requests, since it tracks the refreshes in flight.
"""

from functools import lru_cache

from tokenkeeper.clients import OAuthStateEncoder, SpotifyOAuthClient, SQLiteCredentialStore
from tokenkeeper.core.config import AppSettings, get_settings
from tokenkeeper.services import (
    AuthorizationFlowController,
    TokenCipherService,
    TokenLifecycleManager,
)


@lru_cache()
def _settings():
    """Internal helper to cache settings for client factories."""
    return get_settings()


def get_app_settings() -> AppSettings:
    """FastAPI dependency returning application settings."""
    return _settings()


@lru_cache()
def get_oauth_state_encoder() -> OAuthStateEncoder:
    """Provide an OAuth state encoder keyed by the state secret or client secret."""
    settings = _settings()
    secret = settings.security.oauth_state_secret or settings.spotify.client_secret
    return OAuthStateEncoder(secret_key=secret)


@lru_cache()
def get_spotify_oauth_client() -> SpotifyOAuthClient:
    """Create a singleton Spotify OAuth client."""
    return SpotifyOAuthClient(_settings().spotify)


@lru_cache()
def get_token_cipher_service() -> TokenCipherService:
    """Provide symmetric encryption helper for token storage."""
    settings = _settings()
    secret = settings.security.token_encryption_secret or settings.spotify.client_secret
    return TokenCipherService(
        secret=secret,
        previous_secrets=settings.security.previous_encryption_secrets,
    )


@lru_cache()
def get_credential_store() -> SQLiteCredentialStore:
    """Provide the shared SQLite credential store."""
    return SQLiteCredentialStore(
        _settings().credential_db_path, cipher=get_token_cipher_service()
    )


@lru_cache()
def get_token_lifecycle_manager() -> TokenLifecycleManager:
    """Provide the process-wide token lifecycle manager."""
    settings = _settings()
    return TokenLifecycleManager(
        store=get_credential_store(),
        oauth_client=get_spotify_oauth_client(),
        refresh_timeout=settings.spotify.request_timeout,
    )


@lru_cache()
def get_authorization_flow() -> AuthorizationFlowController:
    """Provide the authorization flow controller."""
    return AuthorizationFlowController(
        oauth_client=get_spotify_oauth_client(),
        state_encoder=get_oauth_state_encoder(),
        lifecycle=get_token_lifecycle_manager(),
        store=get_credential_store(),
    )


__all__ = [
    "get_app_settings",
    "get_authorization_flow",
    "get_credential_store",
    "get_oauth_state_encoder",
    "get_spotify_oauth_client",
    "get_token_cipher_service",
    "get_token_lifecycle_manager",
]
