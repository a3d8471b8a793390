"""Expose dependency helpers for FastAPI routers."""

from .clients import (
    get_app_settings,
    get_authorization_flow,
    get_credential_store,
    get_oauth_state_encoder,
    get_spotify_oauth_client,
    get_token_cipher_service,
    get_token_lifecycle_manager,
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
