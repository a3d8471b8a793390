"""Public schema exports."""

from .auth import (
    AccessTokenResponse,
    AuthorizationStatusResponse,
    CallbackResult,
    ConsentUrlResponse,
    OAuthCallbackPayload,
)

__all__ = [
    "AccessTokenResponse",
    "AuthorizationStatusResponse",
    "CallbackResult",
    "ConsentUrlResponse",
    "OAuthCallbackPayload",
]
