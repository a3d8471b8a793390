"""Service layer exports."""

from .authorization_flow import AuthorizationFlowController
from .token_cipher import TokenCipherService
from .token_lifecycle import TokenLifecycleManager

__all__ = [
    "AuthorizationFlowController",
    "TokenCipherService",
    "TokenLifecycleManager",
]
