"""Symmetric encryption utilities for protecting stored tokens."""

from __future__ import annotations

import base64
import hashlib
from typing import Iterable

from cryptography.fernet import Fernet, InvalidToken, MultiFernet


def _derive_fernet(secret: str) -> Fernet:
    digest = hashlib.sha256(secret.encode("utf-8")).digest()
    return Fernet(base64.urlsafe_b64encode(digest))


class TokenCipherService:
    """
    Encrypt and decrypt sensitive strings using keys derived from secrets.

    New ciphertext is always produced with ``secret``. Ciphertext written under
    any of ``previous_secrets`` still decrypts, which lets operators rotate the
    encryption secret without invalidating stored credentials.
    """

    def __init__(self, *, secret: str, previous_secrets: Iterable[str] = ()) -> None:
        if not secret:
            raise ValueError("Token encryption secret must be provided.")
        keys = [_derive_fernet(secret)]
        keys.extend(_derive_fernet(old) for old in previous_secrets if old)
        self._fernet = MultiFernet(keys)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a plaintext string and return the ciphertext."""
        token = self._fernet.encrypt(plaintext.encode("utf-8"))
        return token.decode("utf-8")

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a ciphertext string and return the plaintext."""
        try:
            plaintext = self._fernet.decrypt(ciphertext.encode("utf-8"))
        except InvalidToken as exc:
            raise ValueError(
                "Failed to decrypt token; invalid ciphertext provided."
            ) from exc
        return plaintext.decode("utf-8")


__all__ = ["TokenCipherService"]
