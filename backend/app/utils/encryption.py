"""Encryption utilities for channel credentials (OAuth tokens, API keys)"""
import logging
from functools import lru_cache
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

from app.core.config import settings

logger = logging.getLogger(__name__)

KEY_HELP = (
    "Generate one with: python -c \"from cryptography.fernet import Fernet; "
    "print(Fernet.generate_key().decode())\""
)


class CredentialVault:
    """Protects secrets at rest.

    Wraps a MultiFernet so several keys can be configured at once: the first key
    encrypts, every key is tried on decrypt. This is what lets ENCRYPTION_KEY be
    rotated without re-encrypting every row up front.
    """

    def __init__(self, keys):
        if isinstance(keys, (str, bytes)):
            keys = [keys]
        fernets = []
        for key in keys:
            if isinstance(key, str):
                key = key.strip().encode()
            try:
                fernets.append(Fernet(key))
            except ValueError as e:
                raise ValueError(
                    f"Invalid ENCRYPTION_KEY format: {e}. "
                    "The key must be 32 bytes, base64-encoded (URL-safe), resulting in 44 characters. "
                    f"{KEY_HELP}"
                )
        if not fernets:
            raise ValueError(f"ENCRYPTION_KEY environment variable is required. {KEY_HELP}")
        self._cipher = MultiFernet(fernets)

    def protect(self, plaintext: Optional[str]) -> str:
        """Encrypt a string; empty input stays empty"""
        if not plaintext:
            return ""
        return self._cipher.encrypt(plaintext.encode()).decode()

    def unprotect(self, ciphertext: Optional[str]) -> Optional[str]:
        """Decrypt a string

        Raises:
            ValueError: If decryption fails (invalid token, wrong key, corrupted data)
        """
        if not ciphertext:
            return None
        try:
            return self._cipher.decrypt(ciphertext.encode()).decode()
        except InvalidToken as e:
            # Never include the ciphertext in the message
            logger.error(f"Decryption failed: {type(e).__name__}")
            raise ValueError(f"Decryption failed: {type(e).__name__}")

    def rotate(self, ciphertext: str) -> str:
        """Re-encrypt a value under the primary key"""
        return self._cipher.rotate(ciphertext.encode()).decode()


@lru_cache(maxsize=1)
def get_vault() -> CredentialVault:
    """Process-wide vault built from ENCRYPTION_KEY"""
    keys = [k for k in (settings.ENCRYPTION_KEY or "").split(",") if k.strip()]
    return CredentialVault(keys)
