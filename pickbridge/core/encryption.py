"""
Encryption of provider credentials at rest.

Uses Fernet symmetric encryption from the cryptography library. The key lives
in the TOKEN_ENCRYPTION_KEY environment variable, never in code or database.
"""

import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from pickbridge.core.settings import settings

logger = logging.getLogger(__name__)


class TokenDecryptionError(ValueError):
    """Raised when stored ciphertext cannot be decrypted with the current key."""


class TokenCipher:
    """
    Encrypts and decrypts serialized OAuth token payloads.

    Fernet handles the IV, the MAC and the base64 encoding, so the stored
    value is a single opaque string.
    """

    def __init__(self, encryption_key: Optional[str] = None):
        """
        Initialize the cipher.

        Args:
            encryption_key: Base64-encoded 32-byte key. If None, read from settings.

        Raises:
            ValueError: If the key is missing or malformed
        """
        key = encryption_key or settings.TOKEN_ENCRYPTION_KEY

        if not key:
            raise ValueError(
                "TOKEN_ENCRYPTION_KEY not configured. Generate one with "
                "cryptography.fernet.Fernet.generate_key()"
            )

        key_bytes = key.encode("utf-8")
        if len(key_bytes) != 44:
            raise ValueError(
                f"Invalid TOKEN_ENCRYPTION_KEY length: {len(key_bytes)} bytes. "
                "Expected 44 bytes (url-safe base64 of 32 bytes)."
            )

        try:
            self._fernet = Fernet(key_bytes)
        except ValueError as e:
            raise ValueError(f"Invalid TOKEN_ENCRYPTION_KEY format: {e}")

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a plaintext string and return the ciphertext as text."""
        if not plaintext:
            raise ValueError("Cannot encrypt empty payload")

        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("utf-8")

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt ciphertext produced by encrypt().

        Raises:
            TokenDecryptionError: If the value is empty, corrupted or was
                encrypted with another key
        """
        if not ciphertext:
            raise TokenDecryptionError("Cannot decrypt empty payload")

        try:
            return self._fernet.decrypt(ciphertext.encode("utf-8")).decode("utf-8")
        except InvalidToken:
            logger.error("Token decryption failed: invalid ciphertext or wrong key")
            raise TokenDecryptionError("Stored token could not be decrypted")
