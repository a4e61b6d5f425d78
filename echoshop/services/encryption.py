"""
Encryption of 2FA secrets at rest.

Implements:
- AES-256-GCM authenticated encryption with a random IV per call
- Envelope format "iv:tag:ciphertext", each part hex encoded
- Key derivation with PBKDF2-HMAC-SHA256 (100,000 iterations), done once
  per cipher instance
- Backup code generation (8-digit numeric codes)
"""

import logging
import secrets
from functools import lru_cache
from typing import List

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from echoshop.config import get_settings

logger = logging.getLogger(__name__)

IV_LENGTH = 16
TAG_LENGTH = 16
KEY_LENGTH = 32
KDF_ITERATIONS = 100_000

BACKUP_CODE_MIN = 10_000_000
BACKUP_CODE_MAX = 99_999_999

INSECURE_DEFAULT_KEY = "default-key-change-in-production"


class EncryptionError(Exception):
    """Raised when encryption or decryption fails. Never carries plaintext."""
    pass


def derive_key(secret: str, salt: str) -> bytes:
    """Derive the 32-byte AES key from the operator secret"""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt.encode("utf-8"),
        iterations=KDF_ITERATIONS,
    )
    return kdf.derive(secret.encode("utf-8"))


class SecretCipher:
    """AES-256-GCM cipher over a key derived once at construction"""

    def __init__(self, secret: str, salt: str):
        if not secret:
            raise EncryptionError("Encryption secret must not be empty")
        self._aesgcm = AESGCM(derive_key(secret, salt))

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a string.

        Args:
            plaintext: Text to protect (UTF-8)

        Returns:
            Envelope "iv:tag:ciphertext" in hex
        """
        iv = secrets.token_bytes(IV_LENGTH)
        # AESGCM appends the tag to the ciphertext
        sealed = self._aesgcm.encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return f"{iv.hex()}:{tag.hex()}:{ciphertext.hex()}"

    def decrypt(self, envelope: str) -> str:
        """
        Decrypt an envelope produced by encrypt().

        Raises:
            EncryptionError: On malformed envelopes or failed authentication
        """
        if not isinstance(envelope, str):
            raise EncryptionError("Invalid encrypted data format")

        parts = envelope.split(":")
        if len(parts) != 3:
            raise EncryptionError("Invalid encrypted data format")

        try:
            iv = bytes.fromhex(parts[0])
            tag = bytes.fromhex(parts[1])
            ciphertext = bytes.fromhex(parts[2])
        except ValueError as e:
            raise EncryptionError("Invalid encrypted data format") from e

        if len(iv) != IV_LENGTH or len(tag) != TAG_LENGTH:
            raise EncryptionError("Invalid encrypted data format")

        try:
            plaintext = self._aesgcm.decrypt(iv, ciphertext + tag, None)
        except InvalidTag as e:
            raise EncryptionError("Decryption failed") from e

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise EncryptionError("Decryption failed") from e


@lru_cache()
def get_secret_cipher() -> SecretCipher:
    """Process-wide cipher built from settings (key derivation runs once)"""
    settings = get_settings()
    key = settings.encryption_key or INSECURE_DEFAULT_KEY
    if key == INSECURE_DEFAULT_KEY:
        logger.warning("ENCRYPTION_KEY is not set. Using the insecure default key; set it in production!")
    return SecretCipher(key, settings.encryption_salt)


def generate_backup_codes(count: int = 8) -> List[str]:
    """
    Generate random 8-digit backup codes.

    Args:
        count: Number of codes

    Returns:
        List of numeric strings in 10000000..99999999
    """
    span = BACKUP_CODE_MAX - BACKUP_CODE_MIN + 1
    return [str(BACKUP_CODE_MIN + secrets.randbelow(span)) for _ in range(count)]
