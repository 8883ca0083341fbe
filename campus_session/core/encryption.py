"""
Encryption utilities for persisted session snapshots.

Snapshots hold refresh tokens, so they are sealed with an authenticated cipher
(Fernet: AES-128-CBC + HMAC-SHA256) whose key is derived from configuration,
never stored next to the data it protects.
"""

import base64
import hashlib
import json
import logging
from typing import Any, Dict, Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from campus_session.core.config import Settings
from campus_session.core.exceptions import SessionEncryptionError
from campus_session.core.security import get_or_create_secret_key

logger = logging.getLogger(__name__)

MIN_KDF_ITERATIONS = 100_000
MAX_KDF_ITERATIONS = 1_000_000
DEFAULT_KDF_ITERATIONS = 300_000


def clamp_kdf_iterations(value: Any) -> int:
    """Parse and bound the PBKDF2 iteration count."""
    try:
        iterations = int(value)
    except (ValueError, TypeError):
        logger.warning(f"Invalid KDF iterations value, using default: {DEFAULT_KDF_ITERATIONS}")
        return DEFAULT_KDF_ITERATIONS

    if iterations > MAX_KDF_ITERATIONS:
        logger.warning(f"KDF iterations {iterations} exceeds maximum, using {MAX_KDF_ITERATIONS}")
        return MAX_KDF_ITERATIONS
    if iterations < MIN_KDF_ITERATIONS:
        logger.warning(
            f"KDF iterations {iterations} below recommended minimum, using {DEFAULT_KDF_ITERATIONS}"
        )
        return DEFAULT_KDF_ITERATIONS
    return iterations


def derive_key(secret_key: str, salt: Optional[bytes] = None, iterations: int = DEFAULT_KDF_ITERATIONS) -> bytes:
    """Derive a urlsafe-base64 Fernet key from ``secret_key``."""
    if not secret_key:
        raise SessionEncryptionError("A secret key is required to derive the session cipher")

    if salt is None:
        # Deterministic salt so that restarts can read earlier snapshots
        salt = hashlib.sha256(secret_key.encode("utf-8")).digest()[:16]

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=clamp_kdf_iterations(iterations),
    )
    return base64.urlsafe_b64encode(kdf.derive(secret_key.encode("utf-8")))


class SessionEncryption:
    """Seals and opens session snapshot payloads."""

    def __init__(self, key: bytes):
        """
        Initialize with a ready Fernet key.

        Args:
            key: 32-byte urlsafe-base64 key (see ``derive_key``)
        """
        try:
            self.cipher = Fernet(key)
        except (ValueError, TypeError) as e:
            raise SessionEncryptionError(f"Invalid session encryption key: {e}") from e

    @classmethod
    def from_secret(
        cls,
        secret_key: str,
        salt: Optional[str] = None,
        iterations: int = DEFAULT_KDF_ITERATIONS,
    ) -> "SessionEncryption":
        """
        Build a cipher from a passphrase.

        Args:
            secret_key: Application secret
            salt: Optional urlsafe-base64 salt
            iterations: PBKDF2 iterations
        """
        salt_bytes = None
        if salt:
            try:
                salt_bytes = base64.urlsafe_b64decode(salt.encode("ascii"))
            except (ValueError, TypeError) as e:
                raise SessionEncryptionError(f"Invalid encryption salt: {e}") from e
        return cls(derive_key(secret_key, salt_bytes, iterations))

    @classmethod
    def from_settings(cls, settings: Settings) -> "SessionEncryption":
        secret_key = get_or_create_secret_key(settings.secret_key, settings.secret_key_file)
        return cls.from_secret(
            secret_key,
            salt=settings.encryption_salt,
            iterations=settings.encryption_kdf_iterations,
        )

    def encrypt(self, payload: Dict[str, Any]) -> str:
        """
        Encrypt a JSON-serializable payload.

        Returns:
            Fernet token as text

        Raises:
            SessionEncryptionError: If the payload cannot be serialized or sealed
        """
        try:
            json_data = json.dumps(payload)
            return self.cipher.encrypt(json_data.encode("utf-8")).decode("utf-8")
        except (TypeError, ValueError) as e:
            logger.error(
                "Failed to encrypt session payload",
                extra={"error_type": type(e).__name__},
            )
            # Never fall back to plaintext storage
            raise SessionEncryptionError(f"Session payload encryption failed: {e}") from e

    def decrypt(self, token: str) -> Optional[Dict[str, Any]]:
        """
        Open a sealed payload.

        Returns:
            The payload, or None if the token is corrupt, tampered with,
            sealed under another key, or not a JSON object
        """
        try:
            data = self.cipher.decrypt(token.encode("utf-8"))
            payload = json.loads(data.decode("utf-8"))
        except (InvalidToken, ValueError, TypeError, AttributeError) as e:
            logger.warning(
                "Failed to decrypt session payload",
                extra={"error_type": type(e).__name__},
            )
            return None

        if not isinstance(payload, dict):
            logger.warning("Decrypted session payload is not an object")
            return None
        return payload
