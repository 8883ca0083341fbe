"""
Secret key handling for snapshot encryption

The snapshot cipher is derived from SECRET_KEY. A key that changes between
runs makes every persisted snapshot unreadable, so a key that is not
configured is generated once and kept in a secret file.
"""

import logging
import os
import secrets
import string
from typing import Optional

logger = logging.getLogger(__name__)

INSECURE_DEFAULTS = (
    "your-secret-key-here-change-in-production",
    "change-me",
    "secret",
    "password",
    "123456",
    "admin",
)


def generate_secure_secret_key(length: int = 64) -> str:
    """
    Generate a cryptographically secure secret key.

    Args:
        length: Length of the secret key (default: 64 characters)

    Returns:
        A random string of letters, digits, ``-`` and ``_``
    """
    alphabet = string.ascii_letters + string.digits + "-_"
    return "".join(secrets.choice(alphabet) for _ in range(length))


def get_or_create_secret_key(secret_key: Optional[str], secret_file_path: str) -> str:
    """
    Resolve the key snapshots are sealed with.

    1. A configured ``secret_key`` (SECRET_KEY in the environment or .env)
    2. The contents of ``secret_file_path``
    3. A newly generated key, saved to ``secret_file_path`` for the next run

    Raises:
        ValueError: If the resolved key doesn't meet security requirements
    """
    if secret_key:
        logger.info("Using SECRET_KEY from settings")
        validate_secret_key(secret_key)
        return secret_key

    if os.path.exists(secret_file_path):
        try:
            with open(secret_file_path, "r") as f:
                secret_key = f.read().strip()
        except OSError as e:
            logger.warning(f"Could not read secret key file: {e}")
        if secret_key:
            logger.info("Using SECRET_KEY from secret file")
            validate_secret_key(secret_key)
            return secret_key

    logger.warning("No secure SECRET_KEY found, generating new one")
    secret_key = generate_secure_secret_key()

    try:
        directory = os.path.dirname(secret_file_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(secret_file_path, "w") as f:
            f.write(secret_key)
        _set_secure_file_permissions(secret_file_path)
        logger.info("Generated new SECRET_KEY and saved to secure file")
    except OSError as e:
        logger.error(f"Could not save secret key to file: {e}")
        logger.warning("Using generated key in memory only (sessions will not survive a restart)")

    return secret_key


def validate_secret_key(secret_key: str) -> None:
    """
    Validate that a secret key meets security requirements.

    Raises:
        ValueError: If the secret key doesn't meet requirements
    """
    if not secret_key:
        raise ValueError("SECRET_KEY cannot be empty")

    if len(secret_key) < 32:
        raise ValueError("SECRET_KEY must be at least 32 characters long")

    if secret_key.lower() in INSECURE_DEFAULTS:
        raise ValueError("SECRET_KEY appears to be an insecure default value")

    # At least 8 different characters
    if len(set(secret_key.lower())) < 8:
        raise ValueError("SECRET_KEY has insufficient entropy (too repetitive)")

    logger.debug("SECRET_KEY validation passed")


def _set_secure_file_permissions(file_path: str) -> None:
    """Restrict the secret file to owner read/write (0o600)."""
    try:
        os.chmod(file_path, 0o600)
        logger.debug(f"Set secure file permissions 0o600 on {file_path}")
    except OSError as e:
        logger.warning(f"Could not set secure file permissions on {file_path}: {e}")
