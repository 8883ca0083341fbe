"""
Security tests for at-rest encryption of session snapshots
"""

import json

import pytest
from cryptography.fernet import Fernet

from campus_session.core.config import Settings
from campus_session.core.encryption import (
    DEFAULT_KDF_ITERATIONS,
    MAX_KDF_ITERATIONS,
    MIN_KDF_ITERATIONS,
    SessionEncryption,
    clamp_kdf_iterations,
    derive_key,
)
from campus_session.core.exceptions import SessionEncryptionError

# Mark all tests in this module as security tests
pytestmark = pytest.mark.security


@pytest.fixture
def payload():
    return {
        "user": {"id": "u-1", "email": "teacher@school.edu", "role": "staff"},
        "access_token": "access-token-1",
        "refresh_token": "refresh-token-1",
        "expires_at": 1_700_003_600.0,
        "last_activity": 1_700_000_000.0,
        "session_id": "session_1700000000000_abc123xyz",
        "version": 1,
    }


class TestSessionEncryption:
    """Sealing and opening snapshot payloads"""

    def test_round_trip(self, cipher, payload):
        token = cipher.encrypt(payload)
        assert cipher.decrypt(token) == payload

    def test_token_does_not_expose_refresh_token(self, cipher, payload):
        token = cipher.encrypt(payload)

        assert "refresh-token-1" not in token
        assert "teacher@school.edu" not in token

    def test_tampered_token_is_rejected(self, cipher, payload):
        token = cipher.encrypt(payload)
        tampered = token[:-6] + ("A" if token[-6] != "A" else "B") + token[-5:]

        assert cipher.decrypt(tampered) is None

    def test_other_key_cannot_open(self, cipher, payload):
        other = SessionEncryption(Fernet.generate_key())
        assert other.decrypt(cipher.encrypt(payload)) is None

    def test_garbage_is_rejected(self, cipher):
        assert cipher.decrypt("not-a-token") is None
        assert cipher.decrypt("") is None

    def test_non_object_payload_is_rejected(self, cipher):
        token = cipher.cipher.encrypt(json.dumps([1, 2, 3]).encode("utf-8")).decode("utf-8")
        assert cipher.decrypt(token) is None

    def test_unserializable_payload_never_stored_in_plaintext(self, cipher):
        with pytest.raises(SessionEncryptionError):
            cipher.encrypt({"bad": object()})

    def test_invalid_key_rejected(self):
        with pytest.raises(SessionEncryptionError):
            SessionEncryption(b"too-short")


class TestKeyDerivation:
    """PBKDF2 key derivation from the application secret"""

    def test_same_secret_opens_earlier_snapshots(self, payload):
        first = SessionEncryption.from_secret("s3cret-key-material", iterations=MIN_KDF_ITERATIONS)
        second = SessionEncryption.from_secret("s3cret-key-material", iterations=MIN_KDF_ITERATIONS)

        assert second.decrypt(first.encrypt(payload)) == payload

    def test_different_secret_cannot_open(self, payload):
        first = SessionEncryption.from_secret("secret-one", iterations=MIN_KDF_ITERATIONS)
        second = SessionEncryption.from_secret("secret-two", iterations=MIN_KDF_ITERATIONS)

        assert second.decrypt(first.encrypt(payload)) is None

    def test_explicit_salt_changes_key(self):
        a = derive_key("secret", salt=b"a" * 16, iterations=MIN_KDF_ITERATIONS)
        b = derive_key("secret", salt=b"b" * 16, iterations=MIN_KDF_ITERATIONS)
        assert a != b

    def test_empty_secret_rejected(self):
        with pytest.raises(SessionEncryptionError):
            derive_key("")

    def test_invalid_salt_rejected(self):
        with pytest.raises(SessionEncryptionError):
            SessionEncryption.from_secret("secret", salt="abc")

    def test_from_settings(self, payload):
        settings = Settings(
            secret_key="settings-secret-key-with-enough-entropy",
            encryption_kdf_iterations=MIN_KDF_ITERATIONS,
        )
        cipher = SessionEncryption.from_settings(settings)
        assert cipher.decrypt(cipher.encrypt(payload)) == payload

    @pytest.mark.parametrize(
        "value,expected",
        [
            (MIN_KDF_ITERATIONS, MIN_KDF_ITERATIONS),
            (500_000, 500_000),
            (MAX_KDF_ITERATIONS + 1, MAX_KDF_ITERATIONS),
            (10, DEFAULT_KDF_ITERATIONS),
            ("not-a-number", DEFAULT_KDF_ITERATIONS),
            (None, DEFAULT_KDF_ITERATIONS),
        ],
    )
    def test_iteration_clamping(self, value, expected):
        assert clamp_kdf_iterations(value) == expected
