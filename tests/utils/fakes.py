"""
Test doubles for the session manager's collaborators

The fakes keep just enough state to behave like a real identity provider,
profile store, or flaky storage backend, and count calls so tests can
assert on interaction.
"""

import asyncio
from collections import Counter
from typing import Dict, Optional, Tuple

from campus_session.core.exceptions import (
    AuthError,
    IdentityProviderError,
    ProfileNotFoundError,
    StorageError,
)
from campus_session.core.timers import Scheduler
from campus_session.core.utils.kv_store import MemoryKeyValueStore
from campus_session.session.models import Role, User
from campus_session.session.providers import (
    IdentityProvider,
    ProfileStore,
    ProviderSession,
    ProviderUser,
)

TEACHER_ID = "3f2b8c1e-5a47-4d2e-9b61-0c8e7f4a1d20"
ADMIN_ID = "9a1c4e7b-2d3f-4b8a-8c5e-6f0d1a2b3c4d"
STUDENT_ID = "c7d8e9f0-1a2b-4c3d-8e4f-5a6b7c8d9e0f"

TEACHER_EMAIL = "teacher@school.edu"
ADMIN_EMAIL = "admin@school.edu"
STUDENT_EMAIL = "student@school.edu"

PASSWORD = "correct-horse-battery"


def provider_user(user_id: str, email: str, full_name: Optional[str] = None) -> ProviderUser:
    return ProviderUser(
        id=user_id,
        email=email,
        user_metadata={"full_name": full_name} if full_name else {},
        created_at="2024-01-01T00:00:00Z",
        updated_at="2024-01-01T00:00:00Z",
    )


def profile(user_id: str, email: str, role: Role, full_name: str) -> User:
    return User(
        id=user_id,
        email=email,
        role=role,
        full_name=full_name,
        created_at="2024-01-01T00:00:00Z",
        updated_at="2024-01-01T00:00:00Z",
    )


DEFAULT_ACCOUNTS = {
    TEACHER_EMAIL: (PASSWORD, provider_user(TEACHER_ID, TEACHER_EMAIL, "Amina Teacher")),
    ADMIN_EMAIL: (PASSWORD, provider_user(ADMIN_ID, ADMIN_EMAIL, "Omar Admin")),
    STUDENT_EMAIL: (PASSWORD, provider_user(STUDENT_ID, STUDENT_EMAIL)),
}

DEFAULT_PROFILES = {
    TEACHER_ID: profile(TEACHER_ID, TEACHER_EMAIL, Role.STAFF, "Amina Teacher"),
    ADMIN_ID: profile(ADMIN_ID, ADMIN_EMAIL, Role.ADMIN, "Omar Admin"),
}


class FakeIdentityProvider(IdentityProvider):
    """In-memory identity provider issuing tokens that live ``lifetime`` seconds.

    With ``lifetime=None`` the issued sessions carry no expiry.
    """

    def __init__(
        self,
        clock: Scheduler,
        accounts: Optional[Dict[str, Tuple[str, ProviderUser]]] = None,
        lifetime: Optional[float] = 3600.0,
    ):
        self.clock = clock
        self.accounts = dict(accounts or DEFAULT_ACCOUNTS)
        self.lifetime = lifetime
        self.live_session: Optional[ProviderSession] = None
        self.current_user: Optional[ProviderUser] = None
        self.calls: Counter = Counter()
        self._issued = 0

        # Failure knobs
        self.sign_in_error: Optional[Exception] = None
        self.sign_out_error: Optional[Exception] = None
        self.get_session_error: Optional[Exception] = None
        self.get_user_error: Optional[Exception] = None
        self.refresh_error: Optional[Exception] = None
        self.refresh_extends = True
        self.refresh_user: Optional[ProviderUser] = None
        # When set, refresh_session blocks until the event is set
        self.refresh_gate: Optional[asyncio.Event] = None

    def issue(self, user: ProviderUser, expires_at: Optional[float] = None) -> ProviderSession:
        self._issued += 1
        session = ProviderSession(
            access_token=f"access-token-{self._issued}",
            refresh_token=f"refresh-token-{self._issued}",
            expires_at=expires_at if expires_at is not None else self._expiry(),
            user=user,
        )
        self.live_session = session
        self.current_user = user
        return session

    def _expiry(self) -> Optional[float]:
        if self.lifetime is None:
            return None
        return self.clock.now() + self.lifetime

    async def sign_in(self, email: str, password: str) -> ProviderSession:
        self.calls["sign_in"] += 1
        if self.sign_in_error is not None:
            raise self.sign_in_error
        account = self.accounts.get(email)
        if account is None or account[0] != password:
            raise AuthError("Invalid login credentials", code="invalid_credentials")
        return self.issue(account[1])

    async def sign_out(self) -> None:
        self.calls["sign_out"] += 1
        if self.sign_out_error is not None:
            raise self.sign_out_error
        self.live_session = None
        self.current_user = None

    async def get_session(self) -> Optional[ProviderSession]:
        self.calls["get_session"] += 1
        if self.get_session_error is not None:
            raise self.get_session_error
        return self.live_session

    async def refresh_session(self) -> ProviderSession:
        self.calls["refresh_session"] += 1
        if self.refresh_gate is not None:
            await self.refresh_gate.wait()
        if self.refresh_error is not None:
            raise self.refresh_error
        if self.live_session is None:
            raise AuthError("Refresh token not found", code="refresh_token_not_found")

        user = self.refresh_user or self.live_session.user
        if self.refresh_extends:
            return self.issue(user)
        return self.issue(user, expires_at=self.live_session.expires_at)

    async def get_user(self) -> Optional[ProviderUser]:
        self.calls["get_user"] += 1
        if self.get_user_error is not None:
            raise self.get_user_error
        return self.current_user


class FakeProfileStore(ProfileStore):
    """Profile lookup over a dict; ``unavailable`` simulates an outage."""

    def __init__(self, profiles: Optional[Dict[str, User]] = None):
        self.profiles = dict(DEFAULT_PROFILES if profiles is None else profiles)
        self.unavailable = False
        self.calls: Counter = Counter()

    async def get_profile(self, user_id: str) -> User:
        self.calls["get_profile"] += 1
        if self.unavailable:
            raise IdentityProviderError("profile service unavailable")
        try:
            return self.profiles[user_id]
        except KeyError:
            raise ProfileNotFoundError(user_id)


class FlakyStore(MemoryKeyValueStore):
    """Memory store whose writes (optionally for one key prefix) can be made to fail."""

    def __init__(self):
        super().__init__()
        self.fail_writes = False
        self.fail_prefix: Optional[str] = None
        self.fail_removes = False
        self.write_attempts = 0

    def set(self, key: str, value: str) -> None:
        self.write_attempts += 1
        if self.fail_writes and (self.fail_prefix is None or key.startswith(self.fail_prefix)):
            raise StorageError(f"Write failed for key {key}")
        super().set(key, value)

    def remove(self, key: str) -> None:
        if self.fail_removes:
            raise StorageError(f"Delete failed for key {key}")
        super().remove(key)
