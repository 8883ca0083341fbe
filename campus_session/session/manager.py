"""
Session lifecycle manager.

Owns the single current session of the process: signs users in and out,
keeps the access token fresh, expires idle or stale sessions, and persists
an encrypted snapshot so a restart can pick the session back up. Every
transition is recorded through the audit logger.

State machine:

    UNAUTHENTICATED --sign_in / restore--> AUTHENTICATED
    AUTHENTICATED --refresh timer--> REFRESHING --ok--> AUTHENTICATED
                                                --fail--> UNAUTHENTICATED
    AUTHENTICATED --inactivity / expiry / sign_out--> UNAUTHENTICATED

Every timer callback re-derives validity from the current snapshot before
acting, so the refresh and inactivity timers can fire in either order.
"""

import logging
import secrets
import string
from typing import Callable, Iterable, Optional, Union

from pydantic import ValidationError

from campus_session.audit.logger import AuditLogger, format_timestamp
from campus_session.core.activity import ActivityEvent, ActivitySource
from campus_session.core.config import SessionConfig
from campus_session.core.encryption import SessionEncryption
from campus_session.core.exceptions import AuthError
from campus_session.core.timers import Scheduler, TimerHandle
from campus_session.core.utils.kv_store import KeyValueStore
from campus_session.session.listeners import ListenerRegistry, SessionListener
from campus_session.session.models import (
    SNAPSHOT_VERSION,
    Role,
    SessionInfo,
    SessionSnapshot,
    SessionState,
    User,
    is_session_valid,
)
from campus_session.session.providers import (
    IdentityProvider,
    ProfileStore,
    ProviderSession,
    ProviderUser,
)

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_KEY = "campus_session"

_SESSION_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_session_id(now: float) -> str:
    """Tracking id of the form ``session_<epoch-ms>_<9 lowercase alnum>``."""
    suffix = "".join(secrets.choice(_SESSION_ID_ALPHABET) for _ in range(9))
    return f"session_{int(now * 1000)}_{suffix}"


class SessionManager:
    """
    Single source of truth for who is signed in.

    Args:
        identity_provider: Credential check and token issuance
        profile_store: Role and display-name lookup
        store: Key-value store for the persisted snapshot
        audit_logger: Destination of every session event
        scheduler: Clock and timers
        activity_source: Optional source of user-interaction events
        config: Session lifecycle knobs
        encryption: Cipher for the persisted snapshot (required when persisting)
        storage_key: Key of the persisted snapshot
        fallback_role: Role of profiles built from identity claims alone
    """

    def __init__(
        self,
        identity_provider: IdentityProvider,
        profile_store: ProfileStore,
        store: KeyValueStore,
        audit_logger: AuditLogger,
        scheduler: Scheduler,
        activity_source: Optional[ActivitySource] = None,
        config: Optional[SessionConfig] = None,
        encryption: Optional[SessionEncryption] = None,
        storage_key: str = DEFAULT_STORAGE_KEY,
        fallback_role: Union[Role, str] = Role.STUDENT,
    ):
        self.config = config or SessionConfig()
        if self.config.persist_session and encryption is None:
            raise ValueError("An encryption cipher is required when persist_session is enabled")

        self.identity_provider = identity_provider
        self.profile_store = profile_store
        self.store = store
        self.audit = audit_logger
        self.scheduler = scheduler
        self.encryption = encryption
        self.storage_key = storage_key
        self.fallback_role = Role(fallback_role)

        self._session: Optional[SessionSnapshot] = None
        self._state = SessionState.UNAUTHENTICATED
        self._refresh_timer: Optional[TimerHandle] = None
        self._inactivity_timer: Optional[TimerHandle] = None
        self._listeners = ListenerRegistry(audit_logger)

        self._unsubscribe_activity: Optional[Callable[[], None]] = None
        if activity_source is not None:
            self._unsubscribe_activity = activity_source.subscribe(self.record_activity)
            self.audit.debug("SESSION", "Activity tracking setup completed")

    @property
    def state(self) -> SessionState:
        return self._state

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """
        Pick up an existing session at startup.

        The identity provider's live session wins; otherwise the persisted
        snapshot is restored if it is still valid and the provider still
        recognizes its user. Never raises.
        """
        if self._session is not None:
            return

        self.audit.debug("SESSION", "Initializing session from identity provider")

        try:
            provider_session = await self.identity_provider.get_session()
        except Exception as e:
            self.audit.error("SESSION", "Error getting session from identity provider", e)
            self.audit.log_auth_event("No user logged in - session initialization failed")
            return

        if provider_session is not None:
            self.audit.debug(
                "SESSION",
                "Session found at identity provider",
                {"email": provider_session.user.email},
                user_id=provider_session.user.id,
            )
            try:
                snapshot = await self._build_snapshot(provider_session)
            except Exception as e:
                self.audit.error(
                    "SESSION", "Failed to create session from identity provider", e,
                    user_id=provider_session.user.id,
                )
                self._clear_session()
                return
            self._establish(snapshot)
            return

        self.audit.log_auth_event("No active session found at identity provider")
        if self.config.persist_session:
            await self._restore_from_storage()

    async def _restore_from_storage(self) -> None:
        try:
            token = self.store.get(self.storage_key)
        except Exception as e:
            self.audit.error("SESSION", "Failed to read persisted session", e)
            return

        if not token:
            self.audit.debug("SESSION", "No session found in storage")
            return

        self.audit.debug("SESSION", "Attempting to restore session from storage")

        payload = self.encryption.decrypt(token)
        if payload is None:
            self.audit.log_security_event("Stored session could not be decrypted")
            self._discard_persisted()
            return

        if payload.get("version") != SNAPSHOT_VERSION:
            self.audit.warn(
                "SESSION",
                "Stored session has an unsupported schema version",
                {"version": payload.get("version"), "expected": SNAPSHOT_VERSION},
            )
            self._discard_persisted()
            return

        try:
            snapshot = SessionSnapshot.model_validate(payload)
        except ValidationError as e:
            self.audit.warn("SESSION", "Stored session is malformed", {"errors": e.error_count()})
            self._discard_persisted()
            return

        now = self.scheduler.now()
        if not is_session_valid(snapshot, now, self.config.max_inactivity):
            self.audit.log_security_event(
                "Stored session has expired",
                {
                    "email": snapshot.user.email,
                    "expires_at": format_timestamp(snapshot.expires_at),
                    "last_activity": format_timestamp(snapshot.last_activity),
                },
                user_id=snapshot.user.id,
                session_id=snapshot.session_id,
            )
            self._discard_persisted()
            return

        error: Optional[Exception] = None
        current: Optional[ProviderUser] = None
        try:
            current = await self.identity_provider.get_user()
        except Exception as e:
            error = e

        if current is None or current.id != snapshot.user.id:
            self.audit.log_security_event(
                "Stored session is invalid or user mismatch",
                {
                    "error": str(error) if error else None,
                    "stored_user_id": snapshot.user.id,
                    "current_user_id": current.id if current else None,
                },
                user_id=snapshot.user.id,
            )
            self._discard_persisted()
            return

        if self._session is not None:
            # A sign-in completed while the provider was being asked
            return

        # Reopening the application counts as activity
        now = self.scheduler.now()
        restored = snapshot.model_copy(update={"last_activity": max(snapshot.last_activity, now)})
        if not is_session_valid(restored, now, self.config.max_inactivity):
            self._discard_persisted()
            return

        self._commit(restored)
        self.audit.log_session_event(
            "Session restored from storage",
            {"email": restored.user.email},
            user_id=restored.user.id,
            session_id=restored.session_id,
        )

    # ------------------------------------------------------------------
    # Sign in / sign out
    # ------------------------------------------------------------------

    async def sign_in(self, email: str, password: str) -> Optional[AuthError]:
        """
        Authenticate with the identity provider and open a session.

        Returns:
            None on success, otherwise the provider's AuthError
        """
        self.audit.log_auth_event("Attempting to sign in user", {"email": email})

        try:
            provider_session = await self.identity_provider.sign_in(email, password)
        except AuthError as e:
            self.audit.log_security_event(
                "Sign in failed", {"email": email, "error": e.message, "code": e.code}
            )
            return e
        except Exception as e:
            self.audit.error("AUTH", "Sign in error", e, {"email": email})
            return AuthError(str(e) or "Sign in failed", code="provider_error")

        self.audit.log_auth_event("Sign in successful", {"email": email}, provider_session.user.id)

        try:
            snapshot = await self._build_snapshot(provider_session)
        except Exception as e:
            self.audit.error(
                "SESSION", "Failed to create session from identity provider", e,
                user_id=provider_session.user.id,
            )
            return AuthError("Could not create session", code="session_error")

        self._establish(snapshot)
        return None

    async def sign_out(self) -> None:
        """
        Revoke the provider session (best effort) and clear local state.

        Calling it again leaves the same end state.
        """
        snapshot = self._session
        user_id = snapshot.user.id if snapshot else None
        email = snapshot.user.email if snapshot else None

        # No timer may fire while the provider is being told
        self._cancel_timers()

        self.audit.log_auth_event("Signing out user", {"email": email}, user_id)
        try:
            await self.identity_provider.sign_out()
            self.audit.debug("AUTH", "User signed out from identity provider", {"email": email}, user_id)
        except Exception as e:
            self.audit.error(
                "AUTH", "Error signing out from identity provider", e, {"email": email}, user_id
            )
        finally:
            self._clear_session()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_session(self) -> Optional[SessionSnapshot]:
        """Current snapshot if still valid; an invalid one is expired first."""
        snapshot = self._session
        if snapshot is None:
            return None

        now = self.scheduler.now()
        if not is_session_valid(snapshot, now, self.config.max_inactivity):
            self._expire(snapshot, now)
            return None
        return snapshot

    def get_current_user(self) -> Optional[User]:
        snapshot = self.get_session()
        return snapshot.user if snapshot else None

    def is_authenticated(self) -> bool:
        return self.get_current_user() is not None

    def has_role(self, role: Union[Role, str, Iterable[Union[Role, str]]]) -> bool:
        """True when the current user holds ``role`` (or one of several roles)."""
        user = self.get_current_user()
        if user is None:
            return False

        if isinstance(role, str):
            required = [role]
        else:
            required = list(role)

        allowed = user.role in required
        if not allowed:
            self.audit.log_security_event(
                "Role access denied",
                {
                    "email": user.email,
                    "user_role": user.role.value,
                    "required_role": [r.value if isinstance(r, Role) else str(r) for r in required],
                },
                user_id=user.id,
            )
        return allowed

    def get_session_info(self) -> SessionInfo:
        snapshot = self.get_session()
        if snapshot is None:
            return SessionInfo(is_authenticated=False)

        now = self.scheduler.now()
        return SessionInfo(
            is_authenticated=True,
            user=snapshot.user,
            expires_at=snapshot.expires_at,
            last_activity=snapshot.last_activity,
            time_until_expiry=snapshot.expires_at - now,
            time_until_inactivity=self.config.max_inactivity - (now - snapshot.last_activity),
        )

    def add_listener(self, listener: SessionListener) -> Callable[[], None]:
        """Call ``listener`` with the snapshot (or None) on every transition."""
        return self._listeners.add(listener)

    # ------------------------------------------------------------------
    # Activity
    # ------------------------------------------------------------------

    def record_activity(self, event: Optional[ActivityEvent] = None) -> None:
        """
        Note a user interaction.

        Moves ``last_activity`` forward and restarts the inactivity timer.
        ``expires_at`` is never touched; a session that is already invalid is
        expired rather than revived.
        """
        snapshot = self._session
        if snapshot is None:
            return

        now = self.scheduler.now()
        if not is_session_valid(snapshot, now, self.config.max_inactivity):
            self._expire(snapshot, now)
            return

        if now > snapshot.last_activity:
            self._session = snapshot.model_copy(update={"last_activity": now})

        self._arm_inactivity_timer()
        self._persist()

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _token_expiry(self, provider_session: ProviderSession) -> float:
        """Provider expiry, or ``session_timeout`` from now when none is reported."""
        if provider_session.expires_at is not None:
            return provider_session.expires_at
        return self.scheduler.now() + self.config.session_timeout

    async def _build_snapshot(self, provider_session: ProviderSession) -> SessionSnapshot:
        user = await self._load_profile(provider_session.user)
        now = self.scheduler.now()
        return SessionSnapshot(
            user=user,
            access_token=provider_session.access_token,
            refresh_token=provider_session.refresh_token,
            expires_at=self._token_expiry(provider_session),
            last_activity=now,
            session_id=generate_session_id(now),
        )

    async def _load_profile(self, identity: ProviderUser) -> User:
        try:
            user = await self.profile_store.get_profile(identity.id)
        except Exception as e:
            self.audit.warn(
                "DATABASE",
                "Could not load user profile from database",
                {"error": str(e)},
                user_id=identity.id,
            )
            user = User(
                id=identity.id,
                email=identity.email,
                role=self.fallback_role,
                full_name=identity.user_metadata.get("full_name") or identity.email,
                created_at=identity.created_at,
                updated_at=identity.updated_at,
            )
            self.audit.debug("SESSION", "Using fallback user profile", {"email": user.email}, user.id)
            return user

        self.audit.debug(
            "SESSION",
            "User profile loaded from database",
            {"email": user.email, "role": user.role.value},
            user.id,
        )
        return user

    def _establish(self, snapshot: SessionSnapshot) -> None:
        self._commit(snapshot)
        self.audit.log_session_event(
            "Session created",
            {
                "email": snapshot.user.email,
                "role": snapshot.user.role.value,
                "expires_at": format_timestamp(snapshot.expires_at),
            },
            user_id=snapshot.user.id,
            session_id=snapshot.session_id,
        )

    def _commit(self, snapshot: SessionSnapshot) -> None:
        """Make ``snapshot`` current, persist it, arm both timers and notify."""
        self._cancel_timers()
        self._session = snapshot
        self._state = SessionState.AUTHENTICATED
        self._persist()
        self._arm_refresh_timer()
        self._arm_inactivity_timer()
        self._listeners.notify(snapshot)

    def _is_current(self, snapshot: SessionSnapshot) -> bool:
        return self._session is not None and self._session.session_id == snapshot.session_id

    def _expire(self, snapshot: SessionSnapshot, now: float) -> None:
        token_expired = now >= snapshot.expires_at
        inactive = (now - snapshot.last_activity) >= self.config.max_inactivity

        self.audit.log_security_event(
            "Session expired due to inactivity" if inactive else "Session expired",
            {
                "email": snapshot.user.email,
                "token_expired": token_expired,
                "inactive": inactive,
                "expires_at": format_timestamp(snapshot.expires_at),
                "last_activity": format_timestamp(snapshot.last_activity),
                "inactive_seconds": round(now - snapshot.last_activity, 3),
                "max_inactivity": self.config.max_inactivity,
            },
            user_id=snapshot.user.id,
            session_id=snapshot.session_id,
        )
        self._clear_session()

    def _clear_session(self) -> None:
        snapshot = self._session

        # Timers go first so none of them can revive the session
        self._cancel_timers()
        self._session = None
        self._state = SessionState.UNAUTHENTICATED
        self._discard_persisted()

        if snapshot is not None:
            self.audit.debug(
                "SESSION",
                "Session cleared",
                {"email": snapshot.user.email},
                user_id=snapshot.user.id,
                session_id=snapshot.session_id,
            )
            self._listeners.notify(None)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _persist(self) -> None:
        snapshot = self._session
        if not self.config.persist_session or snapshot is None:
            return

        try:
            self.store.set(self.storage_key, self.encryption.encrypt(snapshot.model_dump(mode="json")))
        except Exception as e:
            self.audit.error(
                "SESSION", "Failed to save session to storage", e,
                user_id=snapshot.user.id, session_id=snapshot.session_id,
            )

    def _discard_persisted(self) -> None:
        if not self.config.persist_session:
            return
        try:
            self.store.remove(self.storage_key)
        except Exception as e:
            self.audit.error("SESSION", "Failed to remove persisted session", e)

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def _cancel_timers(self) -> None:
        if self._refresh_timer is not None:
            self._refresh_timer.cancel()
            self._refresh_timer = None
        if self._inactivity_timer is not None:
            self._inactivity_timer.cancel()
            self._inactivity_timer = None

    def _arm_refresh_timer(self) -> None:
        if self._refresh_timer is not None:
            self._refresh_timer.cancel()
            self._refresh_timer = None

        snapshot = self._session
        if snapshot is None:
            return

        delay = max(0.0, snapshot.expires_at - self.config.refresh_threshold - self.scheduler.now())
        self._refresh_timer = self.scheduler.call_later(delay, self._on_refresh_timer)
        self.audit.debug(
            "SESSION",
            "Refresh timer started",
            {"refresh_in_seconds": round(delay, 3), "expires_at": format_timestamp(snapshot.expires_at)},
            user_id=snapshot.user.id,
        )

    def _arm_inactivity_timer(self) -> None:
        if self._inactivity_timer is not None:
            self._inactivity_timer.cancel()
            self._inactivity_timer = None

        snapshot = self._session
        if snapshot is None:
            return

        delay = max(
            0.0, snapshot.last_activity + self.config.max_inactivity - self.scheduler.now()
        )
        self._inactivity_timer = self.scheduler.call_later(delay, self._on_inactivity_timer)

    def _on_inactivity_timer(self) -> None:
        self._inactivity_timer = None
        snapshot = self._session
        if snapshot is None:
            return

        now = self.scheduler.now()
        if is_session_valid(snapshot, now, self.config.max_inactivity):
            # Activity arrived after this timer was armed
            self._arm_inactivity_timer()
            return
        self._expire(snapshot, now)

    async def _on_refresh_timer(self) -> None:
        self._refresh_timer = None
        snapshot = self.get_session()
        if snapshot is None:
            return
        await self._refresh(snapshot)

    async def _refresh(self, snapshot: SessionSnapshot) -> None:
        user_id = snapshot.user.id
        self._state = SessionState.REFRESHING
        self.audit.debug("SESSION", "Refreshing session token", user_id=user_id, session_id=snapshot.session_id)

        try:
            provider_session = await self.identity_provider.refresh_session()
        except Exception as e:
            if self._is_current(snapshot):
                self._refresh_failed(snapshot, e)
            return

        if not self._is_current(snapshot):
            self.audit.debug(
                "SESSION", "Discarding refresh result for an ended session",
                user_id=user_id, session_id=snapshot.session_id,
            )
            return

        current = self._session
        if provider_session.user.id != current.user.id:
            self.audit.log_security_event(
                "Refreshed session belongs to a different user",
                {"stored_user_id": current.user.id, "refreshed_user_id": provider_session.user.id},
                user_id=user_id,
                session_id=current.session_id,
            )
            self._refresh_failed(current, AuthError("Refreshed session user mismatch", code="user_mismatch"))
            return

        expires_at = self._token_expiry(provider_session)
        if expires_at <= current.expires_at:
            self._refresh_failed(
                current,
                AuthError("Refreshed token does not extend the session", code="stale_token"),
            )
            return

        refreshed = current.model_copy(
            update={
                "access_token": provider_session.access_token,
                "refresh_token": provider_session.refresh_token,
                "expires_at": expires_at,
            }
        )
        self._session = refreshed
        self._state = SessionState.AUTHENTICATED
        self._persist()
        self._arm_refresh_timer()
        self._arm_inactivity_timer()

        self.audit.log_session_event(
            "Session token refreshed",
            {"expires_at": format_timestamp(refreshed.expires_at)},
            user_id=user_id,
            session_id=refreshed.session_id,
        )
        self._listeners.notify(refreshed)

    def _refresh_failed(self, snapshot: SessionSnapshot, error: Exception) -> None:
        self.audit.error(
            "SESSION", "Failed to refresh session token", error,
            user_id=snapshot.user.id, session_id=snapshot.session_id,
        )
        self._clear_session()

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Stop listening for activity and cancel timers. The session is kept."""
        if self._unsubscribe_activity is not None:
            self._unsubscribe_activity()
            self._unsubscribe_activity = None
        self._cancel_timers()
