"""
Authentication context for the application layer.

Wraps the session manager with the state a UI needs to render: the current
user and whether an auth operation is in progress. It follows the manager
through a session listener, so expiry and refresh show up without polling.
"""

import logging
from typing import Iterable, Optional, Union

from campus_session.audit.logger import AuditLogger
from campus_session.core.exceptions import AuthError
from campus_session.session.manager import SessionManager
from campus_session.session.models import Role, SessionInfo, SessionSnapshot, User

logger = logging.getLogger(__name__)


class AuthContext:
    """Current-user view over a ``SessionManager``."""

    def __init__(self, session_manager: SessionManager, audit_logger: AuditLogger):
        self.session_manager = session_manager
        self.audit = audit_logger
        self.user: Optional[User] = None
        self.loading = True
        self._unsubscribe = session_manager.add_listener(self._on_session_change)

    async def initialize(self) -> None:
        self.audit.log_auth_event("AuthContext: Initializing authentication")
        try:
            await self.session_manager.initialize()
        except Exception as e:
            self.audit.error("AUTH", "AuthContext: Failed to initialize authentication", e)
        finally:
            self.user = self.session_manager.get_current_user()
            self.loading = False

        if self.user:
            self.audit.log_auth_event(
                "AuthContext: User authenticated", {"email": self.user.email}, self.user.id
            )
        else:
            self.audit.log_auth_event("AuthContext: No authenticated user")

    def _on_session_change(self, snapshot: Optional[SessionSnapshot]) -> None:
        user = snapshot.user if snapshot else None
        self.audit.log_auth_event(
            "AuthContext: Session changed",
            {"has_session": snapshot is not None, "email": user.email if user else None},
            user.id if user else None,
        )
        self.user = user
        self.loading = False

    async def sign_in(self, email: str, password: str) -> Optional[AuthError]:
        self.loading = True
        try:
            error = await self.session_manager.sign_in(email, password)
        finally:
            self.loading = False

        if error is None:
            self.audit.log_auth_event("AuthContext: Sign in successful", {"email": email})
        else:
            self.audit.log_auth_event(
                "AuthContext: Sign in failed", {"email": email, "error": error.message}
            )
        return error

    async def sign_out(self) -> None:
        user = self.user
        self.loading = True
        try:
            await self.session_manager.sign_out()
        finally:
            self.loading = False
        self.audit.log_auth_event(
            "AuthContext: Sign out successful",
            {"email": user.email if user else None},
            user.id if user else None,
        )

    def has_role(self, role: Union[Role, str, Iterable[Union[Role, str]]]) -> bool:
        return self.session_manager.has_role(role)

    @property
    def is_authenticated(self) -> bool:
        return self.session_manager.is_authenticated()

    @property
    def session_info(self) -> SessionInfo:
        return self.session_manager.get_session_info()

    def close(self) -> None:
        self._unsubscribe()
