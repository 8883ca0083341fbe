"""Session lifecycle: sign-in, refresh, inactivity expiry and persistence."""

from campus_session.session.auth_context import AuthContext
from campus_session.session.manager import SessionManager
from campus_session.session.models import Role, SessionInfo, SessionSnapshot, SessionState, User
from campus_session.session.providers import (
    IdentityProvider,
    ProfileStore,
    ProviderSession,
    ProviderUser,
)

__all__ = [
    "AuthContext",
    "IdentityProvider",
    "ProfileStore",
    "ProviderSession",
    "ProviderUser",
    "Role",
    "SessionInfo",
    "SessionManager",
    "SessionSnapshot",
    "SessionState",
    "User",
]
