"""Session data models."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict

SNAPSHOT_VERSION = 1


class Role(str, Enum):
    """Closed set of user roles"""

    ADMIN = "admin"
    STAFF = "staff"
    STUDENT = "student"
    PARENT = "parent"


class SessionState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    REFRESHING = "refreshing"


class User(BaseModel):
    """Identity record of a signed-in user"""

    model_config = ConfigDict(frozen=True, use_enum_values=False)

    id: str
    email: str
    role: Role
    full_name: Optional[str] = None
    phone: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.full_name or self.email


class SessionSnapshot(BaseModel):
    """
    The current session.

    Snapshots are immutable; every change produces a new one via
    ``model_copy``. ``expires_at`` and ``last_activity`` are epoch seconds.
    """

    model_config = ConfigDict(frozen=True)

    user: User
    access_token: str
    refresh_token: str
    expires_at: float
    last_activity: float
    session_id: str
    version: int = SNAPSHOT_VERSION


class SessionInfo(BaseModel):
    """Read-only view of the session for display. Times are seconds."""

    is_authenticated: bool
    user: Optional[User] = None
    expires_at: Optional[float] = None
    last_activity: Optional[float] = None
    time_until_expiry: Optional[float] = None
    time_until_inactivity: Optional[float] = None


def is_session_valid(snapshot: SessionSnapshot, now: float, max_inactivity: float) -> bool:
    """A session is valid while its token is unexpired and the user is not idle."""
    return now < snapshot.expires_at and (now - snapshot.last_activity) < max_inactivity
