"""Abstract collaborators of the session manager.

The embedding application supplies the identity provider (credential check,
token issuance) and the profile store (role and display name lookup). Both
are async because they normally sit behind network I/O.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from campus_session.session.models import User


class ProviderUser(BaseModel):
    """Bare identity as issued by the identity provider."""

    id: str
    email: str
    user_metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class ProviderSession(BaseModel):
    """Token set issued by the identity provider.

    ``expires_at`` is an absolute instant in epoch seconds. Providers that do
    not report one leave it unset and the session lasts ``session_timeout``.
    """

    access_token: str
    refresh_token: str
    expires_at: Optional[float] = None
    user: ProviderUser


class IdentityProvider(ABC):
    """Credential verification and token issuance.

    Example usage:
        session = await provider.sign_in("a@school.edu", "secret")
        refreshed = await provider.refresh_session()
    """

    @abstractmethod
    async def sign_in(self, email: str, password: str) -> ProviderSession:
        """Verify credentials and open a provider session.

        Raises:
            AuthError: If the credentials are rejected.
            IdentityProviderError: If the provider cannot be reached.
        """
        pass

    @abstractmethod
    async def sign_out(self) -> None:
        """Revoke the provider session."""
        pass

    @abstractmethod
    async def get_session(self) -> Optional[ProviderSession]:
        """Return the provider's live session, or None when signed out."""
        pass

    @abstractmethod
    async def refresh_session(self) -> ProviderSession:
        """Exchange the refresh token for a new token set.

        Raises:
            AuthError: If the refresh token is rejected.
            IdentityProviderError: If the provider cannot be reached.
        """
        pass

    @abstractmethod
    async def get_user(self) -> Optional[ProviderUser]:
        """Return the identity the provider currently recognizes, if any."""
        pass


class ProfileStore(ABC):
    """Lookup of role and display data for an identity."""

    @abstractmethod
    async def get_profile(self, user_id: str) -> User:
        """Return the profile of ``user_id``.

        Raises:
            ProfileNotFoundError: If no profile exists.
        """
        pass
