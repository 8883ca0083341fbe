"""Exception hierarchy shared by the session and audit subsystems."""

from typing import Optional


class CampusSessionError(Exception):
    """Base class for all campus-session errors"""
    pass


class AuthError(CampusSessionError):
    """
    Credential failure reported by the identity provider.

    Returned to callers of ``sign_in`` exactly as the provider raised it.

    Attributes:
        code: Provider error code (e.g. "invalid_credentials")
        message: Human-readable message
    """

    def __init__(self, message: str, code: Optional[str] = None):
        self.code = code or "auth_error"
        self.message = message
        super().__init__(message)


class IdentityProviderError(CampusSessionError):
    """Raised when the identity provider is unreachable or misbehaves"""
    pass


class ProfileNotFoundError(CampusSessionError):
    """Raised when the profile store holds no record for a user"""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"No profile found for user {user_id}")


class StorageError(CampusSessionError):
    """Raised when the key-value store cannot read or write a key"""
    pass


class SessionEncryptionError(CampusSessionError):
    """Raised when session data encryption fails"""
    pass


class AccessDeniedError(CampusSessionError):
    """
    Raised when an operator action requires a role the user lacks.

    Attributes:
        user_id: The user who was denied (None when unauthenticated)
        action: The action that was denied
        required_role: The role that was required
    """

    def __init__(self, user_id: Optional[str], action: str, required_role: str):
        self.user_id = user_id
        self.action = action
        self.required_role = required_role
        super().__init__(
            f"User {user_id or 'anonymous'} denied access to {action} (requires: {required_role})"
        )
