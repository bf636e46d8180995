"""
Authentication errors.

Each carries the message shown to the user and the HTTP status the API
answers with. Policy denials are not errors: the engine returns False.
"""
from fastapi import status


class AuthError(Exception):
    """Base class for authentication failures surfaced to the caller."""
    message = "Authentication failed. Please try again."
    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str | None = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


class IdentifierNotFound(AuthError):
    """A phone-style identifier has no matching profile."""
    message = "Mobile number not found. Please contact administrator."


class InvalidCredential(AuthError):
    """The identity provider rejected the secret. Never reveals whether the identifier exists."""
    message = "Invalid login credentials."


class AccountBlocked(AuthError):
    """Authenticated, but the profile is blocked."""
    message = "Your account has been blocked. Please contact administrator."
    status_code = status.HTTP_403_FORBIDDEN


class ProfileStoreUnavailable(AuthError):
    """The profile store could not be read or written."""
    message = "User profile service is unavailable. Please try again."
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class IdentityProviderUnavailable(AuthError):
    """The identity provider failed for a reason other than bad credentials."""
    message = "Authentication service is unavailable. Please try again."
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
