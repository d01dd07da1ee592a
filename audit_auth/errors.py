"""
Exceptions raised by the authentication core.

Every exception carries the HTTP ``status_code`` the application maps it to,
so the web layer needs a single handler for the whole hierarchy.
"""
from typing import Iterable, Optional


class AuthError(Exception):
    """Base exception for authentication errors."""

    status_code: int = 401

    def __init__(self, message: str = "Authentication failed", *, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class InvalidCredentialsError(AuthError):
    """Exception raised when credentials are invalid."""

    def __init__(self, message: str = "Invalid credentials", remaining_attempts: Optional[int] = None):
        super().__init__(message)
        self.remaining_attempts = remaining_attempts


class AccountLockedError(AuthError):
    """Exception raised when the account is temporarily locked."""

    status_code = 403

    def __init__(self, remaining_minutes: int):
        super().__init__(
            f"Account locked due to too many failed login attempts. "
            f"Try again in {remaining_minutes} minutes"
        )
        self.remaining_minutes = remaining_minutes


class AccountInactiveError(AuthError):
    """Exception raised when the account is deactivated."""

    status_code = 403

    def __init__(self, message: str = "Account is inactive. Contact the administrator"):
        super().__init__(message)


class InvalidOrExpiredTokenError(AuthError):
    """Token or one-time code is unknown, expired or already used."""

    def __init__(self, message: str = "Invalid or expired token"):
        super().__init__(message)


class InvalidOrExpiredSessionError(AuthError):
    """Session behind a refresh token is unknown, closed or expired."""

    def __init__(self, message: str = "Invalid or expired session"):
        super().__init__(message)


class UnauthorizedError(AuthError):
    """Caller is not allowed to proceed."""

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class BadRequestError(AuthError):
    """Request is well formed but violates a domain rule."""

    status_code = 400

    def __init__(self, message: str = "Bad request"):
        super().__init__(message)


class InvalidRoleSetError(BadRequestError):
    """Role assignment breaks the role combination rules."""

    def __init__(self, message: str, roles: Optional[Iterable[str]] = None):
        super().__init__(message)
        self.roles = list(roles or [])


class WeakPasswordError(BadRequestError):
    """Exception raised when a password does not meet strength requirements."""


class NotFoundError(AuthError):
    """Entity does not exist."""

    status_code = 404

    def __init__(self, message: str = "Not found"):
        super().__init__(message)


class RateLimitExceededError(AuthError):
    """Exception raised when rate limit is exceeded."""

    status_code = 429

    def __init__(self, message: str = "Too many requests"):
        super().__init__(message)
