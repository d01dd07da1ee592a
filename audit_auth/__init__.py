"""
Audit Platform Authentication Core.

This package provides the authentication and session lifecycle of the audit
platform, including:
- Credential verification with brute-force lockout
- Internal and external user types with structured JWT claims
- Refresh token rotation backed by persisted sessions
- Role switching for internal users
- Password reset and two-factor one-time codes
- Role based permissions and menus
"""

__version__ = "0.1.0"

# Export config constants first to avoid circular imports
from audit_auth.config import (
    TOKEN_TYPE_ACCESS,
    TOKEN_TYPE_REFRESH,
)

# Export database functions next as they're needed by models
from audit_auth.database import (
    Base,
    Database,
    init_db,
    get_database,
)

from audit_auth.errors import (
    AuthError,
    InvalidCredentialsError,
    AccountLockedError,
    AccountInactiveError,
    InvalidOrExpiredTokenError,
    InvalidOrExpiredSessionError,
    UnauthorizedError,
    BadRequestError,
    InvalidRoleSetError,
    WeakPasswordError,
    NotFoundError,
    RateLimitExceededError,
)

from audit_auth.authorization import (
    Role,
    Resource,
    Action,
    Permission,
    MenuItem,
    AuthorizationLookup,
)

from audit_auth.models import (
    Account,
    AccountStatus,
    ExternalProfile,
    InternalProfile,
    Otp,
    OtpKind,
    Session,
    UserType,
)

from audit_auth.policy import LoginPolicy

from audit_auth.token import (
    ClaimsPayload,
    TokenPair,
    TokenIssuer,
    TokenError,
    TokenExpiredError,
    TokenInvalidError,
)

# Export the engine last as it depends on the above modules
from audit_auth.auth import (
    AuthResult,
    RequestContext,
    SessionLifecycleEngine,
    build_lifecycle_engine,
)

__all__ = [
    # Models
    "Account",
    "AccountStatus",
    "ExternalProfile",
    "InternalProfile",
    "Otp",
    "OtpKind",
    "Session",
    "UserType",

    # Database
    "Base",
    "Database",
    "init_db",
    "get_database",

    # Errors
    "AuthError",
    "InvalidCredentialsError",
    "AccountLockedError",
    "AccountInactiveError",
    "InvalidOrExpiredTokenError",
    "InvalidOrExpiredSessionError",
    "UnauthorizedError",
    "BadRequestError",
    "InvalidRoleSetError",
    "WeakPasswordError",
    "NotFoundError",
    "RateLimitExceededError",

    # Authorization
    "Role",
    "Resource",
    "Action",
    "Permission",
    "MenuItem",
    "AuthorizationLookup",

    # Tokens
    "ClaimsPayload",
    "TokenPair",
    "TokenIssuer",
    "TokenError",
    "TokenExpiredError",
    "TokenInvalidError",

    # Session lifecycle
    "LoginPolicy",
    "AuthResult",
    "RequestContext",
    "SessionLifecycleEngine",
    "build_lifecycle_engine",

    # Config constants
    "TOKEN_TYPE_ACCESS",
    "TOKEN_TYPE_REFRESH",
]
