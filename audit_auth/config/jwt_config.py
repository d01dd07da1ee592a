"""
JWT configuration settings for the audit platform authentication core.

Access and refresh tokens are signed with separate secrets and have separate
lifetimes: minutes for access tokens, days for refresh tokens.
"""
from datetime import timedelta
from typing import Dict, Union

from audit_auth.config.settings import settings

# Value of the tokenType claim
TOKEN_TYPE_ACCESS = "access"
TOKEN_TYPE_REFRESH = "refresh"


# PUBLIC_INTERFACE
def get_jwt_settings() -> Dict[str, Union[str, int]]:
    """Signing secrets, algorithm and lifetimes as configured in settings."""
    return {
        "secret_key": settings.JWT_SECRET_KEY,
        "refresh_secret_key": settings.JWT_REFRESH_SECRET_KEY,
        "algorithm": settings.JWT_ALGORITHM,
        "access_token_expire_minutes": settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES,
        "refresh_token_expire_days": settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS,
    }


# PUBLIC_INTERFACE
def get_token_expiry(token_type: str) -> timedelta:
    """
    Lifetime of a token of the given type.

    Args:
        token_type: TOKEN_TYPE_ACCESS or TOKEN_TYPE_REFRESH.

    Raises:
        ValueError: For any other token type.
    """
    if token_type == TOKEN_TYPE_ACCESS:
        return timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
    elif token_type == TOKEN_TYPE_REFRESH:
        return timedelta(days=settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS)
    else:
        raise ValueError(f"Invalid token type: {token_type}")
