"""
Dependency injection for the audit platform authentication core.

This module provides FastAPI dependency functions for resolving the
lifecycle engine, authenticating bearer tokens, role and permission guards,
and rate limiting.
"""
import logging
import time
from typing import Callable, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from audit_auth.auth import RequestContext, SessionLifecycleEngine
from audit_auth.authorization import Permission, Role
from audit_auth.config import settings
from audit_auth.errors import RateLimitExceededError, UnauthorizedError
from audit_auth.security import RateLimiter
from audit_auth.token import ClaimsPayload

logger = logging.getLogger(__name__)

# Bearer access tokens; a missing header is reported by get_token_from_header
bearer_scheme = HTTPBearer(auto_error=False)


# PUBLIC_INTERFACE
def get_lifecycle_engine(request: Request) -> SessionLifecycleEngine:
    """
    Get the engine the application was started with.

    Raises:
        RuntimeError: If the application state holds no engine.
    """
    engine = getattr(request.app.state, "lifecycle_engine", None)
    if engine is None:
        raise RuntimeError("Session lifecycle engine is not configured")
    return engine


# PUBLIC_INTERFACE
def get_request_context(request: Request) -> RequestContext:
    """Client IP address and user agent of the current request."""
    return RequestContext(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


# PUBLIC_INTERFACE
async def get_token_from_header(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)
) -> str:
    """
    Access token carried as `Authorization: Bearer <token>`.

    Raises:
        HTTPException: 401 when the header is absent or not a bearer scheme.
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return credentials.credentials


# PUBLIC_INTERFACE
async def get_current_claims(
    token: str = Depends(get_token_from_header),
    engine: SessionLifecycleEngine = Depends(get_lifecycle_engine),
) -> ClaimsPayload:
    """
    Verify the bearer access token.

    Returns:
        The claims payload of the token.

    Raises:
        HTTPException: If the token does not verify.
    """
    try:
        return await engine.validate_access_token(token)
    except UnauthorizedError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=e.message,
            headers={"WWW-Authenticate": "Bearer"},
        )


# PUBLIC_INTERFACE
def require_roles(*roles) -> Callable:
    """
    Build a dependency allowing only sessions acting as one of the roles.

    Args:
        *roles: Role members or their string values.

    Returns:
        Dependency returning the claims payload when the check passes.
    """
    allowed = {role.value if isinstance(role, Role) else role for role in roles}

    async def dependency(claims: ClaimsPayload = Depends(get_current_claims)) -> ClaimsPayload:
        if claims.effective_role not in allowed:
            logger.info(f"Account {claims.sub} denied: role {claims.effective_role} not in {sorted(allowed)}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires one of the roles: {', '.join(sorted(allowed))}",
            )
        return claims

    return dependency


# PUBLIC_INTERFACE
def require_permissions(*permissions) -> Callable:
    """
    Build a dependency requiring every listed permission for the session role.

    Args:
        *permissions: Permission objects or ``resource:action`` strings.

    Returns:
        Dependency returning the claims payload when the check passes.
    """
    required = [p if isinstance(p, Permission) else Permission.from_string(p) for p in permissions]

    async def dependency(
        claims: ClaimsPayload = Depends(get_current_claims),
        engine: SessionLifecycleEngine = Depends(get_lifecycle_engine),
    ) -> ClaimsPayload:
        if not engine.authorization.has_all_permissions(claims.effective_role, required):
            logger.info(f"Account {claims.sub} denied: missing permissions for {claims.effective_role}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permissions: {', '.join(str(p) for p in required)}",
            )
        return claims

    return dependency


# PUBLIC_INTERFACE
async def internal_only(claims: ClaimsPayload = Depends(get_current_claims)) -> ClaimsPayload:
    """
    Allow only internal users.

    Raises:
        HTTPException: If the token belongs to an external user.
    """
    if not claims.is_internal:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="This resource is only available to internal users",
        )
    return claims


# PUBLIC_INTERFACE
class RateLimitedRoute:
    """
    Per client IP request budget for unauthenticated routes.

    Used as a route dependency; each instance keeps its own window, so routes
    sharing an instance share the budget.
    """

    def __init__(
        self,
        max_requests: int = 60,
        window_seconds: int = 60,
        error_message: str = "Rate limit exceeded",
        enabled: bool = True,
    ):
        self.rate_limiter = RateLimiter(window_seconds=window_seconds, max_requests=max_requests)
        self.error_message = error_message
        self.enabled = enabled

    def _retry_headers(self, client_ip: str) -> dict:
        reset_at = self.rate_limiter.get_reset_time(client_ip)
        retry_after = int(reset_at - time.time()) + 1 if reset_at else self.rate_limiter.window_seconds
        return {
            "Retry-After": str(max(retry_after, 1)),
            "X-RateLimit-Limit": str(self.rate_limiter.max_requests),
        }

    async def __call__(self, request: Request) -> None:
        if not self.enabled:
            return

        client_ip = request.client.host if request.client else "unknown"
        try:
            self.rate_limiter.add_request(client_ip)
        except RateLimitExceededError:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail=self.error_message,
                headers=self._retry_headers(client_ip),
            )


# Shared by login, password reset and two-factor routes
auth_rate_limiter = RateLimitedRoute(
    max_requests=settings.RATE_LIMIT_REQUESTS,
    window_seconds=settings.RATE_LIMIT_PERIOD_SECONDS,
    error_message="Too many authentication attempts, please try again later",
    enabled=settings.RATE_LIMIT_ENABLED,
)
