"""
API router and Pydantic models for the audit platform authentication core.

Request and response bodies use camelCase on the wire. Domain errors raised
by the lifecycle engine carry their own status codes and are translated by
the application's exception handler.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

from audit_auth.auth import SessionLifecycleEngine
from audit_auth.dependencies import (auth_rate_limiter, get_current_claims,
                                     get_lifecycle_engine, get_request_context)
from audit_auth.errors import UnauthorizedError
from audit_auth.token import ClaimsPayload

logger = logging.getLogger(__name__)

# Create API router
router = APIRouter(tags=["authentication"])


class CamelModel(BaseModel):
    """Base model exchanging camelCase keys while accepting snake_case too."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Pydantic models for request/response
class LoginRequest(CamelModel):
    """Request model for login."""
    username: str = Field(..., min_length=1, description="Username or email")
    password: str = Field(..., min_length=1, description="User password")
    role: Optional[str] = Field(None, description="Role to start the session with (internal users)")


class RefreshTokenRequest(CamelModel):
    """Request model for token refresh and logout."""
    refresh_token: str = Field(..., min_length=1, description="JWT refresh token")


class SwitchRoleRequest(CamelModel):
    """Request model for switching the session role."""
    role: str = Field(..., min_length=1, description="Role to switch to")


class ForgotPasswordRequest(CamelModel):
    """Request model for starting a password reset."""
    email: EmailStr = Field(..., description="Account email address")


class ResetPasswordRequest(CamelModel):
    """Request model for completing a password reset."""
    token: str = Field(..., min_length=1, description="Reset token from the email link")
    new_password: str = Field(..., min_length=1, description="New password")


class TwoFactorVerifyRequest(CamelModel):
    """Request model for checking a two-factor code."""
    code: str = Field(..., min_length=6, max_length=6, description="Six digit code")


class TokenValidationRequest(CamelModel):
    """Request model for token validation."""
    token: str = Field(..., description="JWT access token to validate")


class TokensResponse(CamelModel):
    access_token: str = Field(..., description="JWT access token")
    refresh_token: str = Field(..., description="JWT refresh token")
    token_type: str = Field("bearer", description="Token type")
    expires_in: int = Field(..., description="Access token lifetime in seconds")


class MenuItemResponse(CamelModel):
    id: str
    label: str
    route: Optional[str] = None
    icon: Optional[str] = None
    order: int = 0
    required_permissions: List[str] = Field(default_factory=list)
    children: Optional[List["MenuItemResponse"]] = None


class UserResponse(CamelModel):
    id: str
    username: str
    email: str
    full_name: str = ""
    type: str = Field(..., description="INTERNAL or EXTERNAL")
    profile_id: str
    current_role: str
    roles: Optional[List[str]] = Field(None, description="Assigned roles (internal users)")
    organization_id: Optional[str] = Field(None, description="Organization (external users)")


class AuthResponse(CamelModel):
    """Response model for login and role switch."""
    user: UserResponse
    tokens: TokensResponse
    session_id: str
    current_role: str
    menus: List[MenuItemResponse]
    permissions: List[str]


class ClaimsResponse(CamelModel):
    sub: str
    username: str
    email: str
    type: str
    profile_id: str
    session_id: str
    roles: Optional[List[str]] = None
    current_role: Optional[str] = None
    organization_id: Optional[str] = None


class MeResponse(CamelModel):
    user: ClaimsResponse
    menus: List[MenuItemResponse]
    permissions: List[str]


class SessionResponse(CamelModel):
    id: str
    current_role: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime
    last_used_at: Optional[datetime] = None
    expires_at: datetime
    is_current: bool = False


class TokenValidationResponse(CamelModel):
    """Response model for token validation."""
    valid: bool = Field(..., description="Whether the token is valid")
    claims: Optional[ClaimsResponse] = Field(None, description="Token claims when valid")


class ErrorResponse(BaseModel):
    """Response model for errors."""
    detail: str = Field(..., description="Error detail")


class SuccessResponse(BaseModel):
    """Response model for successful operations."""
    message: str = Field(..., description="Success message")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional details")


def _claims_response(claims: ClaimsPayload) -> ClaimsResponse:
    return ClaimsResponse.model_validate(claims.to_claims())


# API endpoints
@router.post(
    "/login",
    response_model=AuthResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(auth_rate_limiter)],
    responses={
        400: {"model": ErrorResponse, "description": "Requested role not assigned"},
        401: {"model": ErrorResponse, "description": "Invalid credentials"},
        403: {"model": ErrorResponse, "description": "Account locked or inactive"},
        429: {"model": ErrorResponse, "description": "Too many attempts"},
    },
    summary="Authenticate user and open a session",
    description="Authenticate with username or email and password. Returns tokens, menus and permissions for the session role.",
)
async def login(
    request: Request,
    login_data: LoginRequest,
    engine: SessionLifecycleEngine = Depends(get_lifecycle_engine),
):
    """
    Authenticate a user and open a session.

    Args:
        request: FastAPI request object.
        login_data: User login credentials.
        engine: Session lifecycle engine.

    Returns:
        AuthResponse with the user, tokens, menus and permissions.
    """
    result = await engine.login(
        login_data.username,
        login_data.password,
        context=get_request_context(request),
        preferred_role=login_data.role,
    )
    return result.to_dict()


@router.post(
    "/refresh",
    response_model=TokensResponse,
    status_code=status.HTTP_200_OK,
    responses={401: {"model": ErrorResponse, "description": "Invalid token or session"}},
    summary="Rotate tokens",
    description="Exchange a refresh token for a new access and refresh token. The old refresh token stops working.",
)
async def refresh(
    refresh_request: RefreshTokenRequest,
    engine: SessionLifecycleEngine = Depends(get_lifecycle_engine),
):
    tokens = await engine.refresh_tokens(refresh_request.refresh_token)
    return tokens.to_dict()


@router.post(
    "/logout",
    response_model=SuccessResponse,
    status_code=status.HTTP_200_OK,
    summary="Logout from the current session",
)
async def logout(
    logout_request: RefreshTokenRequest,
    claims: ClaimsPayload = Depends(get_current_claims),
    engine: SessionLifecycleEngine = Depends(get_lifecycle_engine),
):
    await engine.logout(claims.sub, logout_request.refresh_token)
    return SuccessResponse(message="Logged out successfully")


@router.post(
    "/logout-all",
    response_model=SuccessResponse,
    status_code=status.HTTP_200_OK,
    summary="Logout from every session",
)
async def logout_all(
    claims: ClaimsPayload = Depends(get_current_claims),
    engine: SessionLifecycleEngine = Depends(get_lifecycle_engine),
):
    closed = await engine.logout_all(claims.sub)
    return SuccessResponse(message="Logged out from all sessions", details={"closedSessions": closed})


@router.post(
    "/switch-role",
    response_model=AuthResponse,
    status_code=status.HTTP_200_OK,
    responses={
        400: {"model": ErrorResponse, "description": "Role not assigned or external user"},
        401: {"model": ErrorResponse, "description": "Invalid session"},
    },
    summary="Switch the role of the current session",
    description="Internal users can act as any of their assigned roles. Tokens are rotated and menus recomputed.",
)
async def switch_role(
    switch_request: SwitchRoleRequest,
    claims: ClaimsPayload = Depends(get_current_claims),
    engine: SessionLifecycleEngine = Depends(get_lifecycle_engine),
):
    result = await engine.switch_role(claims.session_id, switch_request.role, account_id=claims.sub)
    return result.to_dict()


@router.post(
    "/forgot-password",
    response_model=SuccessResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(auth_rate_limiter)],
    summary="Request a password reset link",
    description="Always answers the same way so account existence is not revealed.",
)
async def forgot_password(
    forgot_request: ForgotPasswordRequest,
    engine: SessionLifecycleEngine = Depends(get_lifecycle_engine),
):
    await engine.forgot_password(forgot_request.email)
    return SuccessResponse(message="If the email is registered, a reset link has been sent")


@router.post(
    "/reset-password",
    response_model=SuccessResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(auth_rate_limiter)],
    responses={
        400: {"model": ErrorResponse, "description": "Weak password"},
        401: {"model": ErrorResponse, "description": "Invalid or expired token"},
    },
    summary="Set a new password with a reset token",
)
async def reset_password(
    reset_request: ResetPasswordRequest,
    engine: SessionLifecycleEngine = Depends(get_lifecycle_engine),
):
    await engine.reset_password(reset_request.token, reset_request.new_password)
    return SuccessResponse(message="Password updated successfully")


@router.post(
    "/2fa/send",
    response_model=SuccessResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(auth_rate_limiter)],
    summary="Email a two-factor code",
)
async def send_two_factor_code(
    claims: ClaimsPayload = Depends(get_current_claims),
    engine: SessionLifecycleEngine = Depends(get_lifecycle_engine),
):
    await engine.send_two_factor_code(claims.sub)
    return SuccessResponse(message="Verification code sent")


@router.post(
    "/2fa/verify",
    response_model=SuccessResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(auth_rate_limiter)],
    responses={401: {"model": ErrorResponse, "description": "Invalid or expired code"}},
    summary="Check a two-factor code",
)
async def verify_two_factor_code(
    verify_request: TwoFactorVerifyRequest,
    claims: ClaimsPayload = Depends(get_current_claims),
    engine: SessionLifecycleEngine = Depends(get_lifecycle_engine),
):
    verified = await engine.verify_two_factor_code(claims.sub, verify_request.code)
    return SuccessResponse(message="Code verified", details={"verified": verified})


@router.post(
    "/validate",
    response_model=TokenValidationResponse,
    status_code=status.HTTP_200_OK,
    summary="Validate an access token",
    description="Validate a JWT access token and return its claims if valid.",
)
async def validate(
    validation_request: TokenValidationRequest,
    engine: SessionLifecycleEngine = Depends(get_lifecycle_engine),
):
    try:
        claims = await engine.validate_access_token(validation_request.token)
    except UnauthorizedError:
        # Return invalid but don't raise an exception
        return TokenValidationResponse(valid=False)
    return TokenValidationResponse(valid=True, claims=_claims_response(claims))


@router.get(
    "/me",
    response_model=MeResponse,
    status_code=status.HTTP_200_OK,
    summary="Current user, menus and permissions",
)
async def me(
    claims: ClaimsPayload = Depends(get_current_claims),
    engine: SessionLifecycleEngine = Depends(get_lifecycle_engine),
):
    role = claims.effective_role
    return MeResponse(
        user=_claims_response(claims),
        menus=[MenuItemResponse.model_validate(m.to_dict()) for m in engine.authorization.get_menus_for_role(role)],
        permissions=engine.authorization.get_permissions_as_strings(role),
    )


@router.get(
    "/sessions",
    response_model=List[SessionResponse],
    status_code=status.HTTP_200_OK,
    summary="List active sessions of the current user",
)
async def list_sessions(
    claims: ClaimsPayload = Depends(get_current_claims),
    engine: SessionLifecycleEngine = Depends(get_lifecycle_engine),
):
    sessions = await engine.list_active_sessions(claims.sub)
    return [
        SessionResponse(
            id=s.id,
            current_role=s.current_role,
            ip_address=s.ip_address,
            user_agent=s.user_agent,
            created_at=s.created_at,
            last_used_at=s.last_used_at,
            expires_at=s.expires_at,
            is_current=s.id == claims.session_id,
        )
        for s in sessions
    ]


@router.delete(
    "/sessions/{session_id}",
    response_model=SuccessResponse,
    status_code=status.HTTP_200_OK,
    responses={404: {"model": ErrorResponse, "description": "Session not found"}},
    summary="Close one of the current user's sessions",
)
async def delete_session(
    session_id: str,
    claims: ClaimsPayload = Depends(get_current_claims),
    engine: SessionLifecycleEngine = Depends(get_lifecycle_engine),
):
    await engine.invalidate_session(session_id, account_id=claims.sub)
    return SuccessResponse(message="Session closed")
