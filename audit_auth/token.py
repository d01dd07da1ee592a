"""
JWT token management module for the audit platform authentication core.

This module signs and verifies access and refresh tokens. Access and refresh
tokens use independent secrets, and every token carries a structured claims
payload describing either an internal or an external user.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import jwt
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError

from audit_auth.clock import utcnow
from audit_auth.config.jwt_config import (TOKEN_TYPE_ACCESS, TOKEN_TYPE_REFRESH,
                                          get_jwt_settings, get_token_expiry)
from audit_auth.errors import AuthError

# Configure logger
logger = logging.getLogger(__name__)

REQUIRED_CLAIMS = ("sub", "username", "email", "type", "profileId", "sessionId")


class TokenError(AuthError):
    """Base exception for token-related errors."""

    def __init__(self, message: str = "Invalid token"):
        super().__init__(message)


class TokenExpiredError(TokenError):
    """Exception raised when a token has expired."""


class TokenInvalidError(TokenError):
    """Exception raised when a token is invalid."""


@dataclass(frozen=True)
class ClaimsPayload:
    """
    Identity carried inside a token.

    Internal users carry ``roles`` and ``current_role``; external users carry
    ``organization_id``. Exactly one of the two branches is populated.
    """
    sub: str
    username: str
    email: str
    type: str
    profile_id: str
    session_id: str
    roles: Optional[List[str]] = None
    current_role: Optional[str] = None
    organization_id: Optional[str] = None

    @property
    def account_id(self) -> str:
        return self.sub

    @property
    def is_internal(self) -> bool:
        return self.roles is not None

    @property
    def is_external(self) -> bool:
        return self.organization_id is not None

    @property
    def effective_role(self) -> str:
        """Role the session currently acts as; ``cliente`` for external users."""
        if self.is_internal:
            return self.current_role
        return "cliente"

    # PUBLIC_INTERFACE
    def to_claims(self) -> Dict[str, Any]:
        """
        Render the payload with the camelCase claim names used on the wire.

        Returns:
            Dictionary of claims ready to be signed.
        """
        claims = {
            "sub": self.sub,
            "username": self.username,
            "email": self.email,
            "type": self.type,
            "profileId": self.profile_id,
            "sessionId": self.session_id,
        }
        if self.is_internal:
            claims["roles"] = list(self.roles)
            claims["currentRole"] = self.current_role
        else:
            claims["organizationId"] = self.organization_id
        return claims

    # PUBLIC_INTERFACE
    @classmethod
    def from_claims(cls, claims: Dict[str, Any]) -> "ClaimsPayload":
        """
        Rebuild a payload from decoded claims.

        Args:
            claims: Decoded token claims.

        Returns:
            The payload, internal or external depending on which claims are present.

        Raises:
            TokenInvalidError: If required claims are missing or both branches are mixed.
        """
        missing = [name for name in REQUIRED_CLAIMS if not claims.get(name)]
        if missing:
            raise TokenInvalidError(f"Token is missing claims: {', '.join(missing)}")

        has_internal = "roles" in claims or "currentRole" in claims
        has_external = "organizationId" in claims
        if has_internal == has_external:
            raise TokenInvalidError("Token must describe exactly one user kind")

        base = dict(
            sub=str(claims["sub"]),
            username=claims["username"],
            email=claims["email"],
            type=claims["type"],
            profile_id=claims["profileId"],
            session_id=claims["sessionId"],
        )
        if has_internal:
            roles = claims.get("roles")
            current_role = claims.get("currentRole")
            if not isinstance(roles, list) or not roles or not current_role:
                raise TokenInvalidError("Internal token needs roles and currentRole")
            return cls(roles=list(roles), current_role=current_role, **base)

        organization_id = claims.get("organizationId")
        if not organization_id:
            raise TokenInvalidError("External token needs organizationId")
        return cls(organization_id=organization_id, **base)


@dataclass(frozen=True)
class TokenPair:
    """Access and refresh token issued together."""
    access_token: str
    refresh_token: str
    expires_in: int
    refresh_expires_at: datetime
    token_type: str = field(default="bearer")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accessToken": self.access_token,
            "refreshToken": self.refresh_token,
            "tokenType": self.token_type,
            "expiresIn": self.expires_in,
        }


class TokenIssuer:
    """
    Signs and verifies JWTs.

    Verification fails closed: any signature, expiry, token type or claims
    problem raises a TokenError subclass.
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        algorithm: str = "HS256",
        access_ttl: timedelta = timedelta(minutes=15),
        refresh_ttl: timedelta = timedelta(days=7),
    ):
        if not access_secret or not refresh_secret:
            raise ValueError("Token secrets cannot be empty")
        self.access_secret = access_secret
        self.refresh_secret = refresh_secret
        self.algorithm = algorithm
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl

    @classmethod
    def from_settings(cls) -> "TokenIssuer":
        """Issuer configured through the JWT_* settings."""
        jwt_settings = get_jwt_settings()
        return cls(
            access_secret=jwt_settings["secret_key"],
            refresh_secret=jwt_settings["refresh_secret_key"],
            algorithm=jwt_settings["algorithm"],
            access_ttl=get_token_expiry(TOKEN_TYPE_ACCESS),
            refresh_ttl=get_token_expiry(TOKEN_TYPE_REFRESH),
        )

    # PUBLIC_INTERFACE
    def sign(self, claims: Dict[str, Any], secret: str, ttl: timedelta) -> str:
        """
        Sign a set of claims.

        Args:
            claims: Claims to embed.
            secret: Signing secret.
            ttl: Lifetime of the token.

        Returns:
            Encoded JWT string.
        """
        now = datetime.now(timezone.utc)
        token_data = dict(claims)
        token_data["jti"] = str(uuid.uuid4())
        token_data["iat"] = now
        token_data["exp"] = now + ttl
        return jwt.encode(token_data, secret, algorithm=self.algorithm)

    # PUBLIC_INTERFACE
    def verify(self, token: str, secret: str) -> Dict[str, Any]:
        """
        Decode a token and check its signature and expiry.

        Args:
            token: Encoded JWT string.
            secret: Secret the token must be signed with.

        Returns:
            Dictionary containing the decoded token payload.

        Raises:
            TokenExpiredError: If the token has expired.
            TokenInvalidError: If the token is malformed or the signature is wrong.
        """
        if not token:
            raise TokenInvalidError("Token is empty")
        try:
            return jwt.decode(
                token,
                secret,
                algorithms=[self.algorithm],
                options={"require": ["exp", "iat", "sub"]},
            )
        except ExpiredSignatureError:
            raise TokenExpiredError("Token has expired")
        except InvalidTokenError as e:
            raise TokenInvalidError(f"Invalid token: {str(e)}")

    # PUBLIC_INTERFACE
    def issue_pair(self, payload: ClaimsPayload) -> TokenPair:
        """
        Issue an access and a refresh token for the same claims.

        Args:
            payload: Identity to embed in both tokens.

        Returns:
            The new TokenPair.
        """
        claims = payload.to_claims()
        access_token = self.sign(
            {**claims, "tokenType": TOKEN_TYPE_ACCESS}, self.access_secret, self.access_ttl
        )
        refresh_token = self.sign(
            {**claims, "tokenType": TOKEN_TYPE_REFRESH}, self.refresh_secret, self.refresh_ttl
        )
        logger.debug(f"Issued token pair for account {payload.sub}, session {payload.session_id}")
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=int(self.access_ttl.total_seconds()),
            refresh_expires_at=utcnow() + self.refresh_ttl,
        )

    # PUBLIC_INTERFACE
    def verify_access(self, token: str) -> ClaimsPayload:
        """Verify an access token and return its claims payload."""
        return self._verify_typed(token, self.access_secret, TOKEN_TYPE_ACCESS)

    # PUBLIC_INTERFACE
    def verify_refresh(self, token: str) -> ClaimsPayload:
        """Verify a refresh token and return its claims payload."""
        return self._verify_typed(token, self.refresh_secret, TOKEN_TYPE_REFRESH)

    def _verify_typed(self, token: str, secret: str, expected_type: str) -> ClaimsPayload:
        claims = self.verify(token, secret)
        if claims.get("tokenType") != expected_type:
            raise TokenInvalidError(f"Expected a {expected_type} token")
        return ClaimsPayload.from_claims(claims)
