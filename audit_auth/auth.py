"""
Authentication and session lifecycle for the audit platform.

This module provides the SessionLifecycleEngine, which drives login with
brute-force lockout, refresh token rotation, logout, role switching, password
reset and two-factor codes on top of the store protocols.
"""
import hmac
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import List, Optional

from audit_auth.authorization import (EXTERNAL_SESSION_ROLE,
                                      AuthorizationLookup, MenuItem, Role,
                                      default_authorization_lookup)
from audit_auth.clock import utcnow
from audit_auth.config import settings
from audit_auth.database import Database
from audit_auth.errors import (AccountInactiveError, AccountLockedError,
                               AuthError, BadRequestError,
                               InvalidCredentialsError,
                               InvalidOrExpiredSessionError,
                               InvalidOrExpiredTokenError, NotFoundError,
                               UnauthorizedError)
from audit_auth.events import EventBus, create_event_bus
from audit_auth.mailer import EmailDispatcher
from audit_auth.models import Account, Otp, OtpKind, Session
from audit_auth.policy import LoginPolicy
from audit_auth.repositories import (AccountRepository,
                                     ExternalProfileRepository,
                                     InternalProfileRepository, OtpRepository,
                                     SessionRepository)
from audit_auth.security import (PasswordManager, PasswordValidator,
                                 generate_numeric_code, generate_secure_token)
from audit_auth.stores import (CredentialStore, EmailSender,
                               ExternalProfileStore, InternalProfileStore,
                               OtpStore, PasswordHasher, SessionStore)
from audit_auth.token import ClaimsPayload, TokenError, TokenIssuer, TokenPair
from audit_auth.users import ExternalUser, InternalUser, UserView

# Configure logging
logger = logging.getLogger(__name__)

__all__ = [
    "AuthError",
    "AuthResult",
    "RequestContext",
    "SessionLifecycleEngine",
    "build_lifecycle_engine",
]


@dataclass(frozen=True)
class RequestContext:
    """Client details recorded on the session created at login."""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass(frozen=True)
class AuthResult:
    """Outcome of a login or role switch."""
    user: UserView
    tokens: TokenPair
    session_id: str
    current_role: str
    menus: List[MenuItem]
    permissions: List[str]

    def to_dict(self) -> dict:
        """Response body with camelCase keys."""
        return {
            "user": self.user.to_dict(self.current_role),
            "tokens": self.tokens.to_dict(),
            "sessionId": self.session_id,
            "currentRole": self.current_role,
            "menus": [menu.to_dict() for menu in self.menus],
            "permissions": list(self.permissions),
        }


def _role_value(role) -> str:
    return role.value if isinstance(role, Role) else str(role)


class SessionLifecycleEngine:
    """
    Orchestrates accounts, sessions, one-time codes and tokens.

    Every operation is a coroutine. Entities enforce their own rules; the
    engine sequences store calls and publishes the domain events an entity
    recorded once its write has succeeded.
    """

    def __init__(
        self,
        accounts: CredentialStore,
        internal_profiles: InternalProfileStore,
        external_profiles: ExternalProfileStore,
        sessions: SessionStore,
        otps: OtpStore,
        token_issuer: TokenIssuer,
        password_hasher: PasswordHasher,
        email_sender: EmailSender,
        authorization: Optional[AuthorizationLookup] = None,
        login_policy: Optional[LoginPolicy] = None,
        password_validator: Optional[PasswordValidator] = None,
        event_bus: Optional[EventBus] = None,
        frontend_url: Optional[str] = None,
        reset_token_ttl_minutes: Optional[int] = None,
        two_factor_ttl_minutes: Optional[int] = None,
        two_factor_max_attempts: Optional[int] = None,
    ):
        self.accounts = accounts
        self.internal_profiles = internal_profiles
        self.external_profiles = external_profiles
        self.sessions = sessions
        self.otps = otps
        self.token_issuer = token_issuer
        self.password_hasher = password_hasher
        self.email_sender = email_sender
        self.authorization = authorization or default_authorization_lookup
        self.login_policy = login_policy or LoginPolicy.from_settings()
        self.password_validator = password_validator or PasswordValidator.from_settings()
        self.event_bus = event_bus or create_event_bus()
        self.frontend_url = (frontend_url or settings.FRONTEND_URL).rstrip("/")
        self.reset_token_ttl_minutes = reset_token_ttl_minutes or settings.PASSWORD_RESET_TOKEN_EXPIRE_MINUTES
        self.two_factor_ttl_minutes = two_factor_ttl_minutes or settings.TWO_FACTOR_CODE_EXPIRE_MINUTES
        self.two_factor_max_attempts = two_factor_max_attempts or settings.TWO_FACTOR_MAX_ATTEMPTS

    async def _publish(self, entity) -> None:
        await self.event_bus.publish_all(entity.pull_domain_events())

    async def _load_user(self, account: Account) -> UserView:
        """
        Join an account with its type-specific profile.

        Raises:
            UnauthorizedError: If the profile is missing.
        """
        if account.is_internal:
            profile = await self.internal_profiles.find_by_account_id(account.id)
            if profile is not None:
                return InternalUser(account=account, profile=profile)
        else:
            profile = await self.external_profiles.find_by_account_id(account.id)
            if profile is not None:
                return ExternalUser(account=account, profile=profile)

        logger.error(f"Account {account.id} ({account.user_type.value}) has no profile")
        raise UnauthorizedError("User profile not found")

    def _result(self, user: UserView, tokens: TokenPair, session: Session) -> AuthResult:
        role = session.current_role
        return AuthResult(
            user=user,
            tokens=tokens,
            session_id=session.id,
            current_role=role,
            menus=self.authorization.get_menus_for_role(role),
            permissions=self.authorization.get_permissions_as_strings(role),
        )

    async def _close(self, session: Session) -> bool:
        if not await self.sessions.invalidate(session.id):
            return False
        session.invalidate()
        await self._publish(session)
        return True

    def _rotate(self, session: Session, user: UserView) -> TokenPair:
        tokens = self.token_issuer.issue_pair(user.claims(session.id, session.current_role))
        session.update_refresh_token(tokens.refresh_token, tokens.refresh_expires_at)
        session.update_last_used()
        return tokens

    async def _store_rotation(self, session: Session, previous_refresh_token: str) -> None:
        if not await self.sessions.rotate(session, previous_refresh_token):
            logger.warning(f"Session {session.id} was rotated or closed concurrently")
            raise InvalidOrExpiredSessionError()
        await self._publish(session)

    # PUBLIC_INTERFACE
    async def login(
        self,
        identifier: str,
        password: str,
        context: Optional[RequestContext] = None,
        preferred_role: Optional[str] = None,
    ) -> AuthResult:
        """
        Authenticate with username or email and open a new session.

        Args:
            identifier: Username or email address.
            password: Plain text password.
            context: Client IP address and user agent for the session record.
            preferred_role: Role an internal user wants to start the session with.

        Returns:
            AuthResult with the user, token pair, menus and permissions.

        Raises:
            InvalidCredentialsError: If the account is unknown or the password is wrong.
            AccountLockedError: If the account is inside a lockout window.
            AccountInactiveError: If the account is deactivated.
            BadRequestError: If preferred_role is not held by the user.
            UnauthorizedError: If the account has no profile.
        """
        context = context or RequestContext()

        account = await self.accounts.find_by_identifier(identifier)
        if account is None:
            logger.warning(f"Failed login: unknown identifier from {context.ip_address}")
            raise InvalidCredentialsError()

        if not account.can_attempt_login():
            if account.is_locked:
                logger.warning(f"Login attempt on locked account {account.id}")
                raise AccountLockedError(account.lock_remaining_minutes())
            logger.warning(f"Login attempt on inactive account {account.id}")
            raise AccountInactiveError()

        if not await self.password_hasher.compare(password, account.hashed_password):
            account.increment_failed_attempts(self.login_policy)
            await self.accounts.save(account)
            await self._publish(account)

            remaining = self.login_policy.remaining_attempts(account.failed_login_attempts)
            logger.warning(
                f"Failed login for account {account.id}: "
                f"{account.failed_login_attempts} consecutive failures"
            )
            if remaining > 0:
                raise InvalidCredentialsError(
                    f"Invalid credentials. Remaining attempts: {remaining}",
                    remaining_attempts=remaining,
                )
            raise InvalidCredentialsError(
                f"Account locked for {self.login_policy.lock_duration_minutes} minutes "
                f"due to too many failed login attempts",
                remaining_attempts=0,
            )

        account.reset_login_attempts()
        await self.accounts.save(account)

        user = await self._load_user(account)

        if isinstance(user, InternalUser):
            if preferred_role is not None:
                current_role = _role_value(preferred_role)
                if not user.holds(current_role):
                    raise BadRequestError(f"Role {current_role} is not assigned to this user")
            else:
                current_role = user.primary_role
        else:
            current_role = EXTERNAL_SESSION_ROLE

        session = Session.open(
            account_id=account.id,
            current_role=current_role,
            expires_at=utcnow() + self.token_issuer.refresh_ttl,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
        )
        await self.sessions.create(session)

        tokens = self._rotate(session, user)
        await self.sessions.update(session)
        await self._publish(session)

        logger.info(f"Account {account.id} logged in, session {session.id} as {current_role}")
        return self._result(user, tokens, session)

    # PUBLIC_INTERFACE
    async def refresh_tokens(self, refresh_token: str) -> TokenPair:
        """
        Exchange a refresh token for a new token pair.

        The presented refresh token is replaced on the session, so it cannot be
        used again.

        Args:
            refresh_token: Refresh token issued at login or by a previous refresh.

        Returns:
            The new TokenPair.

        Raises:
            InvalidOrExpiredTokenError: If the token does not verify.
            InvalidOrExpiredSessionError: If no valid session holds the token.
            UnauthorizedError: If the owning account can no longer log in.
        """
        try:
            claims = self.token_issuer.verify_refresh(refresh_token)
        except TokenError as e:
            logger.info(f"Refresh rejected: {e.message}")
            raise InvalidOrExpiredTokenError()

        session = await self.sessions.find_by_refresh_token(refresh_token)
        if session is None or not session.is_valid or session.id != claims.session_id:
            raise InvalidOrExpiredSessionError()

        account = await self.accounts.find_by_id(session.account_id)
        if account is None or not account.can_attempt_login():
            await self._close(session)
            logger.warning(f"Refresh refused for account {session.account_id}, session {session.id} closed")
            raise UnauthorizedError("User not authorized")

        user = await self._load_user(account)
        if isinstance(user, InternalUser) and not user.holds(session.current_role):
            logger.info(
                f"Session {session.id} role {session.current_role} was revoked, "
                f"falling back to {user.primary_role}"
            )
            session.switch_role(user.primary_role)

        tokens = self._rotate(session, user)
        await self._store_rotation(session, refresh_token)
        return tokens

    # PUBLIC_INTERFACE
    async def logout(self, account_id: str, refresh_token: str) -> None:
        """
        Close the session holding a refresh token.

        Does nothing when the session is already gone or owned by someone else.
        """
        session = await self.sessions.find_by_refresh_token(refresh_token)
        if session is None or session.account_id != account_id or not session.is_active:
            logger.debug(f"Logout for account {account_id}: no matching active session")
            return

        if await self._close(session):
            logger.info(f"Account {account_id} logged out of session {session.id}")

    # PUBLIC_INTERFACE
    async def logout_all(self, account_id: str) -> int:
        """
        Close every active session of an account.

        Returns:
            Number of sessions closed.
        """
        closed = await self.sessions.invalidate_all_by_account_id(account_id)
        logger.info(f"Account {account_id} logged out of {closed} sessions")
        return closed

    # PUBLIC_INTERFACE
    async def switch_role(
        self, session_id: str, new_role: str, account_id: Optional[str] = None
    ) -> AuthResult:
        """
        Change the role an internal user's session acts as.

        Args:
            session_id: Session to switch.
            new_role: Role to switch to; must be held by the user.
            account_id: When given, the session must belong to this account.

        Returns:
            AuthResult with rotated tokens and the menus of the new role.

        Raises:
            NotFoundError: If the session does not exist.
            UnauthorizedError: If the session belongs to another account.
            InvalidOrExpiredSessionError: If the session is closed or expired.
            BadRequestError: If the user is external or does not hold the role.
        """
        session = await self.sessions.find_by_id(session_id)
        if session is None:
            raise NotFoundError("Session not found")
        if account_id is not None and session.account_id != account_id:
            logger.warning(f"Account {account_id} tried to switch role on session {session_id}")
            raise UnauthorizedError("Session does not belong to the current user")
        if not session.is_valid:
            raise InvalidOrExpiredSessionError()

        account = await self.accounts.find_by_id(session.account_id)
        if account is None:
            raise UnauthorizedError("User not authorized")
        if not account.is_internal:
            raise BadRequestError("Role switching is only available to internal users")

        user = await self._load_user(account)
        role = _role_value(new_role)
        if not user.holds(role):
            raise BadRequestError(
                f"Role {role} is not assigned to this user. "
                f"Assigned roles: {', '.join(user.roles)}"
            )

        previous_refresh_token = session.refresh_token
        session.switch_role(role)
        tokens = self._rotate(session, user)
        await self._store_rotation(session, previous_refresh_token)

        logger.info(f"Session {session.id} switched to role {role}")
        return self._result(user, tokens, session)

    # PUBLIC_INTERFACE
    async def forgot_password(self, email: str) -> None:
        """
        Email a password reset link.

        Unknown addresses return silently so callers cannot probe for accounts.
        """
        account = await self.accounts.find_by_email(email)
        if account is None:
            logger.info("Password reset requested for an unknown email")
            return

        await self.otps.invalidate_all_by_account_and_kind(account.id, OtpKind.PASSWORD_RESET)

        reset_token = generate_secure_token(32)
        otp = Otp.issue(
            account_id=account.id,
            code=reset_token,
            kind=OtpKind.PASSWORD_RESET,
            expires_at=utcnow() + timedelta(minutes=self.reset_token_ttl_minutes),
        )
        await self.otps.create(otp)
        logger.info(f"Password reset token issued for account {account.id}")

        reset_link = f"{self.frontend_url}/reset-password?token={reset_token}"
        await self.email_sender.send_reset_password_email(
            to=account.email,
            user_name=account.full_name or account.username,
            reset_link=reset_link,
            expires_in_minutes=self.reset_token_ttl_minutes,
        )

    # PUBLIC_INTERFACE
    async def reset_password(self, token: str, new_password: str) -> None:
        """
        Set a new password using a reset token.

        Every active session of the account is closed afterwards.

        Raises:
            InvalidOrExpiredTokenError: If the token is unknown, used or expired.
            WeakPasswordError: If the new password fails the strength rules.
        """
        otp = await self.otps.find_by_code_and_kind(token, OtpKind.PASSWORD_RESET)
        if otp is None or not otp.is_valid:
            raise InvalidOrExpiredTokenError()

        self.password_validator.validate_or_raise(new_password)

        account = await self.accounts.find_by_id(otp.account_id)
        if account is None:
            raise InvalidOrExpiredTokenError()

        if not await self.otps.consume(otp.id):
            logger.warning(f"Reset token for account {account.id} was already consumed")
            raise InvalidOrExpiredTokenError()

        account.update_password(await self.password_hasher.hash(new_password))
        await self.accounts.save(account)
        await self._publish(account)

        closed = await self.sessions.invalidate_all_by_account_id(account.id)
        logger.info(f"Password reset for account {account.id}, {closed} sessions closed")

    # PUBLIC_INTERFACE
    async def send_two_factor_code(self, account_id: str) -> None:
        """
        Email a fresh two-factor code, replacing any earlier one.

        Raises:
            NotFoundError: If the account does not exist.
        """
        account = await self.accounts.find_by_id(account_id)
        if account is None:
            raise NotFoundError("User not found")

        await self.otps.invalidate_all_by_account_and_kind(account.id, OtpKind.TWO_FACTOR)

        code = generate_numeric_code(6)
        otp = Otp.issue(
            account_id=account.id,
            code=code,
            kind=OtpKind.TWO_FACTOR,
            expires_at=utcnow() + timedelta(minutes=self.two_factor_ttl_minutes),
        )
        await self.otps.create(otp)
        logger.info(f"Two-factor code issued for account {account.id}")

        await self.email_sender.send_two_factor_code(
            to=account.email,
            user_name=account.full_name or account.username,
            code=code,
            expires_in_minutes=self.two_factor_ttl_minutes,
        )

    # PUBLIC_INTERFACE
    async def verify_two_factor_code(self, account_id: str, code: str) -> bool:
        """
        Check a two-factor code against the account's latest one.

        Every call counts as an attempt, and a code is refused once the
        attempt cap is passed even if it is correct.

        Returns:
            True when the code matched and has been consumed.

        Raises:
            InvalidOrExpiredTokenError: If there is no usable code, the cap was
                passed or the code does not match.
        """
        otp = await self.otps.find_valid_by_account_and_kind(account_id, OtpKind.TWO_FACTOR)
        if otp is None:
            raise InvalidOrExpiredTokenError("Invalid or expired code")

        attempts = await self.otps.register_attempt(otp.id)
        if attempts is None:
            raise InvalidOrExpiredTokenError("Invalid or expired code")
        otp.attempts = attempts

        if otp.has_exceeded_max_attempts(self.two_factor_max_attempts):
            logger.warning(f"Two-factor attempts exceeded for account {account_id}")
            raise InvalidOrExpiredTokenError("Too many attempts. Request a new code")

        if not hmac.compare_digest(otp.code.encode("utf-8"), str(code).encode("utf-8")):
            logger.warning(f"Wrong two-factor code for account {account_id}")
            raise InvalidOrExpiredTokenError("Invalid or expired code")

        if not await self.otps.consume(otp.id):
            raise InvalidOrExpiredTokenError("Invalid or expired code")
        logger.info(f"Two-factor code verified for account {account_id}")
        return True

    # PUBLIC_INTERFACE
    async def validate_access_token(self, token: str) -> ClaimsPayload:
        """
        Verify an access token and the account it was issued to.

        A deleted, deactivated or locked account loses access immediately,
        without waiting for its tokens to expire.

        Returns:
            The token's claims payload.

        Raises:
            UnauthorizedError: If the token does not verify or its account can
                no longer log in.
        """
        try:
            claims = self.token_issuer.verify_access(token)
        except TokenError as e:
            logger.debug(f"Access token rejected: {e.message}")
            raise UnauthorizedError("Invalid or expired token")

        account = await self.accounts.find_by_id(claims.sub)
        if account is None or not account.can_attempt_login():
            logger.warning(f"Access token refused for unusable account {claims.sub}")
            raise UnauthorizedError("User not authorized")
        return claims

    # PUBLIC_INTERFACE
    async def cleanup_expired_sessions(self) -> int:
        """Delete expired and closed sessions; returns how many were removed."""
        deleted = await self.sessions.delete_expired()
        logger.info(f"Removed {deleted} expired sessions")
        return deleted

    # PUBLIC_INTERFACE
    async def cleanup_expired_otps(self) -> int:
        """Delete expired one-time codes; returns how many were removed."""
        deleted = await self.otps.delete_expired()
        logger.info(f"Removed {deleted} expired one-time codes")
        return deleted

    # PUBLIC_INTERFACE
    async def list_active_sessions(self, account_id: str) -> List[Session]:
        return await self.sessions.find_active_by_account_id(account_id)

    # PUBLIC_INTERFACE
    async def invalidate_session(self, session_id: str, account_id: Optional[str] = None) -> None:
        """
        Close one session.

        Raises:
            NotFoundError: If the session does not exist or belongs to another account.
        """
        session = await self.sessions.find_by_id(session_id)
        if session is None or (account_id is not None and session.account_id != account_id):
            raise NotFoundError("Session not found")
        if not session.is_active:
            return

        if await self._close(session):
            logger.info(f"Session {session_id} closed")


# PUBLIC_INTERFACE
def build_lifecycle_engine(
    database: Database,
    email_sender: Optional[EmailSender] = None,
    password_hasher: Optional[PasswordHasher] = None,
    token_issuer: Optional[TokenIssuer] = None,
    **options,
) -> SessionLifecycleEngine:
    """
    Wire a SessionLifecycleEngine to SQLAlchemy repositories.

    Args:
        database: Database the repositories use.
        email_sender: Defaults to an EmailDispatcher built from settings.
        password_hasher: Defaults to a PasswordManager built from settings.
        token_issuer: Defaults to a TokenIssuer built from settings.
        **options: Extra keyword arguments for SessionLifecycleEngine.

    Returns:
        The configured engine.
    """
    return SessionLifecycleEngine(
        accounts=AccountRepository(database),
        internal_profiles=InternalProfileRepository(database),
        external_profiles=ExternalProfileRepository(database),
        sessions=SessionRepository(database),
        otps=OtpRepository(database),
        token_issuer=token_issuer or TokenIssuer.from_settings(),
        password_hasher=password_hasher or PasswordManager(),
        email_sender=email_sender or EmailDispatcher.from_settings(),
        **options,
    )
