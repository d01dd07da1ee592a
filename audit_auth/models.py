"""
SQLAlchemy models for the audit platform authentication core.

This module defines accounts, their internal or external profile, login
sessions and one-time codes. Entities carry their own state rules; the
lifecycle engine only orchestrates them.
"""
import enum
import math
import uuid
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import (JSON, Boolean, Column, DateTime, Enum, ForeignKey,
                        Integer, String, Text)

from audit_auth.authorization import Role
from audit_auth.clock import utcnow
from audit_auth.database import Base
from audit_auth.errors import InvalidRoleSetError
from audit_auth.events import (AccountLocked, EventRecorder, PasswordChanged,
                               SessionCreated, SessionInvalidated,
                               SessionRoleSwitched)

MAX_ROLES_PER_ACCOUNT = 3
PENDING_REFRESH_TOKEN_PREFIX = "pending:"


def _new_id() -> str:
    return str(uuid.uuid4())


class UserType(str, enum.Enum):
    """Account type enumeration."""
    INTERNAL = "INTERNAL"
    EXTERNAL = "EXTERNAL"


class AccountStatus(str, enum.Enum):
    """Account status enumeration."""
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class OtpKind(str, enum.Enum):
    """One-time code purpose."""
    PASSWORD_RESET = "PASSWORD_RESET"
    TWO_FACTOR = "TWO_FACTOR"


# PUBLIC_INTERFACE
def validate_roles(roles: Iterable) -> List[str]:
    """
    Validate an internal account's role set.

    The set must hold between one and three distinct system roles, and
    ``cliente`` cannot be combined with any other role.

    Args:
        roles: Role members or their string values, in assignment order.

    Returns:
        The role values in assignment order.

    Raises:
        InvalidRoleSetError: If the set breaks any of the rules above.
    """
    values = []
    for role in roles:
        try:
            values.append(Role(role).value)
        except ValueError:
            raise InvalidRoleSetError(f"Unknown role: {role}", roles=values)

    if not values:
        raise InvalidRoleSetError("An internal account needs at least one role", roles=values)
    if len(set(values)) != len(values):
        raise InvalidRoleSetError("Roles must not repeat", roles=values)
    if len(values) > MAX_ROLES_PER_ACCOUNT:
        raise InvalidRoleSetError(
            f"An account can hold at most {MAX_ROLES_PER_ACCOUNT} roles", roles=values
        )
    if Role.CLIENTE.value in values and len(values) > 1:
        raise InvalidRoleSetError(
            "The cliente role cannot be combined with other roles", roles=values
        )
    return values


class Account(EventRecorder, Base):
    """
    Account model holding credentials and lockout state.

    Stores a bcrypt password hash, never the password itself.
    """
    __tablename__ = "accounts"

    id = Column(String(36), primary_key=True, default=_new_id)
    username = Column(String(50), unique=True, index=True, nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String(100), nullable=False)
    full_name = Column(String(150), nullable=False, default="")
    user_type = Column(Enum(UserType), nullable=False)
    status = Column(Enum(AccountStatus), default=AccountStatus.ACTIVE, nullable=False)
    failed_login_attempts = Column(Integer, default=0, nullable=False)
    lock_until = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    deleted_at = Column(DateTime, nullable=True)

    @classmethod
    def create(
        cls,
        username: str,
        email: str,
        hashed_password: str,
        user_type: UserType,
        full_name: str = "",
    ) -> "Account":
        """Build a new active account with a clean lockout state."""
        now = utcnow()
        return cls(
            id=_new_id(),
            username=username,
            email=email,
            hashed_password=hashed_password,
            full_name=full_name,
            user_type=user_type,
            status=AccountStatus.ACTIVE,
            failed_login_attempts=0,
            lock_until=None,
            created_at=now,
            updated_at=now,
        )

    @property
    def is_active(self) -> bool:
        return self.status == AccountStatus.ACTIVE

    @property
    def is_locked(self) -> bool:
        """Check if the account is inside a lockout window."""
        return self.lock_until is not None and self.lock_until > utcnow()

    @property
    def is_internal(self) -> bool:
        return self.user_type == UserType.INTERNAL

    @property
    def is_external(self) -> bool:
        return self.user_type == UserType.EXTERNAL

    def can_attempt_login(self) -> bool:
        """An account may try to log in while it is active and not locked."""
        return self.is_active and not self.is_locked

    def increment_failed_attempts(self, policy) -> None:
        """
        Record a failed login and lock the account once the policy says so.

        Args:
            policy: LoginPolicy deciding the threshold and lockout duration.
        """
        self.failed_login_attempts = (self.failed_login_attempts or 0) + 1
        if policy.should_lock_account(self.failed_login_attempts):
            self.lock_until = policy.calculate_lock_until()
            self._record_event(AccountLocked(account_id=self.id, lock_until=self.lock_until))

    def reset_login_attempts(self) -> None:
        self.failed_login_attempts = 0
        self.lock_until = None

    def update_password(self, hashed_password: str) -> None:
        """Replace the password hash and clear the lockout state."""
        self.hashed_password = hashed_password
        self.reset_login_attempts()
        self._record_event(PasswordChanged(account_id=self.id))

    def lock_remaining_minutes(self) -> int:
        """Whole minutes left in the lockout window, rounded up."""
        if not self.is_locked:
            return 0
        return math.ceil((self.lock_until - utcnow()).total_seconds() / 60)

    def activate(self) -> None:
        self.status = AccountStatus.ACTIVE

    def deactivate(self) -> None:
        self.status = AccountStatus.INACTIVE

    def __repr__(self) -> str:
        """String representation of the Account object."""
        return f"<Account(id={self.id}, username={self.username}, type={self.user_type.value})>"


class InternalProfile(Base):
    """Staff profile holding the ordered role assignment."""
    __tablename__ = "internal_profiles"

    id = Column(String(36), primary_key=True, default=_new_id)
    account_id = Column(
        String(36), ForeignKey("accounts.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    roles = Column(JSON, nullable=False, default=list)
    department = Column(String(100), nullable=True)
    employee_code = Column(String(50), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    @classmethod
    def create(
        cls,
        account_id: str,
        roles: Iterable,
        department: Optional[str] = None,
        employee_code: Optional[str] = None,
    ) -> "InternalProfile":
        """
        Build an internal profile after validating the role set.

        Raises:
            InvalidRoleSetError: If the roles break the combination rules.
        """
        return cls(
            id=_new_id(),
            account_id=account_id,
            roles=validate_roles(roles),
            department=department,
            employee_code=employee_code,
        )

    def update_roles(self, roles: Iterable) -> None:
        """Replace the role set, validating it first."""
        self.roles = validate_roles(roles)

    @property
    def primary_role(self) -> str:
        """``cliente`` when held, otherwise the first assigned role."""
        if Role.CLIENTE.value in self.roles:
            return Role.CLIENTE.value
        return self.roles[0]

    def has_role(self, role) -> bool:
        value = role.value if isinstance(role, Role) else role
        return value in (self.roles or [])

    def __repr__(self) -> str:
        return f"<InternalProfile(id={self.id}, account_id={self.account_id}, roles={self.roles})>"


class ExternalProfile(Base):
    """Client organization member profile."""
    __tablename__ = "external_profiles"

    id = Column(String(36), primary_key=True, default=_new_id)
    account_id = Column(
        String(36), ForeignKey("accounts.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    organization_id = Column(String(36), nullable=False, index=True)
    job_title = Column(String(100), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    @classmethod
    def create(
        cls, account_id: str, organization_id: str, job_title: Optional[str] = None
    ) -> "ExternalProfile":
        return cls(
            id=_new_id(),
            account_id=account_id,
            organization_id=organization_id,
            job_title=job_title,
            is_active=True,
        )

    def __repr__(self) -> str:
        return f"<ExternalProfile(id={self.id}, organization_id={self.organization_id})>"


class Session(EventRecorder, Base):
    """
    Login session backing a rotating refresh token.

    Sessions are never physically removed by logout; they are flagged inactive.
    """
    __tablename__ = "sessions"

    id = Column(String(36), primary_key=True, default=_new_id)
    account_id = Column(
        String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    refresh_token = Column(Text, unique=True, nullable=False)
    current_role = Column(String(50), nullable=False)
    expires_at = Column(DateTime, nullable=False)
    ip_address = Column(String(45), nullable=True)  # IPv6 can be up to 45 chars
    user_agent = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    last_used_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    deleted_at = Column(DateTime, nullable=True)

    @classmethod
    def open(
        cls,
        account_id: str,
        current_role: str,
        expires_at: datetime,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> "Session":
        """
        Start a new session.

        The refresh token is a unique placeholder until the real token, which
        embeds the session id, has been signed.
        """
        now = utcnow()
        session = cls(
            id=_new_id(),
            account_id=account_id,
            refresh_token=f"{PENDING_REFRESH_TOKEN_PREFIX}{uuid.uuid4()}",
            current_role=current_role,
            expires_at=expires_at,
            ip_address=ip_address,
            user_agent=user_agent,
            is_active=True,
            last_used_at=now,
            created_at=now,
            updated_at=now,
        )
        session._record_event(
            SessionCreated(
                session_id=session.id,
                account_id=account_id,
                current_role=current_role,
                ip_address=ip_address,
            )
        )
        return session

    @property
    def is_expired(self) -> bool:
        return utcnow() >= self.expires_at

    @property
    def is_valid(self) -> bool:
        """An active session that has not reached its expiry."""
        return bool(self.is_active) and not self.is_expired

    def invalidate(self) -> None:
        self.is_active = False
        self._record_event(SessionInvalidated(session_id=self.id, account_id=self.account_id))

    def switch_role(self, new_role: str) -> None:
        previous = self.current_role
        self.current_role = new_role
        self._record_event(
            SessionRoleSwitched(
                session_id=self.id,
                account_id=self.account_id,
                previous_role=previous,
                new_role=new_role,
            )
        )

    def update_refresh_token(self, refresh_token: str, expires_at: datetime) -> None:
        """
        Rotate the refresh token together with its expiry.

        Raises:
            ValueError: If the token is blank or the expiry is not in the future.
        """
        if not refresh_token or not refresh_token.strip():
            raise ValueError("Refresh token cannot be empty")
        if expires_at <= utcnow():
            raise ValueError("Session expiry must be in the future")
        self.refresh_token = refresh_token
        self.expires_at = expires_at

    def update_last_used(self) -> None:
        self.last_used_at = utcnow()

    def __repr__(self) -> str:
        return f"<Session(id={self.id}, account_id={self.account_id}, role={self.current_role}, active={self.is_active})>"


class Otp(Base):
    """One-time code for password reset or two-factor verification."""
    __tablename__ = "otps"

    id = Column(String(36), primary_key=True, default=_new_id)
    account_id = Column(
        String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    code = Column(String(128), nullable=False, index=True)
    kind = Column(Enum(OtpKind), nullable=False)
    expires_at = Column(DateTime, nullable=False)
    is_used = Column(Boolean, default=False, nullable=False)
    used_at = Column(DateTime, nullable=True)
    attempts = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    deleted_at = Column(DateTime, nullable=True)

    @classmethod
    def issue(cls, account_id: str, code: str, kind: OtpKind, expires_at: datetime) -> "Otp":
        now = utcnow()
        return cls(
            id=_new_id(),
            account_id=account_id,
            code=code,
            kind=kind,
            expires_at=expires_at,
            is_used=False,
            attempts=0,
            created_at=now,
            updated_at=now,
        )

    @property
    def is_expired(self) -> bool:
        return utcnow() >= self.expires_at

    @property
    def is_valid(self) -> bool:
        """Unused, unexpired and not deleted."""
        return not self.is_used and not self.is_expired and self.deleted_at is None

    def mark_used(self) -> None:
        self.is_used = True
        self.used_at = utcnow()

    def increment_attempts(self) -> None:
        self.attempts = (self.attempts or 0) + 1

    def has_exceeded_max_attempts(self, max_attempts: int = 3) -> bool:
        return (self.attempts or 0) > max_attempts

    def __repr__(self) -> str:
        return f"<Otp(id={self.id}, account_id={self.account_id}, kind={self.kind.value}, used={self.is_used})>"
