"""
Tests for the account, profile, session and one-time code entities.
"""
from datetime import timedelta
from itertools import combinations

import pytest

from audit_auth.clock import utcnow
from audit_auth.errors import BadRequestError, InvalidRoleSetError
from audit_auth.events import (AccountLocked, PasswordChanged, SessionCreated,
                               SessionInvalidated, SessionRoleSwitched)
from audit_auth.models import (PENDING_REFRESH_TOKEN_PREFIX, Account,
                               InternalProfile, Otp, OtpKind, Session,
                               UserType, validate_roles)
from audit_auth.policy import LoginPolicy

STAFF_ROLES = ["administrador", "gerente", "auditor"]


def _account() -> Account:
    return Account.create(
        username="juanp",
        email="juan@auditoria.com",
        hashed_password="hash",
        user_type=UserType.INTERNAL,
    )


@pytest.mark.parametrize(
    "roles",
    [list(c) for size in (1, 2, 3) for c in combinations(STAFF_ROLES, size)],
)
def test_staff_role_subsets_are_valid(roles):
    """Test every subset of staff roles of size one to three is accepted."""
    assert validate_roles(roles) == roles


def test_cliente_alone_is_valid():
    """Test the cliente role on its own is accepted."""
    assert validate_roles(["cliente"]) == ["cliente"]


@pytest.mark.parametrize("other", STAFF_ROLES)
def test_cliente_cannot_be_combined(other):
    """Test cliente plus any other role is refused in either order."""
    with pytest.raises(InvalidRoleSetError):
        validate_roles(["cliente", other])
    with pytest.raises(InvalidRoleSetError):
        validate_roles([other, "cliente"])


@pytest.mark.parametrize("roles", [[], ["auditor", "auditor"], ["superuser"]])
def test_malformed_role_sets_rejected(roles):
    """Test empty, repeated and unknown roles are refused."""
    with pytest.raises(InvalidRoleSetError) as exc_info:
        validate_roles(roles)

    # Verify it is reported as a bad request
    assert isinstance(exc_info.value, BadRequestError)
    assert exc_info.value.status_code == 400


def test_internal_profile_primary_role():
    """Test the primary role is the first assigned, or cliente when held."""
    profile = InternalProfile.create("account-1", ["auditor", "gerente"])
    assert profile.primary_role == "auditor"
    assert profile.has_role("gerente")
    assert not profile.has_role("administrador")

    cliente = InternalProfile.create("account-2", ["cliente"])
    assert cliente.primary_role == "cliente"


def test_update_roles_validates():
    """Test updating roles applies the same rules as creation."""
    profile = InternalProfile.create("account-1", ["auditor"])

    with pytest.raises(InvalidRoleSetError):
        profile.update_roles(["auditor", "cliente"])

    # Verify the previous roles are kept
    assert profile.roles == ["auditor"]

    profile.update_roles(["gerente", "auditor"])
    assert profile.roles == ["gerente", "auditor"]


def test_failed_attempts_lock_at_threshold():
    """Test the account locks exactly when the policy threshold is reached."""
    account = _account()
    policy = LoginPolicy.default()

    for expected in (1, 2):
        account.increment_failed_attempts(policy)
        assert account.failed_login_attempts == expected
        assert account.lock_until is None
        assert account.can_attempt_login()

    account.increment_failed_attempts(policy)

    # Verify the lock is set in the future
    assert account.failed_login_attempts == 3
    assert account.lock_until > utcnow()
    assert account.is_locked
    assert not account.can_attempt_login()
    assert 29 <= account.lock_remaining_minutes() <= 30
    assert [type(e) for e in account.pull_domain_events()] == [AccountLocked]


def test_reset_login_attempts():
    """Test resetting clears both the counter and the lock."""
    account = _account()
    for _ in range(3):
        account.increment_failed_attempts(LoginPolicy.default())

    account.reset_login_attempts()

    assert account.failed_login_attempts == 0
    assert account.lock_until is None
    assert account.lock_remaining_minutes() == 0


def test_update_password_resets_lockout():
    """Test a password change clears the lockout state."""
    account = _account()
    for _ in range(3):
        account.increment_failed_attempts(LoginPolicy.default())
    account.pull_domain_events()

    account.update_password("new-hash")

    assert account.hashed_password == "new-hash"
    assert account.failed_login_attempts == 0
    assert account.lock_until is None
    assert [type(e) for e in account.pull_domain_events()] == [PasswordChanged]


def test_deactivated_account_cannot_login():
    """Test an inactive account cannot attempt login."""
    account = _account()
    account.deactivate()
    assert not account.is_active
    assert not account.can_attempt_login()

    account.activate()
    assert account.can_attempt_login()


def test_session_open_uses_placeholder_token():
    """Test a new session starts valid with a unique placeholder token."""
    expires_at = utcnow() + timedelta(days=7)
    first = Session.open("account-1", "auditor", expires_at, ip_address="10.0.0.1")
    second = Session.open("account-1", "auditor", expires_at)

    assert first.refresh_token.startswith(PENDING_REFRESH_TOKEN_PREFIX)
    assert first.refresh_token != second.refresh_token
    assert first.is_valid
    assert [type(e) for e in first.pull_domain_events()] == [SessionCreated]
    # Verify draining empties the list
    assert first.pull_domain_events() == []


def test_session_invalidate_and_expiry():
    """Test a session is invalid once closed or expired."""
    session = Session.open("account-1", "auditor", utcnow() + timedelta(days=1))
    session.invalidate()
    assert not session.is_valid
    assert isinstance(session.pull_domain_events()[-1], SessionInvalidated)

    expired = Session.open("account-1", "auditor", utcnow() - timedelta(seconds=1))
    assert expired.is_active
    assert not expired.is_valid


def test_session_update_refresh_token_validation():
    """Test the token and expiry are replaced together and validated."""
    session = Session.open("account-1", "auditor", utcnow() + timedelta(days=1))
    new_expiry = utcnow() + timedelta(days=7)

    session.update_refresh_token("real-token", new_expiry)
    assert session.refresh_token == "real-token"
    assert session.expires_at == new_expiry

    with pytest.raises(ValueError):
        session.update_refresh_token("   ", new_expiry)
    with pytest.raises(ValueError):
        session.update_refresh_token("other-token", utcnow() - timedelta(minutes=1))

    # Verify failed updates changed nothing
    assert session.refresh_token == "real-token"


def test_session_switch_role_records_event():
    """Test switching role mutates the session in place."""
    session = Session.open("account-1", "administrador", utcnow() + timedelta(days=1))
    session.pull_domain_events()

    session.switch_role("auditor")

    assert session.current_role == "auditor"
    event = session.pull_domain_events()[0]
    assert isinstance(event, SessionRoleSwitched)
    assert (event.previous_role, event.new_role) == ("administrador", "auditor")


def test_otp_validity():
    """Test a code is valid until used, expired or deleted."""
    otp = Otp.issue("account-1", "123456", OtpKind.TWO_FACTOR, utcnow() + timedelta(minutes=10))
    assert otp.is_valid

    otp.mark_used()
    assert not otp.is_valid
    assert otp.used_at is not None

    expired = Otp.issue("account-1", "123456", OtpKind.TWO_FACTOR, utcnow() - timedelta(seconds=1))
    assert not expired.is_valid

    deleted = Otp.issue("account-1", "123456", OtpKind.TWO_FACTOR, utcnow() + timedelta(minutes=10))
    deleted.deleted_at = utcnow()
    assert not deleted.is_valid


def test_otp_attempt_cap():
    """Test the cap is only exceeded on the attempt after the maximum."""
    otp = Otp.issue("account-1", "123456", OtpKind.TWO_FACTOR, utcnow() + timedelta(minutes=10))
    for _ in range(3):
        otp.increment_attempts()
    assert not otp.has_exceeded_max_attempts(3)

    otp.increment_attempts()
    assert otp.has_exceeded_max_attempts(3)
