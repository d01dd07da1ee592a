"""
Tests for password hashing, password strength rules and rate limiting.
"""
from unittest.mock import patch

import pytest

from audit_auth.errors import RateLimitExceededError, WeakPasswordError
from audit_auth.security import (PasswordManager, PasswordValidator,
                                 RateLimiter, generate_numeric_code,
                                 generate_secure_token)
from tests.conftest import PASSWORD


def test_hash_and_verify(password_manager):
    """Test a hash verifies only its own password."""
    hashed = password_manager.hash_password(PASSWORD)

    assert hashed != PASSWORD
    assert hashed.startswith("$2b$")
    assert password_manager.verify_password(PASSWORD, hashed)
    assert not password_manager.verify_password("other", hashed)


def test_verify_malformed_hash(password_manager):
    """Test a malformed hash counts as a mismatch."""
    assert not password_manager.verify_password(PASSWORD, "not-a-hash")
    assert not password_manager.verify_password("", "not-a-hash")


async def test_async_hash_and_compare(password_manager):
    hashed = await password_manager.hash(PASSWORD)

    assert await password_manager.compare(PASSWORD, hashed)
    assert not await password_manager.compare("wrong", hashed)


def test_needs_rehash(password_manager):
    """Test a hash below the configured cost factor is flagged."""
    stronger = PasswordManager(rounds=5)

    assert stronger.needs_rehash(password_manager.hash_password(PASSWORD))
    assert not password_manager.needs_rehash(password_manager.hash_password(PASSWORD))


@pytest.mark.parametrize(
    "password, fragment",
    [
        ("Ab1!", "at least 8 characters"),
        ("auditor#2024", "uppercase"),
        ("AUDITOR#2024", "lowercase"),
        ("Auditor#xyz", "digit"),
        ("Auditor2024", "special"),
        ("A" * 40 + "a1!" + "ñ" * 20, "at most 72 bytes"),
    ],
)
def test_password_rules(password, fragment):
    """Test each strength rule is reported."""
    valid, errors = PasswordValidator().validate(password)

    assert not valid
    assert any(fragment in error for error in errors)


def test_common_password_rejected():
    validator = PasswordValidator(require_uppercase=False, require_digit=False, require_special=False)

    valid, errors = validator.validate("auditoria")

    assert not valid
    assert any("too common" in error for error in errors)


def test_validate_or_raise():
    validator = PasswordValidator()
    validator.validate_or_raise(PASSWORD)

    with pytest.raises(WeakPasswordError) as exc_info:
        validator.validate_or_raise("short")
    assert exc_info.value.status_code == 400


def test_rate_limiter():
    """Test requests past the limit are refused per key."""
    limiter = RateLimiter(window_seconds=60, max_requests=2)

    limiter.add_request("10.0.0.1")
    limiter.add_request("10.0.0.1")
    assert limiter.get_remaining("10.0.0.1") == 0

    with pytest.raises(RateLimitExceededError):
        limiter.add_request("10.0.0.1")

    # Verify other keys are unaffected
    limiter.add_request("10.0.0.2")
    assert limiter.get_remaining("10.0.0.2") == 1


def test_rate_limiter_window_expires():
    """Test old requests fall out of the window."""
    limiter = RateLimiter(window_seconds=60, max_requests=1)

    with patch("audit_auth.security.time.time", return_value=1000.0):
        limiter.add_request("10.0.0.1")
        assert limiter.is_rate_limited("10.0.0.1")
        assert limiter.get_reset_time("10.0.0.1") == 1060.0

    with patch("audit_auth.security.time.time", return_value=1061.0):
        assert not limiter.is_rate_limited("10.0.0.1")
        assert limiter.get_reset_time("10.0.0.1") is None


def test_rate_limiter_reset():
    limiter = RateLimiter(max_requests=1)
    limiter.add_request("10.0.0.1")

    limiter.reset()

    assert not limiter.is_rate_limited("10.0.0.1")


def test_generate_secure_token():
    token = generate_secure_token(32)

    assert len(token) == 64
    assert token != generate_secure_token(32)


def test_generate_numeric_code():
    for _ in range(50):
        code = generate_numeric_code(6)
        assert len(code) == 6
        assert code.isdigit()
        assert code[0] != "0"
