"""
Login lockout policy.

A LoginPolicy is a pure decision object: it owns no state, it only tells the
account how many failures are tolerated and how long a lockout lasts. Call
sites pick the policy, so elevated accounts can be given a stricter one.
"""
from datetime import datetime, timedelta
from typing import Optional

from audit_auth.clock import utcnow
from audit_auth.config import settings


class LoginPolicy:
    """Brute-force lockout rules."""

    def __init__(self, max_attempts: int = 3, lock_duration_minutes: int = 30):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if lock_duration_minutes < 1:
            raise ValueError("lock_duration_minutes must be at least 1")
        self.max_attempts = max_attempts
        self.lock_duration_minutes = lock_duration_minutes

    # PUBLIC_INTERFACE
    def should_lock_account(self, failed_attempts: int) -> bool:
        """
        Check if an account should be locked based on failed attempts.

        Args:
            failed_attempts: Number of consecutive failed login attempts.

        Returns:
            True once the failures reach the configured maximum.
        """
        return failed_attempts >= self.max_attempts

    # PUBLIC_INTERFACE
    def calculate_lock_until(self, now: Optional[datetime] = None) -> datetime:
        """
        Get the time until which an account should be locked.

        Args:
            now: Reference time, defaults to the current UTC time.

        Returns:
            Datetime representing when the lockout should expire.
        """
        return (now or utcnow()) + timedelta(minutes=self.lock_duration_minutes)

    def remaining_attempts(self, failed_attempts: int) -> int:
        """Attempts left before the account locks."""
        return max(0, self.max_attempts - failed_attempts)

    @classmethod
    def default(cls) -> "LoginPolicy":
        """System wide policy."""
        return cls(3, 30)

    @classmethod
    def strict(cls) -> "LoginPolicy":
        """Policy for accounts with elevated privileges."""
        return cls(2, 60)

    @classmethod
    def relaxed(cls) -> "LoginPolicy":
        """Policy for development and testing environments."""
        return cls(5, 15)

    @classmethod
    def from_settings(cls) -> "LoginPolicy":
        """Policy configured through MAX_LOGIN_ATTEMPTS and LOCKOUT_DURATION_MINUTES."""
        return cls(settings.MAX_LOGIN_ATTEMPTS, settings.LOCKOUT_DURATION_MINUTES)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LoginPolicy):
            return NotImplemented
        return (
            self.max_attempts == other.max_attempts
            and self.lock_duration_minutes == other.lock_duration_minutes
        )

    def __hash__(self) -> int:
        return hash((self.max_attempts, self.lock_duration_minutes))

    def __repr__(self) -> str:
        return f"<LoginPolicy(max_attempts={self.max_attempts}, lock_duration_minutes={self.lock_duration_minutes})>"
