"""
Security utilities for the audit platform authentication core.

Password strength rules applied on account creation and password reset,
bcrypt hashing of credentials, the per-client sliding window limiter used on
the unauthenticated routes, and generators for reset tokens and two-factor
codes.
"""
import asyncio
import logging
import re
import secrets
import time
from collections import deque
from typing import Callable, Deque, Dict, List, Optional, Tuple

from passlib.context import CryptContext

from audit_auth.config import settings
from audit_auth.errors import RateLimitExceededError, WeakPasswordError

# Configure logging
logger = logging.getLogger(__name__)

# bcrypt only reads the first 72 bytes of its input
MAX_PASSWORD_LENGTH = 72

COMMON_PASSWORDS = frozenset({
    "password", "password1", "password123", "123456", "12345678", "123456789",
    "qwerty", "qwerty123", "abc123", "admin", "admin123", "welcome",
    "auditoria", "auditor", "contraseña", "cliente",
})

SPECIAL_CHARACTERS = re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>\/?~`]")

Rule = Tuple[Callable[[str], bool], str]


class PasswordValidator:
    """
    Password strength rules for account credentials.

    Each enabled requirement contributes one rule; a password is accepted when
    no rule reports it.
    """

    def __init__(
        self,
        min_length: int = 8,
        max_length: int = MAX_PASSWORD_LENGTH,
        require_uppercase: bool = True,
        require_lowercase: bool = True,
        require_digit: bool = True,
        require_special: bool = True,
        disallow_common: bool = True
    ):
        """
        Args:
            min_length: Minimum number of characters.
            max_length: Maximum size in UTF-8 bytes.
            require_uppercase: Require an uppercase letter.
            require_lowercase: Require a lowercase letter.
            require_digit: Require a digit.
            require_special: Require a punctuation character.
            disallow_common: Refuse well known passwords.
        """
        self.min_length = min_length
        self.max_length = max_length

        rules: List[Rule] = [
            (lambda p: len(p) >= min_length,
             f"Password must be at least {min_length} characters long."),
            (lambda p: len(p.encode("utf-8")) <= max_length,
             f"Password must be at most {max_length} bytes long."),
        ]
        if require_uppercase:
            rules.append((lambda p: any(c.isupper() for c in p),
                          "Password must contain at least one uppercase letter."))
        if require_lowercase:
            rules.append((lambda p: any(c.islower() for c in p),
                          "Password must contain at least one lowercase letter."))
        if require_digit:
            rules.append((lambda p: any(c.isdigit() for c in p),
                          "Password must contain at least one digit."))
        if require_special:
            rules.append((lambda p: SPECIAL_CHARACTERS.search(p) is not None,
                          "Password must contain at least one special character."))
        if disallow_common:
            rules.append((lambda p: p.lower() not in COMMON_PASSWORDS,
                          "Password is too common and easily guessable."))
        self.rules = rules

    @classmethod
    def from_settings(cls) -> "PasswordValidator":
        """Validator configured through the PASSWORD_* settings."""
        return cls(
            min_length=settings.PASSWORD_MIN_LENGTH,
            require_uppercase=settings.PASSWORD_REQUIRE_UPPERCASE,
            require_lowercase=settings.PASSWORD_REQUIRE_LOWERCASE,
            require_digit=settings.PASSWORD_REQUIRE_DIGIT,
            require_special=settings.PASSWORD_REQUIRE_SPECIAL,
        )

    # PUBLIC_INTERFACE
    def validate(self, password: str) -> Tuple[bool, List[str]]:
        """
        Check a password against every enabled rule.

        Args:
            password: Candidate password.

        Returns:
            ``(valid, errors)`` where ``errors`` lists one message per broken rule.
        """
        errors = [message for check, message in self.rules if not check(password)]
        return not errors, errors

    # PUBLIC_INTERFACE
    def validate_or_raise(self, password: str) -> None:
        """
        Raises:
            WeakPasswordError: If any rule is broken; the message joins them all.
        """
        valid, errors = self.validate(password)
        if not valid:
            raise WeakPasswordError(" ".join(errors))


class PasswordManager:
    """
    bcrypt credential hashing.

    The async ``hash`` and ``compare`` run in a worker thread so login and
    reset requests do not stall the event loop.
    """

    def __init__(self, rounds: Optional[int] = None):
        """
        Args:
            rounds: bcrypt cost factor, BCRYPT_ROUNDS when omitted. Hashes made
                with a lower cost are reported by ``needs_rehash``.
        """
        self.rounds = rounds if rounds is not None else settings.BCRYPT_ROUNDS
        self.context = CryptContext(
            schemes=["bcrypt"],
            deprecated="auto",
            bcrypt__rounds=self.rounds,
            bcrypt__min_rounds=self.rounds,
        )

    # PUBLIC_INTERFACE
    def hash_password(self, password: str) -> str:
        return self.context.hash(password)

    # PUBLIC_INTERFACE
    def verify_password(self, plain_password: str, hashed_password: str) -> bool:
        """
        Compare a candidate password with a stored hash.

        Empty input or an unreadable hash never matches.
        """
        if not plain_password or not hashed_password:
            return False
        try:
            return self.context.verify(plain_password, hashed_password)
        except ValueError as e:
            logger.warning(f"Stored password hash could not be read: {str(e)}")
            return False

    # PUBLIC_INTERFACE
    async def hash(self, password: str) -> str:
        return await asyncio.to_thread(self.hash_password, password)

    # PUBLIC_INTERFACE
    async def compare(self, plain_password: str, hashed_password: str) -> bool:
        return await asyncio.to_thread(self.verify_password, plain_password, hashed_password)

    # PUBLIC_INTERFACE
    def needs_rehash(self, hashed_password: str) -> bool:
        """True when the hash was made with other settings than the current ones."""
        return self.context.needs_update(hashed_password)


class RateLimiter:
    """
    Sliding window request counter keyed by client.

    Timestamps older than ``window_seconds`` are dropped lazily whenever a key
    is inspected, and a key with no recent requests is forgotten.
    """

    def __init__(self, window_seconds: int = 60, max_requests: int = 60):
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self.request_records: Dict[str, Deque[float]] = {}

    def _recent(self, key: str) -> Deque[float]:
        records = self.request_records.get(key)
        if records is None:
            return deque()

        cutoff = time.time() - self.window_seconds
        while records and records[0] <= cutoff:
            records.popleft()
        if not records:
            del self.request_records[key]
        return records

    # PUBLIC_INTERFACE
    def is_rate_limited(self, key: str) -> bool:
        return len(self._recent(key)) >= self.max_requests

    # PUBLIC_INTERFACE
    def add_request(self, key: str) -> None:
        """
        Count one request for ``key``.

        Raises:
            RateLimitExceededError: If the key already used its window; the
                refused request is not counted.
        """
        if self.is_rate_limited(key):
            logger.warning(f"Rate limit exceeded for {key}")
            raise RateLimitExceededError(f"Rate limit exceeded for {key}")
        self.request_records.setdefault(key, deque()).append(time.time())

    # PUBLIC_INTERFACE
    def get_remaining(self, key: str) -> int:
        return max(0, self.max_requests - len(self._recent(key)))

    # PUBLIC_INTERFACE
    def get_reset_time(self, key: str) -> Optional[float]:
        """Epoch seconds at which the oldest counted request leaves the window."""
        records = self._recent(key)
        if not records:
            return None
        return records[0] + self.window_seconds

    def reset(self) -> None:
        self.request_records.clear()


# PUBLIC_INTERFACE
def generate_secure_token(length: int = 32) -> str:
    """Hex encoded random token of ``length`` bytes, used for reset links."""
    return secrets.token_hex(length)


# PUBLIC_INTERFACE
def generate_numeric_code(digits: int = 6) -> str:
    """Random ``digits`` long code that never starts with zero."""
    low = 10 ** (digits - 1)
    return str(secrets.randbelow(9 * low) + low)
