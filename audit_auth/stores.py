"""
Persistence and delivery ports used by the session lifecycle engine.

The engine depends on these protocols only; ``audit_auth.repositories``
provides the SQLAlchemy implementations and tests may substitute doubles.
"""
from datetime import datetime
from typing import List, Optional, Protocol

from audit_auth.models import (Account, ExternalProfile, InternalProfile, Otp,
                               OtpKind, Session)


class CredentialStore(Protocol):
    async def find_by_identifier(self, identifier: str) -> Optional[Account]: ...

    async def find_by_id(self, account_id: str) -> Optional[Account]: ...

    async def find_by_email(self, email: str) -> Optional[Account]: ...

    async def save(self, account: Account) -> Account: ...


class InternalProfileStore(Protocol):
    async def find_by_account_id(self, account_id: str) -> Optional[InternalProfile]: ...


class ExternalProfileStore(Protocol):
    async def find_by_account_id(self, account_id: str) -> Optional[ExternalProfile]: ...


class SessionStore(Protocol):
    async def create(self, session: Session) -> Session: ...

    async def update(self, session: Session) -> Session: ...

    async def save(self, session: Session) -> Session: ...

    async def find_by_id(self, session_id: str) -> Optional[Session]: ...

    async def find_by_refresh_token(self, refresh_token: str) -> Optional[Session]: ...

    async def find_active_by_account_id(self, account_id: str) -> List[Session]: ...

    async def rotate(self, session: Session, previous_refresh_token: str) -> bool: ...

    async def invalidate(self, session_id: str) -> bool: ...

    async def invalidate_all_by_account_id(self, account_id: str) -> int: ...

    async def delete_expired(self, now: Optional[datetime] = None) -> int: ...


class OtpStore(Protocol):
    async def create(self, otp: Otp) -> Otp: ...

    async def save(self, otp: Otp) -> Otp: ...

    async def find_by_code_and_kind(self, code: str, kind: OtpKind) -> Optional[Otp]: ...

    async def find_valid_by_account_and_kind(self, account_id: str, kind: OtpKind) -> Optional[Otp]: ...

    async def register_attempt(self, otp_id: str) -> Optional[int]: ...

    async def consume(self, otp_id: str) -> bool: ...

    async def invalidate_all_by_account_and_kind(self, account_id: str, kind: OtpKind) -> int: ...

    async def delete_expired(self, now: Optional[datetime] = None) -> int: ...


class PasswordHasher(Protocol):
    async def hash(self, password: str) -> str: ...

    async def compare(self, plain_password: str, hashed_password: str) -> bool: ...


class EmailSender(Protocol):
    async def send_reset_password_email(
        self, to: str, user_name: str, reset_link: str, expires_in_minutes: int
    ) -> bool: ...

    async def send_two_factor_code(
        self, to: str, user_name: str, code: str, expires_in_minutes: int
    ) -> bool: ...
