"""
SQLAlchemy repositories for accounts, profiles, sessions and one-time codes.

Each method opens its own session scope, so every call is one short
transaction. Returned entities are detached but fully loaded.
"""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import delete, or_, select, update

from audit_auth.clock import utcnow
from audit_auth.database import Database
from audit_auth.models import (Account, ExternalProfile, InternalProfile, Otp,
                               OtpKind, Session)

logger = logging.getLogger(__name__)


class _Repository:
    """Shared plumbing for repositories bound to a Database."""

    model = None

    def __init__(self, database: Database):
        self.database = database

    async def _get(self, entity_id: str):
        async with self.database.session_scope() as session:
            return await session.get(self.model, entity_id)

    async def _first(self, statement):
        async with self.database.session_scope() as session:
            result = await session.execute(statement)
            return result.scalars().first()

    async def _all(self, statement) -> list:
        async with self.database.session_scope() as session:
            result = await session.execute(statement)
            return list(result.scalars().all())

    async def _rowcount(self, statement) -> int:
        async with self.database.session_scope() as session:
            result = await session.execute(statement)
            return result.rowcount or 0

    async def _add(self, entity):
        async with self.database.session_scope() as session:
            session.add(entity)
        return entity

    async def _merge(self, entity):
        async with self.database.session_scope() as session:
            await session.merge(entity)
        return entity


class AccountRepository(_Repository):
    """Credential store backed by the ``accounts`` table."""

    model = Account

    # PUBLIC_INTERFACE
    async def find_by_identifier(self, identifier: str) -> Optional[Account]:
        """
        Find a live account by username or email.

        Args:
            identifier: Username or email address.

        Returns:
            The account, or None when missing or soft-deleted.
        """
        statement = select(Account).where(
            or_(Account.username == identifier, Account.email == identifier),
            Account.deleted_at.is_(None),
        )
        return await self._first(statement)

    # PUBLIC_INTERFACE
    async def find_by_id(self, account_id: str) -> Optional[Account]:
        statement = select(Account).where(Account.id == account_id, Account.deleted_at.is_(None))
        return await self._first(statement)

    # PUBLIC_INTERFACE
    async def find_by_email(self, email: str) -> Optional[Account]:
        statement = select(Account).where(Account.email == email, Account.deleted_at.is_(None))
        return await self._first(statement)

    # PUBLIC_INTERFACE
    async def find_by_username(self, username: str) -> Optional[Account]:
        statement = select(Account).where(Account.username == username, Account.deleted_at.is_(None))
        return await self._first(statement)

    # PUBLIC_INTERFACE
    async def add(self, account: Account) -> Account:
        """Insert a new account."""
        return await self._add(account)

    # PUBLIC_INTERFACE
    async def save(self, account: Account) -> Account:
        """Persist changes made to an account."""
        return await self._merge(account)


class InternalProfileRepository(_Repository):
    model = InternalProfile

    # PUBLIC_INTERFACE
    async def find_by_account_id(self, account_id: str) -> Optional[InternalProfile]:
        statement = select(InternalProfile).where(InternalProfile.account_id == account_id)
        return await self._first(statement)

    async def add(self, profile: InternalProfile) -> InternalProfile:
        return await self._add(profile)

    async def save(self, profile: InternalProfile) -> InternalProfile:
        return await self._merge(profile)


class ExternalProfileRepository(_Repository):
    model = ExternalProfile

    # PUBLIC_INTERFACE
    async def find_by_account_id(self, account_id: str) -> Optional[ExternalProfile]:
        statement = select(ExternalProfile).where(ExternalProfile.account_id == account_id)
        return await self._first(statement)

    async def add(self, profile: ExternalProfile) -> ExternalProfile:
        return await self._add(profile)

    async def save(self, profile: ExternalProfile) -> ExternalProfile:
        return await self._merge(profile)


class SessionRepository(_Repository):
    """Session store backed by the ``sessions`` table."""

    model = Session

    # PUBLIC_INTERFACE
    async def create(self, session: Session) -> Session:
        """Insert a new session."""
        return await self._add(session)

    # PUBLIC_INTERFACE
    async def update(self, session: Session) -> Session:
        """Persist every mutable field of an existing session."""
        return await self._merge(session)

    # PUBLIC_INTERFACE
    async def save(self, session: Session) -> Session:
        return await self._merge(session)

    # PUBLIC_INTERFACE
    async def find_by_id(self, session_id: str) -> Optional[Session]:
        return await self._get(session_id)

    # PUBLIC_INTERFACE
    async def find_by_refresh_token(self, refresh_token: str) -> Optional[Session]:
        """
        Find the active session currently holding a refresh token.

        Args:
            refresh_token: Refresh token string.

        Returns:
            The session, or None if no active session holds the token.
        """
        statement = select(Session).where(
            Session.refresh_token == refresh_token,
            Session.is_active.is_(True),
        )
        return await self._first(statement)

    # PUBLIC_INTERFACE
    async def find_active_by_account_id(self, account_id: str) -> List[Session]:
        statement = (
            select(Session)
            .where(Session.account_id == account_id, Session.is_active.is_(True))
            .order_by(Session.created_at.desc())
        )
        return await self._all(statement)

    # PUBLIC_INTERFACE
    async def rotate(self, session: Session, previous_refresh_token: str) -> bool:
        """
        Store a session's new refresh token only if it still holds the old one.

        Args:
            session: Session carrying the new refresh token, expiry and role.
            previous_refresh_token: Refresh token the caller presented.

        Returns:
            False when another rotation or a logout got there first.
        """
        statement = (
            update(Session)
            .where(
                Session.id == session.id,
                Session.refresh_token == previous_refresh_token,
                Session.is_active.is_(True),
            )
            .values(
                refresh_token=session.refresh_token,
                expires_at=session.expires_at,
                current_role=session.current_role,
                last_used_at=session.last_used_at,
                updated_at=utcnow(),
            )
        )
        return await self._rowcount(statement) == 1

    # PUBLIC_INTERFACE
    async def invalidate(self, session_id: str) -> bool:
        """
        Close a session if it is still active.

        Returns:
            True when this call closed it.
        """
        statement = (
            update(Session)
            .where(Session.id == session_id, Session.is_active.is_(True))
            .values(is_active=False, updated_at=utcnow())
        )
        return await self._rowcount(statement) == 1

    # PUBLIC_INTERFACE
    async def invalidate_all_by_account_id(self, account_id: str) -> int:
        """
        Deactivate every active session of an account in one statement.

        Returns:
            Number of sessions closed.
        """
        statement = (
            update(Session)
            .where(Session.account_id == account_id, Session.is_active.is_(True))
            .values(is_active=False)
        )
        return await self._rowcount(statement)

    # PUBLIC_INTERFACE
    async def delete_expired(self, now: Optional[datetime] = None) -> int:
        """
        Hard-delete sessions that expired or were closed.

        Args:
            now: Reference time, defaults to the current UTC time.

        Returns:
            Number of sessions deleted.
        """
        cutoff = now or utcnow()
        statement = delete(Session).where(
            or_(Session.expires_at < cutoff, Session.is_active.is_(False))
        )
        return await self._rowcount(statement)


class OtpRepository(_Repository):
    """One-time code store backed by the ``otps`` table."""

    model = Otp

    # PUBLIC_INTERFACE
    async def create(self, otp: Otp) -> Otp:
        return await self._add(otp)

    # PUBLIC_INTERFACE
    async def save(self, otp: Otp) -> Otp:
        return await self._merge(otp)

    # PUBLIC_INTERFACE
    async def find_by_code_and_kind(self, code: str, kind: OtpKind) -> Optional[Otp]:
        """Most recent non-deleted code of a kind matching the value."""
        statement = (
            select(Otp)
            .where(Otp.code == code, Otp.kind == kind, Otp.deleted_at.is_(None))
            .order_by(Otp.created_at.desc())
        )
        return await self._first(statement)

    # PUBLIC_INTERFACE
    async def find_valid_by_account_and_kind(self, account_id: str, kind: OtpKind) -> Optional[Otp]:
        """
        Most recent unused, unexpired code of a kind for an account.

        Returns:
            The code, or None when the account has no usable code of that kind.
        """
        statement = (
            select(Otp)
            .where(
                Otp.account_id == account_id,
                Otp.kind == kind,
                Otp.is_used.is_(False),
                Otp.expires_at > utcnow(),
                Otp.deleted_at.is_(None),
            )
            .order_by(Otp.created_at.desc())
        )
        return await self._first(statement)

    # PUBLIC_INTERFACE
    async def register_attempt(self, otp_id: str) -> Optional[int]:
        """
        Count one verification attempt against an unused code.

        Returns:
            The attempt count after this one, or None if the code was used.
        """
        async with self.database.session_scope() as session:
            result = await session.execute(
                update(Otp)
                .where(Otp.id == otp_id, Otp.is_used.is_(False))
                .values(attempts=Otp.attempts + 1, updated_at=utcnow())
            )
            if not result.rowcount:
                return None
            return await session.scalar(select(Otp.attempts).where(Otp.id == otp_id))

    # PUBLIC_INTERFACE
    async def consume(self, otp_id: str) -> bool:
        """
        Mark a code used unless it already was.

        Returns:
            True when this call consumed the code.
        """
        statement = (
            update(Otp)
            .where(Otp.id == otp_id, Otp.is_used.is_(False))
            .values(is_used=True, used_at=utcnow(), updated_at=utcnow())
        )
        return await self._rowcount(statement) == 1

    # PUBLIC_INTERFACE
    async def invalidate_all_by_account_and_kind(self, account_id: str, kind: OtpKind) -> int:
        """
        Mark every unused code of a kind for an account as used.

        Returns:
            Number of codes invalidated.
        """
        statement = (
            update(Otp)
            .where(Otp.account_id == account_id, Otp.kind == kind, Otp.is_used.is_(False))
            .values(is_used=True, used_at=utcnow())
        )
        return await self._rowcount(statement)

    # PUBLIC_INTERFACE
    async def delete_expired(self, now: Optional[datetime] = None) -> int:
        cutoff = now or utcnow()
        return await self._rowcount(delete(Otp).where(Otp.expires_at < cutoff))
