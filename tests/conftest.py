"""
Test fixtures for the audit platform authentication core.

This module provides pytest fixtures for an in-memory database, the
repositories, a fully wired lifecycle engine, test accounts of every kind,
and an HTTP client bound to the application.
"""
import pytest
from httpx import ASGITransport, AsyncClient

from audit_auth.auth import build_lifecycle_engine
from audit_auth.database import Database
from audit_auth.dependencies import auth_rate_limiter
from audit_auth.events import DomainEvent, EventBus
from audit_auth.models import (Account, ExternalProfile, InternalProfile,
                               UserType)
from audit_auth.policy import LoginPolicy
from audit_auth.repositories import (AccountRepository,
                                     ExternalProfileRepository,
                                     InternalProfileRepository, OtpRepository,
                                     SessionRepository)
from audit_auth.security import PasswordManager
from audit_auth.token import TokenIssuer
from main import app

PASSWORD = "Auditor#2024"
NEW_PASSWORD = "Cambio#2025x"


class RecordingEmailSender:
    """Email sender double keeping every message in memory."""

    def __init__(self):
        self.reset_emails = []
        self.two_factor_emails = []

    async def send_reset_password_email(self, to, user_name, reset_link, expires_in_minutes):
        self.reset_emails.append(
            {"to": to, "user_name": user_name, "reset_link": reset_link, "expires_in_minutes": expires_in_minutes}
        )
        return True

    async def send_two_factor_code(self, to, user_name, code, expires_in_minutes):
        self.two_factor_emails.append(
            {"to": to, "user_name": user_name, "code": code, "expires_in_minutes": expires_in_minutes}
        )
        return True

    @property
    def last_reset_token(self) -> str:
        return self.reset_emails[-1]["reset_link"].split("token=", 1)[1]

    @property
    def last_code(self) -> str:
        return self.two_factor_emails[-1]["code"]


@pytest.fixture
async def database(tmp_path):
    """Create a fresh file-backed database in a per-test temporary directory."""
    db = Database(f"sqlite+aiosqlite:///{tmp_path}/auth.db", echo=False)
    await db.create_all()
    yield db
    await db.drop_all()
    await db.dispose()


@pytest.fixture
def accounts(database):
    return AccountRepository(database)


@pytest.fixture
def internal_profiles(database):
    return InternalProfileRepository(database)


@pytest.fixture
def external_profiles(database):
    return ExternalProfileRepository(database)


@pytest.fixture
def sessions(database):
    return SessionRepository(database)


@pytest.fixture
def otps(database):
    return OtpRepository(database)


@pytest.fixture(scope="session")
def password_manager():
    """bcrypt with the lowest cost factor to keep the suite fast."""
    return PasswordManager(rounds=4)


@pytest.fixture
def token_issuer():
    return TokenIssuer("test-access-secret", "test-refresh-secret")


@pytest.fixture
def email_sender():
    return RecordingEmailSender()


@pytest.fixture
def published_events():
    """Events published by the engine, in order."""
    return []


@pytest.fixture
def event_bus(published_events):
    bus = EventBus()

    async def record(event: DomainEvent) -> None:
        published_events.append(event)

    bus.subscribe(DomainEvent, record)
    return bus


@pytest.fixture
def engine(database, email_sender, password_manager, token_issuer, event_bus):
    """Lifecycle engine wired to the in-memory database."""
    return build_lifecycle_engine(
        database,
        email_sender=email_sender,
        password_hasher=password_manager,
        token_issuer=token_issuer,
        login_policy=LoginPolicy.default(),
        event_bus=event_bus,
        frontend_url="http://frontend.test",
    )


@pytest.fixture
def make_internal_user(accounts, internal_profiles, password_manager):
    """Factory creating an internal account with a role set."""

    async def factory(username, email, roles, password=PASSWORD, full_name="", active=True):
        account = Account.create(
            username=username,
            email=email,
            hashed_password=password_manager.hash_password(password),
            user_type=UserType.INTERNAL,
            full_name=full_name,
        )
        if not active:
            account.deactivate()
        await accounts.add(account)
        await internal_profiles.add(InternalProfile.create(account.id, roles))
        return account

    return factory


@pytest.fixture
def make_external_user(accounts, external_profiles, password_manager):
    """Factory creating an external account attached to an organization."""

    async def factory(username, email, organization_id, password=PASSWORD, full_name=""):
        account = Account.create(
            username=username,
            email=email,
            hashed_password=password_manager.hash_password(password),
            user_type=UserType.EXTERNAL,
            full_name=full_name,
        )
        await accounts.add(account)
        await external_profiles.add(ExternalProfile.create(account.id, organization_id))
        return account

    return factory


@pytest.fixture
async def internal_user(make_internal_user):
    """Internal account holding the administrador and auditor roles."""
    return await make_internal_user(
        "juanp", "juan.perez@auditoria.com", ["administrador", "auditor"], full_name="Juan Pérez"
    )


@pytest.fixture
async def cliente_user(make_internal_user):
    """Internal account holding only the cliente role."""
    return await make_internal_user("mariac", "maria@auditoria.com", ["cliente"])


@pytest.fixture
async def external_user(make_external_user):
    """External account of a client organization."""
    return await make_external_user("acme_ana", "ana@acme.com", "org-acme", full_name="Ana Acme")


@pytest.fixture
async def inactive_user(make_internal_user):
    """Deactivated internal account."""
    return await make_internal_user("inactivo", "inactivo@auditoria.com", ["auditor"], active=False)


@pytest.fixture
async def client(engine):
    """HTTP client bound to the application and the test engine."""
    app.state.lifecycle_engine = engine
    auth_rate_limiter.rate_limiter.reset()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client
    app.state.lifecycle_engine = None


@pytest.fixture
async def logged_in(client, internal_user):
    """Login response body for juanp."""
    response = await client.post("/auth/login", json={"username": "juanp", "password": PASSWORD})
    assert response.status_code == 200
    return response.json()


@pytest.fixture
def auth_header(logged_in):
    """Authorization header carrying juanp's access token."""
    return {"Authorization": f"Bearer {logged_in['tokens']['accessToken']}"}
