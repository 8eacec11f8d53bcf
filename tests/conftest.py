"""Shared test fixtures."""
import os

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test-app.db"
os.environ["JWT_SECRET"] = "test-secret-key-for-unit-tests-only"
os.environ.pop("INVITATION_WEBHOOK_URL", None)

from app.core.database.engine import build_engine, build_sessionmaker, get_db, init_db
from app.core.limiter import limiter
from app.features.invitations.models import Invitation
from app.features.invitations.notifications import InvitationNotifier, NotificationError, get_notifier
from app.features.organizations import service as org_service
from app.main import app
from tests.factories import make_user


class RecordingNotifier(InvitationNotifier):
    """Collects sent invitations; set fail=True to simulate a broken channel."""

    def __init__(self):
        self.sent: list[str] = []
        self.fail = False

    async def send(self, invitation: Invitation) -> None:
        if self.fail:
            raise NotificationError("mail relay unavailable")
        self.sent.append(invitation.id)


@pytest_asyncio.fixture(scope="function")
async def db_engine(tmp_path):
    """Fresh file-backed SQLite database with the system roles seeded."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine):
    async with build_sessionmaker(db_engine)() as session:
        yield session


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest_asyncio.fixture(scope="function")
async def client(db_engine, notifier):
    """HTTP test client with overridden DB and notifier dependencies"""
    session_factory = build_sessionmaker(db_engine)

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    limiter.reset()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def owner(db_session):
    return await make_user(db_session, "owner@example.com", "Olivia Owner")


@pytest_asyncio.fixture
async def org(db_session, owner):
    """Organization created by `owner`, who holds org_owner."""
    return await org_service.create_organization(db_session, "Acme", owner.id)
