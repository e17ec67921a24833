"""
Shared fixtures: an isolated in-memory database per test and an HTTP client
wired to it.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("AUTH_JWKS_URL", "http://auth.invalid/.well-known/jwks.json")

import uuid

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.deps import CallerIdentity
from app.models import Base


@pytest_asyncio.fixture
async def db():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with maker() as session:
        yield session
    await engine.dispose()


class CallerSwitch:
    """Lets a test change who the API thinks is calling."""

    def __init__(self):
        self.identity = CallerIdentity(member_id=uuid.uuid4(), role="ADMIN")

    def as_admin(self, member_id=None):
        self.identity = CallerIdentity(member_id=member_id or uuid.uuid4(), role="ADMIN")

    def as_participant(self, member_id=None):
        self.identity = CallerIdentity(member_id=member_id or uuid.uuid4(), role="PARTICIPANT")


@pytest.fixture
def caller():
    return CallerSwitch()


@pytest_asyncio.fixture
async def client(db, caller):
    from app.deps import get_caller, get_db
    from app.main import app

    async def _db():
        yield db

    app.dependency_overrides[get_db] = _db
    app.dependency_overrides[get_caller] = lambda: caller.identity
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
