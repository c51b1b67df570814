"""Pytest configuration and fixtures for InvestorBase tests."""
import os
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set test env BEFORE any app imports
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("PERPLEXITY_API_KEY", "test-perplexity-key")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

# Clear config cache so get_settings picks up test env
from investorbase.config import get_settings

get_settings.cache_clear()

from investorbase.database import get_db
from investorbase.dependencies import get_investor_research_provider, get_research_provider
from investorbase.main import app
from investorbase.models.base import Base
from investorbase.models.company import Company
from tests.samples import FakeProvider

# Import all models so Base.metadata has all tables
import investorbase.models  # noqa: F401

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

test_engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
    echo=False,
)

TestSessionLocal = async_sessionmaker(
    bind=test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


@pytest.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create tables and yield a test database session."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestSessionLocal() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture(scope="function")
async def client(db_session: AsyncSession, provider: FakeProvider) -> AsyncGenerator[AsyncClient, None]:
    """Create test client with overridden database and provider dependencies."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_research_provider] = lambda: provider
    app.dependency_overrides[get_investor_research_provider] = lambda: provider

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
async def company(db_session: AsyncSession) -> Company:
    """A company to request research for."""
    company = Company(name="Acme Logistics", sector="Logistics", website="https://acme.example.com")
    db_session.add(company)
    await db_session.commit()
    await db_session.refresh(company)
    return company
