from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from .config import get_settings


settings = get_settings()

DATABASE_URL = settings.async_database_url

_engine_options: dict = {"echo": False}
if DATABASE_URL.startswith("postgresql+asyncpg://"):
    _engine_options.update(pool_pre_ping=True, pool_size=5, max_overflow=10)

engine = create_async_engine(DATABASE_URL, **_engine_options)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        yield session


@asynccontextmanager
async def task_session() -> AsyncGenerator[AsyncSession, None]:
    """Session for scheduler jobs, which run outside the request dependency graph."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
