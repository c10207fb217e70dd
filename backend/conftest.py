"""Pytest configuration. Ensures backend root is on sys.path for imports like api.*, services.*, etc."""
import sys
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Callable

import pytest

_backend: Path = Path(__file__).resolve().parent
if str(_backend) not in sys.path:
    sys.path.insert(0, str(_backend))

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import models  # noqa: E402,F401  registers every table on Base.metadata
from models.database import Base  # noqa: E402


@asynccontextmanager
async def _sqlite_session_factory() -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    # One shared in-memory connection so every session sees the same tables.
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    finally:
        await engine.dispose()


@pytest.fixture
def sqlite_session_factory() -> Callable[[], AbstractAsyncContextManager[async_sessionmaker[AsyncSession]]]:
    """Async context manager yielding a session factory over a fresh in-memory database.

    Open it inside the coroutine passed to asyncio.run so the engine lives on
    that event loop.
    """
    return _sqlite_session_factory
