# tests/conftest.py
from __future__ import annotations

import os
from typing import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

# ============================================================
# settings are read once at import time: pin them before wmsalloc loads
# ============================================================
TEST_DATABASE_URL = os.getenv("WMS_ALLOC_TEST_DATABASE_URL")

os.environ.setdefault("WMS_ALLOC_DATABASE_URL", TEST_DATABASE_URL or "sqlite+aiosqlite:///./.wmsalloc_import.db")
os.environ.setdefault("WMS_ALLOC_LOG_LEVEL", "INFO")

from wmsalloc.api.deps import get_session  # noqa: E402
from wmsalloc.db.base import Base, init_models  # noqa: E402
from wmsalloc.db.engine import normalize_async_dsn  # noqa: E402
from wmsalloc.main import app  # noqa: E402

init_models()


def _is_pg() -> bool:
    return bool(TEST_DATABASE_URL)


# =========================================
# one engine per test (NullPool, no cross-loop reuse)
#   SQLite: a fresh file database under tmp_path
#   PostgreSQL: schema dropped and rebuilt from ORM metadata
# =========================================
@pytest_asyncio.fixture(scope="function")
async def async_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    if _is_pg():
        url = normalize_async_dsn(TEST_DATABASE_URL)
    else:
        url = f"sqlite+aiosqlite:///{tmp_path / 'wmsalloc_test.db'}"

    engine = create_async_engine(url, poolclass=NullPool, future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture(scope="function")
def async_session_maker(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def session(async_session_maker) -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as sess:
        try:
            yield sess
        finally:
            if sess.in_transaction():
                await sess.rollback()


# =========================================
# FastAPI / httpx AsyncClient bound to the per-test database
# =========================================
@pytest_asyncio.fixture(scope="function")
async def client(async_session_maker) -> AsyncGenerator[httpx.AsyncClient, None]:
    async def _override() -> AsyncGenerator[AsyncSession, None]:
        async with async_session_maker() as sess:
            yield sess

    app.dependency_overrides[get_session] = _override
    transport = httpx.ASGITransport(app=app)
    try:
        async with httpx.AsyncClient(
            transport=transport,
            base_url="http://testserver",
            timeout=httpx.Timeout(10.0, connect=5.0, read=10.0, write=5.0, pool=5.0),
        ) as c:
            yield c
    finally:
        app.dependency_overrides.pop(get_session, None)
