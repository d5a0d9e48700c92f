# wmsalloc/db/session.py
# Async engine + AsyncSession factory + FastAPI dependency.
from __future__ import annotations

import logging
from collections.abc import AsyncGenerator

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from wmsalloc.core.config import get_settings
from wmsalloc.db.engine import create_async_engine_safe, normalize_async_dsn

log = logging.getLogger("wmsalloc.db")

_settings = get_settings()

ASYNC_URL = normalize_async_dsn(_settings.DATABASE_URL)
log.info("Using DSN (async): %s", make_url(ASYNC_URL).render_as_string(hide_password=True))

async_engine: AsyncEngine = create_async_engine_safe(ASYNC_URL, echo=_settings.SQL_ECHO)

AsyncSessionLocal: async_sessionmaker[AsyncSession] = async_sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        yield session


async def close_engines() -> None:
    await async_engine.dispose()
