# tests/core/test_settings_and_engine.py
from __future__ import annotations

import json
import logging

import pytest
from pythonjsonlogger import jsonlogger
from sqlalchemy.ext.asyncio import AsyncSession

from wmsalloc.core.config import AppSettings
from wmsalloc.core.logging import setup_logging
from wmsalloc.core.tx import TxManager
from wmsalloc.db.engine import normalize_async_dsn
from wmsalloc.services.allocation_errors import InsufficientStock

pytestmark = pytest.mark.grp_core


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("postgresql://u:p@h:5432/db", "postgresql+psycopg://u:p@h:5432/db"),
        ("postgres://u:p@h/db", "postgresql+psycopg://u:p@h/db"),
        ("postgresql+asyncpg://u:p@h/db", "postgresql+psycopg://u:p@h/db"),
        ("'postgresql+psycopg://u:p@h/db'", "postgresql+psycopg://u:p@h/db"),
        ("sqlite:///./x.db", "sqlite+aiosqlite:///./x.db"),
        ("sqlite+aiosqlite:///./x.db", "sqlite+aiosqlite:///./x.db"),
    ],
)
def test_normalize_async_dsn(raw, expected):
    assert normalize_async_dsn(raw) == expected


def test_settings_read_prefixed_environment(monkeypatch):
    monkeypatch.setenv("WMS_ALLOC_DEFAULT_STRATEGY", "lifo")
    monkeypatch.setenv("WMS_ALLOC_RESERVE_MAX_ATTEMPTS", "5")
    monkeypatch.setenv("WMS_ALLOC_EXCLUDE_EXPIRED", "false")

    s = AppSettings()

    assert s.DEFAULT_STRATEGY == "lifo"
    assert s.RESERVE_MAX_ATTEMPTS == 5
    assert s.EXCLUDE_EXPIRED is False


@pytest.mark.asyncio
async def test_run_with_retry_reruns_then_gives_up(session: AsyncSession):
    attempts = []

    async def flaky(*, session, attempt):
        attempts.append(attempt)
        if attempt < 2:
            raise InsufficientStock(lot_id=1, requested_qty=2, available_qty=1)
        return "ok"

    assert await TxManager.run_with_retry(session, flaky, attempts=3, retry_on=(InsufficientStock,)) == "ok"
    assert attempts == [1, 2]

    attempts.clear()

    async def always(*, session, attempt):
        attempts.append(attempt)
        raise InsufficientStock(lot_id=1, requested_qty=2, available_qty=1)

    with pytest.raises(InsufficientStock):
        await TxManager.run_with_retry(session, always, attempts=2, retry_on=(InsufficientStock,))
    assert attempts == [1, 2]


@pytest.mark.asyncio
async def test_run_with_retry_does_not_retry_other_errors(session: AsyncSession):
    calls = []

    async def broken(*, session, attempt):
        calls.append(attempt)
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        await TxManager.run_with_retry(session, broken, attempts=3, retry_on=(InsufficientStock,))
    assert calls == [1]


@pytest.fixture
def restore_root_logging():
    root = logging.getLogger()
    handlers = [h for h in root.handlers if not type(h).__module__.startswith("_pytest")]
    level = root.level
    yield root
    for h in list(root.handlers):
        root.removeHandler(h)
    for h in handlers:
        root.addHandler(h)
    root.setLevel(level)


def test_json_logging_emits_one_object_per_record(restore_root_logging):
    setup_logging(level="debug", json=True)

    (handler,) = restore_root_logging.handlers
    assert isinstance(handler.formatter, jsonlogger.JsonFormatter)
    assert restore_root_logging.level == logging.DEBUG

    record = logging.getLogger("wmsalloc.builder").makeRecord(
        "wmsalloc.builder", logging.INFO, __file__, 1, "allocated order=%s", (7,), None
    )
    out = json.loads(handler.format(record))
    assert out["levelname"] == "INFO"
    assert out["name"] == "wmsalloc.builder"
    assert out["message"] == "allocated order=7"


def test_plain_logging_is_the_default(restore_root_logging):
    setup_logging()

    (handler,) = restore_root_logging.handlers
    assert not isinstance(handler.formatter, jsonlogger.JsonFormatter)
