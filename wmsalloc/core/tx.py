# wmsalloc/core/tx.py
from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Tuple, Type, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

log = logging.getLogger("wmsalloc.tx")

T = TypeVar("T")


async def _reset(session: AsyncSession) -> None:
    if session.in_transaction():
        await session.rollback()


class TxManager:
    """
    Transaction runner. Handlers never begin/commit themselves; the runner owns
    the boundary so that a failed request leaves nothing committed.
    """

    @staticmethod
    async def run(session: AsyncSession, fn: Callable[..., Awaitable[T]], **kwargs: Any) -> T:
        await _reset(session)
        try:
            result = await fn(session=session, **kwargs)
            await session.commit()
            return result
        except BaseException:
            await session.rollback()
            raise

    @staticmethod
    async def run_with_retry(
        session: AsyncSession,
        fn: Callable[..., Awaitable[T]],
        *,
        attempts: int,
        retry_on: Tuple[Type[BaseException], ...],
        **kwargs: Any,
    ) -> T:
        """
        Optimistic loop: every attempt gets a fresh transaction. On one of the
        retry_on errors the attempt is rolled back and re-run; the last error is
        re-raised once attempts are exhausted. Any other error rolls back and
        propagates immediately.
        """
        attempts = max(1, int(attempts))
        for attempt in range(1, attempts + 1):
            try:
                return await TxManager.run(session, fn, attempt=attempt, **kwargs)
            except retry_on as e:
                if attempt >= attempts:
                    raise
                log.warning("tx attempt %d/%d rolled back, retrying: %s", attempt, attempts, e)
        raise AssertionError("unreachable")  # pragma: no cover
