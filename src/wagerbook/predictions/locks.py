"""Per-prediction serialisation.

Every write that depends on a prediction's status or bets runs inside
``prediction_lock``: an in-process keyed asyncio lock, plus a row lock on the
prediction (``SELECT ... FOR UPDATE``) taken by ``lock_prediction_row`` so that
API processes sharing one PostgreSQL database also serialise. SQLite ignores
FOR UPDATE and relies on its database-level write lock.
"""

from __future__ import annotations

import asyncio
import weakref
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession

from wagerbook.db.models import Prediction
from wagerbook.exceptions import NotFound

_locks: weakref.WeakValueDictionary[int, asyncio.Lock] = weakref.WeakValueDictionary()


def _lock_for(prediction_id: int) -> asyncio.Lock:
    lock = _locks.get(prediction_id)
    if lock is None:
        lock = asyncio.Lock()
        _locks[prediction_id] = lock
    return lock


@asynccontextmanager
async def prediction_lock(prediction_id: int) -> AsyncIterator[None]:
    """Hold the in-process lock for one prediction. Other predictions are unaffected."""
    lock = _lock_for(prediction_id)
    async with lock:
        yield


async def lock_prediction_row(db: AsyncSession, prediction_id: int) -> Prediction:
    """Load a prediction with a row lock for the rest of the transaction."""
    result = await db.execute(
        select(Prediction)
        .where(Prediction.id == prediction_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    prediction = result.scalar_one_or_none()
    if prediction is None:
        raise NotFound(f"Prediction {prediction_id} not found")
    return prediction


_user_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()


def _user_lock_for(user_id: str) -> asyncio.Lock:
    lock = _user_locks.get(user_id)
    if lock is None:
        lock = asyncio.Lock()
        _user_locks[user_id] = lock
    return lock


@asynccontextmanager
async def statistics_locks(db: AsyncSession, user_ids: list[str]) -> AsyncIterator[None]:
    """Serialise statistics recomputes for a set of users until the caller commits.

    Reveals of different predictions can share bettors. Locks are taken in
    sorted order to avoid deadlocks; on PostgreSQL a transaction-scoped
    advisory lock per user covers other processes as well.
    """
    ordered = sorted(set(user_ids))
    held = [_user_lock_for(user_id) for user_id in ordered]
    acquired: list[asyncio.Lock] = []
    try:
        for lock in held:
            await lock.acquire()
            acquired.append(lock)
        if db.get_bind().dialect.name == "postgresql":
            for user_id in ordered:
                await db.execute(
                    text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
                    {"key": f"user_prediction_stats:{user_id}"},
                )
        yield
    finally:
        for lock in reversed(acquired):
            lock.release()
