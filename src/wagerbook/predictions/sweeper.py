"""Deadline sweep: close open predictions whose betting deadline has passed."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wagerbook.db.models import Prediction
from wagerbook.exceptions import NotFound
from wagerbook.predictions.locks import lock_prediction_row, prediction_lock
from wagerbook.predictions.registry import ensure_utc

logger = logging.getLogger(__name__)


async def close_expired_predictions(db: AsyncSession, now: datetime | None = None) -> list[int]:
    """Move expired open predictions to ``closed``. Returns the ids closed.

    Each candidate is re-checked under its prediction lock, so a prediction
    reopened or deleted meanwhile is left alone.
    """
    now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)

    result = await db.execute(
        select(Prediction.id).where(
            Prediction.status == "open",
            Prediction.betting_deadline.is_not(None),
            Prediction.betting_deadline < now,
        )
    )
    candidates = list(result.scalars().all())
    # Release the read transaction before taking row locks.
    await db.commit()

    closed: list[int] = []
    for prediction_id in candidates:
        async with prediction_lock(prediction_id):
            try:
                prediction = await lock_prediction_row(db, prediction_id)
                deadline = ensure_utc(prediction.betting_deadline)
                if prediction.status != "open" or deadline is None or deadline >= now:
                    await db.commit()
                    continue
                prediction.status = "closed"
                prediction.updated_at = now
                await db.commit()
            except NotFound:
                await db.rollback()
                continue
            except Exception:
                await db.rollback()
                raise
        closed.append(prediction_id)

    if closed:
        logger.info("Closed %d predictions past their deadline: %s", len(closed), closed)
    return closed
