"""Bet ledger: place, update and withdraw wagers.

At most one bet exists per (prediction, user); placing again replaces the
selected option and amount. Status and window checks run under the
per-prediction lock, together with the write, so no bet slips in after a
concurrent close.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from wagerbook.db.models import Prediction, PredictionBet, PredictionResult, UserPredictionStats
from wagerbook.exceptions import Conflict, ValidationError
from wagerbook.predictions.locks import lock_prediction_row, prediction_lock, statistics_locks
from wagerbook.predictions.registry import ensure_utc

logger = logging.getLogger(__name__)

DEFAULT_BALANCE = 1000


async def get_available_points(db: AsyncSession, user_id: str) -> int:
    """Last settled balance. Points on unsettled bets are not reserved."""
    result = await db.execute(
        select(UserPredictionStats.total_points).where(UserPredictionStats.user_id == user_id)
    )
    balance = result.scalar_one_or_none()
    return DEFAULT_BALANCE if balance is None else balance


def check_betting_window(prediction: Prediction, now: datetime) -> None:
    """Raise Conflict unless the prediction is open and ``now`` is inside its window."""
    if prediction.status != "open":
        raise Conflict("Betting is closed for this prediction")
    opens_at = ensure_utc(prediction.betting_opens_at)
    if opens_at is not None and now < opens_at:
        raise Conflict("Betting has not opened yet")
    deadline = ensure_utc(prediction.betting_deadline)
    if deadline is not None and now > deadline:
        raise Conflict("Betting deadline has passed")


def _upsert_statement(db: AsyncSession):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(PredictionBet)
    if dialect == "sqlite":
        return sqlite_insert(PredictionBet)
    msg = f"Unsupported database dialect: {dialect}"
    raise RuntimeError(msg)


async def _has_result(db: AsyncSession, prediction_id: int) -> bool:
    result = await db.execute(
        select(PredictionResult.id).where(PredictionResult.prediction_id == prediction_id)
    )
    return result.scalar_one_or_none() is not None


async def place_bet(
    db: AsyncSession,
    prediction_id: int,
    user_id: str,
    option_id: str,
    points_wagered: int,
    now: datetime | None = None,
) -> PredictionBet:
    """Place or update the user's bet on a prediction.

    A prediction reopened after its reveal keeps its result, so the user is
    re-settled in the same transaction.
    """
    from wagerbook.predictions.settlement import recompute_user_statistics

    async with prediction_lock(prediction_id):
        try:
            prediction = await lock_prediction_row(db, prediction_id)
            if now is None:
                now = datetime.now(timezone.utc)
            check_betting_window(prediction, now)

            if option_id not in prediction.option_ids:
                raise ValidationError("Invalid option selected")
            if isinstance(points_wagered, bool) or not isinstance(points_wagered, int) or points_wagered <= 0:
                raise ValidationError("points_wagered must be a positive integer")

            settled = await _has_result(db, prediction_id)
            async with statistics_locks(db, [user_id] if settled else []):
                available = await get_available_points(db, user_id)
                if points_wagered > available:
                    raise Conflict(f"Insufficient points. You have {available} points available.")

                stmt = _upsert_statement(db).values(
                    prediction_id=prediction_id,
                    user_id=user_id,
                    selected_option=option_id,
                    points_wagered=points_wagered,
                    created_at=now,
                    updated_at=now,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=["prediction_id", "user_id"],
                    set_={
                        "selected_option": stmt.excluded.selected_option,
                        "points_wagered": stmt.excluded.points_wagered,
                        "updated_at": stmt.excluded.updated_at,
                    },
                )
                await db.execute(stmt)
                if settled:
                    await recompute_user_statistics(db, user_id, now)
                await db.commit()
        except Exception:
            await db.rollback()
            raise

    logger.info(
        "Bet placed: prediction=%s user=%s option=%s points=%d resettled=%s",
        prediction_id, user_id, option_id, points_wagered, settled,
    )
    bet = await get_user_bet(db, prediction_id, user_id)
    if bet is None:
        msg = f"Bet for prediction {prediction_id} user {user_id} missing after upsert"
        raise RuntimeError(msg)
    return bet


async def withdraw_bet(db: AsyncSession, prediction_id: int, user_id: str) -> bool:
    """Remove the user's bet while the prediction is open.

    Idempotent: returns False when there was nothing to remove. Withdrawing
    from a reopened, already revealed prediction re-settles the user.
    """
    from wagerbook.predictions.settlement import recompute_user_statistics

    async with prediction_lock(prediction_id):
        try:
            prediction = await lock_prediction_row(db, prediction_id)
            if prediction.status != "open":
                raise Conflict("Cannot remove bet - betting is closed")
            settled = await _has_result(db, prediction_id)
            async with statistics_locks(db, [user_id] if settled else []):
                result = await db.execute(
                    delete(PredictionBet).where(
                        PredictionBet.prediction_id == prediction_id,
                        PredictionBet.user_id == user_id,
                    )
                )
                removed = bool(result.rowcount)
                if removed and settled:
                    await recompute_user_statistics(db, user_id)
                await db.commit()
        except Exception:
            await db.rollback()
            raise
    if removed:
        logger.info("Bet withdrawn: prediction=%s user=%s resettled=%s", prediction_id, user_id, settled)
    return removed


async def get_user_bet(db: AsyncSession, prediction_id: int, user_id: str) -> PredictionBet | None:
    result = await db.execute(
        select(PredictionBet)
        .where(
            PredictionBet.prediction_id == prediction_id,
            PredictionBet.user_id == user_id,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_bets_for_prediction(db: AsyncSession, prediction_id: int) -> list[PredictionBet]:
    """All bets on a prediction, oldest first."""
    result = await db.execute(
        select(PredictionBet)
        .where(PredictionBet.prediction_id == prediction_id)
        .order_by(PredictionBet.created_at, PredictionBet.id)
    )
    return list(result.scalars().all())
