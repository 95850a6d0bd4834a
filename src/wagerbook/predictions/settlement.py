"""Settlement engine: reveal results and rebuild user statistics by replay.

User statistics are a materialized view. They are never patched with deltas:
every reveal, correction or structural change recomputes each affected user's
row from the full, ordered history of that user's settled bets. Revealing the
same option twice therefore changes nothing, and a correction lands exactly on
the replay with the new option.

Replay order is (first reveal time, prediction id). ``first_revealed_at`` is
never moved by a correction, so correcting one result cannot reorder a user's
history and shift their streaks.

A bet is settled only while it is valid: its prediction has a result, the
result names one of the prediction's current options, and the bet's selected
option is still one of them. Bets on removed options are orphaned: they stay
in the ledger, are excluded from the replay and are reported by ``reveal``.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from wagerbook.db.models import Prediction, PredictionBet, PredictionResult, UserPredictionStats
from wagerbook.exceptions import ValidationError
from wagerbook.predictions.ledger import DEFAULT_BALANCE
from wagerbook.predictions.locks import lock_prediction_row, prediction_lock, statistics_locks

logger = logging.getLogger(__name__)

REVEAL_CHANNEL = "pubsub:prediction_revealed"


# ---------------------------------------------------------------------------
# Pure replay
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SettledBet:
    """One user's bet on one revealed prediction, in replay order."""

    prediction_id: int
    selected_option: str
    points_wagered: int
    correct_option: str

    @property
    def won(self) -> bool:
        return self.selected_option == self.correct_option


@dataclass
class StatisticsSnapshot:
    total_points: int = DEFAULT_BALANCE
    points_won: int = 0
    points_lost: int = 0
    correct_predictions: int = 0
    total_predictions: int = 0
    current_streak: int = 0
    longest_streak: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)

    @classmethod
    def from_row(cls, row: UserPredictionStats | None) -> StatisticsSnapshot:
        if row is None:
            return cls()
        return cls(
            total_points=row.total_points,
            points_won=row.points_won,
            points_lost=row.points_lost,
            correct_predictions=row.correct_predictions,
            total_predictions=row.total_predictions,
            current_streak=row.current_streak,
            longest_streak=row.longest_streak,
        )


def replay_statistics(entries: Iterable[SettledBet]) -> StatisticsSnapshot:
    """Fold an ordered history of settled bets into statistics.

    Wins pay the wager 1:1 and extend the streak; losses cost the wager and
    reset the current streak to zero.
    """
    stats = StatisticsSnapshot()
    for entry in entries:
        stats.total_predictions += 1
        if entry.won:
            stats.total_points += entry.points_wagered
            stats.points_won += entry.points_wagered
            stats.correct_predictions += 1
            stats.current_streak += 1
            stats.longest_streak = max(stats.longest_streak, stats.current_streak)
        else:
            stats.total_points -= entry.points_wagered
            stats.points_lost += entry.points_wagered
            stats.current_streak = 0
    return stats


# ---------------------------------------------------------------------------
# Recompute against the store
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OrphanedBet:
    """A bet whose selected option was removed from its prediction."""

    prediction_id: int
    user_id: str
    selected_option: str
    points_wagered: int


def is_orphaned(options: list[dict[str, Any]], selected_option: str) -> bool:
    return selected_option not in {opt["id"] for opt in options or []}


async def load_settled_bets(db: AsyncSession, user_id: str) -> tuple[list[SettledBet], list[OrphanedBet]]:
    """Every valid settled bet of a user in replay order, plus the orphaned ones."""
    rows = await db.execute(
        select(
            PredictionBet.prediction_id,
            PredictionBet.selected_option,
            PredictionBet.points_wagered,
            PredictionResult.correct_option,
            Prediction.options,
        )
        .join(PredictionResult, PredictionResult.prediction_id == PredictionBet.prediction_id)
        .join(Prediction, Prediction.id == PredictionBet.prediction_id)
        .where(PredictionBet.user_id == user_id)
        .order_by(PredictionResult.first_revealed_at, PredictionBet.prediction_id)
    )

    settled: list[SettledBet] = []
    orphaned: list[OrphanedBet] = []
    for prediction_id, selected, points, correct, options in rows.all():
        if is_orphaned(options, correct):
            # Result names an option that no longer exists: nothing settles.
            continue
        if is_orphaned(options, selected):
            orphaned.append(OrphanedBet(prediction_id, user_id, selected, points))
            continue
        settled.append(SettledBet(prediction_id, selected, points, correct))
    return settled, orphaned


async def recompute_user_statistics(
    db: AsyncSession, user_id: str, now: datetime | None = None
) -> StatisticsSnapshot:
    """Rebuild one user's statistics row from scratch. Does not commit.

    Users left with no settled bets lose their row and fall back to the
    default balance.
    """
    settled, _ = await load_settled_bets(db, user_id)
    snapshot = replay_statistics(settled)

    if snapshot.total_predictions == 0:
        await db.execute(delete(UserPredictionStats).where(UserPredictionStats.user_id == user_id))
        return snapshot

    row = await db.get(UserPredictionStats, user_id, populate_existing=True)
    if row is None:
        row = UserPredictionStats(user_id=user_id)
        db.add(row)
    for name, value in snapshot.as_dict().items():
        setattr(row, name, value)
    row.updated_at = now or datetime.now(timezone.utc)
    await db.flush()
    return snapshot


async def resettle_users(
    db: AsyncSession, user_ids: Iterable[str], now: datetime | None = None
) -> dict[str, StatisticsSnapshot]:
    """Recompute a set of users and commit them as one unit."""
    users = sorted(set(user_ids))
    snapshots: dict[str, StatisticsSnapshot] = {}
    async with statistics_locks(db, users):
        for user_id in users:
            snapshots[user_id] = await recompute_user_statistics(db, user_id, now)
        await db.commit()
    return snapshots


async def revealed_bettors(db: AsyncSession, prediction_id: int) -> list[str]:
    """Users whose statistics depend on this prediction; empty until it is revealed."""
    has_result = (
        await db.execute(select(PredictionResult.id).where(PredictionResult.prediction_id == prediction_id))
    ).scalar_one_or_none() is not None
    if not has_result:
        return []
    result = await db.execute(
        select(PredictionBet.user_id)
        .where(PredictionBet.prediction_id == prediction_id)
        .distinct()
    )
    return sorted(result.scalars().all())


# ---------------------------------------------------------------------------
# Reveal / correction
# ---------------------------------------------------------------------------


@dataclass
class SettlementReport:
    prediction_id: int
    result: PredictionResult
    created: bool
    corrected: bool
    previous_option: str | None
    affected_users: list[str] = field(default_factory=list)
    orphaned_bets: list[OrphanedBet] = field(default_factory=list)


async def reveal(
    db: AsyncSession,
    prediction_id: int,
    correct_option: str,
    admin_id: str,
    now: datetime | None = None,
) -> SettlementReport:
    """Reveal (or correct) the result of a prediction and settle all its bets.

    Runs as one transaction under the prediction lock and the bettors'
    statistics locks: the result is written, the prediction moves to
    ``revealed`` and every bettor is recomputed, or nothing changes at all.
    """
    if now is None:
        now = datetime.now(timezone.utc)

    async with prediction_lock(prediction_id):
        try:
            prediction = await lock_prediction_row(db, prediction_id)
            if not correct_option or correct_option not in prediction.option_ids:
                raise ValidationError("Invalid option - not in prediction options")

            bets = (
                await db.execute(select(PredictionBet).where(PredictionBet.prediction_id == prediction_id))
            ).scalars().all()
            bettors = sorted({bet.user_id for bet in bets})
            orphaned = [
                OrphanedBet(prediction_id, bet.user_id, bet.selected_option, bet.points_wagered)
                for bet in bets
                if is_orphaned(prediction.options, bet.selected_option)
            ]

            # Statistics locks are taken before the first write.
            async with statistics_locks(db, bettors):
                existing = (
                    await db.execute(
                        select(PredictionResult)
                        .where(PredictionResult.prediction_id == prediction_id)
                        .execution_options(populate_existing=True)
                    )
                ).scalar_one_or_none()

                previous_option = existing.correct_option if existing else None
                if existing is None:
                    result = PredictionResult(
                        prediction_id=prediction_id,
                        correct_option=correct_option,
                        revealed_by=admin_id,
                        revealed_at=now,
                        first_revealed_at=now,
                    )
                    db.add(result)
                else:
                    result = existing
                    result.correct_option = correct_option
                    result.revealed_by = admin_id
                    result.revealed_at = now

                prediction.status = "revealed"
                prediction.updated_at = now
                await db.flush()

                for user_id in bettors:
                    await recompute_user_statistics(db, user_id, now)
                await db.commit()
        except Exception:
            await db.rollback()
            raise

    report = SettlementReport(
        prediction_id=prediction_id,
        result=result,
        created=existing is None,
        corrected=previous_option is not None and previous_option != correct_option,
        previous_option=previous_option,
        affected_users=bettors,
        orphaned_bets=orphaned,
    )
    if report.corrected:
        logger.info(
            "Prediction %s corrected %s -> %s by %s, re-settled %d users",
            prediction_id, previous_option, correct_option, admin_id, len(bettors),
        )
    else:
        logger.info(
            "Prediction %s revealed as %s by %s, settled %d users",
            prediction_id, correct_option, admin_id, len(bettors),
        )
    if orphaned:
        logger.warning(
            "Prediction %s has %d orphaned bets excluded from settlement",
            prediction_id, len(orphaned),
        )
    return report


async def rebuild_all_statistics(db: AsyncSession) -> int:
    """Recompute every user's statistics from the ledger. Returns users processed.

    Covers users with any bet on a revealed prediction and users that still
    hold a statistics row (whose bets may since have been deleted).
    """
    bettor_rows = await db.execute(
        select(PredictionBet.user_id)
        .join(PredictionResult, PredictionResult.prediction_id == PredictionBet.prediction_id)
        .distinct()
    )
    stats_rows = await db.execute(select(UserPredictionStats.user_id))
    users = set(bettor_rows.scalars().all()) | set(stats_rows.scalars().all())

    await resettle_users(db, users)
    logger.info("Statistics rebuilt for %d users", len(users))
    return len(users)


async def publish_settlement(redis: object | None, report: SettlementReport) -> None:
    """Announce a reveal on Redis pub/sub. Failures are logged, never raised."""
    if redis is None:
        return
    try:
        await redis.publish(  # type: ignore[attr-defined]
            REVEAL_CHANNEL,
            json.dumps({
                "prediction_id": report.prediction_id,
                "correct_option": report.result.correct_option,
                "corrected": report.corrected,
                "affected_users": report.affected_users,
            }),
        )
    except Exception:
        logger.warning("Failed to publish prediction_revealed event", exc_info=True)
