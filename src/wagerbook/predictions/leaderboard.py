"""Leaderboard projector: ranked standings derived from user statistics.

Read-only. Users without a statistics row have never had a bet settled and do
not appear; no zero rows are fabricated.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wagerbook.db.models import UserPredictionStats
from wagerbook.predictions.settlement import StatisticsSnapshot


def compute_accuracy(correct: int, total: int) -> int:
    """Percentage of correct predictions, rounded half up (0 with no history)."""
    if total <= 0:
        return 0
    return (correct * 200 + total) // (total * 2)


@dataclass
class LeaderboardEntry:
    rank: int
    user_id: str
    total_points: int
    correct_predictions: int
    total_predictions: int
    accuracy: int
    current_streak: int
    longest_streak: int
    points_won: int
    points_lost: int


def _sort_key(row: UserPredictionStats) -> tuple[int, int, str]:
    # Ties on points go to accuracy, then user id.
    return (
        -row.total_points,
        -compute_accuracy(row.correct_predictions, row.total_predictions),
        row.user_id,
    )


async def list_leaderboard(db: AsyncSession, limit: int | None = None) -> list[LeaderboardEntry]:
    """All users with settled bets, best first, with 1-based rank."""
    result = await db.execute(select(UserPredictionStats))
    rows = sorted(result.scalars().all(), key=_sort_key)
    if limit is not None:
        rows = rows[:limit]

    return [
        LeaderboardEntry(
            rank=index,
            user_id=row.user_id,
            total_points=row.total_points,
            correct_predictions=row.correct_predictions,
            total_predictions=row.total_predictions,
            accuracy=compute_accuracy(row.correct_predictions, row.total_predictions),
            current_streak=row.current_streak,
            longest_streak=row.longest_streak,
            points_won=row.points_won,
            points_lost=row.points_lost,
        )
        for index, row in enumerate(rows, start=1)
    ]


async def get_user_statistics(db: AsyncSession, user_id: str) -> StatisticsSnapshot:
    """A user's statistics, or the default snapshot (1000 points) if none exist."""
    row = await db.get(UserPredictionStats, user_id, populate_existing=True)
    return StatisticsSnapshot.from_row(row)
