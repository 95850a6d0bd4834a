"""Service tests for the leaderboard projector."""

from __future__ import annotations

import pytest

from wagerbook.db.models import UserPredictionStats
from wagerbook.predictions import ledger, settlement
from wagerbook.predictions.leaderboard import get_user_statistics, list_leaderboard

pytestmark = pytest.mark.asyncio


async def test_empty_when_nothing_settled(db_session, open_prediction):
    yes, _ = open_prediction.option_ids
    await ledger.place_bet(db_session, open_prediction.id, "u1", yes, 10)
    assert await list_leaderboard(db_session) == []


async def test_ranked_by_points(db_session, open_prediction):
    yes, no = open_prediction.option_ids
    await ledger.place_bet(db_session, open_prediction.id, "loser", no, 300)
    await ledger.place_bet(db_session, open_prediction.id, "winner", yes, 200)
    await ledger.place_bet(db_session, open_prediction.id, "small", yes, 10)
    await settlement.reveal(db_session, open_prediction.id, yes, "admin-1")

    board = await list_leaderboard(db_session)
    assert [(e.rank, e.user_id, e.total_points) for e in board] == [
        (1, "winner", 1200),
        (2, "small", 1010),
        (3, "loser", 700),
    ]
    assert board[0].accuracy == 100
    assert board[2].accuracy == 0
    assert board[2].points_lost == 300


async def test_tie_break_accuracy_then_user_id(db_session):
    rows = [
        UserPredictionStats(user_id="carol", total_points=1100, correct_predictions=1, total_predictions=3),
        UserPredictionStats(user_id="bob", total_points=1100, correct_predictions=2, total_predictions=3),
        UserPredictionStats(user_id="alice", total_points=1100, correct_predictions=1, total_predictions=3),
        UserPredictionStats(user_id="dave", total_points=1200, correct_predictions=1, total_predictions=4),
    ]
    db_session.add_all(rows)
    await db_session.commit()

    board = await list_leaderboard(db_session)
    assert [e.user_id for e in board] == ["dave", "bob", "alice", "carol"]
    assert [e.rank for e in board] == [1, 2, 3, 4]
    assert [e.accuracy for e in board] == [25, 67, 33, 33]

    top_two = await list_leaderboard(db_session, limit=2)
    assert [e.user_id for e in top_two] == ["dave", "bob"]


async def test_user_statistics_default(db_session):
    stats = await get_user_statistics(db_session, "stranger")
    assert stats.total_points == 1000
    assert stats.total_predictions == 0
