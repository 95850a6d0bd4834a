"""Unit tests for the deterministic statistics replay."""

from __future__ import annotations

from wagerbook.predictions.settlement import (
    SettledBet,
    StatisticsSnapshot,
    is_orphaned,
    replay_statistics,
)


def _bet(pid: int, selected: str, points: int, correct: str) -> SettledBet:
    return SettledBet(prediction_id=pid, selected_option=selected, points_wagered=points, correct_option=correct)


class TestReplay:
    def test_empty_history_is_default(self):
        stats = replay_statistics([])
        assert stats == StatisticsSnapshot()
        assert stats.total_points == 1000
        assert stats.total_predictions == 0

    def test_single_win(self):
        stats = replay_statistics([_bet(1, "a", 100, "a")])
        assert stats.total_points == 1100
        assert stats.points_won == 100
        assert stats.points_lost == 0
        assert stats.correct_predictions == 1
        assert stats.total_predictions == 1
        assert stats.current_streak == 1
        assert stats.longest_streak == 1

    def test_win_then_loss(self):
        stats = replay_statistics([_bet(1, "a", 100, "a"), _bet(2, "x", 200, "y")])
        assert stats.total_points == 900
        assert stats.points_won == 100
        assert stats.points_lost == 200
        assert stats.correct_predictions == 1
        assert stats.total_predictions == 2
        assert stats.current_streak == 0
        assert stats.longest_streak == 1

    def test_longest_streak_survives_loss(self):
        history = [
            _bet(1, "a", 10, "a"),
            _bet(2, "a", 10, "a"),
            _bet(3, "a", 10, "a"),
            _bet(4, "a", 10, "b"),
            _bet(5, "a", 10, "a"),
        ]
        stats = replay_statistics(history)
        assert stats.longest_streak == 3
        assert stats.current_streak == 1

    def test_streak_invariant_holds_at_every_prefix(self):
        outcomes = [True, True, False, True, False, False, True, True, True, False]
        history = [_bet(i, "a", 5, "a" if won else "b") for i, won in enumerate(outcomes)]
        for end in range(len(history) + 1):
            stats = replay_statistics(history[:end])
            assert stats.longest_streak >= stats.current_streak
            if end and not outcomes[end - 1]:
                assert stats.current_streak == 0

    def test_replay_is_deterministic(self):
        history = [_bet(1, "a", 50, "a"), _bet(2, "b", 70, "a"), _bet(3, "c", 20, "c")]
        assert replay_statistics(history) == replay_statistics(list(history))

    def test_balance_can_go_negative(self):
        stats = replay_statistics([_bet(1, "a", 1000, "b"), _bet(2, "a", 500, "b")])
        assert stats.total_points == -500

    def test_as_dict_has_all_fields(self):
        assert set(StatisticsSnapshot().as_dict()) == {
            "total_points",
            "points_won",
            "points_lost",
            "correct_predictions",
            "total_predictions",
            "current_streak",
            "longest_streak",
        }


def test_is_orphaned():
    options = [{"id": "a", "text": "A"}, {"id": "b", "text": "B"}]
    assert not is_orphaned(options, "a")
    assert is_orphaned(options, "c")
    assert is_orphaned([], "a")
