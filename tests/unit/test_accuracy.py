"""Unit tests for leaderboard accuracy rounding."""

from __future__ import annotations

import pytest

from wagerbook.predictions.leaderboard import compute_accuracy


@pytest.mark.parametrize(
    ("correct", "total", "expected"),
    [
        (0, 0, 0),
        (0, 3, 0),
        (1, 1, 100),
        (1, 2, 50),
        (1, 3, 33),
        (2, 3, 67),
        (1, 8, 13),  # 12.5 rounds half up
        (5, 8, 63),  # 62.5 rounds half up
        (7, 7, 100),
    ],
)
def test_compute_accuracy(correct: int, total: int, expected: int) -> None:
    assert compute_accuracy(correct, total) == expected
