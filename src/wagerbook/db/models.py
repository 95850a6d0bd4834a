"""ORM models for predictions, bets, results and derived user statistics.

The PostgreSQL schema is owned by Alembic (alembic/versions). Column types are
kept portable so the same models run on SQLite for local runs and tests.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from wagerbook.db.base import Base

PREDICTION_STATUSES = ("open", "closed", "revealed")

# BIGSERIAL on PostgreSQL, INTEGER PRIMARY KEY (rowid alias) on SQLite.
_BigIntId = BigInteger().with_variant(Integer(), "sqlite")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Predictions
# ---------------------------------------------------------------------------


class Prediction(Base):
    """Maps to the 'predictions' table."""

    __tablename__ = "predictions"
    __table_args__ = (
        CheckConstraint("status IN ('open', 'closed', 'revealed')", name="predictions_status_check"),
    )

    id: Mapped[int] = mapped_column(_BigIntId, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Ordered list of {"id": str, "text": str}
    options: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"), nullable=False
    )
    category: Mapped[str] = mapped_column(String(32), nullable=False, default="general")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="open", index=True)
    betting_opens_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    betting_deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reveal_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    points_pool: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    created_by: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    @property
    def option_ids(self) -> list[str]:
        return [opt["id"] for opt in self.options or []]


# ---------------------------------------------------------------------------
# Bets
# ---------------------------------------------------------------------------


class PredictionBet(Base):
    """Maps to the 'prediction_bets' table. One row per (prediction, user)."""

    __tablename__ = "prediction_bets"
    __table_args__ = (
        UniqueConstraint("prediction_id", "user_id", name="prediction_bets_prediction_user_key"),
        CheckConstraint("points_wagered > 0", name="prediction_bets_points_positive"),
    )

    id: Mapped[int] = mapped_column(_BigIntId, primary_key=True, autoincrement=True)
    prediction_id: Mapped[int] = mapped_column(
        ForeignKey("predictions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    selected_option: Mapped[str] = mapped_column(String(64), nullable=False)
    points_wagered: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class PredictionResult(Base):
    """Maps to the 'prediction_results' table. At most one row per prediction."""

    __tablename__ = "prediction_results"

    id: Mapped[int] = mapped_column(_BigIntId, primary_key=True, autoincrement=True)
    prediction_id: Mapped[int] = mapped_column(
        ForeignKey("predictions.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    correct_option: Mapped[str] = mapped_column(String(64), nullable=False)
    revealed_by: Mapped[str] = mapped_column(String(64), nullable=False)
    revealed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    # Replay order key; corrections never move it.
    first_revealed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, index=True
    )


# ---------------------------------------------------------------------------
# Derived statistics (materialized view of all settled bets)
# ---------------------------------------------------------------------------


class UserPredictionStats(Base):
    """Maps to the 'user_prediction_stats' table. Written only by settlement."""

    __tablename__ = "user_prediction_stats"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    total_points: Mapped[int] = mapped_column(Integer, nullable=False, default=1000)
    points_won: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    points_lost: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    correct_predictions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_predictions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    longest_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
