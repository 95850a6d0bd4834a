"""Pydantic schemas for prediction, bet and leaderboard API payloads."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


# --- Options ---


class OptionIn(BaseModel):
    id: str | None = None
    text: str


class OptionResponse(BaseModel):
    id: str
    text: str


# --- Predictions ---


class PredictionCreateRequest(BaseModel):
    # title/options are validated by the registry so failures carry its message
    title: str | None = None
    description: str | None = None
    options: list[str | OptionIn] | None = None
    category: str | None = None
    betting_opens_at: datetime | None = None
    betting_deadline: datetime | None = None
    reveal_date: datetime | None = None
    points_pool: int | None = None


class PredictionUpdateRequest(BaseModel):
    """Partial update: only fields present in the body are applied."""

    title: str | None = None
    description: str | None = None
    options: list[str | OptionIn] | None = None
    category: str | None = None
    status: str | None = None
    betting_opens_at: datetime | None = None
    betting_deadline: datetime | None = None
    reveal_date: datetime | None = None
    points_pool: int | None = None


class BetResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    prediction_id: int
    user_id: str
    selected_option: str
    points_wagered: int
    created_at: datetime
    updated_at: datetime


class ResultResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    prediction_id: int
    correct_option: str
    revealed_by: str
    revealed_at: datetime


class PredictionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: str | None
    options: list[OptionResponse]
    category: str
    status: str
    betting_opens_at: datetime | None
    betting_deadline: datetime | None
    reveal_date: datetime | None
    points_pool: int
    created_by: str
    created_at: datetime
    updated_at: datetime


class PredictionDetailResponse(PredictionResponse):
    user_bet: BetResponse | None = None
    result: ResultResponse | None = None
    total_bets: int = 0
    option_counts: dict[str, int] = {}


# --- Bets ---


class BetRequest(BaseModel):
    selected_option: str
    points_wagered: int


class BetPlacedResponse(BaseModel):
    success: bool = True
    bet: BetResponse


# --- Reveal ---


class RevealRequest(BaseModel):
    correct_option: str


class OrphanedBetResponse(BaseModel):
    user_id: str
    selected_option: str
    points_wagered: int


class RevealResponse(BaseModel):
    success: bool = True
    result: ResultResponse
    corrected: bool = False
    previous_option: str | None = None
    affected_users: list[str] = []
    orphaned_bets: list[OrphanedBetResponse] = []


# --- Statistics / leaderboard ---


class UserStatisticsResponse(BaseModel):
    user_id: str
    total_points: int
    points_won: int
    points_lost: int
    correct_predictions: int
    total_predictions: int
    accuracy: int
    current_streak: int
    longest_streak: int


class LeaderboardEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

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


class RebuildResponse(BaseModel):
    users_recomputed: int


class SuccessResponse(BaseModel):
    success: bool = True
