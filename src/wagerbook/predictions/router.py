"""Predictions API: registry, bets, reveal, statistics and leaderboard."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from wagerbook.auth.dependencies import Caller, get_current_caller, get_optional_caller, require_admin
from wagerbook.database import get_session
from wagerbook.predictions import ledger, registry, settlement
from wagerbook.predictions.leaderboard import compute_accuracy, get_user_statistics, list_leaderboard
from wagerbook.predictions.schemas import (
    BetPlacedResponse,
    BetRequest,
    BetResponse,
    LeaderboardEntryResponse,
    OrphanedBetResponse,
    PredictionCreateRequest,
    PredictionDetailResponse,
    PredictionResponse,
    PredictionUpdateRequest,
    RebuildResponse,
    ResultResponse,
    RevealRequest,
    RevealResponse,
    SuccessResponse,
    UserStatisticsResponse,
)
from wagerbook.redis_client import get_redis_or_none

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["Predictions"])


def _detail_response(view: registry.PredictionView) -> PredictionDetailResponse:
    base = PredictionResponse.model_validate(view.prediction)
    return PredictionDetailResponse(
        **base.model_dump(),
        user_bet=BetResponse.model_validate(view.user_bet) if view.user_bet else None,
        result=ResultResponse.model_validate(view.result) if view.result else None,
        total_bets=view.total_bets,
        option_counts=view.option_counts,
    )


# ── Listing and leaderboard (static paths before /{prediction_id}) ──


@router.get("/predictions", response_model=list[PredictionDetailResponse])
async def list_predictions(
    user_id: str | None = Query(None),
    status_filter: str | None = Query(None, alias="status"),
    category: str | None = Query(None),
    caller: Caller | None = Depends(get_optional_caller),
    db: AsyncSession = Depends(get_session),  # noqa: B008
) -> list[PredictionDetailResponse]:
    """All predictions, newest first, enriched for ``user_id`` or the caller."""
    viewer = user_id or (caller.user_id if caller else None)
    views = await registry.list_predictions(db, user_id=viewer, status=status_filter, category=category)
    return [_detail_response(view) for view in views]


@router.post("/predictions", response_model=PredictionResponse, status_code=status.HTTP_201_CREATED)
async def create_prediction(
    body: PredictionCreateRequest,
    admin: Caller = Depends(require_admin),
    db: AsyncSession = Depends(get_session),  # noqa: B008
) -> PredictionResponse:
    data = body.model_dump()
    prediction = await registry.create_prediction(
        db,
        title=data["title"],
        options=data["options"],
        created_by=admin.user_id,
        description=data["description"],
        category=data["category"],
        betting_opens_at=data["betting_opens_at"],
        betting_deadline=data["betting_deadline"],
        reveal_date=data["reveal_date"],
        points_pool=data["points_pool"],
    )
    return PredictionResponse.model_validate(prediction)


@router.get("/predictions/leaderboard", response_model=list[LeaderboardEntryResponse])
async def get_leaderboard(
    limit: int | None = Query(None, ge=1, le=1000),
    db: AsyncSession = Depends(get_session),  # noqa: B008
) -> list[LeaderboardEntryResponse]:
    entries = await list_leaderboard(db, limit=limit)
    return [LeaderboardEntryResponse.model_validate(entry) for entry in entries]


@router.get("/predictions/stats/me", response_model=UserStatisticsResponse)
async def get_my_statistics(
    caller: Caller = Depends(get_current_caller),
    db: AsyncSession = Depends(get_session),  # noqa: B008
) -> UserStatisticsResponse:
    """The caller's statistics; defaults (1000 points) before any settlement."""
    snapshot = await get_user_statistics(db, caller.user_id)
    return UserStatisticsResponse(
        user_id=caller.user_id,
        accuracy=compute_accuracy(snapshot.correct_predictions, snapshot.total_predictions),
        **snapshot.as_dict(),
    )


@router.post("/predictions/stats/rebuild", response_model=RebuildResponse)
async def rebuild_statistics(
    admin: Caller = Depends(require_admin),
    db: AsyncSession = Depends(get_session),  # noqa: B008
) -> RebuildResponse:
    count = await settlement.rebuild_all_statistics(db)
    logger.info("Statistics rebuild requested by %s", admin.user_id)
    return RebuildResponse(users_recomputed=count)


# ── Single prediction ──


@router.get("/predictions/{prediction_id}", response_model=PredictionDetailResponse)
async def get_prediction(
    prediction_id: int,
    user_id: str | None = Query(None),
    caller: Caller | None = Depends(get_optional_caller),
    db: AsyncSession = Depends(get_session),  # noqa: B008
) -> PredictionDetailResponse:
    viewer = user_id or (caller.user_id if caller else None)
    view = await registry.get_prediction_view(db, prediction_id, user_id=viewer)
    return _detail_response(view)


@router.patch("/predictions/{prediction_id}", response_model=PredictionResponse)
async def update_prediction(
    prediction_id: int,
    body: PredictionUpdateRequest,
    _admin: Caller = Depends(require_admin),
    db: AsyncSession = Depends(get_session),  # noqa: B008
) -> PredictionResponse:
    """Apply only the fields present in the request body."""
    fields = body.model_dump(exclude_unset=True)
    prediction = await registry.update_prediction(db, prediction_id, fields)
    return PredictionResponse.model_validate(prediction)


@router.delete("/predictions/{prediction_id}", response_model=SuccessResponse)
async def delete_prediction(
    prediction_id: int,
    _admin: Caller = Depends(require_admin),
    db: AsyncSession = Depends(get_session),  # noqa: B008
) -> SuccessResponse:
    await registry.delete_prediction(db, prediction_id)
    return SuccessResponse()


# ── Bets ──


@router.post("/predictions/{prediction_id}/bet", response_model=BetPlacedResponse)
async def place_bet(
    prediction_id: int,
    body: BetRequest,
    caller: Caller = Depends(get_current_caller),
    db: AsyncSession = Depends(get_session),  # noqa: B008
) -> BetPlacedResponse:
    """Place or replace the caller's bet."""
    bet = await ledger.place_bet(
        db, prediction_id, caller.user_id, body.selected_option, body.points_wagered
    )
    return BetPlacedResponse(bet=BetResponse.model_validate(bet))


@router.delete("/predictions/{prediction_id}/bet", response_model=SuccessResponse)
async def withdraw_bet(
    prediction_id: int,
    caller: Caller = Depends(get_current_caller),
    db: AsyncSession = Depends(get_session),  # noqa: B008
) -> SuccessResponse:
    await ledger.withdraw_bet(db, prediction_id, caller.user_id)
    return SuccessResponse()


# ── Reveal ──


@router.post("/predictions/{prediction_id}/reveal", response_model=RevealResponse)
async def reveal_prediction(
    prediction_id: int,
    body: RevealRequest,
    response: Response,
    admin: Caller = Depends(require_admin),
    db: AsyncSession = Depends(get_session),  # noqa: B008
) -> RevealResponse:
    """Reveal or correct the result. 201 on first reveal, 200 on a correction."""
    report = await settlement.reveal(db, prediction_id, body.correct_option, admin.user_id)
    await settlement.publish_settlement(get_redis_or_none(), report)

    response.status_code = status.HTTP_201_CREATED if report.created else status.HTTP_200_OK
    return RevealResponse(
        result=ResultResponse.model_validate(report.result),
        corrected=report.corrected,
        previous_option=report.previous_option,
        affected_users=report.affected_users,
        orphaned_bets=[
            OrphanedBetResponse(
                user_id=orphan.user_id,
                selected_option=orphan.selected_option,
                points_wagered=orphan.points_wagered,
            )
            for orphan in report.orphaned_bets
        ],
    )
