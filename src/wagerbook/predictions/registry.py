"""Prediction registry: definitions, options and lifecycle status.

Status transitions are administrator-driven and unconditional. Every state may
move to every other state (a closed or revealed prediction can be reopened for
new or corrected bets); ``ALLOWED_TRANSITIONS`` spells this out.
"""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from wagerbook.db.models import PREDICTION_STATUSES, Prediction, PredictionBet, PredictionResult
from wagerbook.exceptions import NotFound, ValidationError
from wagerbook.predictions.locks import lock_prediction_row, prediction_lock, statistics_locks

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[str, list[str]] = {
    status: [target for target in PREDICTION_STATUSES if target != status]
    for status in PREDICTION_STATUSES
}

DEFAULT_CATEGORY = "general"
DEFAULT_POINTS_POOL = 100

_DATETIME_FIELDS = ("betting_opens_at", "betting_deadline", "reveal_date")

_UPDATABLE_FIELDS = (
    "title",
    "description",
    "category",
    "betting_opens_at",
    "betting_deadline",
    "reveal_date",
    "points_pool",
)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Convert to UTC. Naive datetimes (SQLite drops tzinfo) are taken as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def validate_status(status: str) -> None:
    """Raise ValidationError for anything outside open/closed/revealed."""
    if status not in PREDICTION_STATUSES:
        raise ValidationError(
            f"Invalid status '{status}'. Valid statuses: {list(PREDICTION_STATUSES)}"
        )


def build_options(
    raw_options: Iterable[str | Mapping[str, Any]],
    existing: list[dict[str, Any]] | None = None,
) -> list[dict[str, str]]:
    """Normalise an option list into ordered ``{"id", "text"}`` pairs.

    Mappings keep the ``id`` they carry. Plain strings reuse the id of an
    existing option with the same text, so resubmitting an unchanged list does
    not orphan bets; anything else gets a fresh id.
    """
    ids_by_text = {opt["text"]: opt["id"] for opt in existing or []}
    options: list[dict[str, str]] = []
    for raw in raw_options:
        if isinstance(raw, Mapping):
            text = str(raw.get("text") or "").strip()
            option_id = raw.get("id") or None
        else:
            text = str(raw or "").strip()
            option_id = ids_by_text.get(text)
        if not text:
            continue
        options.append({"id": str(option_id or uuid.uuid4()), "text": text})

    if len(options) < 2:
        raise ValidationError("Invalid data: title and at least 2 options required")

    duplicates = [oid for oid, count in Counter(opt["id"] for opt in options).items() if count > 1]
    if duplicates:
        raise ValidationError(f"Duplicate option ids: {sorted(duplicates)}")
    return options


def _validate_window(opens_at: datetime | None, deadline: datetime | None) -> None:
    opens_at, deadline = ensure_utc(opens_at), ensure_utc(deadline)
    if opens_at and deadline and opens_at > deadline:
        raise ValidationError("betting_opens_at must not be after betting_deadline")


async def get_prediction(db: AsyncSession, prediction_id: int) -> Prediction:
    """Get a prediction by ID."""
    result = await db.execute(
        select(Prediction)
        .where(Prediction.id == prediction_id)
        .execution_options(populate_existing=True)
    )
    prediction = result.scalar_one_or_none()
    if prediction is None:
        raise NotFound(f"Prediction {prediction_id} not found")
    return prediction


async def create_prediction(
    db: AsyncSession,
    *,
    title: str | None,
    options: Iterable[str | Mapping[str, Any]] | None,
    created_by: str,
    description: str | None = None,
    category: str | None = None,
    betting_opens_at: datetime | None = None,
    betting_deadline: datetime | None = None,
    reveal_date: datetime | None = None,
    points_pool: int | None = None,
) -> Prediction:
    """Create a new prediction in the ``open`` state."""
    if not title or not title.strip():
        raise ValidationError("Invalid data: title and at least 2 options required")
    built_options = build_options(options or [])
    _validate_window(betting_opens_at, betting_deadline)

    now = datetime.now(timezone.utc)
    prediction = Prediction(
        title=title.strip(),
        description=description or None,
        options=built_options,
        category=category or DEFAULT_CATEGORY,
        status="open",
        betting_opens_at=ensure_utc(betting_opens_at),
        betting_deadline=ensure_utc(betting_deadline),
        reveal_date=ensure_utc(reveal_date),
        points_pool=points_pool or DEFAULT_POINTS_POOL,
        created_by=created_by,
        created_at=now,
        updated_at=now,
    )
    db.add(prediction)
    await db.commit()
    await db.refresh(prediction)
    logger.info("Prediction %s created by %s (%d options)", prediction.id, created_by, len(built_options))
    return prediction


async def update_prediction(
    db: AsyncSession,
    prediction_id: int,
    fields: Mapping[str, Any],
) -> Prediction:
    """Merge the provided fields into a prediction.

    Replacing options can orphan bets on removed option ids; they are kept and
    flagged by settlement. If the prediction was already revealed, its bettors
    are re-settled in the same transaction.
    """
    from wagerbook.predictions.settlement import recompute_user_statistics, revealed_bettors

    async with prediction_lock(prediction_id):
        try:
            prediction = await lock_prediction_row(db, prediction_id)
            if "title" in fields and not (fields["title"] or "").strip():
                raise ValidationError("Title must not be empty")
            status = fields.get("status")
            if status is not None:
                validate_status(status)

            new_options = None
            if fields.get("options") is not None:
                new_options = build_options(fields["options"], existing=prediction.options)
                if new_options == prediction.options:
                    new_options = None

            _validate_window(
                fields.get("betting_opens_at", prediction.betting_opens_at),
                fields.get("betting_deadline", prediction.betting_deadline),
            )

            dependents = await revealed_bettors(db, prediction_id) if new_options is not None else []
            async with statistics_locks(db, dependents):
                for name in _UPDATABLE_FIELDS:
                    if name not in fields:
                        continue
                    value = fields[name]
                    if name == "title":
                        value = value.strip()
                    elif name == "category":
                        value = value or DEFAULT_CATEGORY
                    elif name == "points_pool" and value is None:
                        value = DEFAULT_POINTS_POOL
                    elif name in _DATETIME_FIELDS:
                        value = ensure_utc(value)
                    setattr(prediction, name, value)
                if status is not None and status != prediction.status:
                    logger.info("Prediction %s status %s -> %s", prediction_id, prediction.status, status)
                    prediction.status = status
                if new_options is not None:
                    prediction.options = new_options
                prediction.updated_at = datetime.now(timezone.utc)
                await db.flush()

                for user_id in dependents:
                    await recompute_user_statistics(db, user_id)
                await db.commit()
        except Exception:
            await db.rollback()
            raise

    if new_options is not None:
        logger.info("Prediction %s options replaced, %d users re-settled", prediction_id, len(dependents))
    await db.refresh(prediction)
    return prediction


async def set_status(db: AsyncSession, prediction_id: int, status: str) -> Prediction:
    """Unconditionally move a prediction to ``status``."""
    validate_status(status)
    async with prediction_lock(prediction_id):
        try:
            prediction = await lock_prediction_row(db, prediction_id)
            previous = prediction.status
            prediction.status = status
            prediction.updated_at = datetime.now(timezone.utc)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
    if previous != status:
        logger.info("Prediction %s status %s -> %s", prediction_id, previous, status)
    return prediction


async def delete_prediction(db: AsyncSession, prediction_id: int) -> None:
    """Delete a prediction with its bets and result.

    Bettors of a revealed prediction are re-settled so their statistics no
    longer include it.
    """
    from wagerbook.predictions.settlement import recompute_user_statistics, revealed_bettors

    async with prediction_lock(prediction_id):
        try:
            await lock_prediction_row(db, prediction_id)
            dependents = await revealed_bettors(db, prediction_id)
            async with statistics_locks(db, dependents):
                bets = await db.execute(delete(PredictionBet).where(PredictionBet.prediction_id == prediction_id))
                await db.execute(delete(PredictionResult).where(PredictionResult.prediction_id == prediction_id))
                await db.execute(delete(Prediction).where(Prediction.id == prediction_id))

                for user_id in dependents:
                    await recompute_user_statistics(db, user_id)
                await db.commit()
        except Exception:
            await db.rollback()
            raise
    logger.info(
        "Prediction %s deleted (%d bets, %d users re-settled)",
        prediction_id, bets.rowcount or 0, len(dependents),
    )


# ---------------------------------------------------------------------------
# Read side: predictions enriched for one user
# ---------------------------------------------------------------------------


@dataclass
class PredictionView:
    """A prediction with the viewing user's bet, its result and bet counts."""

    prediction: Prediction
    user_bet: PredictionBet | None = None
    result: PredictionResult | None = None
    total_bets: int = 0
    option_counts: dict[str, int] = field(default_factory=dict)


async def _option_counts(
    db: AsyncSession, prediction_ids: list[int]
) -> dict[int, dict[str, int]]:
    if not prediction_ids:
        return {}
    rows = await db.execute(
        select(PredictionBet.prediction_id, PredictionBet.selected_option, func.count(PredictionBet.id))
        .where(PredictionBet.prediction_id.in_(prediction_ids))
        .group_by(PredictionBet.prediction_id, PredictionBet.selected_option)
    )
    counts: dict[int, dict[str, int]] = {}
    for prediction_id, option_id, count in rows.all():
        counts.setdefault(prediction_id, {})[option_id] = count
    return counts


async def list_predictions(
    db: AsyncSession,
    user_id: str | None = None,
    status: str | None = None,
    category: str | None = None,
) -> list[PredictionView]:
    """All predictions, newest first, enriched for ``user_id`` when given."""
    q = select(Prediction)
    if status:
        validate_status(status)
        q = q.where(Prediction.status == status)
    if category:
        q = q.where(Prediction.category == category)
    q = q.order_by(Prediction.created_at.desc(), Prediction.id.desc())
    predictions = list((await db.execute(q)).scalars().all())
    ids = [p.id for p in predictions]
    if not ids:
        return []

    results_rows = await db.execute(
        select(PredictionResult).where(PredictionResult.prediction_id.in_(ids))
    )
    results = {r.prediction_id: r for r in results_rows.scalars()}

    user_bets: dict[int, PredictionBet] = {}
    if user_id is not None:
        bet_rows = await db.execute(
            select(PredictionBet).where(
                PredictionBet.user_id == user_id,
                PredictionBet.prediction_id.in_(ids),
            )
        )
        user_bets = {b.prediction_id: b for b in bet_rows.scalars()}

    counts = await _option_counts(db, ids)
    return [
        PredictionView(
            prediction=p,
            user_bet=user_bets.get(p.id),
            result=results.get(p.id),
            total_bets=sum(counts.get(p.id, {}).values()),
            option_counts=counts.get(p.id, {}),
        )
        for p in predictions
    ]


async def get_prediction_view(
    db: AsyncSession, prediction_id: int, user_id: str | None = None
) -> PredictionView:
    """One prediction with the same enrichment as ``list_predictions``."""
    prediction = await get_prediction(db, prediction_id)
    result = (
        await db.execute(select(PredictionResult).where(PredictionResult.prediction_id == prediction_id))
    ).scalar_one_or_none()
    user_bet = None
    if user_id is not None:
        user_bet = (
            await db.execute(
                select(PredictionBet).where(
                    PredictionBet.prediction_id == prediction_id,
                    PredictionBet.user_id == user_id,
                )
            )
        ).scalar_one_or_none()
    counts = (await _option_counts(db, [prediction_id])).get(prediction_id, {})
    return PredictionView(
        prediction=prediction,
        user_bet=user_bet,
        result=result,
        total_bets=sum(counts.values()),
        option_counts=counts,
    )
