"""arq worker settings: the scheduled deadline sweep.

Import path for arq CLI: arq wagerbook.workers.settings.WorkerSettings
"""

from __future__ import annotations

import logging

from arq import cron
from arq.connections import RedisSettings

from wagerbook.config import get_settings
from wagerbook.database import close_db, get_session_factory, init_db
from wagerbook.predictions.sweeper import close_expired_predictions

logger = logging.getLogger(__name__)


async def startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize the database engine on worker startup."""
    settings = get_settings()
    await init_db(settings.database_url)
    logger.info("Wagerbook worker started (auto close %s)", "on" if settings.auto_close_enabled else "off")


async def shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    await close_db()
    logger.info("Wagerbook worker shut down")


async def sweep_expired_predictions(ctx: dict) -> list[int]:  # type: ignore[type-arg]
    """Scheduled arq task: close open predictions past their deadline."""
    if not get_settings().auto_close_enabled:
        return []
    async with get_session_factory()() as db:
        try:
            return await close_expired_predictions(db)
        except Exception:
            logger.exception("Deadline sweep failed")
            return []


class WorkerSettings:
    """arq worker settings for the wagerbook scheduler."""

    functions = [sweep_expired_predictions]
    cron_jobs = [
        cron(sweep_expired_predictions, second=0, run_at_startup=True),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().arq_redis_url)
    max_jobs = 4
    job_timeout = 120
