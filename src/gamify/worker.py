"""arq worker: period closes and housekeeping on cron.

Import path for arq CLI: arq gamify.worker.GamificationWorkerSettings
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

import redis.asyncio as aioredis
from arq import cron
from arq.connections import RedisSettings

from gamify.config import get_settings
from gamify.database import close_db, init_db, session_scope
from gamify.engine import build_engine
from gamify.levels.definitions import seed_levels
from gamify.logging_config import job_context, setup_logging
from gamify.period_service import PeriodService
from gamify.redis_client import claim_once, close_redis, get_redis, init_redis
from gamify.scheduled_jobs import ScheduledJobs
from gamify.tasks.definitions import seed_task_definitions

logger = logging.getLogger(__name__)

JOB_GUARD_PREFIX = "gamify:job"


async def acquire_guard(redis_client: aioredis.Redis | None, job: str, period: str, ttl: int) -> bool:
    """Claim ``gamify:job:{job}:{period}``. Without redis every run proceeds."""
    if redis_client is None:
        return True
    try:
        return await claim_once(redis_client, f"{JOB_GUARD_PREFIX}:{job}:{period}", ttl)
    except aioredis.RedisError:
        logger.warning("Job guard unavailable for %s %s, running unguarded", job, period, exc_info=True)
        return True


async def _run_guarded(
    ctx: dict,  # type: ignore[type-arg]
    job: str,
    period: str,
    body: Callable[[ScheduledJobs], Awaitable[Any]],
) -> Any:
    settings = get_settings()
    redis_client: aioredis.Redis | None = ctx.get("redis")
    if not await acquire_guard(redis_client, job, period, settings.job_guard_ttl_seconds):
        logger.info("Skipping %s for %s: already running or done", job, period)
        return None

    with job_context(job, period):
        try:
            async with session_scope() as db:
                return await body(ScheduledJobs(build_engine(db, redis_client, settings)))
        except Exception:
            logger.exception("Job %s failed for %s", job, period)
            raise


async def seed_reference_data() -> None:
    """Seed league tiers and the static quest catalogue."""
    async with session_scope() as db:
        await seed_levels(db)
        await seed_task_definitions(db)


async def gamification_startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize logging, DB and Redis on worker startup."""
    settings = get_settings()
    setup_logging(settings)
    await init_db(settings.database_url, echo=settings.debug)
    await init_redis(settings.redis_url)
    ctx["redis"] = get_redis()
    await seed_reference_data()
    logger.info("Gamification worker started")


async def gamification_shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    """Clean up on worker shutdown."""
    await close_redis()
    await close_db()
    logger.info("Gamification worker shut down")


def _periods() -> PeriodService:
    return PeriodService(get_settings().timezone)


async def weekly_close(ctx: dict) -> Any:  # type: ignore[type-arg]
    """Monday 00:05: snapshot last week, settle leagues, snapshot circles."""
    week_start, _ = _periods().previous_week()
    return await _run_guarded(ctx, "weekly_close", week_start.isoformat(), lambda jobs: jobs.run_weekly_close())


async def monthly_close(ctx: dict) -> Any:  # type: ignore[type-arg]
    month_start, _ = _periods().previous_month()
    return await _run_guarded(ctx, "monthly_close", month_start.isoformat(), lambda jobs: jobs.run_monthly_close())


async def reset_weekly_grace(ctx: dict) -> Any:  # type: ignore[type-arg]
    week_key = _periods().current_period_key("weekly")
    return await _run_guarded(ctx, "reset_grace", week_key, lambda jobs: jobs.reset_weekly_grace())


async def expire_daily_tasks(ctx: dict) -> Any:  # type: ignore[type-arg]
    day_key = _periods().current_period_key("daily")
    return await _run_guarded(ctx, "expire_daily", day_key, lambda jobs: jobs.expire_tasks("daily"))


async def expire_weekly_tasks(ctx: dict) -> Any:  # type: ignore[type-arg]
    week_key = _periods().current_period_key("weekly")
    return await _run_guarded(ctx, "expire_weekly", week_key, lambda jobs: jobs.expire_tasks("weekly"))


async def expire_monthly_tasks(ctx: dict) -> Any:  # type: ignore[type-arg]
    month_key = _periods().current_period_key("monthly")
    return await _run_guarded(ctx, "expire_monthly", month_key, lambda jobs: jobs.expire_tasks("monthly"))


async def cleanup_old_events(ctx: dict) -> Any:  # type: ignore[type-arg]
    day_key = _periods().current_period_key("daily")
    return await _run_guarded(ctx, "cleanup", day_key, lambda jobs: jobs.cleanup_old_events())


class GamificationWorkerSettings:
    """arq worker settings for the period-close scheduler.

    Cron times are UTC. The Monday 00:05 weekly close lands after the local
    week has ended for the default Europe/Istanbul zone (UTC+3).
    """

    functions = [
        weekly_close,
        monthly_close,
        reset_weekly_grace,
        expire_daily_tasks,
        expire_weekly_tasks,
        expire_monthly_tasks,
        cleanup_old_events,
    ]
    cron_jobs = [
        cron(reset_weekly_grace, weekday=0, hour=0, minute=1),
        cron(weekly_close, weekday=0, hour=0, minute=5),
        cron(monthly_close, day=1, hour=0, minute=10),
        cron(expire_daily_tasks, hour=0, minute=15),
        cron(expire_weekly_tasks, weekday=0, hour=0, minute=20),
        cron(expire_monthly_tasks, day=1, hour=0, minute=25),
        cron(cleanup_old_events, hour=3, minute=0),
    ]
    on_startup = gamification_startup
    on_shutdown = gamification_shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().redis_url)
    max_jobs = get_settings().worker_max_jobs
    job_timeout = get_settings().worker_job_timeout
    allow_abort_jobs = True
