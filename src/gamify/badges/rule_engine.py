"""Badge condition interpreter.

Evaluates a parsed condition against the user's persisted history and
returns ``ConditionResult(passed, progress, max)``. Only ``valid`` events
count towards progress.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any

from sqlalchemy import ColumnElement, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from gamify.badges.conditions import (
    AnyCondition,
    CircleContributionCondition,
    CircleHeroCondition,
    ComebackCondition,
    ConsecutiveWeeksCondition,
    CountCondition,
    CountInPeriodCondition,
    CountUniqueDaysCondition,
    CountUniqueUsersCondition,
    StreakCondition,
    parse_condition,
)
from gamify.db.models import CircleTask, CircleTaskContribution, Event
from gamify.period_service import PeriodService, get_monday
from gamify.schemas import ConditionResult, IngestStatus
from gamify.streak_service import StreakService

logger = logging.getLogger(__name__)

UNKNOWN_RESULT = ConditionResult(passed=False, progress=0, max=1)


def _threshold(count: int, target: int) -> ConditionResult:
    return ConditionResult(passed=count >= target, progress=min(count, target), max=target)


def _progressive(count: int) -> ConditionResult:
    return ConditionResult(passed=True, progress=count, max=count)


def _metadata_equals(key: str, value: Any) -> ColumnElement[bool]:
    """Compare a metadata field by the JSON type of the expected value."""
    field = Event.event_metadata[key]
    # bool before int: True is an int
    if isinstance(value, bool):
        return field.as_boolean() == value
    if isinstance(value, int):
        return field.as_integer() == value
    if isinstance(value, float):
        return field.as_float() == value
    if value is None:
        return field.as_string().is_(None)
    return field.as_string() == str(value)


def consecutive_week_run(event_dates: list[date]) -> int:
    """Length of the run of consecutive ISO weeks, newest week first, stopping at the first gap."""
    mondays = sorted({get_monday(d) for d in event_dates}, reverse=True)
    run = 0
    previous: date | None = None
    for monday in mondays:
        if previous is not None and (previous - monday).days != 7:
            break
        run += 1
        previous = monday
    return run


def comeback_after_gap(login_dates_desc: list[date], min_gap_days: int) -> int | None:
    """Active days since the most recent gap of at least min_gap_days, or None if no gap."""
    for i in range(len(login_dates_desc) - 1):
        if (login_dates_desc[i] - login_dates_desc[i + 1]).days >= min_gap_days:
            return i + 1
    return None


def contribution_meets(contributed: int, target_value: int, percent: int) -> bool:
    return contributed * 100 >= target_value * percent


class BadgeRuleEngine:
    def __init__(self, db: AsyncSession, periods: PeriodService, streaks: StreakService) -> None:
        self.db = db
        self.periods = periods
        self.streaks = streaks

    @staticmethod
    def event_matches_rules(event_type: str, conditions: dict[str, Any] | AnyCondition) -> bool:
        """Cheap pre-filter: does this event type trigger the condition at all?"""
        condition = parse_condition(conditions) if isinstance(conditions, dict) else conditions
        return event_type in condition.trigger_events()

    async def evaluate(self, user_id: int, conditions: dict[str, Any] | AnyCondition) -> ConditionResult:
        condition = parse_condition(conditions) if isinstance(conditions, dict) else conditions

        match condition:
            case CountCondition():
                return await self._count(user_id, condition)
            case CountUniqueDaysCondition():
                return await self._count_unique_days(user_id, condition)
            case StreakCondition():
                current = await self.streaks.get_current_count(user_id, condition.streak_type)
                return _threshold(current, condition.target)
            case ConsecutiveWeeksCondition():
                dates = await self._event_dates(user_id, condition.matched_events())
                return _threshold(consecutive_week_run(dates), condition.target)
            case CountInPeriodCondition():
                return await self._count_in_period(user_id, condition)
            case ComebackCondition():
                return await self._comeback(user_id, condition)
            case CircleContributionCondition():
                return await self._circle_contribution(user_id, condition)
            case CircleHeroCondition():
                return await self._circle_hero(user_id, condition)
            case CountUniqueUsersCondition():
                return await self._count_unique_users(user_id, condition)
            case _:
                return UNKNOWN_RESULT

    async def calculate_progress(self, user_id: int, conditions: dict[str, Any] | AnyCondition) -> int:
        return (await self.evaluate(user_id, conditions)).progress

    # ------------------------------------------------------------------
    # Event history
    # ------------------------------------------------------------------

    def _valid_events(self, user_id: int, event_types: list[str]) -> list[Any]:
        return [
            Event.user_id == user_id,
            Event.event_type.in_(event_types),
            Event.status == IngestStatus.VALID.value,
        ]

    async def _event_dates(self, user_id: int, event_types: list[str]) -> list[date]:
        if not event_types:
            return []
        result = await self.db.execute(
            select(Event.event_date).distinct().where(*self._valid_events(user_id, event_types))
        )
        return list(result.scalars().all())

    async def _count(self, user_id: int, condition: CountCondition) -> ConditionResult:
        event_types = condition.matched_events()
        if not event_types:
            return _threshold(0, condition.target)
        filters = self._valid_events(user_id, event_types)
        for key, value in (condition.context_filter or {}).items():
            filters.append(_metadata_equals(key, value))
        result = await self.db.execute(select(func.count(Event.id)).where(*filters))
        return _threshold(int(result.scalar_one()), condition.target)

    async def _count_unique_days(self, user_id: int, condition: CountUniqueDaysCondition) -> ConditionResult:
        return _progressive(len(await self._event_dates(user_id, condition.matched_events())))

    async def _count_in_period(self, user_id: int, condition: CountInPeriodCondition) -> ConditionResult:
        key = self.periods.current_period_key(condition.period)
        start = self.periods.period_start(key, condition.period)
        end = self.periods.period_end(key, condition.period)
        event_types = condition.matched_events()
        if start is None or end is None or not event_types:
            return _threshold(0, condition.target)
        result = await self.db.execute(
            select(func.count(Event.id)).where(
                *self._valid_events(user_id, event_types),
                Event.event_date >= start,
                Event.event_date <= end,
            )
        )
        return _threshold(int(result.scalar_one()), condition.target)

    async def _comeback(self, user_id: int, condition: ComebackCondition) -> ConditionResult:
        result = await self.db.execute(
            select(Event.event_date)
            .distinct()
            .where(*self._valid_events(user_id, ["login_success"]))
            .order_by(Event.event_date.desc())
            .limit(condition.lookback)
        )
        logins = list(result.scalars().all())
        needed = condition.active_days_after
        if len(logins) < needed:
            return ConditionResult(passed=False, progress=0, max=needed)

        active_after = comeback_after_gap(logins, condition.min_gap_days)
        if active_after is None:
            return ConditionResult(passed=False, progress=0, max=needed)
        return ConditionResult(passed=active_after >= needed, progress=min(active_after, needed), max=needed)

    async def _count_unique_users(self, user_id: int, condition: CountUniqueUsersCondition) -> ConditionResult:
        event_types = condition.matched_events()
        if not event_types:
            return UNKNOWN_RESULT
        result = await self.db.execute(
            select(Event.event_metadata).where(*self._valid_events(user_id, event_types))
        )
        counterparts = {
            str(meta[condition.target_field])
            for meta in result.scalars().all()
            if meta and meta.get(condition.target_field) is not None
        }
        return _progressive(len(counterparts))

    # ------------------------------------------------------------------
    # Circle contributions
    # ------------------------------------------------------------------

    async def _circle_contribution(self, user_id: int, condition: CircleContributionCondition) -> ConditionResult:
        result = await self.db.execute(
            select(CircleTask.target_value, func.sum(CircleTaskContribution.contribution_value))
            .join(CircleTask, CircleTask.id == CircleTaskContribution.circle_task_id)
            .where(CircleTaskContribution.user_id == user_id)
            .group_by(CircleTask.id, CircleTask.target_value)
        )
        qualifying = sum(
            1
            for target_value, contributed in result.all()
            if contribution_meets(int(contributed or 0), target_value, condition.min_contribution_percent)
        )
        return _threshold(qualifying, condition.unique_tasks)

    async def _circle_hero(self, user_id: int, condition: CircleHeroCondition) -> ConditionResult:
        window_days = max(1, -(-condition.completion_window_hours // 24))
        since = self.periods.today() - timedelta(days=window_days * 2)

        completed = await self.db.execute(
            select(CircleTask.id, CircleTask.target_value, CircleTask.completed_date).where(
                CircleTask.status == "completed",
                CircleTask.completed_date >= since,
            )
        )
        heroic = 0
        for task_id, target_value, completed_date in completed.all():
            contributed = await self.db.execute(
                select(func.coalesce(func.sum(CircleTaskContribution.contribution_value), 0)).where(
                    CircleTaskContribution.circle_task_id == task_id,
                    CircleTaskContribution.user_id == user_id,
                    CircleTaskContribution.contribution_date >= completed_date - timedelta(days=window_days),
                    CircleTaskContribution.contribution_date <= completed_date,
                )
            )
            if contribution_meets(int(contributed.scalar_one()), target_value, condition.min_contribution_percent):
                heroic += 1
        return _threshold(heroic, 1)
