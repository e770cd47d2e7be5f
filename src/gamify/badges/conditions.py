"""Typed badge conditions.

Each condition variant carries its own parameters and is selected by its
``type`` discriminator. Anything that fails to parse becomes
``UnknownCondition``, which never passes.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any, ClassVar, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from gamify.period_service import PeriodType

logger = logging.getLogger(__name__)


class _Condition(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    event: str | None = None
    events: list[str] = []

    # Triggers used when neither ``event`` nor ``events`` is given
    implicit_events: ClassVar[frozenset[str]] = frozenset()

    def trigger_events(self) -> frozenset[str]:
        if self.event:
            return frozenset({self.event})
        if self.events:
            return frozenset(self.events)
        return self.implicit_events

    def matched_events(self) -> list[str]:
        """Event types whose history this condition counts."""
        if self.event:
            return [self.event]
        return list(self.events)


class CountCondition(_Condition):
    type: Literal["COUNT"]
    target: int = 1
    context_filter: dict[str, Any] | None = None


class CountUniqueDaysCondition(_Condition):
    type: Literal["COUNT_UNIQUE_DAYS"]


class StreakCondition(_Condition):
    type: Literal["STREAK"]
    streak_type: str = "daily_login"
    target: int = 7

    implicit_events: ClassVar[frozenset[str]] = frozenset({"login_success"})


class ConsecutiveWeeksCondition(_Condition):
    type: Literal["CONSECUTIVE_WEEKS"]
    target: int = 4


class CountInPeriodCondition(_Condition):
    type: Literal["COUNT_IN_PERIOD"]
    period: PeriodType = PeriodType.MONTHLY
    target: int = 50


class ComebackCondition(_Condition):
    type: Literal["COMEBACK"]
    min_gap_days: int = 7
    active_days_after: int = 3
    lookback: int = 30

    implicit_events: ClassVar[frozenset[str]] = frozenset({"login_success"})


class CircleContributionCondition(_Condition):
    type: Literal["CIRCLE_CONTRIBUTION"]
    min_contribution_percent: int = 10
    unique_tasks: int = 3

    implicit_events: ClassVar[frozenset[str]] = frozenset({
        "circle_task_completed",
        "exercise_completed",
        "steps_logged",
        "circle_daily_active",
    })


class CircleHeroCondition(_Condition):
    type: Literal["CIRCLE_HERO"]
    min_contribution_percent: int = 20
    completion_window_hours: int = 24

    implicit_events: ClassVar[frozenset[str]] = frozenset({"circle_task_completed"})


class CountUniqueUsersCondition(_Condition):
    type: Literal["COUNT_UNIQUE_USERS"]
    target_field: str = "target_user_id"


class UnknownCondition(_Condition):
    type: str = ""


BadgeCondition = Annotated[
    Union[
        CountCondition,
        CountUniqueDaysCondition,
        StreakCondition,
        ConsecutiveWeeksCondition,
        CountInPeriodCondition,
        ComebackCondition,
        CircleContributionCondition,
        CircleHeroCondition,
        CountUniqueUsersCondition,
    ],
    Field(discriminator="type"),
]

_adapter: TypeAdapter[BadgeCondition] = TypeAdapter(BadgeCondition)

AnyCondition = Union[BadgeCondition, UnknownCondition]


def parse_condition(raw: dict[str, Any] | None) -> AnyCondition:
    if not isinstance(raw, dict):
        return UnknownCondition()
    try:
        return _adapter.validate_python(raw)
    except PydanticValidationError:
        logger.warning("Unparsable badge condition of type %r", raw.get("type"))
        return UnknownCondition(
            type=str(raw.get("type", "")),
            event=raw.get("event") if isinstance(raw.get("event"), str) else None,
        )
