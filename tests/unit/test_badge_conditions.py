"""Badge condition parsing, trigger matching and pure evaluators."""

from __future__ import annotations

from datetime import date

from gamify.badges.conditions import (
    CircleHeroCondition,
    CountCondition,
    CountInPeriodCondition,
    StreakCondition,
    UnknownCondition,
    parse_condition,
)
from gamify.badges.definitions import STATIC_BADGES, static_badges
from gamify.badges.rule_engine import (
    BadgeRuleEngine,
    comeback_after_gap,
    consecutive_week_run,
    contribution_meets,
)


class TestParseCondition:
    def test_count_with_defaults(self) -> None:
        condition = parse_condition({"type": "COUNT", "event": "rating_submitted"})
        assert isinstance(condition, CountCondition)
        assert condition.target == 1
        assert condition.context_filter is None

    def test_period_defaults_to_monthly(self) -> None:
        condition = parse_condition({"type": "COUNT_IN_PERIOD", "event": "task_completed"})
        assert isinstance(condition, CountInPeriodCondition)
        assert condition.period == "monthly"
        assert condition.target == 50

    def test_unknown_type(self) -> None:
        condition = parse_condition({"type": "MOON_PHASE", "event": "login_success"})
        assert isinstance(condition, UnknownCondition)
        assert condition.type == "MOON_PHASE"

    def test_malformed_input(self) -> None:
        assert isinstance(parse_condition(None), UnknownCondition)
        assert isinstance(parse_condition({"type": "COUNT", "target": "many"}), UnknownCondition)

    def test_extra_keys_ignored(self) -> None:
        condition = parse_condition({"type": "STREAK", "target": 3, "label": "x"})
        assert isinstance(condition, StreakCondition)
        assert condition.target == 3

    def test_every_static_badge_parses(self) -> None:
        for badge in static_badges():
            assert not isinstance(badge.condition, UnknownCondition), badge.slug
        assert len(STATIC_BADGES) == 11


class TestEventMatchesRules:
    def test_explicit_event(self) -> None:
        conditions = {"type": "COUNT", "event": "rating_submitted"}
        assert BadgeRuleEngine.event_matches_rules("rating_submitted", conditions)
        assert not BadgeRuleEngine.event_matches_rules("login_success", conditions)

    def test_event_list(self) -> None:
        conditions = {"type": "COUNT_UNIQUE_USERS", "events": ["highfive_sent", "comment_created"]}
        assert BadgeRuleEngine.event_matches_rules("comment_created", conditions)
        assert not BadgeRuleEngine.event_matches_rules("comment_liked", conditions)

    def test_implicit_triggers(self) -> None:
        assert BadgeRuleEngine.event_matches_rules("login_success", {"type": "STREAK"})
        assert BadgeRuleEngine.event_matches_rules("login_success", {"type": "COMEBACK"})
        assert BadgeRuleEngine.event_matches_rules("circle_task_completed", {"type": "CIRCLE_HERO"})
        assert BadgeRuleEngine.event_matches_rules("steps_logged", {"type": "CIRCLE_CONTRIBUTION"})

    def test_unknown_never_matches(self) -> None:
        assert not BadgeRuleEngine.event_matches_rules("login_success", {"type": "MOON_PHASE"})

    def test_parsed_condition_accepted(self) -> None:
        condition = CircleHeroCondition(type="CIRCLE_HERO")
        assert BadgeRuleEngine.event_matches_rules("circle_task_completed", condition)


class TestConsecutiveWeeks:
    def test_four_weeks_in_a_row(self) -> None:
        dates = [date(2026, 2, 10), date(2026, 2, 17), date(2026, 2, 24), date(2026, 3, 3)]
        assert consecutive_week_run(dates) == 4

    def test_same_week_counts_once(self) -> None:
        assert consecutive_week_run([date(2026, 3, 2), date(2026, 3, 4), date(2026, 3, 8)]) == 1

    def test_gap_stops_the_run(self) -> None:
        dates = [date(2026, 2, 3), date(2026, 2, 24), date(2026, 3, 3)]
        assert consecutive_week_run(dates) == 2

    def test_empty(self) -> None:
        assert consecutive_week_run([]) == 0


class TestComeback:
    def test_active_days_after_gap(self) -> None:
        logins = [date(2026, 3, 12), date(2026, 3, 11), date(2026, 3, 10), date(2026, 3, 1)]
        assert comeback_after_gap(logins, 7) == 3

    def test_no_gap(self) -> None:
        logins = [date(2026, 3, 3), date(2026, 3, 2), date(2026, 3, 1)]
        assert comeback_after_gap(logins, 7) is None


def test_contribution_meets() -> None:
    assert contribution_meets(15, 150, 10)
    assert not contribution_meets(14, 150, 10)
    assert contribution_meets(60, 300, 20)
