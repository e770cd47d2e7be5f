"""RuleEngine unit tests: points, daily limits and messages."""

from __future__ import annotations

import pytest

from gamify.scoring.rule_engine import RuleEngine, as_bool
from gamify.scoring.rules import DYNAMIC_DEFAULT_POINTS


@pytest.fixture
def rules() -> RuleEngine:
    return RuleEngine()


class TestCalculatePoints:
    def test_fixed_values(self, rules: RuleEngine) -> None:
        assert rules.calculate_points("login_success") == 2
        assert rules.calculate_points("rating_submitted") == 20
        assert rules.calculate_points("circle_joined") == 100

    def test_audit_only_events_score_zero(self, rules: RuleEngine) -> None:
        assert rules.calculate_points("water_goal_reached") == 0
        assert rules.calculate_points("comment_liked") == 0

    def test_unknown_event_scores_zero(self, rules: RuleEngine) -> None:
        assert rules.calculate_points("something_new") == 0

    def test_diet_override(self, rules: RuleEngine) -> None:
        assert rules.calculate_points("diet_completed", {"diet_points": 12}) == 12

    def test_exercise_override_falls_back_to_points_key(self, rules: RuleEngine) -> None:
        assert rules.calculate_points("exercise_completed", {"points": "7"}) == 7

    def test_dynamic_default_without_override(self, rules: RuleEngine) -> None:
        assert rules.calculate_points("diet_completed") == DYNAMIC_DEFAULT_POINTS
        assert rules.calculate_points("exercise_completed", {"diet_points": "x"}) == DYNAMIC_DEFAULT_POINTS

    def test_blog_sticky_vs_normal(self, rules: RuleEngine) -> None:
        assert rules.calculate_points("blog_points_claimed", {"is_sticky": "true"}) == 50
        assert rules.calculate_points("blog_points_claimed", {"is_sticky": 1}) == 50
        assert rules.calculate_points("blog_points_claimed", {"is_sticky": False}) == 10
        assert rules.calculate_points("blog_points_claimed") == 10

    def test_reward_events_read_points_from_metadata(self, rules: RuleEngine) -> None:
        assert rules.calculate_points("level_position_rewarded", {"points": 25}) == 25
        assert rules.calculate_points("streak_milestone_rewarded", {}) == 0

    def test_circle_created_is_configurable(self) -> None:
        assert RuleEngine().calculate_points("circle_created") == 0
        enabled = RuleEngine(circle_create_points_enabled=True, circle_create_points=30)
        assert enabled.calculate_points("circle_created") == 30


class TestDailyLimit:
    def test_known_limits(self, rules: RuleEngine) -> None:
        assert rules.daily_limit("login_success") == 1
        assert rules.daily_limit("water_added") == 15
        assert rules.daily_limit("blog_points_claimed") == 5

    def test_steps_limit_from_config(self) -> None:
        assert RuleEngine(steps_daily_limit=3).daily_limit("steps_logged") == 3

    def test_unlimited(self, rules: RuleEngine) -> None:
        assert rules.daily_limit("comment_created") is None


class TestMessages:
    def test_message_contains_points(self, rules: RuleEngine) -> None:
        assert "2" in rules.get_message("login_success", 2)

    def test_zero_points_has_no_message(self, rules: RuleEngine) -> None:
        assert rules.get_message("water_goal_reached", 0) == ""

    def test_template_fields(self, rules: RuleEngine) -> None:
        message = rules.get_message("comment_like_milestone_rewarded", 5, {"milestone": 50})
        assert "50 likes" in message
        assert "#2" in rules.get_message("level_position_rewarded", 25, {"position": 2})

    def test_default_template(self, rules: RuleEngine) -> None:
        assert rules.get_message("brand_new_event", 4) == "+4 points!"


@pytest.mark.parametrize(
    ("value", "expected"),
    [(True, True), ("yes", True), ("TRUE", True), (1, True), (0, False), ("no", False), (None, False)],
)
def test_as_bool(value: object, expected: bool) -> None:
    assert as_bool(value) is expected
