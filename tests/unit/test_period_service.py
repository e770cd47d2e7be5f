"""Period key arithmetic."""

from __future__ import annotations

from datetime import date, datetime, timezone

from gamify.period_service import (
    PeriodService,
    get_monday,
    get_week_iso,
    parse_period_key,
    period_key_for,
)


def _at(dt: datetime) -> PeriodService:
    return PeriodService("Europe/Istanbul", lambda: dt)


class TestPeriodKeys:
    def test_keys_for_each_type(self) -> None:
        d = date(2026, 3, 4)
        assert period_key_for(d, "daily") == "2026-03-04"
        assert period_key_for(d, "weekly") == "2026-W10"
        assert period_key_for(d, "monthly") == "2026-03"

    def test_iso_week_year_boundary(self) -> None:
        # 2026-01-01 is a Thursday, so it belongs to 2026-W01
        assert get_week_iso(date(2026, 1, 1)) == "2026-W01"
        # 2027-01-01 is a Friday in 2026-W53
        assert get_week_iso(date(2027, 1, 1)) == "2026-W53"

    def test_monday(self) -> None:
        assert get_monday(date(2026, 3, 8)) == date(2026, 3, 2)
        assert get_monday(date(2026, 3, 2)) == date(2026, 3, 2)


class TestParsePeriodKey:
    def test_weekly_bounds_start_monday(self) -> None:
        assert parse_period_key("2026-W10", "weekly") == (date(2026, 3, 2), date(2026, 3, 8))

    def test_monthly_bounds(self) -> None:
        assert parse_period_key("2026-02", "monthly") == (date(2026, 2, 1), date(2026, 2, 28))
        assert parse_period_key("2028-02", "monthly") == (date(2028, 2, 1), date(2028, 2, 29))

    def test_daily_bounds(self) -> None:
        assert parse_period_key("2026-03-04", "daily") == (date(2026, 3, 4), date(2026, 3, 4))

    def test_invalid_keys_yield_none(self) -> None:
        assert parse_period_key("2026-13", "monthly") is None
        assert parse_period_key("2026-02-30", "daily") is None
        assert parse_period_key("2026-W60", "weekly") is None
        assert parse_period_key("garbage", "weekly") is None
        assert parse_period_key("2026-03", "yearly") is None


class TestPeriodService:
    def test_local_date_is_used(self) -> None:
        # 22:30 UTC on Sunday is already Monday in Istanbul (UTC+3)
        periods = _at(datetime(2026, 3, 8, 22, 30, tzinfo=timezone.utc))
        assert periods.today() == date(2026, 3, 9)
        assert periods.current_period_key("weekly") == "2026-W11"

    def test_start_end_round_trip_current_key(self) -> None:
        periods = _at(datetime(2026, 3, 4, 9, 0, tzinfo=timezone.utc))
        key = periods.current_period_key("weekly")
        assert periods.period_start(key, "weekly") == date(2026, 3, 2)
        assert periods.period_end(key, "weekly") == date(2026, 3, 8)
        assert periods.is_current(key, "weekly")

    def test_unparsable_key_has_no_bounds(self) -> None:
        periods = _at(datetime(2026, 3, 4, 9, 0, tzinfo=timezone.utc))
        assert periods.period_start("nope", "daily") is None
        assert periods.period_end("nope", "daily") is None

    def test_previous_week_and_month(self) -> None:
        periods = _at(datetime(2026, 3, 4, 9, 0, tzinfo=timezone.utc))
        assert periods.previous_week() == (date(2026, 2, 23), date(2026, 3, 1))
        assert periods.previous_month() == (date(2026, 2, 1), date(2026, 2, 28))

    def test_previous_month_across_year(self) -> None:
        periods = _at(datetime(2026, 1, 15, 9, 0, tzinfo=timezone.utc))
        assert periods.previous_month() == (date(2025, 12, 1), date(2025, 12, 31))
