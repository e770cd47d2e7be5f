"""Period-key arithmetic in a fixed local timezone.

Keys are ``YYYY-MM-DD`` (daily), ``YYYY-Www`` (ISO week, Monday start) and
``YYYY-MM`` (monthly). Unparsable keys yield ``None`` bounds so callers can
skip them.
"""

from __future__ import annotations

import calendar
import re
from collections.abc import Callable
from datetime import date, datetime, timedelta, timezone
from enum import StrEnum
from zoneinfo import ZoneInfo

DEFAULT_TIMEZONE = "Europe/Istanbul"

_DAILY_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_WEEKLY_RE = re.compile(r"^(\d{4})-W(\d{2})$")
_MONTHLY_RE = re.compile(r"^(\d{4})-(\d{2})$")


class PeriodType(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


def get_week_iso(d: date | datetime) -> str:
    """Get ISO week string e.g. '2026-W09'. Uses %G-W%V (ISO year + ISO week)."""
    return d.strftime("%G-W%V")


def get_monday(d: date | datetime) -> date:
    """Get the Monday of the ISO week containing d."""
    d = d.date() if isinstance(d, datetime) else d
    return d - timedelta(days=d.weekday())


def month_bounds(d: date) -> tuple[date, date]:
    """First and last day of the month containing d."""
    last = calendar.monthrange(d.year, d.month)[1]
    return d.replace(day=1), d.replace(day=last)


def period_key_for(d: date, period_type: str) -> str:
    """Canonical key of the period containing local date d."""
    match PeriodType(period_type):
        case PeriodType.DAILY:
            return d.isoformat()
        case PeriodType.WEEKLY:
            return get_week_iso(d)
        case PeriodType.MONTHLY:
            return d.strftime("%Y-%m")


def parse_period_key(period_key: str, period_type: str) -> tuple[date, date] | None:
    """Inclusive (start, end) dates for a key, or None when it does not parse."""
    try:
        ptype = PeriodType(period_type)
    except ValueError:
        return None

    try:
        if ptype is PeriodType.DAILY:
            m = _DAILY_RE.match(period_key)
            if not m:
                return None
            d = date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
            return d, d
        if ptype is PeriodType.WEEKLY:
            m = _WEEKLY_RE.match(period_key)
            if not m:
                return None
            monday = date.fromisocalendar(int(m.group(1)), int(m.group(2)), 1)
            return monday, monday + timedelta(days=6)
        m = _MONTHLY_RE.match(period_key)
        if not m:
            return None
        return month_bounds(date(int(m.group(1)), int(m.group(2)), 1))
    except ValueError:
        # e.g. 2026-13, 2026-02-30, 2026-W60
        return None


class PeriodService:
    """Clock and period arithmetic pinned to one timezone.

    ``clock`` returns an aware UTC datetime; tests inject a fixed one.
    """

    def __init__(self, tz: str = DEFAULT_TIMEZONE, clock: Callable[[], datetime] | None = None) -> None:
        self.tz = ZoneInfo(tz)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def now(self) -> datetime:
        return self._clock().astimezone(self.tz)

    def today(self) -> date:
        return self.now().date()

    def current_period_key(self, period_type: str) -> str:
        return period_key_for(self.today(), period_type)

    def period_start(self, period_key: str, period_type: str) -> date | None:
        bounds = parse_period_key(period_key, period_type)
        return bounds[0] if bounds else None

    def period_end(self, period_key: str, period_type: str) -> date | None:
        bounds = parse_period_key(period_key, period_type)
        return bounds[1] if bounds else None

    def is_current(self, period_key: str, period_type: str) -> bool:
        return period_key == self.current_period_key(period_type)

    def current_week(self) -> tuple[date, date]:
        monday = get_monday(self.today())
        return monday, monday + timedelta(days=6)

    def previous_week(self) -> tuple[date, date]:
        """Monday..Sunday of the week before the current one."""
        monday = get_monday(self.today() - timedelta(days=7))
        return monday, monday + timedelta(days=6)

    def previous_month(self) -> tuple[date, date]:
        first_of_current = self.today().replace(day=1)
        return month_bounds(first_of_current - timedelta(days=1))
