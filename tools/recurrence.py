"""
Recurrence Rules
Tagged recurrence variants and next-fire-time computation for reminder series.

Wall-clock arithmetic is done in the user's timezone so a dose keeps its
local time of day across DST changes; results are returned as naive UTC.
"""

import calendar
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Tuple, Union

from dateutil.relativedelta import relativedelta

from models import CustomUnit, RepeatKind
from tools.clock import from_local, to_local


@dataclass(frozen=True)
class NoRepeat:
    """One-off reminder"""


@dataclass(frozen=True)
class Daily:
    """Every day at the same local time"""


@dataclass(frozen=True)
class Weekly:
    """Listed weekdays, 0=Sunday .. 6=Saturday. Empty means every 7 days."""
    days: Tuple[int, ...] = ()


@dataclass(frozen=True)
class Monthly:
    """Listed days of month (1..31). Empty means same day next month."""
    days: Tuple[int, ...] = ()


@dataclass(frozen=True)
class Custom:
    """Every `interval` units"""
    interval: int
    unit: CustomUnit


RecurrenceRule = Union[NoRepeat, Daily, Weekly, Monthly, Custom]


def _clean_days(values, low: int, high: int) -> Tuple[int, ...]:
    return tuple(sorted({int(v) for v in (values or []) if low <= int(v) <= high}))


def rule_from_occurrence(occurrence) -> RecurrenceRule:
    """Build the rule variant from an occurrence's stored recurrence columns"""
    kind = occurrence.repeat_kind or RepeatKind.NONE

    if kind == RepeatKind.NONE:
        return NoRepeat()
    if kind == RepeatKind.DAILY:
        return Daily()
    if kind == RepeatKind.WEEKLY:
        return Weekly(days=_clean_days(occurrence.days_of_week, 0, 6))
    if kind == RepeatKind.MONTHLY:
        return Monthly(days=_clean_days(occurrence.days_of_month, 1, 31))
    if kind == RepeatKind.CUSTOM:
        return Custom(
            interval=occurrence.custom_interval or 1,
            unit=occurrence.custom_unit or CustomUnit.DAYS
        )
    raise ValueError(f"Unknown repeat kind: {kind!r}")


def validate_rule(rule: RecurrenceRule) -> None:
    """Reject rules that could never advance"""
    if isinstance(rule, Custom) and rule.interval < 1:
        raise ValueError("custom interval must be at least 1")


def _weekday_sunday_first(local: datetime) -> int:
    # datetime.weekday() is Monday=0; stored days are Sunday=0
    return (local.weekday() + 1) % 7


def _next_weekly(local: datetime, days: Tuple[int, ...]) -> datetime:
    if not days:
        return local + timedelta(days=7)

    current = _weekday_sunday_first(local)
    later = [d for d in days if d > current]
    if later:
        return local + timedelta(days=later[0] - current)
    return local + timedelta(days=7 - current + days[0])


def _clamped_day(year: int, month: int, day: int) -> int:
    return min(day, calendar.monthrange(year, month)[1])


def _next_monthly(local: datetime, days: Tuple[int, ...]) -> datetime:
    if not days:
        return local + relativedelta(months=1)

    for day in days:
        candidate = _clamped_day(local.year, local.month, day)
        if candidate > local.day:
            return local.replace(day=candidate)

    first_of_next = local.replace(day=1) + relativedelta(months=1)
    return first_of_next.replace(day=_clamped_day(first_of_next.year, first_of_next.month, days[0]))


def _next_custom(current_utc: datetime, local: datetime, rule: Custom) -> datetime:
    if rule.unit == CustomUnit.HOURS:
        # absolute time, no wall clock involved
        return current_utc + timedelta(hours=rule.interval)
    if rule.unit == CustomUnit.DAYS:
        return from_local(local + timedelta(days=rule.interval))
    if rule.unit == CustomUnit.WEEKS:
        return from_local(local + timedelta(weeks=rule.interval))
    if rule.unit == CustomUnit.MONTHS:
        return from_local(local + relativedelta(months=rule.interval))
    raise ValueError(f"Unknown custom unit: {rule.unit!r}")


def next_fire_time(rule: RecurrenceRule, current: datetime, tz_name: Optional[str] = None) -> Optional[datetime]:
    """
    Compute the next fire time after `current` (naive UTC).

    Args:
        rule: Recurrence variant
        current: Fire time of the occurrence the series continues from
        tz_name: User's IANA timezone for wall-clock arithmetic

    Returns:
        Naive UTC datetime, or None for a non-repeating rule
    """
    if isinstance(rule, NoRepeat):
        return None

    local = to_local(current, tz_name)

    if isinstance(rule, Daily):
        return from_local(local + timedelta(days=1))
    if isinstance(rule, Weekly):
        return from_local(_next_weekly(local, rule.days))
    if isinstance(rule, Monthly):
        return from_local(_next_monthly(local, rule.days))
    if isinstance(rule, Custom):
        return _next_custom(current, local, rule)

    raise TypeError(f"Unsupported recurrence rule: {rule!r}")


def next_fire_time_after(
    rule: RecurrenceRule,
    current: datetime,
    not_before: datetime,
    end: Optional[datetime] = None,
    tz_name: Optional[str] = None
) -> Optional[datetime]:
    """
    Next fire time strictly after `not_before`, skipping slots that already
    passed. Returns None when the series is over (no repeat, or past `end`).
    """
    candidate = next_fire_time(rule, current, tz_name)
    while candidate is not None:
        if end is not None and candidate > end:
            return None
        if candidate > not_before:
            return candidate
        candidate = next_fire_time(rule, candidate, tz_name)
    return None
