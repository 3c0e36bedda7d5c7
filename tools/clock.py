"""
Clock Tool
Single source of "now" and the UTC <-> local conversions of the reminder pipeline.

Stored instants are naive UTC. Conversion to a user's wall clock happens only
here, for recurrence math and message formatting.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
import logging

from config import settings


logger = logging.getLogger(__name__)


class Clock:
    """Wall clock returning naive UTC datetimes"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)


class FixedClock(Clock):
    """Manually advanced clock for tests and replays"""

    def __init__(self, current: datetime):
        self.current = to_utc_naive(current)

    def now(self) -> datetime:
        return self.current

    def set(self, current: datetime) -> None:
        self.current = to_utc_naive(current)

    def advance(self, **kwargs) -> datetime:
        """Move forward by timedelta(**kwargs) and return the new time"""
        self.current = self.current + timedelta(**kwargs)
        return self.current


def get_zone(tz_name: Optional[str]) -> ZoneInfo:
    """Resolve an IANA zone name, falling back to DEFAULT_TIMEZONE"""
    name = tz_name or settings.DEFAULT_TIMEZONE
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone {name!r}, using {settings.DEFAULT_TIMEZONE}")
        return ZoneInfo(settings.DEFAULT_TIMEZONE)


def to_utc_naive(dt: Optional[datetime]) -> Optional[datetime]:
    """Normalize to naive UTC. Naive input is assumed to already be UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def to_utc_aware(dt: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to a naive UTC datetime (APScheduler wants aware values)"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_local(dt: datetime, tz_name: Optional[str]) -> datetime:
    """Stored naive UTC -> aware wall-clock time in the user's zone"""
    return to_utc_aware(dt).astimezone(get_zone(tz_name))


def from_local(local_dt: datetime) -> datetime:
    """Aware wall-clock time -> naive UTC for storage"""
    return local_dt.astimezone(timezone.utc).replace(tzinfo=None)


def format_local_time(dt: datetime, tz_name: Optional[str]) -> str:
    """Human readable time of day for notification text, e.g. '08:30'"""
    return to_local(dt, tz_name).strftime("%H:%M")


system_clock = Clock()
