from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Literal

from ..core.errors import InvalidPeriod

Period = Literal["all", "month", "year"]
PERIODS: tuple[str, ...] = ("all", "month", "year")

@dataclass(frozen=True)
class Interval:
    """Closed [start, end] range. ``None`` stands for unbounded wherever an Interval is optional."""
    start: datetime
    end: datetime

    def contains(self, ts: datetime) -> bool:
        if ts.tzinfo is None and self.start.tzinfo is not None:
            ts = as_utc(ts)
        return self.start <= ts <= self.end

def as_utc(dt: datetime) -> datetime:
    """Normalize to UTC. Naive values are stored UTC (SQLite returns them without tzinfo)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)

def _day_start(dt: datetime) -> datetime:
    return dt.replace(hour=0, minute=0, second=0, microsecond=0)

def _day_end(dt: datetime) -> datetime:
    return dt.replace(hour=23, minute=59, second=59, microsecond=0)

def resolve_period(period: str, now: datetime) -> Interval | None:
    """Map a period keyword to a concrete interval around ``now``.

    The result keeps ``now``'s tzinfo, so boundaries are calendar days in
    whatever zone the caller resolved ``now`` in. Unknown keywords are rejected
    with InvalidPeriod rather than widened to "all".
    """
    if period == "all":
        return None
    if period == "month":
        start = _day_start(now.replace(day=1))
        if start.month == 12:
            next_month = start.replace(year=start.year + 1, month=1)
        else:
            next_month = start.replace(month=start.month + 1)
        return Interval(start=start, end=_day_end(next_month - timedelta(days=1)))
    if period == "year":
        return Interval(
            start=_day_start(now.replace(month=1, day=1)),
            end=_day_end(now.replace(month=12, day=31)),
        )
    raise InvalidPeriod(period)
