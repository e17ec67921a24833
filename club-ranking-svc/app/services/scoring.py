from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Protocol

from .periods import Interval

class CompletionLike(Protocol):
    points_awarded: int
    completed_at: datetime

class AdjustmentLike(Protocol):
    points: int
    created_at: datetime

@dataclass(frozen=True)
class PointTotals:
    activity_points: int = 0
    adjustment_points: int = 0
    activities_completed: int = 0

    @property
    def total_points(self) -> int:
        # adjustments may be negative; never clamp
        return self.activity_points + self.adjustment_points

ZERO = PointTotals()

def in_interval(ts: datetime, interval: Interval | None) -> bool:
    return interval is None or interval.contains(ts)

def sum_completions(completions: Iterable[CompletionLike], interval: Interval | None) -> tuple[int, int]:
    """Return (points, count) over completions whose completed_at falls in interval."""
    points = 0
    count = 0
    for c in completions:
        if in_interval(c.completed_at, interval):
            points += int(c.points_awarded)
            count += 1
    return points, count

def sum_adjustments(adjustments: Iterable[AdjustmentLike], interval: Interval | None) -> int:
    return sum(int(a.points) for a in adjustments if in_interval(a.created_at, interval))

def aggregate(
    completions: Iterable[CompletionLike],
    adjustments: Iterable[AdjustmentLike],
    interval: Interval | None,
) -> PointTotals:
    activity_points, completed = sum_completions(completions, interval)
    return PointTotals(
        activity_points=activity_points,
        adjustment_points=sum_adjustments(adjustments, interval),
        activities_completed=completed,
    )
