from __future__ import annotations
import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Mapping, Sequence

from ..core.errors import InvalidQuery, RankingTimeout
from .periods import Interval, resolve_period
from .scoring import PointTotals, ZERO
from .store import FactStore, MemberDirectory, MemberRef

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 50

@dataclass(frozen=True)
class RankingEntry:
    member_id: uuid.UUID
    display_name: str
    email: str
    activity_points: int
    adjustment_points: int
    total_points: int
    activities_completed_count: int
    position: int

@dataclass(frozen=True)
class RankingStats:
    total_members: int
    period: str
    start_date: datetime | None
    end_date: datetime | None
    top_performer: RankingEntry | None
    average_points: int

@dataclass(frozen=True)
class RankingResult:
    entries: list[RankingEntry]
    stats: RankingStats

def rounded_mean(values: Sequence[int]) -> int:
    """Integer mean rounded half up (-2.5 -> -2, 2.5 -> 3); 0 for no values."""
    if not values:
        return 0
    n = len(values)
    return (2 * sum(values) + n) // (2 * n)

def rank_members(
    members: Sequence[MemberRef],
    totals: Mapping[uuid.UUID, PointTotals],
    limit: int | None,
) -> list[RankingEntry]:
    """Sort by total points desc, member id asc on ties, then truncate and number from 1."""
    scored = [(m, totals.get(m.id, ZERO)) for m in members]
    scored.sort(key=lambda mt: (-mt[1].total_points, str(mt[0].id)))
    if limit is not None:
        scored = scored[:limit]
    return [
        RankingEntry(
            member_id=m.id,
            display_name=m.display_name,
            email=m.email,
            activity_points=t.activity_points,
            adjustment_points=t.adjustment_points,
            total_points=t.total_points,
            activities_completed_count=t.activities_completed,
            position=idx,
        )
        for idx, (m, t) in enumerate(scored, start=1)
    ]

def summarize(entries: list[RankingEntry], total_members: int, period: str, interval: Interval | None) -> RankingStats:
    return RankingStats(
        total_members=total_members,
        period=period,
        start_date=interval.start if interval else None,
        end_date=interval.end if interval else None,
        top_performer=entries[0] if entries else None,
        average_points=rounded_mean([e.total_points for e in entries]),
    )

async def _load_scores(
    directory: MemberDirectory, facts: FactStore, interval: Interval | None
) -> tuple[list[MemberRef], dict[uuid.UUID, PointTotals]]:
    members = await directory.list_participants()
    totals = await facts.aggregate_all([m.id for m in members], interval)
    return members, totals

async def build_ranking(
    directory: MemberDirectory,
    facts: FactStore,
    *,
    period: str = "all",
    limit: int | None = DEFAULT_LIMIT,
    now: datetime | None = None,
    timeout: float | None = None,
) -> RankingResult:
    """Compute the ranking fresh from both fact streams.

    Any storage failure propagates; on timeout the in-flight load is cancelled
    and RankingTimeout is raised. ``limit=None`` returns every participant.
    """
    if limit is not None and limit < 1:
        raise InvalidQuery(f"limit must be a positive integer, got {limit}")
    interval = resolve_period(period, now or datetime.now(timezone.utc))

    try:
        members, totals = await asyncio.wait_for(_load_scores(directory, facts, interval), timeout)
    except asyncio.TimeoutError as exc:
        logger.error("ranking period=%s timed out after %ss", period, timeout)
        raise RankingTimeout(f"ranking did not complete within {timeout}s") from exc

    entries = rank_members(members, totals, limit)
    stats = summarize(entries, len(members), period, interval)
    logger.info("ranking period=%s members=%d returned=%d", period, len(members), len(entries))
    return RankingResult(entries=entries, stats=stats)

async def member_standing(
    directory: MemberDirectory,
    facts: FactStore,
    member_id: uuid.UUID,
    *,
    period: str = "all",
    now: datetime | None = None,
    timeout: float | None = None,
) -> RankingEntry | None:
    """The member's entry positioned against every participant, or None if they are not ranked."""
    result = await build_ranking(directory, facts, period=period, limit=None, now=now, timeout=timeout)
    for entry in result.entries:
        if entry.member_id == member_id:
            return entry
    return None
