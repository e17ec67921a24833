from __future__ import annotations
import logging
import uuid
from dataclasses import dataclass
from typing import Iterable, Protocol, Sequence

from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import StorageUnavailable
from ..models import Member, MemberRole, ActivityCompletion, PointsAdjustment
from .periods import Interval, as_utc
from .scoring import PointTotals

logger = logging.getLogger(__name__)

# keeps IN (...) lists under SQLite's bound-parameter limit
_ID_CHUNK = 500

@dataclass(frozen=True)
class MemberRef:
    id: uuid.UUID
    display_name: str
    email: str

class MemberDirectory(Protocol):
    async def list_participants(self) -> list[MemberRef]: ...

class FactStore(Protocol):
    async def aggregate(self, member_id: uuid.UUID, interval: Interval | None) -> PointTotals: ...

    async def aggregate_all(
        self, member_ids: Sequence[uuid.UUID], interval: Interval | None
    ) -> dict[uuid.UUID, PointTotals]: ...

def _chunks(ids: Sequence[uuid.UUID]) -> Iterable[Sequence[uuid.UUID]]:
    for i in range(0, len(ids), _ID_CHUNK):
        yield ids[i:i + _ID_CHUNK]

class SqlMemberDirectory:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_participants(self) -> list[MemberRef]:
        try:
            rows = (await self.db.execute(
                select(Member).where(Member.role == MemberRole.PARTICIPANT)
                .order_by(Member.joined_at.asc(), Member.id.asc())
            )).scalars().all()
        except SQLAlchemyError as exc:
            logger.exception("failed to list participants")
            raise StorageUnavailable("member directory unavailable") from exc
        return [MemberRef(id=m.id, display_name=m.display_name, email=m.email) for m in rows]

class SqlFactStore:
    """Sums both fact streams with one grouped query per stream and chunk of ids."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def aggregate(self, member_id: uuid.UUID, interval: Interval | None) -> PointTotals:
        return (await self.aggregate_all([member_id], interval))[member_id]

    async def aggregate_all(
        self, member_ids: Sequence[uuid.UUID], interval: Interval | None
    ) -> dict[uuid.UUID, PointTotals]:
        ids = list(dict.fromkeys(member_ids))
        completions: dict[uuid.UUID, tuple[int, int]] = {}
        adjustments: dict[uuid.UUID, int] = {}
        try:
            for chunk in _chunks(ids):
                completions.update(await self._sum_completions(chunk, interval))
                adjustments.update(await self._sum_adjustments(chunk, interval))
        except SQLAlchemyError as exc:
            logger.exception("failed to aggregate facts for %d members", len(ids))
            raise StorageUnavailable("fact store unavailable") from exc

        out: dict[uuid.UUID, PointTotals] = {}
        for mid in ids:
            points, count = completions.get(mid, (0, 0))
            out[mid] = PointTotals(
                activity_points=points,
                adjustment_points=adjustments.get(mid, 0),
                activities_completed=count,
            )
        return out

    async def _sum_completions(self, ids, interval):
        stmt = (
            select(
                ActivityCompletion.member_id,
                func.coalesce(func.sum(ActivityCompletion.points_awarded), 0),
                func.count(ActivityCompletion.id),
            )
            .where(ActivityCompletion.member_id.in_(ids))
            .group_by(ActivityCompletion.member_id)
        )
        if interval is not None:
            stmt = stmt.where(
                ActivityCompletion.completed_at >= as_utc(interval.start),
                ActivityCompletion.completed_at <= as_utc(interval.end),
            )
        rows = (await self.db.execute(stmt)).all()
        return {r[0]: (int(r[1]), int(r[2])) for r in rows}

    async def _sum_adjustments(self, ids, interval):
        stmt = (
            select(PointsAdjustment.member_id, func.coalesce(func.sum(PointsAdjustment.points), 0))
            .where(PointsAdjustment.member_id.in_(ids))
            .group_by(PointsAdjustment.member_id)
        )
        if interval is not None:
            stmt = stmt.where(
                PointsAdjustment.created_at >= as_utc(interval.start),
                PointsAdjustment.created_at <= as_utc(interval.end),
            )
        rows = (await self.db.execute(stmt)).all()
        return {r[0]: int(r[1]) for r in rows}
