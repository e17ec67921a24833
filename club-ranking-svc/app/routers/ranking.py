from __future__ import annotations
from datetime import datetime
from zoneinfo import ZoneInfo
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..deps import CallerIdentity, get_caller, get_db
from ..schemas import RankingEntryRead, RankingRead, RankingStatsRead
from ..services.periods import Period
from ..services.ranking import RankingEntry, RankingResult, build_ranking, member_standing
from ..services.store import SqlFactStore, SqlMemberDirectory

settings = get_settings()
router = APIRouter(prefix="/ranking", tags=["ranking"])

def current_time() -> datetime:
    return datetime.now(ZoneInfo(settings.ranking_timezone))

def _entry_read(e: RankingEntry) -> RankingEntryRead:
    return RankingEntryRead(
        member_id=e.member_id,
        display_name=e.display_name,
        email=e.email,
        total_points=e.total_points,
        activity_points=e.activity_points,
        adjustment_points=e.adjustment_points,
        activities_completed_count=e.activities_completed_count,
        position=e.position,
    )

def _to_read(result: RankingResult) -> RankingRead:
    s = result.stats
    return RankingRead(
        ranking=[_entry_read(e) for e in result.entries],
        stats=RankingStatsRead(
            total_members=s.total_members,
            period=s.period,
            start_date=s.start_date,
            end_date=s.end_date,
            top_performer=_entry_read(s.top_performer) if s.top_performer else None,
            average_points=s.average_points,
        ),
    )

@router.get("", response_model=RankingRead)
async def get_ranking(
    period: Period = Query("all"),
    limit: int = Query(settings.ranking_default_limit, ge=1, le=settings.ranking_max_limit),
    caller: CallerIdentity = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    # Any authenticated member can view
    result = await build_ranking(
        SqlMemberDirectory(db), SqlFactStore(db),
        period=period, limit=limit, now=current_time(), timeout=settings.ranking_timeout_sec,
    )
    return _to_read(result)

@router.get("/me", response_model=RankingEntryRead)
async def my_standing(
    period: Period = Query("all"),
    caller: CallerIdentity = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    entry = await member_standing(
        SqlMemberDirectory(db), SqlFactStore(db), caller.member_id,
        period=period, now=current_time(), timeout=settings.ranking_timeout_sec,
    )
    if entry is None:
        raise HTTPException(status_code=404, detail="Caller is not a ranked participant")
    return _entry_read(entry)
