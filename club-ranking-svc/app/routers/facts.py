from __future__ import annotations
import math
import uuid
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import AwareDatetime
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import CallerIdentity, get_caller, get_db, require_admin
from ..models import ActivityCompletion, PointsAdjustment
from ..schemas import AdjustmentCreate, AdjustmentRead, CompletionCreate, CompletionPage, CompletionRead
from ..services import ledger

router = APIRouter(tags=["facts"])

def completion_read(c: ActivityCompletion) -> CompletionRead:
    return CompletionRead(
        id=c.id, member_id=c.member_id, activity_id=c.activity_id,
        points_awarded=c.points_awarded, completed_at=c.completed_at, note=c.note,
    )

def adjustment_read(a: PointsAdjustment) -> AdjustmentRead:
    return AdjustmentRead(id=a.id, member_id=a.member_id, points=a.points, created_at=a.created_at, reason=a.reason)

@router.get("/completions", response_model=CompletionPage)
async def list_completions(
    member_id: uuid.UUID | None = Query(default=None),
    activity_id: uuid.UUID | None = Query(default=None),
    date_from: AwareDatetime | None = Query(default=None),
    date_to: AwareDatetime | None = Query(default=None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    caller: CallerIdentity = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    # participants only see their own history
    if not caller.is_admin:
        if member_id is not None and member_id != caller.member_id:
            raise HTTPException(status_code=403, detail="Cannot view other members' completions")
        member_id = caller.member_id
    rows, total = await ledger.list_completions(
        db, member_id=member_id, activity_id=activity_id,
        date_from=date_from, date_to=date_to, page=page, limit=limit,
    )
    return CompletionPage(
        completions=[completion_read(c) for c in rows],
        page=page, limit=limit, total=total, pages=math.ceil(total / limit),
    )

@router.post("/completions", response_model=CompletionRead, status_code=status.HTTP_201_CREATED)
async def record_completion(payload: CompletionCreate, admin: CallerIdentity = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    c = await ledger.record_completion(
        db, member_id=payload.member_id, activity_id=payload.activity_id,
        points_awarded=payload.points_awarded, note=payload.note, completed_at=payload.completed_at,
    )
    return completion_read(c)

# Manual correction outside the completion flow (admin only)
@router.post("/adjustments", response_model=AdjustmentRead, status_code=status.HTTP_201_CREATED)
async def record_adjustment(payload: AdjustmentCreate, admin: CallerIdentity = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    a = await ledger.record_adjustment(db, member_id=payload.member_id, points=payload.points, reason=payload.reason)
    return adjustment_read(a)
