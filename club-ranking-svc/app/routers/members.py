from __future__ import annotations
import math
import uuid
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import CallerIdentity, get_caller, get_db, require_admin
from ..models import Member, MemberRole
from ..schemas import MemberCreate, MemberHistoryRead, MemberListItem, MemberPage, MemberRead, MemberUpdate
from ..services import ledger
from ..services.periods import Period
from ..services.store import SqlFactStore
from .facts import adjustment_read, completion_read
from .ranking import current_time

router = APIRouter(prefix="/members", tags=["members"])

def _read(m: Member) -> MemberRead:
    return MemberRead(id=m.id, display_name=m.display_name, email=m.email, role=m.role.value, joined_at=m.joined_at)

@router.get("", response_model=MemberPage)
async def list_members(
    search: str | None = Query(default=None, max_length=320),
    role: MemberRole | None = Query(default=None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    admin: CallerIdentity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    rows, total = await ledger.list_members(db, search=search, role=role, page=page, limit=limit)
    # all-time totals for the page, from the same store the ranking reads
    totals = await SqlFactStore(db).aggregate_all([m.id for m in rows], None)
    members = [
        MemberListItem(
            **_read(m).model_dump(),
            total_points=totals[m.id].total_points,
            activities_completed=totals[m.id].activities_completed,
        )
        for m in rows
    ]
    return MemberPage(members=members, page=page, limit=limit, total=total, pages=math.ceil(total / limit))

@router.post("", response_model=MemberRead, status_code=status.HTTP_201_CREATED)
async def create_member(payload: MemberCreate, admin: CallerIdentity = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    m = await ledger.create_member(db, display_name=payload.display_name, email=payload.email, role=MemberRole(payload.role))
    return _read(m)

@router.put("/{member_id}", response_model=MemberRead)
async def update_member(
    member_id: uuid.UUID,
    payload: MemberUpdate,
    admin: CallerIdentity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    m = await ledger.update_member(
        db, member_id=member_id, display_name=payload.display_name, email=payload.email,
        role=MemberRole(payload.role) if payload.role else None,
    )
    return _read(m)

@router.delete("/{member_id}")
async def delete_member(member_id: uuid.UUID, admin: CallerIdentity = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    await ledger.delete_member(db, member_id=member_id, actor_id=admin.member_id)
    return {"message": "Member deleted"}

@router.get("/{member_id}/history", response_model=MemberHistoryRead)
async def member_history(
    member_id: uuid.UUID,
    period: Period = Query("all"),
    caller: CallerIdentity = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    if not caller.is_admin and member_id != caller.member_id:
        raise HTTPException(status_code=403, detail="Cannot view other members' history")
    h = await ledger.member_history(db, member_id=member_id, period=period, now=current_time())
    return MemberHistoryRead(
        member_id=h.member.id,
        display_name=h.member.display_name,
        period=h.period,
        start_date=h.interval.start if h.interval else None,
        end_date=h.interval.end if h.interval else None,
        total_points=h.totals.total_points,
        activity_points=h.totals.activity_points,
        adjustment_points=h.totals.adjustment_points,
        activities_completed=h.totals.activities_completed,
        completions=[completion_read(c) for c in h.completions],
        adjustments=[adjustment_read(a) for a in h.adjustments],
    )
