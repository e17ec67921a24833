from __future__ import annotations
import math
import uuid
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import CallerIdentity, get_caller, get_db, require_admin
from ..models import Activity, utcnow
from ..schemas import ActivityCreate, ActivityListItem, ActivityPage, ActivityRead, ActivityUpdate
from ..services import ledger

router = APIRouter(prefix="/activities", tags=["activities"])

def _read(a: Activity) -> ActivityRead:
    return ActivityRead(
        id=a.id, name=a.name, points=a.points, description=a.description,
        category=a.category, due_date=a.due_date, created_at=a.created_at,
    )

@router.get("", response_model=ActivityPage)
async def list_activities(
    search: str | None = Query(default=None, max_length=128),
    category: str | None = Query(default=None, max_length=64),
    active: bool | None = Query(default=None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    caller: CallerIdentity = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    now = utcnow()
    rows, total = await ledger.list_activities(
        db, search=search, category=category, active=active, page=page, limit=limit, now=now,
    )
    return ActivityPage(
        activities=[
            ActivityListItem(**_read(a).model_dump(), is_active=ledger.is_active(a, now), completions_count=n)
            for a, n in rows
        ],
        page=page, limit=limit, total=total, pages=math.ceil(total / limit),
    )

@router.post("", response_model=ActivityRead, status_code=status.HTTP_201_CREATED)
async def create_activity(payload: ActivityCreate, admin: CallerIdentity = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    a = await ledger.create_activity(
        db, name=payload.name, points=payload.points, description=payload.description,
        category=payload.category, due_date=payload.due_date,
    )
    return _read(a)

@router.put("/{activity_id}", response_model=ActivityRead)
async def update_activity(
    activity_id: uuid.UUID,
    payload: ActivityUpdate,
    admin: CallerIdentity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    # only fields present in the body are touched
    a = await ledger.update_activity(db, activity_id=activity_id, changes=payload.model_dump(exclude_unset=True))
    return _read(a)

@router.delete("/{activity_id}")
async def delete_activity(activity_id: uuid.UUID, admin: CallerIdentity = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    await ledger.delete_activity(db, activity_id=activity_id)
    return {"message": "Activity deleted"}
