from __future__ import annotations
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping

from sqlalchemy import select, delete, func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import IntegrityViolation, InvalidQuery, NotFound, StorageUnavailable
from ..models import Member, MemberRole, Activity, ActivityCompletion, PointsAdjustment, utcnow
from . import scoring
from .periods import Interval, as_utc, resolve_period

logger = logging.getLogger(__name__)

async def _execute(db: AsyncSession, stmt, what: str):
    try:
        return await db.execute(stmt)
    except SQLAlchemyError as exc:
        logger.exception("failed to query %s", what)
        raise StorageUnavailable(f"could not query {what}") from exc

async def _commit(db: AsyncSession, what: str) -> None:
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        logger.warning("rejected %s: %s", what, exc.orig)
        raise IntegrityViolation(f"{what} conflicts with existing data") from exc
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception("failed to write %s", what)
        raise StorageUnavailable(f"could not write {what}") from exc

async def _count(db: AsyncSession, column, conds, what: str) -> int:
    return int((await _execute(db, select(func.count(column)).where(*conds), what)).scalar_one())

def _like(term: str) -> str:
    return f"%{term.strip().lower()}%"

async def _get_member(db: AsyncSession, member_id: uuid.UUID) -> Member:
    m = (await _execute(db, select(Member).where(Member.id == member_id), "member")).scalar_one_or_none()
    if m is None:
        raise NotFound("Member not found")
    return m

async def _get_activity(db: AsyncSession, activity_id: uuid.UUID) -> Activity:
    a = (await _execute(db, select(Activity).where(Activity.id == activity_id), "activity")).scalar_one_or_none()
    if a is None:
        raise NotFound("Activity not found")
    return a

# --- members

async def _email_taken(db: AsyncSession, email: str, exclude: uuid.UUID | None = None) -> bool:
    stmt = select(Member.id).where(Member.email == email)
    if exclude is not None:
        stmt = stmt.where(Member.id != exclude)
    return (await _execute(db, stmt, "member email")).first() is not None

async def create_member(db: AsyncSession, *, display_name: str, email: str, role: MemberRole = MemberRole.PARTICIPANT) -> Member:
    email = email.strip().lower()
    if await _email_taken(db, email):
        raise IntegrityViolation("Email already registered")
    m = Member(display_name=display_name, email=email, role=role)
    db.add(m)
    await _commit(db, "member")
    return m

async def update_member(
    db: AsyncSession,
    *,
    member_id: uuid.UUID,
    display_name: str | None = None,
    email: str | None = None,
    role: MemberRole | None = None,
) -> Member:
    """Administrative edit. Fields left as None keep their current value."""
    m = await _get_member(db, member_id)
    if email is not None:
        email = email.strip().lower()
        if email != m.email and await _email_taken(db, email, exclude=member_id):
            raise IntegrityViolation("Email already registered")
        m.email = email
    if display_name is not None:
        m.display_name = display_name
    if role is not None:
        m.role = role
    await _commit(db, "member")
    logger.info("member %s updated", member_id)
    return m

async def list_members(
    db: AsyncSession,
    *,
    search: str | None = None,
    role: MemberRole | None = None,
    page: int = 1,
    limit: int = 10,
) -> tuple[list[Member], int]:
    conds = []
    if search:
        conds.append(or_(
            func.lower(Member.display_name).like(_like(search)),
            func.lower(Member.email).like(_like(search)),
        ))
    if role is not None:
        conds.append(Member.role == role)

    total = await _count(db, Member.id, conds, "members")
    rows = (await _execute(
        db,
        select(Member).where(*conds)
        .order_by(Member.joined_at.desc(), Member.id.asc())
        .offset((page - 1) * limit).limit(limit),
        "members",
    )).scalars().all()
    return list(rows), total

async def delete_member(db: AsyncSession, *, member_id: uuid.UUID, actor_id: uuid.UUID) -> None:
    """Remove a member and their adjustments. Refused while completions reference them."""
    m = await _get_member(db, member_id)
    if member_id == actor_id:
        raise IntegrityViolation("You cannot delete your own account")
    completed = await _count(db, ActivityCompletion.id, [ActivityCompletion.member_id == member_id], "completions")
    if completed:
        logger.warning("refusing to delete member %s with %d completions", member_id, completed)
        raise IntegrityViolation("Cannot delete a member who has completed activities")
    await _execute(db, delete(PointsAdjustment).where(PointsAdjustment.member_id == member_id), "adjustments")
    await db.delete(m)
    await _commit(db, "member deletion")

@dataclass(frozen=True)
class MemberHistory:
    member: Member
    period: str
    interval: Interval | None
    totals: scoring.PointTotals
    completions: list[ActivityCompletion]
    adjustments: list[PointsAdjustment]

async def member_history(db: AsyncSession, *, member_id: uuid.UUID, period: str = "all", now: datetime | None = None) -> MemberHistory:
    """A member's facts in the period, newest first, with the totals they add up to."""
    interval = resolve_period(period, now or utcnow())
    m = await _get_member(db, member_id)
    completions = (await _execute(
        db,
        select(ActivityCompletion).where(ActivityCompletion.member_id == member_id)
        .order_by(ActivityCompletion.completed_at.desc()),
        "completions",
    )).scalars().all()
    adjustments = (await _execute(
        db,
        select(PointsAdjustment).where(PointsAdjustment.member_id == member_id)
        .order_by(PointsAdjustment.created_at.desc()),
        "adjustments",
    )).scalars().all()
    return MemberHistory(
        member=m,
        period=period,
        interval=interval,
        totals=scoring.aggregate(completions, adjustments, interval),
        completions=[c for c in completions if scoring.in_interval(c.completed_at, interval)],
        adjustments=[a for a in adjustments if scoring.in_interval(a.created_at, interval)],
    )

# --- activities

async def _name_taken(db: AsyncSession, name: str, exclude: uuid.UUID | None = None) -> bool:
    stmt = select(Activity.id).where(Activity.name == name)
    if exclude is not None:
        stmt = stmt.where(Activity.id != exclude)
    return (await _execute(db, stmt, "activity name")).first() is not None

async def create_activity(
    db: AsyncSession, *, name: str, points: int, description: str | None = None,
    category: str | None = None, due_date: datetime | None = None,
) -> Activity:
    if await _name_taken(db, name):
        raise IntegrityViolation("An activity with this name already exists")
    a = Activity(
        name=name, points=points, description=description, category=category,
        due_date=as_utc(due_date) if due_date else None,
    )
    db.add(a)
    await _commit(db, "activity")
    return a

_ACTIVITY_FIELDS = ("name", "points", "description", "category", "due_date")

async def update_activity(db: AsyncSession, *, activity_id: uuid.UUID, changes: Mapping[str, Any]) -> Activity:
    """Apply the given fields; a None ``due_date`` clears it. Existing completions keep their points."""
    a = await _get_activity(db, activity_id)
    unknown = set(changes) - set(_ACTIVITY_FIELDS)
    if unknown:
        raise InvalidQuery(f"unknown activity fields: {sorted(unknown)}")
    name = changes.get("name")
    if name is not None and name != a.name and await _name_taken(db, name, exclude=activity_id):
        raise IntegrityViolation("An activity with this name already exists")
    for field, value in changes.items():
        if field == "due_date":
            a.due_date = as_utc(value) if value else None
        elif value is not None:
            setattr(a, field, value)
    await _commit(db, "activity")
    logger.info("activity %s updated: %s", activity_id, ", ".join(sorted(changes)))
    return a

async def delete_activity(db: AsyncSession, *, activity_id: uuid.UUID) -> None:
    a = await _get_activity(db, activity_id)
    completed = await _count(db, ActivityCompletion.id, [ActivityCompletion.activity_id == activity_id], "completions")
    if completed:
        logger.warning("refusing to delete activity %s with %d completions", activity_id, completed)
        raise IntegrityViolation("Cannot delete an activity that members have completed")
    await db.delete(a)
    # the RESTRICT foreign key still guards against a concurrent completion
    await _commit(db, "activity deletion")

def is_active(a: Activity, now: datetime | None = None) -> bool:
    return a.due_date is None or as_utc(a.due_date) >= as_utc(now or utcnow())

async def list_activities(
    db: AsyncSession,
    *,
    search: str | None = None,
    category: str | None = None,
    active: bool | None = None,
    page: int = 1,
    limit: int = 10,
    now: datetime | None = None,
) -> tuple[list[tuple[Activity, int]], int]:
    """Page of (activity, completion count), newest first."""
    now = as_utc(now or utcnow())
    conds = []
    if search:
        conds.append(or_(
            func.lower(Activity.name).like(_like(search)),
            func.lower(Activity.description).like(_like(search)),
        ))
    if category:
        conds.append(Activity.category == category)
    if active is True:
        conds.append(or_(Activity.due_date.is_(None), Activity.due_date >= now))
    elif active is False:
        conds.append(Activity.due_date < now)

    total = await _count(db, Activity.id, conds, "activities")
    activities = (await _execute(
        db,
        select(Activity).where(*conds)
        .order_by(Activity.created_at.desc(), Activity.id.asc())
        .offset((page - 1) * limit).limit(limit),
        "activities",
    )).scalars().all()
    counts: dict[uuid.UUID, int] = {}
    if activities:
        rows = (await _execute(
            db,
            select(ActivityCompletion.activity_id, func.count(ActivityCompletion.id))
            .where(ActivityCompletion.activity_id.in_([a.id for a in activities]))
            .group_by(ActivityCompletion.activity_id),
            "completion counts",
        )).all()
        counts = {r[0]: int(r[1]) for r in rows}
    return [(a, counts.get(a.id, 0)) for a in activities], total

# --- facts

async def record_completion(
    db: AsyncSession,
    *,
    member_id: uuid.UUID,
    activity_id: uuid.UUID,
    points_awarded: int,
    note: str | None = None,
    completed_at: datetime | None = None,
) -> ActivityCompletion:
    """Append a completion fact; one per (member, activity)."""
    await _get_member(db, member_id)
    await _get_activity(db, activity_id)

    existing = (await _execute(
        db,
        select(ActivityCompletion.id).where(
            ActivityCompletion.member_id == member_id, ActivityCompletion.activity_id == activity_id
        ),
        "completion",
    )).scalar_one_or_none()
    if existing is not None:
        logger.warning("duplicate completion member=%s activity=%s", member_id, activity_id)
        raise IntegrityViolation("Member has already completed this activity")

    c = ActivityCompletion(
        member_id=member_id,
        activity_id=activity_id,
        points_awarded=points_awarded,
        note=note,
        completed_at=as_utc(completed_at) if completed_at else utcnow(),
    )
    db.add(c)
    # the unique constraint still guards against a concurrent insert
    await _commit(db, "completion")
    return c

async def list_completions(
    db: AsyncSession,
    *,
    member_id: uuid.UUID | None = None,
    activity_id: uuid.UUID | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    page: int = 1,
    limit: int = 10,
) -> tuple[list[ActivityCompletion], int]:
    conds = []
    if member_id:
        conds.append(ActivityCompletion.member_id == member_id)
    if activity_id:
        conds.append(ActivityCompletion.activity_id == activity_id)
    if date_from:
        conds.append(ActivityCompletion.completed_at >= as_utc(date_from))
    if date_to:
        conds.append(ActivityCompletion.completed_at <= as_utc(date_to))

    total = await _count(db, ActivityCompletion.id, conds, "completions")
    rows = (await _execute(
        db,
        select(ActivityCompletion).where(*conds)
        .order_by(ActivityCompletion.completed_at.desc())
        .offset((page - 1) * limit).limit(limit),
        "completions",
    )).scalars().all()
    return list(rows), total

async def record_adjustment(db: AsyncSession, *, member_id: uuid.UUID, points: int, reason: str | None = None) -> PointsAdjustment:
    await _get_member(db, member_id)
    adj = PointsAdjustment(member_id=member_id, points=points, reason=reason, created_at=utcnow())
    db.add(adj)
    await _commit(db, "adjustment")
    return adj
