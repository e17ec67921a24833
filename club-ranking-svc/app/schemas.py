from __future__ import annotations
from datetime import datetime
from typing import Annotated, Any, Literal
from uuid import UUID

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, field_validator, model_serializer
from pydantic.alias_generators import to_camel

PosInt = Annotated[int, Field(gt=0)]
Name128 = Annotated[str, Field(min_length=1, max_length=128)]
OptStr = str | None

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

# --- ranking
class RankingEntryRead(CamelModel):
    member_id: UUID
    display_name: str
    email: str
    total_points: int
    activity_points: int
    adjustment_points: int
    activities_completed_count: int
    position: int

class RankingStatsRead(CamelModel):
    total_members: int
    period: Literal["all", "month", "year"]
    start_date: datetime | None = None
    end_date: datetime | None = None
    top_performer: RankingEntryRead | None
    average_points: int

    @model_serializer(mode="wrap")
    def _drop_open_bounds(self, handler) -> dict[str, Any]:
        # "all" has no interval: omit the dates instead of sending nulls
        data = handler(self)
        for key in ("startDate", "endDate", "start_date", "end_date"):
            if key in data and data[key] is None:
                del data[key]
        return data

class RankingRead(BaseModel):
    ranking: list[RankingEntryRead]
    stats: RankingStatsRead

# --- members
MemberName = Annotated[str, Field(min_length=2, max_length=255)]
Email = Annotated[str, Field(min_length=3, max_length=320, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")]
Role = Literal["ADMIN", "PARTICIPANT"]

class MemberCreate(BaseModel):
    display_name: MemberName
    email: Email
    role: Role = "PARTICIPANT"

class MemberUpdate(BaseModel):
    display_name: MemberName | None = None
    email: Email | None = None
    role: Role | None = None

class MemberRead(BaseModel):
    id: UUID
    display_name: str
    email: str
    role: Role
    joined_at: datetime

class MemberListItem(MemberRead):
    total_points: int
    activities_completed: int

class MemberPage(BaseModel):
    members: list[MemberListItem]
    page: int
    limit: int
    total: int
    pages: int

# --- activities
Category = Annotated[str, Field(max_length=64)]

class ActivityCreate(BaseModel):
    name: Name128
    points: PosInt
    description: OptStr = None
    category: Category | None = None
    # offset required; naive timestamps are rejected
    due_date: AwareDatetime | None = None

class ActivityUpdate(BaseModel):
    name: Name128 | None = None
    points: PosInt | None = None
    description: OptStr = None
    category: Category | None = None
    # explicit null clears the due date
    due_date: AwareDatetime | None = None

class ActivityRead(BaseModel):
    id: UUID
    name: str
    points: int
    description: OptStr
    category: OptStr
    due_date: datetime | None
    created_at: datetime

class ActivityListItem(ActivityRead):
    is_active: bool
    completions_count: int

class ActivityPage(BaseModel):
    activities: list[ActivityListItem]
    page: int
    limit: int
    total: int
    pages: int

# --- facts
class CompletionCreate(BaseModel):
    member_id: UUID
    activity_id: UUID
    points_awarded: PosInt
    note: OptStr = None
    # defaults to now; must carry a UTC offset
    completed_at: AwareDatetime | None = None

class CompletionRead(BaseModel):
    id: UUID
    member_id: UUID
    activity_id: UUID
    points_awarded: int
    completed_at: datetime
    note: OptStr

class CompletionPage(BaseModel):
    completions: list[CompletionRead]
    page: int
    limit: int
    total: int
    pages: int

class AdjustmentCreate(BaseModel):
    member_id: UUID
    points: int
    reason: OptStr = None

    @field_validator("points")
    @classmethod
    def _non_zero(cls, v: int) -> int:
        if v == 0:
            raise ValueError("points must be non-zero")
        return v

class AdjustmentRead(BaseModel):
    id: UUID
    member_id: UUID
    points: int
    created_at: datetime
    reason: OptStr

class MemberHistoryRead(BaseModel):
    member_id: UUID
    display_name: str
    period: Literal["all", "month", "year"]
    start_date: datetime | None
    end_date: datetime | None
    total_points: int
    activity_points: int
    adjustment_points: int
    activities_completed: int
    completions: list[CompletionRead]
    adjustments: list[AdjustmentRead]
