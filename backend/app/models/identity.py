from datetime import datetime, timezone
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class IdentityMode(StrEnum):
    tracked = "tracked"
    untracked = "untracked"


class ActivityAction(StrEnum):
    job_created = "job_created"
    job_completed = "job_completed"
    payment_made = "payment_made"
    job_cancelled = "job_cancelled"


class ActivityEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=utc_now)
    action: ActivityAction
    job_id: str | None = None
    amount_usd: float | None = Field(default=None, ge=0)
    metadata: dict[str, Any] = Field(default_factory=dict)


class IdentityContext(BaseModel):
    mode: IdentityMode
    wallet_address: str = Field(min_length=1, max_length=200)
    organization_id: str | None = Field(default=None, min_length=1, max_length=200)
    team_member_id: str | None = Field(default=None, min_length=1, max_length=200)


class TrackedIdentity(BaseModel):
    model_config = ConfigDict(frozen=True)

    mode: Literal["tracked"] = "tracked"
    wallet_address: str
    organization_id: str | None = None
    team_member_id: str | None = None
    audit_id: str
    created_at: datetime = Field(default_factory=utc_now)
    last_activity_at: datetime = Field(default_factory=utc_now)
    activity_log: tuple[ActivityEntry, ...] = ()


class UntrackedIdentity(BaseModel):
    model_config = ConfigDict(frozen=True)

    mode: Literal["untracked"] = "untracked"
    wallet_hash: str
    organization_hash: str | None = None
    audit_id: str
    created_at: datetime = Field(default_factory=utc_now)
    last_activity_at: datetime = Field(default_factory=utc_now)
    activity_log: tuple[ActivityEntry, ...] = ()


IdentityRecord = Annotated[TrackedIdentity | UntrackedIdentity, Field(discriminator="mode")]


class IdentitySummary(BaseModel):
    mode: IdentityMode
    display_id: str
    audit_id: str
    activity_count: int
    created_at: datetime
    last_activity_at: datetime


class AuditExport(BaseModel):
    mode: IdentityMode
    audit_id: str
    wallet_address: str | None = None
    organization_id: str | None = None
    team_member_id: str | None = None
    wallet_hash: str | None = None
    organization_hash: str | None = None
    created_at: datetime
    last_activity_at: datetime
    activity_log: list[ActivityEntry]


class MemberSpending(BaseModel):
    member_id: str
    total_spent_usd: float
    job_count: int
    average_job_cost_usd: float


class TeamSpending(BaseModel):
    organization_id: str
    members: list[MemberSpending]
    total_spent_usd: float
    period_start: datetime | None = None
    period_end: datetime | None = None


class OwnershipVerifyRequest(BaseModel):
    wallet_address: str = Field(min_length=1, max_length=200)
    organization_id: str | None = Field(default=None, min_length=1, max_length=200)


class OwnershipVerifyResponse(BaseModel):
    job_id: str
    owner: bool
