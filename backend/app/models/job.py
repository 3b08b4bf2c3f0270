from datetime import datetime, timezone
from enum import StrEnum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from app.models.identity import IdentityMode, IdentityRecord
from app.models.pricing import NormalizedPrice
from app.models.provider import GpuType, PricingModel, ProviderType, Region
from app.models.ranking import ProviderCounts, ProviderRecommendation
from app.models.trace import ReasoningTrace


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(StrEnum):
    confirmed = "confirmed"
    completed = "completed"
    cancelled = "cancelled"


class JobConstraints(BaseModel):
    model_config = ConfigDict(frozen=True)

    identity_mode: IdentityMode = IdentityMode.tracked
    max_price_per_hour: float | None = Field(default=None, gt=0)
    preferred_regions: tuple[Region, ...] = ()
    required_gpu_type: GpuType | None = None
    excluded_pricing_models: frozenset[PricingModel] = frozenset()
    allow_spot: bool = True


class JobSubmitRequest(BaseModel):
    buyer_address: str = Field(min_length=1, max_length=200)
    gpu_count: int = Field(default=1, ge=1, le=1024)
    duration_hours: float = Field(gt=0, le=8760)
    organization_id: str | None = Field(default=None, min_length=1, max_length=200)
    team_member_id: str | None = Field(default=None, min_length=1, max_length=200)
    constraints: JobConstraints = Field(default_factory=JobConstraints)


class JobRequest(JobSubmitRequest):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: f"job-{uuid4().hex[:12]}")
    created_at: datetime = Field(default_factory=utc_now)

    @classmethod
    def from_submit(cls, payload: JobSubmitRequest) -> "JobRequest":
        return cls(**payload.model_dump())


class PipelineMetrics(BaseModel):
    identity_ms: float = 0
    filter_ms: float = 0
    quotes_ms: float = 0
    normalize_ms: float = 0
    rank_ms: float = 0
    trace_ms: float = 0
    upload_ms: float = 0
    total_ms: float = 0
    upload_degraded: bool = False


class JobResult(BaseModel):
    job_id: str
    status: JobStatus = JobStatus.confirmed
    identity_mode: IdentityMode
    audit_id: str
    selected_provider_id: str
    selected_provider_name: str
    selected_provider_type: ProviderType
    normalized_price: NormalizedPrice
    total_cost_usd: float = Field(ge=0)
    reasoning_trace_ref: str
    recommendations: list[ProviderRecommendation]
    metrics: PipelineMetrics
    provider_counts: ProviderCounts
    created_at: datetime = Field(default_factory=utc_now)


class JobRecord(BaseModel):
    request: JobRequest
    result: JobResult
    identity: IdentityRecord
    trace: ReasoningTrace
    status: JobStatus = JobStatus.confirmed
    actual_cost_usd: float | None = Field(default=None, ge=0)
    completed_at: datetime | None = None
    updated_at: datetime = Field(default_factory=utc_now)


class JobCompleteRequest(BaseModel):
    actual_cost_usd: float | None = Field(default=None, ge=0)


class JobListResponse(BaseModel):
    items: list[JobResult]
