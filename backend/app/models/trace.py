from pydantic import BaseModel, ConfigDict, Field

from app.models.identity import IdentityMode
from app.models.ranking import ScoreFactors, ScoringWeights

AGENT_VERSION = "1.0.0"


class TraceQuery(BaseModel):
    model_config = ConfigDict(frozen=True)

    gpu_type: str | None = None
    gpu_count: int
    duration_hours: float
    preferred_regions: tuple[str, ...] = ()
    max_price_per_hour: float | None = None
    identity_mode: IdentityMode


class TraceCandidate(BaseModel):
    model_config = ConfigDict(frozen=True)

    provider_id: str
    provider_name: str
    raw_price: float
    raw_currency: str
    normalized_price: float | None
    factors: ScoreFactors
    composite_score: float


class TraceRejection(BaseModel):
    model_config = ConfigDict(frozen=True)

    provider_id: str
    stage: str
    reason: str


class TraceRankingEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    rank: int
    provider_id: str
    composite_score: float
    normalized_price: float
    tradeoffs: tuple[str, ...] = ()


class TraceMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    agent_version: str = AGENT_VERSION
    calculation_time_ms: float = Field(ge=0)
    filtered_count: int = Field(ge=0)
    quoted_count: int = Field(ge=0)
    scored_count: int = Field(ge=0)
    rejected_total: int = Field(default=0, ge=0)
    truncated: bool = False


class ReasoningTrace(BaseModel):
    """Immutable record of why a routing decision was made."""

    model_config = ConfigDict(frozen=True)

    timestamp: str
    job_id: str
    provider_count: int = Field(ge=0)
    query: TraceQuery
    weights: ScoringWeights
    candidates: tuple[TraceCandidate, ...] = ()
    rejected: tuple[TraceRejection, ...] = ()
    final_ranking: tuple[TraceRankingEntry, ...] = ()
    metadata: TraceMetadata


class TraceSummary(BaseModel):
    job_id: str
    timestamp: str
    selected_provider_id: str | None
    top_score: float | None
    candidate_count: int
    rejected_count: int
    rejection_reasons: dict[str, int]
    text: str
