from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from app.models.pricing import NormalizedPrice, Quote
from app.models.provider import Provider


class ScoringWeights(BaseModel):
    model_config = ConfigDict(frozen=True)

    price: float = 0.60
    latency: float = 0.15
    reputation: float = 0.15
    geography: float = 0.10

    @property
    def total(self) -> float:
        return self.price + self.latency + self.reputation + self.geography


class ScoreFactors(BaseModel):
    model_config = ConfigDict(frozen=True)

    price: float = Field(ge=0, le=100)
    latency: float = Field(ge=0, le=100)
    reputation: float = Field(ge=0, le=100)
    geography: float = Field(ge=0, le=100)


class ScoreBreakdown(BaseModel):
    """Weighted contribution of each factor to the composite score."""

    model_config = ConfigDict(frozen=True)

    price: float
    latency: float
    reputation: float
    geography: float


class ScoredProvider(BaseModel):
    model_config = ConfigDict(frozen=True)

    provider: Provider
    quote: Quote
    normalized_price: NormalizedPrice
    factors: ScoreFactors
    composite_score: float = Field(ge=0, le=100)
    breakdown: ScoreBreakdown


class FilterResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    provider: Provider
    passed: bool
    failed_constraints: tuple[str, ...] = ()
    reason: str | None = None


class RejectionStage(StrEnum):
    filter = "filter"
    quote = "quote"
    normalize = "normalize"


class RejectedProvider(BaseModel):
    model_config = ConfigDict(frozen=True)

    provider_id: str = Field(min_length=1)
    provider_name: str
    stage: RejectionStage
    reason: str


class ProviderCounts(BaseModel):
    total: int = 0
    passed_filter: int = 0
    quoted: int = 0
    normalized: int = 0
    scored: int = 0


class ProviderRecommendation(BaseModel):
    rank: int = Field(ge=1)
    provider_id: str
    provider_name: str
    gpu_type: str
    region: str
    normalized_price: float
    composite_score: float
    factors: ScoreFactors
    breakdown: ScoreBreakdown
    tradeoffs: list[str] = Field(default_factory=list)
    estimated_savings_percent: float = 0.0


class RankingResult(BaseModel):
    recommendations: list[ProviderRecommendation]
    scored: list[ScoredProvider]
    rejected: list[RejectedProvider]
    filter_results: list[FilterResult]
    counts: ProviderCounts
    weights: ScoringWeights
