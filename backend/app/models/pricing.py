import math
from datetime import datetime, timezone
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.models.provider import GpuType, PricingModel, Provider, Region


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class QuoteCurrency(StrEnum):
    usd = "USD"
    token = "TOKEN"


class QuoteRequest(BaseModel):
    gpu_type: GpuType
    gpu_count: int = Field(ge=1)
    duration_hours: float = Field(gt=0)
    region: Region
    allow_spot: bool = True


class Quote(BaseModel):
    model_config = ConfigDict(frozen=True)

    provider_id: str = Field(min_length=1)
    gpu_type: GpuType
    price_per_gpu_hour: float
    currency: QuoteCurrency = QuoteCurrency.usd
    token_symbol: str | None = None
    region: Region
    is_spot: bool = False
    spot_discount: float = Field(default=0.0, ge=0.0, lt=1.0)
    pricing_model: PricingModel = PricingModel.fixed
    quoted_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def require_token_symbol(self) -> "Quote":
        if self.currency == QuoteCurrency.token and not self.token_symbol:
            raise ValueError("token-denominated quotes require token_symbol")
        return self


class HiddenCosts(BaseModel):
    bandwidth_usd_per_hour: float = 0.0
    storage_usd_per_hour: float = 0.0
    api_calls_usd_per_hour: float = 0.0

    @property
    def total_usd_per_hour(self) -> float:
        return self.bandwidth_usd_per_hour + self.storage_usd_per_hour + self.api_calls_usd_per_hour


class NormalizedPrice(BaseModel):
    """
    Comparable price of one quote.

    Exactly one holds: ``effective_usd_per_a100_hour`` is a finite positive
    number, or ``has_error`` is set (and the effective price is ``None``).
    """

    model_config = ConfigDict(frozen=True)

    provider_id: str = Field(min_length=1)
    gpu_type: GpuType
    raw_price: float
    raw_currency: QuoteCurrency = QuoteCurrency.usd
    usd_price_per_gpu_hour: float | None = None
    hidden_costs: HiddenCosts = Field(default_factory=HiddenCosts)
    effective_usd_per_a100_hour: float | None = None
    has_error: bool = False
    error: str | None = None

    @model_validator(mode="after")
    def check_price_or_error(self) -> "NormalizedPrice":
        price = self.effective_usd_per_a100_hour
        valid = price is not None and math.isfinite(price) and price > 0
        if valid == self.has_error:
            raise ValueError("effective price must be finite and positive unless has_error is set")
        if self.has_error and price is not None:
            raise ValueError("errored normalized prices must not carry an effective price")
        return self

    @classmethod
    def failed(cls, quote: Quote, reason: str) -> "NormalizedPrice":
        return cls(
            provider_id=quote.provider_id,
            gpu_type=quote.gpu_type,
            raw_price=quote.price_per_gpu_hour,
            raw_currency=quote.currency,
            has_error=True,
            error=reason,
        )


class ProviderQuotes(BaseModel):
    provider: Provider
    quotes: list[Quote]


class QuoteFailure(BaseModel):
    provider: Provider
    reason: str


class QuoteAcquisitionResult(BaseModel):
    successful: list[ProviderQuotes] = Field(default_factory=list)
    failed: list[QuoteFailure] = Field(default_factory=list)
