from datetime import datetime, timezone
from enum import StrEnum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ProviderType(StrEnum):
    cloud = "cloud"
    marketplace = "marketplace"
    decentralized = "decentralized"
    mock = "mock"


class PricingModel(StrEnum):
    fixed = "fixed"
    spot = "spot"
    token = "token"


class GpuType(StrEnum):
    a100_80gb = "A100_80GB"
    a100_40gb = "A100_40GB"
    h100 = "H100"
    h200 = "H200"
    rtx4090 = "RTX4090"
    rtx3090 = "RTX3090"
    a10g = "A10G"
    v100 = "V100"
    t4 = "T4"


class Region(StrEnum):
    us_east = "us-east"
    us_west = "us-west"
    us_central = "us-central"
    eu_west = "eu-west"
    eu_central = "eu-central"
    eu_north = "eu-north"
    ap_south = "ap-south"
    ap_northeast = "ap-northeast"
    ap_southeast = "ap-southeast"
    sa_east = "sa-east"


REGION_CONTINENTS: dict[Region, str] = {
    Region.us_east: "north-america",
    Region.us_west: "north-america",
    Region.us_central: "north-america",
    Region.eu_west: "europe",
    Region.eu_central: "europe",
    Region.eu_north: "europe",
    Region.ap_south: "asia",
    Region.ap_northeast: "asia",
    Region.ap_southeast: "asia",
    Region.sa_east: "south-america",
}

PREMIUM_GPUS = frozenset({GpuType.h100, GpuType.h200})
CONSUMER_GPUS = frozenset({GpuType.rtx4090, GpuType.rtx3090})


def continent_of(region: Region) -> str:
    return REGION_CONTINENTS[region]


class ProviderCapabilities(BaseModel):
    gpu_types: list[GpuType] = Field(min_length=1)
    regions: list[Region] = Field(min_length=1)
    supports_spot: bool = False


class ProviderMetadata(BaseModel):
    reputation_score: float = Field(default=50, ge=0, le=100)
    uptime_percentage: float = Field(default=99.0, ge=0, le=100)
    avg_latency_ms: float = Field(default=100, ge=0)
    completed_jobs: int = Field(default=0, ge=0)


class Provider(BaseModel):
    """Immutable snapshot of a provider as seen by one routing decision."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: f"prov-{uuid4().hex[:10]}", min_length=1)
    name: str = Field(min_length=1, max_length=120)
    type: ProviderType = ProviderType.cloud
    pricing_model: PricingModel = PricingModel.fixed
    capabilities: ProviderCapabilities
    metadata: ProviderMetadata = Field(default_factory=ProviderMetadata)
    # USD per GPU-hour as advertised; used by the max-price constraint only.
    listed_prices_usd: dict[GpuType, float] = Field(default_factory=dict)
    registered_at: datetime = Field(default_factory=utc_now)

    @field_validator("listed_prices_usd")
    @classmethod
    def validate_listed_prices(cls, value: dict[GpuType, float]) -> dict[GpuType, float]:
        for gpu, price in value.items():
            if price <= 0:
                raise ValueError(f"listed price for {gpu} must be positive")
        return value

    @property
    def primary_region(self) -> Region:
        return self.capabilities.regions[0]

    def listed_price_for(self, gpu_type: GpuType | None) -> float | None:
        if not self.listed_prices_usd:
            return None
        if gpu_type is None:
            return min(self.listed_prices_usd.values())
        return self.listed_prices_usd.get(gpu_type)


class ProviderRegisterRequest(BaseModel):
    id: str | None = Field(default=None, min_length=1, max_length=120)
    name: str = Field(min_length=1, max_length=120)
    type: ProviderType = ProviderType.cloud
    pricing_model: PricingModel = PricingModel.fixed
    capabilities: ProviderCapabilities
    metadata: ProviderMetadata = Field(default_factory=ProviderMetadata)
    listed_prices_usd: dict[GpuType, float] = Field(default_factory=dict)
    endpoint_url: str | None = Field(default=None, max_length=500)


class ProviderListResponse(BaseModel):
    items: list[Provider]


class ProviderStats(BaseModel):
    total: int
    by_type: dict[str, int]
    by_pricing_model: dict[str, int]
    avg_reputation: float
