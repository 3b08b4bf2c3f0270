from __future__ import annotations

from collections.abc import Callable, Iterator

import pytest
from fastapi.testclient import TestClient

from app.models.identity import IdentityMode
from app.models.job import JobConstraints, JobRequest
from app.models.provider import (
    GpuType,
    PricingModel,
    Provider,
    ProviderCapabilities,
    ProviderMetadata,
    ProviderType,
    Region,
)
from app.services.adapters import StaticQuoteAdapter
from app.services.filter import ConstraintFilter
from app.services.normalizer import DefaultPriceNormalizer
from app.services.quotes import QuoteAcquisition
from app.services.ranker import Ranker
from app.services.scorer import Scorer
from app.services.token_prices import StaticTokenPriceSource

WALLET = "0x" + "Ab12" * 10


@pytest.fixture
def make_provider() -> Callable[..., Provider]:
    def factory(
        provider_id: str,
        price: float = 2.0,
        regions: list[Region] | None = None,
        gpu_types: list[GpuType] | None = None,
        pricing_model: PricingModel = PricingModel.fixed,
        reputation: float = 80,
        uptime: float = 99.5,
        latency_ms: float = 80,
        completed_jobs: int = 200,
        supports_spot: bool = False,
    ) -> Provider:
        gpus = gpu_types or [GpuType.a100_80gb]
        return Provider(
            id=provider_id,
            name=provider_id.replace("-", " ").title(),
            type=ProviderType.mock,
            pricing_model=pricing_model,
            capabilities=ProviderCapabilities(
                gpu_types=gpus,
                regions=regions or [Region.us_east],
                supports_spot=supports_spot,
            ),
            metadata=ProviderMetadata(
                reputation_score=reputation,
                uptime_percentage=uptime,
                avg_latency_ms=latency_ms,
                completed_jobs=completed_jobs,
            ),
            listed_prices_usd={gpu: price for gpu in gpus},
        )

    return factory


@pytest.fixture
def make_request() -> Callable[..., JobRequest]:
    def factory(
        job_id: str = "job-test",
        gpu_count: int = 1,
        duration_hours: float = 2.0,
        buyer_address: str = WALLET,
        organization_id: str | None = None,
        team_member_id: str | None = None,
        **constraints,
    ) -> JobRequest:
        constraints.setdefault("identity_mode", IdentityMode.tracked)
        return JobRequest(
            id=job_id,
            gpu_count=gpu_count,
            duration_hours=duration_hours,
            buyer_address=buyer_address,
            organization_id=organization_id,
            team_member_id=team_member_id,
            constraints=JobConstraints(**constraints),
        )

    return factory


@pytest.fixture
def static_adapters() -> Callable[..., dict[str, StaticQuoteAdapter]]:
    def factory(providers: list[Provider], **kwargs) -> dict[str, StaticQuoteAdapter]:
        return {provider.id: StaticQuoteAdapter(provider, provider.listed_prices_usd, **kwargs) for provider in providers}

    return factory


@pytest.fixture
def ranker() -> Ranker:
    return Ranker(
        constraint_filter=ConstraintFilter(),
        quote_acquisition=QuoteAcquisition(timeout_ms=500),
        normalizer=DefaultPriceNormalizer(StaticTokenPriceSource({"AKT": 2.0}), include_hidden_costs=False),
        scorer=Scorer(),
        top_n=3,
    )


@pytest.fixture
def client() -> Iterator[TestClient]:
    from app.main import app

    with TestClient(app) as test_client:
        yield test_client
