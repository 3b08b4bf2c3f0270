from __future__ import annotations

import asyncio
from collections import Counter

from app.core.logging import get_logger
from app.models.provider import (
    GpuType,
    PricingModel,
    Provider,
    ProviderCapabilities,
    ProviderMetadata,
    ProviderRegisterRequest,
    ProviderStats,
    ProviderType,
    Region,
)
from app.services.adapters import HttpQuoteAdapter, ProviderAdapter, StaticQuoteAdapter


class ProviderRegistry:
    """Known providers and their quote adapters; routing reads a snapshot taken under the lock."""

    def __init__(self, http_timeout_sec: float = 5.0) -> None:
        self._lock = asyncio.Lock()
        self._providers: dict[str, Provider] = {}
        self._adapters: dict[str, ProviderAdapter] = {}
        self._http_timeout_sec = http_timeout_sec
        self.logger = get_logger("computerouter.registry")

    async def register(self, provider: Provider, adapter: ProviderAdapter) -> Provider:
        async with self._lock:
            previous = self._adapters.get(provider.id)
            self._providers[provider.id] = provider
            self._adapters[provider.id] = adapter
        if isinstance(previous, HttpQuoteAdapter) and previous is not adapter:
            await previous.close()
        self.logger.info(
            "provider_registered",
            extra={"provider_id": provider.id, "pricing_model": str(provider.pricing_model), "event": "provider.registered"},
        )
        return provider

    async def register_from_request(self, payload: ProviderRegisterRequest) -> Provider:
        fields = payload.model_dump(exclude={"id", "endpoint_url"})
        provider = Provider(**fields, id=payload.id) if payload.id else Provider(**fields)
        if payload.endpoint_url:
            adapter: ProviderAdapter = HttpQuoteAdapter(
                provider.id, payload.endpoint_url, timeout=self._http_timeout_sec
            )
        else:
            adapter = StaticQuoteAdapter(provider, provider.listed_prices_usd)
        return await self.register(provider, adapter)

    async def unregister(self, provider_id: str) -> Provider:
        async with self._lock:
            provider = self._providers.pop(provider_id, None)
            adapter = self._adapters.pop(provider_id, None)
        if provider is None:
            raise KeyError(f"Provider '{provider_id}' not found")
        if isinstance(adapter, HttpQuoteAdapter):
            await adapter.close()
        self.logger.info("provider_unregistered", extra={"provider_id": provider_id, "event": "provider.unregistered"})
        return provider

    async def get(self, provider_id: str) -> Provider | None:
        async with self._lock:
            return self._providers.get(provider_id)

    async def list_providers(self) -> list[Provider]:
        async with self._lock:
            return sorted(self._providers.values(), key=lambda provider: provider.id)

    async def snapshot(self) -> tuple[list[Provider], dict[str, ProviderAdapter]]:
        async with self._lock:
            providers = sorted(self._providers.values(), key=lambda provider: provider.id)
            return providers, dict(self._adapters)

    async def count(self) -> int:
        async with self._lock:
            return len(self._providers)

    async def stats(self) -> ProviderStats:
        providers = await self.list_providers()
        reputation = [provider.metadata.reputation_score for provider in providers]
        return ProviderStats(
            total=len(providers),
            by_type=dict(Counter(str(provider.type) for provider in providers)),
            by_pricing_model=dict(Counter(str(provider.pricing_model) for provider in providers)),
            avg_reputation=round(sum(reputation) / len(reputation), 2) if reputation else 0.0,
        )

    async def close(self) -> None:
        async with self._lock:
            adapters = list(self._adapters.values())
        for adapter in adapters:
            if isinstance(adapter, HttpQuoteAdapter):
                await adapter.close()

    async def seed_providers(self) -> None:
        for provider, adapter in demo_providers():
            await self.register(provider, adapter)


def demo_providers() -> list[tuple[Provider, ProviderAdapter]]:
    """A mixed pool covering fixed, spot and token pricing."""
    lambda_cloud = Provider(
        id="lambda-cloud",
        name="Lambda Cloud",
        type=ProviderType.cloud,
        pricing_model=PricingModel.fixed,
        capabilities=ProviderCapabilities(
            gpu_types=[GpuType.a100_80gb, GpuType.h100, GpuType.a10g],
            regions=[Region.us_east, Region.us_west],
        ),
        metadata=ProviderMetadata(reputation_score=88, uptime_percentage=99.9, avg_latency_ms=40, completed_jobs=1200),
        listed_prices_usd={GpuType.a100_80gb: 1.29, GpuType.h100: 2.49, GpuType.a10g: 0.75},
    )
    runpod = Provider(
        id="runpod-community",
        name="RunPod Community",
        type=ProviderType.marketplace,
        pricing_model=PricingModel.spot,
        capabilities=ProviderCapabilities(
            gpu_types=[GpuType.a100_80gb, GpuType.rtx4090, GpuType.rtx3090],
            regions=[Region.us_central, Region.eu_west],
            supports_spot=True,
        ),
        metadata=ProviderMetadata(reputation_score=76, uptime_percentage=99.2, avg_latency_ms=85, completed_jobs=430),
        listed_prices_usd={GpuType.a100_80gb: 1.19, GpuType.rtx4090: 0.44, GpuType.rtx3090: 0.29},
    )
    akash = Provider(
        id="akash-network",
        name="Akash Network",
        type=ProviderType.decentralized,
        pricing_model=PricingModel.token,
        capabilities=ProviderCapabilities(
            gpu_types=[GpuType.a100_80gb, GpuType.rtx3090, GpuType.t4],
            regions=[Region.us_west, Region.eu_central, Region.ap_southeast],
        ),
        metadata=ProviderMetadata(reputation_score=64, uptime_percentage=97.5, avg_latency_ms=140, completed_jobs=150),
        listed_prices_usd={GpuType.a100_80gb: 1.12, GpuType.rtx3090: 0.26, GpuType.t4: 0.1},
    )
    render = Provider(
        id="render-network",
        name="Render Network",
        type=ProviderType.decentralized,
        pricing_model=PricingModel.token,
        capabilities=ProviderCapabilities(
            gpu_types=[GpuType.h100, GpuType.a100_40gb],
            regions=[Region.eu_north, Region.ap_northeast],
        ),
        metadata=ProviderMetadata(reputation_score=58, uptime_percentage=96.0, avg_latency_ms=180, completed_jobs=40),
        listed_prices_usd={GpuType.h100: 3.0, GpuType.a100_40gb: 1.13},
    )
    vast = Provider(
        id="vast-market",
        name="Vast Market",
        type=ProviderType.marketplace,
        pricing_model=PricingModel.spot,
        capabilities=ProviderCapabilities(
            gpu_types=[GpuType.t4, GpuType.a10g, GpuType.v100],
            regions=[Region.sa_east, Region.us_east],
            supports_spot=True,
        ),
        metadata=ProviderMetadata(reputation_score=70, uptime_percentage=98.8, avg_latency_ms=120, completed_jobs=260),
        listed_prices_usd={GpuType.t4: 0.18, GpuType.a10g: 0.32, GpuType.v100: 0.45},
    )
    return [
        (lambda_cloud, StaticQuoteAdapter(lambda_cloud, lambda_cloud.listed_prices_usd)),
        (runpod, StaticQuoteAdapter(runpod, runpod.listed_prices_usd, spot_discount=0.35)),
        (
            akash,
            StaticQuoteAdapter(
                akash,
                {GpuType.a100_80gb: 0.35, GpuType.rtx3090: 0.08, GpuType.t4: 0.03},
                token_symbol="AKT",
            ),
        ),
        (
            render,
            StaticQuoteAdapter(render, {GpuType.h100: 0.4, GpuType.a100_40gb: 0.15}, token_symbol="RNDR"),
        ),
        (vast, StaticQuoteAdapter(vast, vast.listed_prices_usd, spot_discount=0.5)),
    ]
