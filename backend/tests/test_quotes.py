from __future__ import annotations

from time import perf_counter

import pytest

from app.models.provider import GpuType, Region
from app.services.adapters import ProviderError, ProviderErrorCode, StaticQuoteAdapter
from app.services.quotes import QuoteAcquisition, quote_request_for


@pytest.mark.asyncio
async def test_slow_provider_times_out_without_blocking_others(make_provider, make_request):
    providers = [make_provider("fast-a", price=1.0), make_provider("slow", price=0.5), make_provider("fast-b", price=2.0)]
    adapters = {
        "fast-a": StaticQuoteAdapter(providers[0], providers[0].listed_prices_usd),
        "slow": StaticQuoteAdapter(providers[1], providers[1].listed_prices_usd, latency_sec=2.0),
        "fast-b": StaticQuoteAdapter(providers[2], providers[2].listed_prices_usd),
    }

    started = perf_counter()
    result = await QuoteAcquisition(timeout_ms=100).acquire(providers, make_request(), adapters)
    elapsed = perf_counter() - started

    assert elapsed < 1.0
    assert [item.provider.id for item in result.successful] == ["fast-a", "fast-b"]
    assert len(result.failed) == 1
    assert result.failed[0].provider.id == "slow"
    assert "timed out after 100 ms" in result.failed[0].reason


@pytest.mark.asyncio
async def test_adapter_errors_and_empty_answers_become_failures(make_provider, make_request):
    ok = make_provider("ok")
    limited = make_provider("limited")
    empty = make_provider("empty")
    orphan = make_provider("orphan")
    adapters = {
        "ok": StaticQuoteAdapter(ok, ok.listed_prices_usd),
        "limited": StaticQuoteAdapter(
            limited,
            limited.listed_prices_usd,
            error=ProviderError("limited", ProviderErrorCode.rate_limit, "slow down"),
        ),
        "empty": StaticQuoteAdapter(empty, {}),
    }

    result = await QuoteAcquisition().acquire([ok, limited, empty, orphan], make_request(), adapters)

    assert [item.provider.id for item in result.successful] == ["ok"]
    reasons = {failure.provider.id: failure.reason for failure in result.failed}
    assert reasons["limited"] == "rate_limit: slow down"
    assert reasons["empty"] == "provider returned no quotes"
    assert reasons["orphan"] == "no quote adapter registered"


@pytest.mark.asyncio
async def test_unexpected_exception_is_contained(make_provider, make_request):
    class BrokenAdapter:
        provider_id = "broken"

        async def get_quotes(self, request):
            raise RuntimeError("socket closed")

    good = make_provider("good")
    broken = make_provider("broken")
    adapters = {"good": StaticQuoteAdapter(good, good.listed_prices_usd), "broken": BrokenAdapter()}

    result = await QuoteAcquisition().acquire([good, broken], make_request(), adapters)

    assert len(result.successful) == 1
    assert result.failed[0].reason == "RuntimeError: socket closed"


def test_quote_request_prefers_a100_and_first_preferred_region(make_provider, make_request):
    provider = make_provider("p", gpu_types=[GpuType.t4, GpuType.a100_80gb], regions=[Region.eu_west])

    request = quote_request_for(provider, make_request(preferred_regions=[Region.us_east, Region.eu_west], allow_spot=False))

    assert request.gpu_type == GpuType.a100_80gb
    assert request.region == Region.us_east
    assert request.allow_spot is False
    assert quote_request_for(make_provider("q", gpu_types=[GpuType.t4]), make_request()).gpu_type == GpuType.t4
