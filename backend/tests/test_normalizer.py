from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from app.models.pricing import Quote, QuoteCurrency
from app.models.provider import GpuType, Region
from app.services.normalizer import DefaultPriceNormalizer, estimate_hidden_costs, format_price
from app.services.token_prices import CachedTokenPriceSource, StaticTokenPriceSource


def quote(price: float, gpu: GpuType = GpuType.a100_80gb, **kwargs) -> Quote:
    return Quote(provider_id="p", gpu_type=gpu, price_per_gpu_hour=price, region=Region.us_east, **kwargs)


def normalizer(**kwargs) -> DefaultPriceNormalizer:
    source = kwargs.pop("source", StaticTokenPriceSource({"AKT": 3.0}))
    kwargs.setdefault("include_hidden_costs", False)
    return DefaultPriceNormalizer(source, **kwargs)


@pytest.mark.asyncio
async def test_usd_quote_is_divided_by_gpu_ratio(make_request):
    a100 = await normalizer().normalize(quote(2.0), make_request())
    h100 = await normalizer().normalize(quote(3.0, GpuType.h100), make_request())

    assert a100.effective_usd_per_a100_hour == pytest.approx(2.0)
    assert h100.effective_usd_per_a100_hour == pytest.approx(2.0)
    assert not a100.has_error


@pytest.mark.asyncio
async def test_spot_discount_is_applied(make_request):
    spot = quote(2.0, is_spot=True, spot_discount=0.5)

    assert (await normalizer().normalize(spot, make_request())).effective_usd_per_a100_hour == pytest.approx(1.0)
    undiscounted = await normalizer(apply_spot_discount=False).normalize(spot, make_request())
    assert undiscounted.effective_usd_per_a100_hour == pytest.approx(2.0)


@pytest.mark.asyncio
async def test_token_quote_is_converted_to_usd(make_request):
    token_quote = quote(0.5, currency=QuoteCurrency.token, token_symbol="akt")

    result = await normalizer().normalize(token_quote, make_request())

    assert result.usd_price_per_gpu_hour == pytest.approx(1.5)
    assert result.effective_usd_per_a100_hour == pytest.approx(1.5)


@pytest.mark.asyncio
async def test_unknown_and_stale_tokens_set_error_flag(make_request):
    unknown = await normalizer().normalize(quote(1.0, currency=QuoteCurrency.token, token_symbol="XYZ"), make_request())
    stale_source = StaticTokenPriceSource({"AKT": 3.0}, as_of=datetime.now(timezone.utc) - timedelta(hours=2))
    stale = await normalizer(source=stale_source, max_token_price_age_sec=600).normalize(
        quote(1.0, currency=QuoteCurrency.token, token_symbol="AKT"), make_request()
    )

    assert unknown.has_error and unknown.effective_usd_per_a100_hour is None
    assert "unknown token" in unknown.error
    assert stale.has_error and "stale" in stale.error


@pytest.mark.asyncio
async def test_non_positive_price_sets_error_flag(make_request):
    for price in (0.0, -1.0):
        result = await normalizer().normalize(quote(price), make_request())
        assert result.has_error
        assert result.effective_usd_per_a100_hour is None


@pytest.mark.asyncio
async def test_hidden_costs_raise_effective_price(make_request):
    with_hidden = await normalizer(include_hidden_costs=True).normalize(quote(2.0), make_request())
    expected = 2.0 + estimate_hidden_costs(Region.us_east).total_usd_per_hour

    assert with_hidden.effective_usd_per_a100_hour == pytest.approx(expected, rel=1e-5)
    assert estimate_hidden_costs(Region.sa_east).total_usd_per_hour > estimate_hidden_costs(Region.us_east).total_usd_per_hour


@pytest.mark.asyncio
async def test_cached_source_reuses_prices():
    class CountingSource(StaticTokenPriceSource):
        calls = 0

        async def get_price(self, symbol):
            CountingSource.calls += 1
            return await super().get_price(symbol)

    cached = CachedTokenPriceSource(CountingSource({"RNDR": 7.5}), ttl_sec=60)

    first = await cached.get_price("rndr")
    second = await cached.get_price("RNDR")

    assert first == second
    assert first.usd == 7.5
    assert CountingSource.calls == 1


def test_format_price():
    assert format_price(1.234) == "$1.23/hr"
    assert format_price(None) == "n/a"
