from __future__ import annotations

import pytest

from app.models.pricing import NormalizedPrice, Quote
from app.models.provider import GpuType, Region
from app.models.ranking import ScoringWeights
from app.services.scorer import (
    ScoringConfigurationError,
    Scorer,
    calculate_score,
    score_geography,
    score_latency,
    score_price,
    score_reputation,
    validate_weights,
)


def priced(value: float, provider_id: str = "p") -> NormalizedPrice:
    return NormalizedPrice(
        provider_id=provider_id,
        gpu_type=GpuType.a100_80gb,
        raw_price=value,
        effective_usd_per_a100_hour=value,
    )


def errored(provider_id: str = "p") -> NormalizedPrice:
    return NormalizedPrice(provider_id=provider_id, gpu_type=GpuType.a100_80gb, raw_price=1.0, has_error=True)


def test_default_weights_are_valid():
    weights = validate_weights(ScoringWeights())
    assert weights.total == pytest.approx(1.0)


@pytest.mark.parametrize(
    "weights",
    [
        ScoringWeights(price=0.5, latency=0.15, reputation=0.15, geography=0.1),
        ScoringWeights(price=0.7, latency=0.15, reputation=0.15, geography=0.1),
        ScoringWeights(price=1.2, latency=-0.2, reputation=0.0, geography=0.0),
    ],
)
def test_invalid_weights_are_rejected(weights):
    with pytest.raises(ScoringConfigurationError):
        validate_weights(weights)
    with pytest.raises(ScoringConfigurationError):
        Scorer(weights)


def test_weights_within_tolerance_are_accepted():
    validate_weights(ScoringWeights(price=0.6005, latency=0.15, reputation=0.15, geography=0.1))


def test_price_score_is_linear_between_cheapest_and_priciest():
    prices = [priced(1.0), priced(5.0), priced(3.0)]

    assert score_price(prices[0], prices) == 100
    assert score_price(prices[1], prices) == 0
    assert score_price(prices[2], prices) == pytest.approx(50)


def test_price_score_all_equal_is_full_marks():
    prices = [priced(2.0), priced(2.0)]
    assert score_price(prices[0], prices) == 100


def test_errored_price_scores_zero():
    prices = [priced(1.0), errored()]
    assert score_price(prices[1], prices) == 0
    assert score_price(errored(), [errored()]) == 0


def test_latency_buckets(make_provider, make_request):
    assert score_latency(make_provider("p", latency_ms=100), make_request()) == 70
    assert score_latency(make_provider("p", latency_ms=40), make_request(preferred_regions=[Region.us_east])) == 100
    same_continent = make_provider("p", regions=[Region.us_west], latency_ms=150)
    assert score_latency(same_continent, make_request(preferred_regions=[Region.us_east])) == 80
    remote = make_provider("p", regions=[Region.eu_west], latency_ms=250)
    assert score_latency(remote, make_request(preferred_regions=[Region.us_east])) == 40


def test_reputation_bonus_is_capped(make_provider):
    veteran = make_provider("p", reputation=80, uptime=99.95, completed_jobs=500)
    assert score_reputation(veteran) == 90


def test_reputation_penalizes_low_uptime(make_provider):
    flaky = make_provider("p", reputation=70, uptime=90.0, completed_jobs=20)
    assert score_reputation(flaky) == 60


def test_new_provider_gets_neutral_reputation(make_provider):
    newcomer = make_provider("p", reputation=50, uptime=99.95, completed_jobs=3)
    assert score_reputation(newcomer) == 50


def test_geography_coverage_and_spread(make_provider, make_request):
    request = make_request(preferred_regions=[Region.us_east, Region.eu_west])

    assert score_geography(make_provider("p"), make_request()) == 70
    assert score_geography(make_provider("p", regions=[Region.us_east]), request) == 50
    spread = make_provider("p", regions=[Region.us_east, Region.eu_west, Region.ap_south])
    assert score_geography(spread, request) == 100


@pytest.mark.parametrize("latency_ms", [5, 150, 900])
@pytest.mark.parametrize("reputation,uptime,completed_jobs", [(0, 0, 0), (50, 99.0, 5), (100, 100, 10_000)])
@pytest.mark.parametrize("regions", [[Region.us_east], [Region.sa_east], [Region.eu_west, Region.ap_south, Region.us_west]])
def test_scores_stay_within_bounds(make_provider, make_request, latency_ms, reputation, uptime, completed_jobs, regions):
    provider = make_provider(
        "p",
        regions=regions,
        latency_ms=latency_ms,
        reputation=reputation,
        uptime=uptime,
        completed_jobs=completed_jobs,
    )
    request = make_request(preferred_regions=[Region.us_east, Region.eu_west])
    prices = [priced(0.5), priced(1.7), priced(12.0)]
    quote = Quote(provider_id="p", gpu_type=GpuType.a100_80gb, price_per_gpu_hour=1.7, region=regions[0])

    scored = calculate_score(provider, quote, prices[1], request, prices, ScoringWeights())

    for value in scored.factors.model_dump().values():
        assert 0 <= value <= 100
    assert 0 <= scored.composite_score <= 100
    assert sum(scored.breakdown.model_dump().values()) == pytest.approx(scored.composite_score, abs=0.6)
