from __future__ import annotations

from collections.abc import Iterable, Sequence
import math

from app.models.job import JobRequest
from app.models.pricing import NormalizedPrice, Quote
from app.models.provider import Provider, continent_of
from app.models.ranking import ScoreBreakdown, ScoreFactors, ScoredProvider, ScoringWeights

WEIGHT_TOLERANCE = 1e-3
NEUTRAL_SCORE = 70.0
NEW_PROVIDER_SCORE = 50.0


class ScoringConfigurationError(ValueError):
    pass


def validate_weights(weights: ScoringWeights) -> ScoringWeights:
    values = {
        "price": weights.price,
        "latency": weights.latency,
        "reputation": weights.reputation,
        "geography": weights.geography,
    }
    for name, value in values.items():
        if not math.isfinite(value) or value < 0:
            raise ScoringConfigurationError(f"weight '{name}' must be a non-negative number, got {value}")
    if abs(weights.total - 1.0) > WEIGHT_TOLERANCE:
        raise ScoringConfigurationError(f"scoring weights must sum to 1.0, got {weights.total:.4f}")
    return weights


def _clamp(value: float) -> float:
    return max(0.0, min(100.0, value))


def _is_valid_price(price: NormalizedPrice) -> bool:
    value = price.effective_usd_per_a100_hour
    return not price.has_error and value is not None and math.isfinite(value) and value > 0


def score_price(price: NormalizedPrice, all_prices: Iterable[NormalizedPrice]) -> float:
    if not _is_valid_price(price):
        return 0.0
    valid = [item.effective_usd_per_a100_hour for item in all_prices if _is_valid_price(item)]
    if not valid:
        return 100.0
    cheapest = min(valid)
    priciest = max(valid)
    if math.isclose(cheapest, priciest):
        return 100.0
    return _clamp(100.0 * (priciest - price.effective_usd_per_a100_hour) / (priciest - cheapest))


def score_latency(provider: Provider, request: JobRequest) -> float:
    preferred = request.constraints.preferred_regions
    if not preferred:
        base = NEUTRAL_SCORE
    else:
        primary = preferred[0]
        regions = provider.capabilities.regions
        if primary in regions:
            base = 100.0
        elif any(continent_of(region) == continent_of(primary) for region in regions):
            base = 80.0
        else:
            base = 50.0

    latency_ms = provider.metadata.avg_latency_ms
    if latency_ms < 50:
        base += 10
    elif latency_ms < 100:
        base += 5
    elif latency_ms > 200:
        base -= 10
    return _clamp(base)


def score_reputation(provider: Provider) -> float:
    metadata = provider.metadata
    if metadata.completed_jobs < 10 and metadata.reputation_score == NEW_PROVIDER_SCORE:
        return NEW_PROVIDER_SCORE

    bonus = 0.0
    if metadata.uptime_percentage >= 99.9:
        bonus += 10
    elif metadata.uptime_percentage >= 99.0:
        bonus += 5
    if metadata.completed_jobs > 100:
        bonus += 5
    score = metadata.reputation_score + min(bonus, 10.0)
    if metadata.uptime_percentage < 95:
        score -= 10
    return _clamp(score)


def score_geography(provider: Provider, request: JobRequest) -> float:
    preferred = set(request.constraints.preferred_regions)
    if not preferred:
        return NEUTRAL_SCORE
    regions = set(provider.capabilities.regions)
    score = 100.0 * len(preferred & regions) / len(preferred)
    continents = {continent_of(region) for region in regions}
    if len(continents) >= 3:
        score += 10
    elif len(continents) == 2:
        score += 5
    return _clamp(score)


def calculate_score(
    provider: Provider,
    quote: Quote,
    normalized: NormalizedPrice,
    request: JobRequest,
    all_prices: Sequence[NormalizedPrice],
    weights: ScoringWeights,
) -> ScoredProvider:
    factors = ScoreFactors(
        price=round(score_price(normalized, all_prices)),
        latency=round(score_latency(provider, request)),
        reputation=round(score_reputation(provider)),
        geography=round(score_geography(provider, request)),
    )
    breakdown = ScoreBreakdown(
        price=round(factors.price * weights.price, 2),
        latency=round(factors.latency * weights.latency, 2),
        reputation=round(factors.reputation * weights.reputation, 2),
        geography=round(factors.geography * weights.geography, 2),
    )
    # Whole-point composites; near-equal providers fall back to id order in the ranker.
    composite = (
        factors.price * weights.price
        + factors.latency * weights.latency
        + factors.reputation * weights.reputation
        + factors.geography * weights.geography
    )
    return ScoredProvider(
        provider=provider,
        quote=quote,
        normalized_price=normalized,
        factors=factors,
        composite_score=round(_clamp(composite)),
        breakdown=breakdown,
    )


class Scorer:
    """Weighted multi-factor scorer; weights are validated once at construction."""

    def __init__(self, weights: ScoringWeights | None = None) -> None:
        self.weights = validate_weights(weights or ScoringWeights())

    def score_all(
        self,
        candidates: Sequence[tuple[Provider, Quote, NormalizedPrice]],
        request: JobRequest,
    ) -> list[ScoredProvider]:
        prices = [normalized for _, _, normalized in candidates]
        return [
            calculate_score(provider, quote, normalized, request, prices, self.weights)
            for provider, quote, normalized in candidates
        ]
