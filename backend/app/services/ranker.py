from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence

from app.core.logging import get_logger
from app.models.job import JobRequest
from app.models.pricing import NormalizedPrice, ProviderQuotes, Quote, QuoteAcquisitionResult
from app.models.provider import CONSUMER_GPUS, PREMIUM_GPUS, Provider
from app.models.ranking import (
    FilterResult,
    ProviderCounts,
    ProviderRecommendation,
    RankingResult,
    RejectedProvider,
    RejectionStage,
    ScoredProvider,
)
from app.services.adapters import ProviderAdapter
from app.services.filter import ConstraintFilter
from app.services.normalizer import PriceNormalizer
from app.services.quotes import QuoteAcquisition
from app.services.scorer import Scorer

Candidate = tuple[Provider, Quote, NormalizedPrice]


class NoEligibleProvidersError(Exception):
    def __init__(
        self,
        counts: ProviderCounts,
        rejected: Sequence[RejectedProvider] = (),
        constraint_failures: Mapping[str, int] | None = None,
    ) -> None:
        super().__init__(
            "No eligible providers for this job. Relax your constraints "
            "(max price, preferred regions, GPU type or excluded pricing models) and try again."
        )
        self.counts = counts
        self.rejected = list(rejected)
        self.constraint_failures = dict(constraint_failures or {})


def _price(scored: ScoredProvider) -> float:
    return scored.normalized_price.effective_usd_per_a100_hour or 0.0


def build_tradeoffs(scored: ScoredProvider, rank: int, top: Sequence[ScoredProvider]) -> list[str]:
    tradeoffs: list[str] = []
    own_price = _price(scored)
    others = [_price(item) for item in top if item is not scored]

    if rank == 1 and all(own_price < other for other in others):
        tradeoffs.append("Best price: most cost-effective option")
    elif rank == len(top) and rank > 1 and own_price > _price(top[0]):
        saved = (own_price - _price(top[0])) / own_price * 100
        tradeoffs.append(f"Higher price: option 1 saves {saved:.1f}%")
    else:
        tradeoffs.append("Balanced price/performance")

    factors = scored.factors
    if factors.latency >= 90:
        tradeoffs.append("Lowest latency for your region")
    elif factors.latency >= 70:
        tradeoffs.append("Good latency")
    else:
        tradeoffs.append("Higher latency: far from your preferred region")

    if factors.reputation >= 85:
        tradeoffs.append(f"Highest reputation ({scored.provider.metadata.uptime_percentage:.1f}% uptime)")
    elif factors.reputation < 60:
        tradeoffs.append("Lower reputation: newer or less proven provider")

    if factors.geography >= 80:
        tradeoffs.append("Strong geographic match")

    gpu_type = scored.quote.gpu_type
    if gpu_type in PREMIUM_GPUS:
        tradeoffs.append(f"Premium hardware ({gpu_type})")
    elif gpu_type in CONSUMER_GPUS:
        tradeoffs.append(f"Consumer-grade GPU ({gpu_type})")
    return tradeoffs


class Ranker:
    """
    Filter -> quote -> normalize -> score pipeline over a provider snapshot.

    Stages are public so callers can time them individually; ``rank`` runs
    them back to back.
    """

    def __init__(
        self,
        constraint_filter: ConstraintFilter,
        quote_acquisition: QuoteAcquisition,
        normalizer: PriceNormalizer,
        scorer: Scorer,
        top_n: int = 3,
    ) -> None:
        self.constraint_filter = constraint_filter
        self.quote_acquisition = quote_acquisition
        self.normalizer = normalizer
        self.scorer = scorer
        self.top_n = top_n
        self.logger = get_logger("computerouter.ranker")

    async def rank(
        self,
        request: JobRequest,
        providers: Sequence[Provider],
        adapters: Mapping[str, ProviderAdapter],
    ) -> RankingResult:
        filter_results = self.filter(request, providers)
        quotes = await self.quote(request, filter_results, adapters)
        candidates, normalize_rejections = await self.normalize(request, quotes)
        return self.score_and_rank(request, filter_results, quotes, candidates, normalize_rejections)

    def filter(self, request: JobRequest, providers: Sequence[Provider]) -> list[FilterResult]:
        return self.constraint_filter.filter_providers(providers, request)

    async def quote(
        self,
        request: JobRequest,
        filter_results: Sequence[FilterResult],
        adapters: Mapping[str, ProviderAdapter],
    ) -> QuoteAcquisitionResult:
        passed = ConstraintFilter.passed_providers(filter_results)
        if not passed:
            return QuoteAcquisitionResult()
        return await self.quote_acquisition.acquire(passed, request, adapters)

    async def normalize(
        self,
        request: JobRequest,
        quotes: QuoteAcquisitionResult,
    ) -> tuple[list[Candidate], list[RejectedProvider]]:
        per_provider = await asyncio.gather(*(self._normalize_provider(request, item) for item in quotes.successful))
        candidates: list[Candidate] = []
        rejected: list[RejectedProvider] = []
        for item, outcome in zip(quotes.successful, per_provider):
            if isinstance(outcome, str):
                rejected.append(
                    RejectedProvider(
                        provider_id=item.provider.id,
                        provider_name=item.provider.name,
                        stage=RejectionStage.normalize,
                        reason=outcome,
                    )
                )
            else:
                candidates.append(outcome)
        return candidates, rejected

    async def _normalize_provider(self, request: JobRequest, item: ProviderQuotes) -> Candidate | str:
        excluded = request.constraints.excluded_pricing_models
        allowed = [quote for quote in item.quotes if quote.pricing_model not in excluded]
        if not allowed:
            return "all quotes use excluded pricing models"
        normalized = await asyncio.gather(*(self.normalizer.normalize(quote, request) for quote in allowed))
        best: Candidate | None = None
        errors: list[str] = []
        for quote, price in zip(allowed, normalized):
            if price.has_error:
                errors.append(price.error or "normalization failed")
                continue
            if best is None or price.effective_usd_per_a100_hour < best[2].effective_usd_per_a100_hour:
                best = (item.provider, quote, price)
        if best is None:
            return "; ".join(dict.fromkeys(errors)) or "no normalizable quotes"
        return best

    def score_and_rank(
        self,
        request: JobRequest,
        filter_results: Sequence[FilterResult],
        quotes: QuoteAcquisitionResult,
        candidates: Sequence[Candidate],
        normalize_rejections: Sequence[RejectedProvider] = (),
    ) -> RankingResult:
        rejected = self.collect_rejections(filter_results, quotes, normalize_rejections)
        scored = self.scorer.score_all(candidates, request)
        counts = ProviderCounts(
            total=len(filter_results),
            passed_filter=sum(1 for result in filter_results if result.passed),
            quoted=len(quotes.successful),
            normalized=len(candidates),
            scored=len(scored),
        )
        if not scored:
            constraint_failures = ConstraintFilter.rejection_summary(filter_results)
            self.logger.warning(
                "no_eligible_providers",
                extra={
                    "job_id": request.id,
                    "counts": counts.model_dump(),
                    "constraint_failures": constraint_failures,
                    "event": "routing.no_eligible",
                },
            )
            raise NoEligibleProvidersError(counts, rejected, constraint_failures)

        ordered = sorted(scored, key=lambda item: (-item.composite_score, item.provider.id))
        top = ordered[: self.top_n]
        most_expensive = max(_price(item) for item in scored)
        recommendations = [
            ProviderRecommendation(
                rank=rank,
                provider_id=item.provider.id,
                provider_name=item.provider.name,
                gpu_type=str(item.quote.gpu_type),
                region=str(item.quote.region),
                normalized_price=_price(item),
                composite_score=item.composite_score,
                factors=item.factors,
                breakdown=item.breakdown,
                tradeoffs=build_tradeoffs(item, rank, top),
                estimated_savings_percent=round((most_expensive - _price(item)) / most_expensive * 100, 1),
            )
            for rank, item in enumerate(top, start=1)
        ]
        self.logger.info(
            "providers_ranked",
            extra={
                "job_id": request.id,
                "provider_id": recommendations[0].provider_id,
                "scored": len(scored),
                "top_score": recommendations[0].composite_score,
                "event": "routing.ranked",
            },
        )
        return RankingResult(
            recommendations=recommendations,
            scored=ordered,
            rejected=rejected,
            filter_results=list(filter_results),
            counts=counts,
            weights=self.scorer.weights,
        )

    @staticmethod
    def collect_rejections(
        filter_results: Sequence[FilterResult],
        quotes: QuoteAcquisitionResult,
        normalize_rejections: Sequence[RejectedProvider] = (),
    ) -> list[RejectedProvider]:
        rejected = [
            RejectedProvider(
                provider_id=result.provider.id,
                provider_name=result.provider.name,
                stage=RejectionStage.filter,
                reason=result.reason or "failed constraints",
            )
            for result in filter_results
            if not result.passed
        ]
        rejected.extend(
            RejectedProvider(
                provider_id=failure.provider.id,
                provider_name=failure.provider.name,
                stage=RejectionStage.quote,
                reason=failure.reason,
            )
            for failure in quotes.failed
        )
        rejected.extend(normalize_rejections)
        return rejected
