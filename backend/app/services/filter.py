from __future__ import annotations

from collections import Counter
from collections.abc import Callable, Iterable

from app.core.logging import get_logger
from app.models.job import JobRequest
from app.models.provider import Provider
from app.models.ranking import FilterResult

ConstraintCheck = Callable[[Provider, JobRequest], str | None]


class ConstraintFilter:
    """
    Hard-constraint gate in front of quoting.

    Each check returns a human readable failure reason or ``None``. In the
    default collect-all mode every check runs so the trace can explain all
    reasons a provider was dropped; ``fail_fast`` stops at the first failure.
    """

    def __init__(self, fail_fast: bool = False) -> None:
        self.fail_fast = fail_fast
        self.logger = get_logger("computerouter.filter")
        self._checks: list[tuple[str, ConstraintCheck]] = [
            ("price", self._check_price),
            ("region", self._check_region),
            ("gpu", self._check_gpu),
            ("pricing_model", self._check_pricing_model),
            ("capacity", self._check_capacity),
        ]

    def evaluate(self, provider: Provider, request: JobRequest) -> FilterResult:
        failed: list[str] = []
        reasons: list[str] = []
        for name, check in self._checks:
            reason = check(provider, request)
            if reason is None:
                continue
            failed.append(name)
            reasons.append(reason)
            if self.fail_fast:
                break
        return FilterResult(
            provider=provider,
            passed=not failed,
            failed_constraints=tuple(failed),
            reason="; ".join(reasons) or None,
        )

    def filter_providers(self, providers: Iterable[Provider], request: JobRequest) -> list[FilterResult]:
        results = [self.evaluate(provider, request) for provider in providers]
        passed, failed = self.partition(results)
        self.logger.info(
            "providers_filtered",
            extra={
                "job_id": request.id,
                "total": len(results),
                "passed": len(passed),
                "rejected": len(failed),
                "event": "routing.filtered",
            },
        )
        return results

    @staticmethod
    def partition(results: Iterable[FilterResult]) -> tuple[list[FilterResult], list[FilterResult]]:
        passed: list[FilterResult] = []
        failed: list[FilterResult] = []
        for result in results:
            (passed if result.passed else failed).append(result)
        return passed, failed

    @staticmethod
    def passed_providers(results: Iterable[FilterResult]) -> list[Provider]:
        return [result.provider for result in results if result.passed]

    @staticmethod
    def rejection_summary(results: Iterable[FilterResult]) -> dict[str, int]:
        counts: Counter[str] = Counter()
        for result in results:
            counts.update(result.failed_constraints)
        return dict(counts)

    def _check_price(self, provider: Provider, request: JobRequest) -> str | None:
        max_price = request.constraints.max_price_per_hour
        if max_price is None:
            return None
        listed = provider.listed_price_for(request.constraints.required_gpu_type)
        if listed is None or listed <= max_price:
            return None
        return f"listed price ${listed:.2f}/hr exceeds max ${max_price:.2f}/hr"

    def _check_region(self, provider: Provider, request: JobRequest) -> str | None:
        preferred = request.constraints.preferred_regions
        if not preferred:
            return None
        if set(preferred) & set(provider.capabilities.regions):
            return None
        wanted = ", ".join(str(region) for region in preferred)
        return f"no presence in preferred regions ({wanted})"

    def _check_gpu(self, provider: Provider, request: JobRequest) -> str | None:
        required = request.constraints.required_gpu_type
        if required is None or required in provider.capabilities.gpu_types:
            return None
        return f"GPU {required} not offered"

    def _check_pricing_model(self, provider: Provider, request: JobRequest) -> str | None:
        if provider.pricing_model in request.constraints.excluded_pricing_models:
            return f"pricing model {provider.pricing_model} excluded"
        return None

    def _check_capacity(self, provider: Provider, request: JobRequest) -> str | None:
        # Capacity reservation is not modelled; every provider is assumed to have room.
        return None
