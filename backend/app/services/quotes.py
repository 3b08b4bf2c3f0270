from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from time import perf_counter

from app.core.logging import get_logger
from app.models.job import JobRequest
from app.models.pricing import ProviderQuotes, QuoteAcquisitionResult, QuoteFailure, QuoteRequest
from app.models.provider import GpuType, Provider
from app.services.adapters import ProviderAdapter, ProviderError


def quote_request_for(provider: Provider, request: JobRequest) -> QuoteRequest:
    constraints = request.constraints
    gpu_type = constraints.required_gpu_type
    if gpu_type is None:
        offered = provider.capabilities.gpu_types
        gpu_type = GpuType.a100_80gb if GpuType.a100_80gb in offered else offered[0]
    region = constraints.preferred_regions[0] if constraints.preferred_regions else provider.primary_region
    return QuoteRequest(
        gpu_type=gpu_type,
        gpu_count=request.gpu_count,
        duration_hours=request.duration_hours,
        region=region,
        allow_spot=constraints.allow_spot,
    )


class QuoteAcquisition:
    """
    Parallel quote fan-out with a per-provider deadline.

    Every provider gets its own result slot; a slow or failing adapter only
    fills its own slot with a failure and never affects the others.
    """

    def __init__(self, timeout_ms: int = 5_000) -> None:
        self.timeout_ms = timeout_ms
        self.logger = get_logger("computerouter.quotes")

    async def acquire(
        self,
        providers: Sequence[Provider],
        request: JobRequest,
        adapters: Mapping[str, ProviderAdapter],
    ) -> QuoteAcquisitionResult:
        started = perf_counter()
        slots: list[ProviderQuotes | QuoteFailure | None] = [None] * len(providers)

        async with asyncio.TaskGroup() as group:
            for index, provider in enumerate(providers):
                group.create_task(self._fetch(index, provider, request, adapters.get(provider.id), slots))

        result = QuoteAcquisitionResult()
        for slot in slots:
            if isinstance(slot, ProviderQuotes):
                result.successful.append(slot)
            elif isinstance(slot, QuoteFailure):
                result.failed.append(slot)

        self.logger.info(
            "quotes_acquired",
            extra={
                "job_id": request.id,
                "requested": len(providers),
                "quoted": len(result.successful),
                "failed": len(result.failed),
                "elapsed_ms": round((perf_counter() - started) * 1000, 2),
                "event": "routing.quoted",
            },
        )
        return result

    async def _fetch(
        self,
        index: int,
        provider: Provider,
        request: JobRequest,
        adapter: ProviderAdapter | None,
        slots: list[ProviderQuotes | QuoteFailure | None],
    ) -> None:
        if adapter is None:
            slots[index] = QuoteFailure(provider=provider, reason="no quote adapter registered")
            return

        try:
            quotes = await asyncio.wait_for(
                adapter.get_quotes(quote_request_for(provider, request)),
                timeout=self.timeout_ms / 1000,
            )
        except TimeoutError:
            reason = f"quote timed out after {self.timeout_ms} ms"
        except ProviderError as exc:
            reason = f"{exc.code}: {exc.message}"
        except Exception as exc:  # noqa: BLE001
            reason = f"{exc.__class__.__name__}: {exc}"
        else:
            if quotes:
                slots[index] = ProviderQuotes(provider=provider, quotes=quotes)
                return
            reason = "provider returned no quotes"

        slots[index] = QuoteFailure(provider=provider, reason=reason)
        self.logger.warning(
            "quote_failed",
            extra={"job_id": request.id, "provider_id": provider.id, "reason": reason, "event": "quotes.failed"},
        )
