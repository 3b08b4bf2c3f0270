from __future__ import annotations

import asyncio
import time
from time import perf_counter

from app.core.logging import get_logger
from app.models.identity import ActivityAction, AuditExport, IdentityContext, TeamSpending, TrackedIdentity
from app.models.job import JobRecord, JobRequest, JobResult, PipelineMetrics
from app.models.trace import ReasoningTrace
from app.services.identity import IdentityService
from app.services.job_store import InMemoryJobStore
from app.services.provider_registry import ProviderRegistry
from app.services.ranker import Ranker
from app.services.reasoning import ReasoningTraceBuilder
from app.services.trace_storage import TraceStorage


def _elapsed_ms(started: float) -> float:
    return round((perf_counter() - started) * 1000, 3)


class RoutingOrchestrator:
    """
    Runs one routing decision end to end.

    identity -> provider snapshot -> filter -> quote -> normalize -> rank ->
    reasoning trace -> trace upload -> result. Only two outcomes are fatal for
    the caller: ``NoEligibleProvidersError`` and ``TraceValidationError``
    (plus request validation errors raised before any provider is contacted).
    A failed or slow trace upload degrades to a local reference instead.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        ranker: Ranker,
        trace_builder: ReasoningTraceBuilder,
        trace_storage: TraceStorage,
        identity_service: IdentityService,
        job_store: InMemoryJobStore,
        upload_timeout_sec: float = 10.0,
    ) -> None:
        self.registry = registry
        self.ranker = ranker
        self.trace_builder = trace_builder
        self.trace_storage = trace_storage
        self.identity_service = identity_service
        self.job_store = job_store
        self.upload_timeout_sec = upload_timeout_sec
        self.logger = get_logger("computerouter.orchestrator")

    def is_storage_initialized(self) -> bool:
        return self.trace_storage.is_initialized()

    async def process_job(self, request: JobRequest) -> JobResult:
        started = perf_counter()
        metrics = PipelineMetrics()

        step = perf_counter()
        identity = self.identity_service.create_identity(
            IdentityContext(
                mode=request.constraints.identity_mode,
                wallet_address=request.buyer_address,
                organization_id=request.organization_id,
                team_member_id=request.team_member_id,
            )
        )
        metrics.identity_ms = _elapsed_ms(step)

        providers, adapters = await self.registry.snapshot()

        step = perf_counter()
        filter_results = self.ranker.filter(request, providers)
        metrics.filter_ms = _elapsed_ms(step)

        step = perf_counter()
        quotes = await self.ranker.quote(request, filter_results, adapters)
        metrics.quotes_ms = _elapsed_ms(step)

        step = perf_counter()
        candidates, normalize_rejections = await self.ranker.normalize(request, quotes)
        metrics.normalize_ms = _elapsed_ms(step)

        step = perf_counter()
        ranking = self.ranker.score_and_rank(request, filter_results, quotes, candidates, normalize_rejections)
        metrics.rank_ms = _elapsed_ms(step)

        step = perf_counter()
        trace = self.trace_builder.build(request, ranking, calculation_time_ms=_elapsed_ms(started))
        metrics.trace_ms = _elapsed_ms(step)

        step = perf_counter()
        reference, degraded = await self._upload_trace(trace)
        metrics.upload_ms = _elapsed_ms(step)
        metrics.upload_degraded = degraded

        selected = ranking.scored[0]
        effective_price = selected.normalized_price.effective_usd_per_a100_hour or 0.0
        total_cost = round(effective_price * request.duration_hours * request.gpu_count, 4)
        identity = self.identity_service.record_activity(
            identity,
            ActivityAction.job_created,
            job_id=request.id,
            amount_usd=total_cost,
            metadata={"provider_id": selected.provider.id, "trace_ref": reference},
        )
        metrics.total_ms = _elapsed_ms(started)

        result = JobResult(
            job_id=request.id,
            identity_mode=request.constraints.identity_mode,
            audit_id=identity.audit_id,
            selected_provider_id=selected.provider.id,
            selected_provider_name=selected.provider.name,
            selected_provider_type=selected.provider.type,
            normalized_price=selected.normalized_price,
            total_cost_usd=total_cost,
            reasoning_trace_ref=reference,
            recommendations=ranking.recommendations,
            metrics=metrics,
            provider_counts=ranking.counts,
        )
        await self.job_store.put(JobRecord(request=request, result=result, identity=identity, trace=trace))
        self.logger.info(
            "job_routed",
            extra={
                "job_id": request.id,
                "provider_id": selected.provider.id,
                "total_cost_usd": total_cost,
                "total_ms": metrics.total_ms,
                "upload_degraded": degraded,
                "event": "routing.completed",
            },
        )
        return result

    async def _upload_trace(self, trace: ReasoningTrace) -> tuple[str, bool]:
        try:
            reference = await asyncio.wait_for(self.trace_storage.upload(trace), timeout=self.upload_timeout_sec)
            return reference, False
        except Exception as exc:  # noqa: BLE001
            reference = f"local-{int(time.time() * 1000)}"
            self.logger.warning(
                "trace_upload_failed",
                extra={
                    "job_id": trace.job_id,
                    "reference": reference,
                    "error": f"{exc.__class__.__name__}: {exc}",
                    "event": "trace.upload_degraded",
                },
            )
            return reference, True

    async def get_job(self, job_id: str) -> JobRecord:
        record = await self.job_store.get(job_id)
        if record is None:
            raise KeyError(f"Job '{job_id}' not found")
        return record

    async def complete_job(self, job_id: str, actual_cost_usd: float | None = None) -> JobRecord:
        record = await self.job_store.mark_completed(job_id, actual_cost_usd)
        amount = actual_cost_usd if actual_cost_usd is not None else record.result.total_cost_usd
        identity = self.identity_service.record_activity(
            record.identity, ActivityAction.job_completed, job_id=job_id, amount_usd=amount
        )
        identity = self.identity_service.record_activity(
            identity, ActivityAction.payment_made, job_id=job_id, amount_usd=amount
        )
        self.logger.info("job_completed", extra={"job_id": job_id, "amount_usd": amount, "event": "job.completed"})
        return await self.job_store.set_identity(job_id, identity)

    async def cancel_job(self, job_id: str) -> JobRecord:
        record = await self.job_store.mark_cancelled(job_id)
        identity = self.identity_service.record_activity(record.identity, ActivityAction.job_cancelled, job_id=job_id)
        self.logger.info("job_cancelled", extra={"job_id": job_id, "event": "job.cancelled"})
        return await self.job_store.set_identity(job_id, identity)

    async def audit_export(self, job_id: str) -> AuditExport:
        record = await self.get_job(job_id)
        return self.identity_service.export_for_audit(record.identity)

    async def verify_owner(self, job_id: str, wallet_address: str, organization_id: str | None = None) -> bool:
        record = await self.get_job(job_id)
        return self.identity_service.verify_ownership(record.identity, wallet_address, organization_id)

    async def team_spending(self, job_id: str) -> TeamSpending | None:
        record = await self.get_job(job_id)
        identity = record.identity
        if not isinstance(identity, TrackedIdentity) or not identity.organization_id:
            return None
        jobs = await self.job_store.organization_jobs(identity.organization_id)
        return self.identity_service.team_spending(identity, jobs)
