from __future__ import annotations

from collections import Counter
from datetime import datetime, timezone
import re

import orjson
from pydantic import ValidationError

from app.core.logging import get_logger
from app.models.job import JobRequest
from app.models.ranking import RankingResult
from app.models.trace import (
    ReasoningTrace,
    TraceCandidate,
    TraceMetadata,
    TraceQuery,
    TraceRankingEntry,
    TraceRejection,
    TraceSummary,
)
from app.services.normalizer import format_price

TIMESTAMP_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d{3})?Z$")
MAX_CANDIDATES = 5
MAX_REJECTED = 10
MAX_FINAL_RANKING = 3
TRUNCATED_REJECTED = 3


class TraceValidationError(ValueError):
    pass


def format_timestamp(value: datetime) -> str:
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def validate_trace(trace: ReasoningTrace) -> ReasoningTrace:
    if not trace.job_id.strip():
        raise TraceValidationError("trace job_id is required")
    if not TIMESTAMP_PATTERN.match(trace.timestamp):
        raise TraceValidationError(f"trace timestamp '{trace.timestamp}' is not ISO-8601 UTC")
    if len(trace.candidates) > MAX_CANDIDATES:
        raise TraceValidationError(f"trace holds more than {MAX_CANDIDATES} candidates")
    if len(trace.rejected) > MAX_REJECTED:
        raise TraceValidationError(f"trace holds more than {MAX_REJECTED} rejected providers")
    if len(trace.final_ranking) > MAX_FINAL_RANKING:
        raise TraceValidationError(f"trace ranking holds more than {MAX_FINAL_RANKING} entries")
    entries = [*trace.candidates, *trace.rejected, *trace.final_ranking]
    if any(not entry.provider_id.strip() for entry in entries):
        raise TraceValidationError("every trace entry must reference a provider id")
    return trace


def trace_to_json(trace: ReasoningTrace) -> bytes:
    return orjson.dumps(trace.model_dump(mode="json"), option=orjson.OPT_SORT_KEYS)


def trace_from_json(data: bytes | str) -> ReasoningTrace:
    try:
        payload = orjson.loads(data)
    except orjson.JSONDecodeError as exc:
        raise TraceValidationError(f"trace is not valid JSON: {exc}") from exc
    try:
        trace = ReasoningTrace.model_validate(payload)
    except ValidationError as exc:
        raise TraceValidationError(f"trace does not match schema: {exc}") from exc
    return validate_trace(trace)


def summarize_rejections(trace: ReasoningTrace) -> dict[str, int]:
    return dict(Counter(rejection.stage for rejection in trace.rejected))


def summarize_trace(trace: ReasoningTrace) -> TraceSummary:
    top = trace.final_ranking[0] if trace.final_ranking else None
    rejection_reasons = summarize_rejections(trace)
    lines = [
        f"Job {trace.job_id} at {trace.timestamp}: {trace.provider_count} providers considered",
        (
            f"{trace.metadata.filtered_count} passed filters, {trace.metadata.quoted_count} quoted, "
            f"{trace.metadata.scored_count} scored"
        ),
    ]
    if top:
        lines.append(
            f"Selected {top.provider_id} with score {top.composite_score:.2f} at {format_price(top.normalized_price)}"
        )
    if rejection_reasons:
        parts = ", ".join(f"{count} at {stage}" for stage, count in sorted(rejection_reasons.items()))
        lines.append(f"Rejected: {parts}")
    return TraceSummary(
        job_id=trace.job_id,
        timestamp=trace.timestamp,
        selected_provider_id=top.provider_id if top else None,
        top_score=top.composite_score if top else None,
        candidate_count=len(trace.candidates),
        rejected_count=trace.metadata.rejected_total,
        rejection_reasons=rejection_reasons,
        text="\n".join(lines),
    )


class ReasoningTraceBuilder:
    """
    Builds the audit record for one routing decision.

    The record is capped (5 candidates, 10 rejections, top 3 ranking) and
    validated before it is handed back; a trace that fails validation is
    never returned. If the serialized form still exceeds ``max_bytes`` the
    rejected list is cut down to 3 entries.
    """

    def __init__(self, max_bytes: int = 9 * 1024 * 1024, warning_bytes: int = 5 * 1024 * 1024) -> None:
        self.max_bytes = max_bytes
        self.warning_bytes = warning_bytes
        self.logger = get_logger("computerouter.reasoning")

    def build(
        self,
        request: JobRequest,
        ranking: RankingResult,
        calculation_time_ms: float,
        now: datetime | None = None,
    ) -> ReasoningTrace:
        constraints = request.constraints
        trace = ReasoningTrace(
            timestamp=format_timestamp(now or datetime.now(timezone.utc)),
            job_id=request.id,
            provider_count=ranking.counts.total,
            query=TraceQuery(
                gpu_type=str(constraints.required_gpu_type) if constraints.required_gpu_type else None,
                gpu_count=request.gpu_count,
                duration_hours=request.duration_hours,
                preferred_regions=tuple(str(region) for region in constraints.preferred_regions),
                max_price_per_hour=constraints.max_price_per_hour,
                identity_mode=constraints.identity_mode,
            ),
            weights=ranking.weights,
            candidates=tuple(
                TraceCandidate(
                    provider_id=item.provider.id,
                    provider_name=item.provider.name,
                    raw_price=item.normalized_price.raw_price,
                    raw_currency=str(item.normalized_price.raw_currency),
                    normalized_price=item.normalized_price.effective_usd_per_a100_hour,
                    factors=item.factors,
                    composite_score=item.composite_score,
                )
                for item in ranking.scored[:MAX_CANDIDATES]
            ),
            rejected=tuple(
                TraceRejection(provider_id=item.provider_id, stage=str(item.stage), reason=item.reason)
                for item in ranking.rejected[:MAX_REJECTED]
            ),
            final_ranking=tuple(
                TraceRankingEntry(
                    rank=item.rank,
                    provider_id=item.provider_id,
                    composite_score=item.composite_score,
                    normalized_price=item.normalized_price,
                    tradeoffs=tuple(item.tradeoffs),
                )
                for item in ranking.recommendations[:MAX_FINAL_RANKING]
            ),
            metadata=TraceMetadata(
                calculation_time_ms=round(max(0.0, calculation_time_ms), 3),
                filtered_count=ranking.counts.passed_filter,
                quoted_count=ranking.counts.quoted,
                scored_count=ranking.counts.scored,
                rejected_total=len(ranking.rejected),
            ),
        )
        return validate_trace(self._enforce_size(trace))

    def _enforce_size(self, trace: ReasoningTrace) -> ReasoningTrace:
        size = len(trace_to_json(trace))
        if size > self.max_bytes:
            self.logger.warning(
                "trace_truncated",
                extra={"job_id": trace.job_id, "size_bytes": size, "event": "trace.truncated"},
            )
            trace = trace.model_copy(
                update={
                    "rejected": trace.rejected[:TRUNCATED_REJECTED],
                    "metadata": trace.metadata.model_copy(update={"truncated": True}),
                }
            )
            size = len(trace_to_json(trace))
            if size > self.max_bytes:
                raise TraceValidationError(f"trace is {size} bytes after truncation, limit is {self.max_bytes}")
        if size > self.warning_bytes:
            self.logger.warning(
                "trace_large",
                extra={"job_id": trace.job_id, "size_bytes": size, "event": "trace.large"},
            )
        return trace
