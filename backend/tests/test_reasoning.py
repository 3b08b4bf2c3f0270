from __future__ import annotations

from datetime import datetime, timezone

import pytest

from app.models.provider import Region
from app.services.reasoning import (
    TIMESTAMP_PATTERN,
    ReasoningTraceBuilder,
    TraceValidationError,
    format_timestamp,
    summarize_trace,
    trace_from_json,
    trace_to_json,
    validate_trace,
)

FIXED_NOW = datetime(2025, 3, 14, 9, 26, 53, 589_000, tzinfo=timezone.utc)


async def ranked(ranker, make_provider, make_request, static_adapters, passing=3, failing=0):
    providers = [make_provider(f"ok-{index}", price=1.0 + index) for index in range(passing)]
    providers += [make_provider(f"far-{index:02d}", regions=[Region.ap_south]) for index in range(failing)]
    request = make_request(preferred_regions=[Region.us_east])
    return request, await ranker.rank(request, providers, static_adapters(providers))


def test_timestamp_format():
    assert format_timestamp(FIXED_NOW) == "2025-03-14T09:26:53.589Z"
    assert TIMESTAMP_PATTERN.match(format_timestamp(datetime.now(timezone.utc)))


@pytest.mark.asyncio
async def test_trace_round_trips_through_json(ranker, make_provider, make_request, static_adapters):
    request, ranking = await ranked(ranker, make_provider, make_request, static_adapters, passing=3, failing=2)
    trace = ReasoningTraceBuilder().build(request, ranking, calculation_time_ms=12.5, now=FIXED_NOW)

    restored = trace_from_json(trace_to_json(trace))

    assert restored == trace
    assert trace_to_json(restored) == trace_to_json(trace)


@pytest.mark.asyncio
async def test_trace_caps_candidates_and_rejections(ranker, make_provider, make_request, static_adapters):
    request, ranking = await ranked(ranker, make_provider, make_request, static_adapters, passing=7, failing=12)

    trace = ReasoningTraceBuilder().build(request, ranking, calculation_time_ms=3.0, now=FIXED_NOW)

    assert len(trace.candidates) == 5
    assert len(trace.rejected) == 10
    assert len(trace.final_ranking) == 3
    assert trace.metadata.rejected_total == 12
    assert trace.metadata.agent_version == "1.0.0"
    assert trace.provider_count == 19
    assert trace.final_ranking[0].provider_id == "ok-0"


@pytest.mark.asyncio
async def test_oversized_trace_truncates_rejections(ranker, make_provider, make_request, static_adapters):
    request, ranking = await ranked(ranker, make_provider, make_request, static_adapters, passing=2, failing=10)
    full = ReasoningTraceBuilder().build(request, ranking, calculation_time_ms=1.0, now=FIXED_NOW)
    limit = len(trace_to_json(full)) - 1

    trace = ReasoningTraceBuilder(max_bytes=limit, warning_bytes=limit).build(
        request, ranking, calculation_time_ms=1.0, now=FIXED_NOW
    )

    assert len(trace.rejected) == 3
    assert trace.metadata.truncated


@pytest.mark.asyncio
async def test_trace_that_cannot_fit_is_refused(ranker, make_provider, make_request, static_adapters):
    request, ranking = await ranked(ranker, make_provider, make_request, static_adapters)

    with pytest.raises(TraceValidationError):
        ReasoningTraceBuilder(max_bytes=100, warning_bytes=50).build(request, ranking, calculation_time_ms=1.0)


@pytest.mark.asyncio
async def test_validation_rejects_bad_fields(ranker, make_provider, make_request, static_adapters):
    request, ranking = await ranked(ranker, make_provider, make_request, static_adapters)
    trace = ReasoningTraceBuilder().build(request, ranking, calculation_time_ms=1.0, now=FIXED_NOW)

    with pytest.raises(TraceValidationError):
        validate_trace(trace.model_copy(update={"timestamp": "2025-03-14 09:26:53"}))
    with pytest.raises(TraceValidationError):
        validate_trace(trace.model_copy(update={"job_id": " "}))
    blank_entry = trace.final_ranking[0].model_copy(update={"provider_id": ""})
    with pytest.raises(TraceValidationError):
        validate_trace(trace.model_copy(update={"final_ranking": (blank_entry,)}))


def test_from_json_rejects_garbage():
    with pytest.raises(TraceValidationError):
        trace_from_json(b"{not json")
    with pytest.raises(TraceValidationError):
        trace_from_json(b'{"job_id": "job-1"}')


@pytest.mark.asyncio
async def test_summary_names_selected_provider(ranker, make_provider, make_request, static_adapters):
    request, ranking = await ranked(ranker, make_provider, make_request, static_adapters, passing=2, failing=1)
    trace = ReasoningTraceBuilder().build(request, ranking, calculation_time_ms=1.0, now=FIXED_NOW)

    summary = summarize_trace(trace)

    assert summary.selected_provider_id == "ok-0"
    assert summary.rejection_reasons == {"filter": 1}
    assert "Selected ok-0" in summary.text
    assert "1 at filter" in summary.text
