from collections import Counter

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.deps import get_orchestrator
from app.models.identity import AuditExport, OwnershipVerifyRequest, OwnershipVerifyResponse, TeamSpending
from app.models.job import JobCompleteRequest, JobListResponse, JobRecord, JobRequest, JobResult, JobSubmitRequest
from app.schemas.jobs import JobDetailResponse, TraceResponse
from app.services.identity import IdentityValidationError
from app.services.orchestrator import RoutingOrchestrator
from app.services.ranker import NoEligibleProvidersError
from app.services.reasoning import TraceValidationError, summarize_trace

router = APIRouter(prefix="/jobs", tags=["jobs"])


def _detail(record: JobRecord, orchestrator: RoutingOrchestrator) -> JobDetailResponse:
    return JobDetailResponse(
        result=record.result,
        status=record.status,
        identity=orchestrator.identity_service.summary(record.identity),
        actual_cost_usd=record.actual_cost_usd,
        completed_at=record.completed_at,
    )


async def _require_job(job_id: str, orchestrator: RoutingOrchestrator) -> JobRecord:
    try:
        return await orchestrator.get_job(job_id)
    except KeyError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found") from exc


@router.post("/route", response_model=JobResult, status_code=status.HTTP_201_CREATED)
async def route_job(
    payload: JobSubmitRequest,
    orchestrator: RoutingOrchestrator = Depends(get_orchestrator),
) -> JobResult:
    try:
        return await orchestrator.process_job(JobRequest.from_submit(payload))
    except IdentityValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except NoEligibleProvidersError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "error": "no_eligible_providers",
                "message": str(exc),
                "provider_counts": exc.counts.model_dump(),
                "rejection_summary": dict(Counter(str(item.stage) for item in exc.rejected)),
                "constraint_failures": exc.constraint_failures,
            },
        ) from exc
    except TraceValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Reasoning trace could not be built: {exc}",
        ) from exc


@router.get("", response_model=JobListResponse)
async def list_jobs(orchestrator: RoutingOrchestrator = Depends(get_orchestrator)) -> JobListResponse:
    return JobListResponse(items=await orchestrator.job_store.list_results())


@router.get("/{job_id}", response_model=JobDetailResponse)
async def get_job(job_id: str, orchestrator: RoutingOrchestrator = Depends(get_orchestrator)) -> JobDetailResponse:
    return _detail(await _require_job(job_id, orchestrator), orchestrator)


@router.get("/{job_id}/trace", response_model=TraceResponse)
async def get_trace(job_id: str, orchestrator: RoutingOrchestrator = Depends(get_orchestrator)) -> TraceResponse:
    record = await _require_job(job_id, orchestrator)
    return TraceResponse(
        reference=record.result.reasoning_trace_ref,
        trace=record.trace,
        summary=summarize_trace(record.trace),
    )


@router.post("/{job_id}/complete", response_model=JobDetailResponse)
async def complete_job(
    job_id: str,
    payload: JobCompleteRequest,
    orchestrator: RoutingOrchestrator = Depends(get_orchestrator),
) -> JobDetailResponse:
    try:
        record = await orchestrator.complete_job(job_id, payload.actual_cost_usd)
    except KeyError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found") from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return _detail(record, orchestrator)


@router.post("/{job_id}/cancel", response_model=JobDetailResponse)
async def cancel_job(job_id: str, orchestrator: RoutingOrchestrator = Depends(get_orchestrator)) -> JobDetailResponse:
    try:
        record = await orchestrator.cancel_job(job_id)
    except KeyError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found") from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return _detail(record, orchestrator)


@router.get("/{job_id}/audit", response_model=AuditExport)
async def audit_export(job_id: str, orchestrator: RoutingOrchestrator = Depends(get_orchestrator)) -> AuditExport:
    await _require_job(job_id, orchestrator)
    return await orchestrator.audit_export(job_id)


@router.post("/{job_id}/verify-owner", response_model=OwnershipVerifyResponse)
async def verify_owner(
    job_id: str,
    payload: OwnershipVerifyRequest,
    orchestrator: RoutingOrchestrator = Depends(get_orchestrator),
) -> OwnershipVerifyResponse:
    await _require_job(job_id, orchestrator)
    owner = await orchestrator.verify_owner(job_id, payload.wallet_address, payload.organization_id)
    return OwnershipVerifyResponse(job_id=job_id, owner=owner)


@router.get("/{job_id}/team-spending", response_model=TeamSpending)
async def team_spending(job_id: str, orchestrator: RoutingOrchestrator = Depends(get_orchestrator)) -> TeamSpending:
    await _require_job(job_id, orchestrator)
    spending = await orchestrator.team_spending(job_id)
    if spending is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Team spending is unavailable: job was not submitted in tracked mode with an organization",
        )
    return spending
