from datetime import datetime

from pydantic import BaseModel

from app.models.identity import IdentitySummary
from app.models.job import JobResult, JobStatus
from app.models.trace import ReasoningTrace, TraceSummary


class JobDetailResponse(BaseModel):
    result: JobResult
    status: JobStatus
    identity: IdentitySummary
    actual_cost_usd: float | None = None
    completed_at: datetime | None = None


class TraceResponse(BaseModel):
    reference: str
    trace: ReasoningTrace
    summary: TraceSummary

