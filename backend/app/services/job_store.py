from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from app.models.identity import IdentityRecord, TrackedIdentity
from app.models.job import JobRecord, JobResult, JobStatus


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryJobStore:
    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._jobs: dict[str, JobRecord] = {}

    async def put(self, record: JobRecord) -> JobRecord:
        async with self._lock:
            self._jobs[record.result.job_id] = record
        return record

    async def get(self, job_id: str) -> JobRecord | None:
        async with self._lock:
            return self._jobs.get(job_id)

    async def list_results(self) -> list[JobResult]:
        async with self._lock:
            records = list(self._jobs.values())
        return sorted((record.result for record in records), key=lambda result: result.created_at, reverse=True)

    async def set_identity(self, job_id: str, identity: IdentityRecord) -> JobRecord:
        async with self._lock:
            record = self._require(job_id)
            record = record.model_copy(update={"identity": identity, "updated_at": utc_now()})
            self._jobs[job_id] = record
            return record

    async def mark_completed(self, job_id: str, actual_cost_usd: float | None = None) -> JobRecord:
        async with self._lock:
            record = self._require(job_id)
            if record.status != JobStatus.confirmed:
                raise ValueError(f"Job '{job_id}' is {record.status}, only confirmed jobs can complete")
            now = utc_now()
            record = record.model_copy(
                update={
                    "status": JobStatus.completed,
                    "actual_cost_usd": actual_cost_usd,
                    "completed_at": now,
                    "updated_at": now,
                    "result": record.result.model_copy(update={"status": JobStatus.completed}),
                }
            )
            self._jobs[job_id] = record
            return record

    async def mark_cancelled(self, job_id: str) -> JobRecord:
        async with self._lock:
            record = self._require(job_id)
            if record.status != JobStatus.confirmed:
                raise ValueError(f"Job '{job_id}' is {record.status}, only confirmed jobs can be cancelled")
            record = record.model_copy(
                update={
                    "status": JobStatus.cancelled,
                    "updated_at": utc_now(),
                    "result": record.result.model_copy(update={"status": JobStatus.cancelled}),
                }
            )
            self._jobs[job_id] = record
            return record

    async def organization_jobs(self, organization_id: str) -> list[JobRecord]:
        async with self._lock:
            return [
                record
                for record in self._jobs.values()
                if isinstance(record.identity, TrackedIdentity) and record.identity.organization_id == organization_id
            ]

    def _require(self, job_id: str) -> JobRecord:
        record = self._jobs.get(job_id)
        if record is None:
            raise KeyError(f"Job '{job_id}' not found")
        return record
