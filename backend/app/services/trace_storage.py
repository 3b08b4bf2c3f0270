from __future__ import annotations

import asyncio
import hashlib
from pathlib import Path
from typing import Protocol

from app.core.logging import get_logger
from app.models.trace import ReasoningTrace
from app.services.reasoning import trace_from_json, trace_to_json


def content_hash(data: bytes) -> str:
    return f"0x{hashlib.sha256(data).hexdigest()}"


class TraceStorage(Protocol):
    def is_initialized(self) -> bool: ...

    async def upload(self, trace: ReasoningTrace) -> str: ...

    async def download(self, reference: str) -> ReasoningTrace: ...


class InMemoryTraceStorage:
    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._blobs: dict[str, bytes] = {}

    def is_initialized(self) -> bool:
        return True

    async def upload(self, trace: ReasoningTrace) -> str:
        data = trace_to_json(trace)
        reference = content_hash(data)
        async with self._lock:
            self._blobs[reference] = data
        return reference

    async def download(self, reference: str) -> ReasoningTrace:
        async with self._lock:
            data = self._blobs.get(reference)
        if data is None:
            raise KeyError(f"Trace '{reference}' not found")
        return trace_from_json(data)


class FileTraceStorage:
    """Content-addressed trace files under one directory."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)
        self._initialized = False
        self.logger = get_logger("computerouter.trace_storage")

    def initialize(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        self._initialized = True

    def is_initialized(self) -> bool:
        return self._initialized

    async def upload(self, trace: ReasoningTrace) -> str:
        if not self._initialized:
            raise RuntimeError("trace storage is not initialized")
        data = trace_to_json(trace)
        reference = content_hash(data)
        path = self._path_for(reference)
        await asyncio.to_thread(path.write_bytes, data)
        self.logger.info(
            "trace_stored",
            extra={"job_id": trace.job_id, "reference": reference, "size_bytes": len(data), "event": "trace.stored"},
        )
        return reference

    async def download(self, reference: str) -> ReasoningTrace:
        path = self._path_for(reference)
        try:
            data = await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as exc:
            raise KeyError(f"Trace '{reference}' not found") from exc
        return trace_from_json(data)

    def _path_for(self, reference: str) -> Path:
        digest = reference.removeprefix("0x")
        if len(digest) != 64 or any(char not in "0123456789abcdef" for char in digest):
            raise KeyError(f"Trace '{reference}' not found")
        return self.directory / f"{digest}.json"
