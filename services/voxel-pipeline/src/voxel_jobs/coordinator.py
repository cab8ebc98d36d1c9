from __future__ import annotations

import itertools
import logging
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Callable, Optional, Union

from .pipeline import PipelineResult, VoxelQuery

logger = logging.getLogger(__name__)

QueryRunner = Callable[[VoxelQuery], PipelineResult]
WritableBuffer = Union[bytearray, memoryview]


class JobStatus(IntEnum):
    RUNNING = 0
    DONE = 1
    FAILED = -1
    UNKNOWN = -2


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _Job:
    job_id: int
    query: VoxelQuery
    created_at: datetime
    status: JobStatus = JobStatus.RUNNING
    result: bytes = b""
    error: Optional[str] = None
    stats: dict[str, Any] = field(default_factory=dict)
    finished_at: Optional[datetime] = None
    future: Optional[Future[None]] = None


@dataclass(frozen=True)
class JobSnapshot:
    job_id: int
    status: JobStatus
    result_size: int
    error: Optional[str]
    stats: dict[str, Any]
    created_at: datetime
    finished_at: Optional[datetime]


class JobCoordinator:
    """Registry of asynchronous voxel queries.

    Each submission runs the whole pipeline as one task on a bounded thread
    pool. The registry is guarded by a single lock that is only held while
    reading or writing registry entries. A job leaves RUNNING exactly once;
    its result bytes are immutable afterwards.
    """

    def __init__(
        self,
        runner: QueryRunner,
        *,
        max_workers: int = 2,
        executor: Optional[Executor] = None,
    ) -> None:
        if max_workers <= 0:
            raise ValueError("max_workers must be > 0")

        self._runner = runner
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="voxel-job"
        )
        self._lock = threading.Lock()
        self._jobs: dict[int, _Job] = {}
        self._ids = itertools.count(1)

    def submit(self, query: VoxelQuery) -> int:
        with self._lock:
            job_id = next(self._ids)
            job = _Job(job_id=job_id, query=query, created_at=_utc_now())
            self._jobs[job_id] = job

        logger.info(
            "voxel_job_submitted",
            extra={
                "job_id": job_id,
                "latitude": query.latitude,
                "longitude": query.longitude,
                "radius_m": query.radius_m,
                "resolution": query.resolution,
            },
        )
        future = self._executor.submit(self._run, job_id, query)
        with self._lock:
            if job_id in self._jobs:
                self._jobs[job_id].future = future
        return job_id

    def _run(self, job_id: int, query: VoxelQuery) -> None:
        try:
            result = self._runner(query)
        except Exception as exc:  # noqa: BLE001
            logger.exception("voxel_job_failed", extra={"job_id": job_id, "error": str(exc)})
            self._finish(job_id, JobStatus.FAILED, error=str(exc) or type(exc).__name__)
            return

        logger.info(
            "voxel_job_done",
            extra={"job_id": job_id, "voxels": result.voxel_count, "bytes": len(result.data)},
        )
        self._finish(job_id, JobStatus.DONE, result=result.data, stats=result.stats.as_dict())

    def _finish(
        self,
        job_id: int,
        status: JobStatus,
        *,
        result: bytes = b"",
        error: Optional[str] = None,
        stats: Optional[dict[str, Any]] = None,
    ) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != JobStatus.RUNNING:
                return
            job.result = result
            job.error = error
            job.stats = stats or {}
            job.finished_at = _utc_now()
            job.status = status

    def poll(self, job_id: int) -> JobStatus:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.status if job is not None else JobStatus.UNKNOWN

    def result_size(self, job_id: int) -> int:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != JobStatus.DONE:
                return 0
            return len(job.result)

    def _done_result(self, job_id: int) -> bytes:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != JobStatus.DONE:
                return b""
            return job.result

    def copy_result(
        self,
        job_id: int,
        dest: WritableBuffer,
        max_length: int,
        offset: int = 0,
    ) -> int:
        """Copy up to `max_length` result bytes starting at `offset` into `dest`.

        Returns the number of bytes copied; 0 for unknown or unfinished jobs.
        """

        if offset < 0:
            raise ValueError("offset must be >= 0")
        data = self._done_result(job_id)
        target = memoryview(dest).cast("B")
        count = max(0, min(int(max_length), len(target), len(data) - offset))
        if count:
            target[:count] = data[offset : offset + count]
        return count

    def read_result(self, job_id: int, offset: int = 0, length: Optional[int] = None) -> bytes:
        if offset < 0:
            raise ValueError("offset must be >= 0")
        if length is not None and length < 0:
            raise ValueError("length must be >= 0")
        data = self._done_result(job_id)
        end = len(data) if length is None else offset + length
        return data[offset:end]

    def snapshot(self, job_id: int) -> Optional[JobSnapshot]:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            return JobSnapshot(
                job_id=job.job_id,
                status=job.status,
                result_size=len(job.result) if job.status == JobStatus.DONE else 0,
                error=job.error,
                stats=dict(job.stats),
                created_at=job.created_at,
                finished_at=job.finished_at,
            )

    def wait(self, job_id: int, timeout: Optional[float] = None) -> JobStatus:
        with self._lock:
            job = self._jobs.get(job_id)
            future = job.future if job is not None else None
        if future is not None:
            future.result(timeout=timeout)
        return self.poll(job_id)

    def release(self, job_id: int) -> bool:
        with self._lock:
            job = self._jobs.pop(job_id, None)
        if job is None:
            return False
        if job.future is not None:
            job.future.cancel()
        logger.info("voxel_job_released", extra={"job_id": job_id})
        return True

    def shutdown(self, *, wait: bool = True) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=wait, cancel_futures=not wait)

    def __enter__(self) -> "JobCoordinator":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()
