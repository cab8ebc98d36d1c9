from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Query, Request, Response
from pydantic import BaseModel, ConfigDict, Field

from earth_voxels_config import Settings
from voxel_jobs.config import VoxelPipelineConfig
from voxel_jobs.coordinator import JobCoordinator, JobSnapshot, JobStatus
from voxel_jobs.pipeline import VoxelQuery
from voxelizer.wire import VOXEL_RECORD_SIZE

router = APIRouter(prefix="/voxel-jobs", tags=["voxel-jobs"])

RECORD_SIZE_HEADER = "X-Voxel-Record-Size"
RESULT_SIZE_HEADER = "X-Voxel-Result-Size"


class VoxelJobRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    latitude: float = Field(ge=-90.0, le=90.0)
    longitude: float = Field(ge=-180.0, le=180.0)
    radius_m: float = Field(gt=0.0, le=100_000.0)
    resolution: Optional[int] = Field(default=None, ge=1, le=4096)
    credential_key: Optional[str] = Field(default=None, repr=False)


class VoxelJobAccepted(BaseModel):
    model_config = ConfigDict(extra="forbid")

    job_id: int
    status: str
    status_code: int


class VoxelJobStatusResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    schema_version: int = 1
    job_id: int
    status: str
    status_code: int
    result_size: int
    record_size: int = VOXEL_RECORD_SIZE
    error: Optional[str] = None
    stats: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    finished_at: Optional[datetime] = None


def _coordinator(request: Request) -> JobCoordinator:
    return request.app.state.voxel_jobs


def _snapshot_or_404(coordinator: JobCoordinator, job_id: int) -> JobSnapshot:
    snapshot = coordinator.snapshot(job_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail=f"Voxel job {job_id} not found")
    return snapshot


def _status_name(status: JobStatus) -> str:
    return status.name.lower()


@router.post("", response_model=VoxelJobAccepted, status_code=202)
def submit_voxel_job(payload: VoxelJobRequest, request: Request) -> VoxelJobAccepted:
    settings: Settings = request.app.state.settings
    pipeline_config: VoxelPipelineConfig = request.app.state.pipeline_config

    credential_key = (payload.credential_key or "").strip()
    if not credential_key and settings.tiles.api_key is not None:
        credential_key = settings.tiles.api_key.get_secret_value()
    if not credential_key:
        raise HTTPException(
            status_code=400,
            detail="credential_key is required (no tiles API key is configured)",
        )

    try:
        query = VoxelQuery(
            latitude=payload.latitude,
            longitude=payload.longitude,
            radius_m=payload.radius_m,
            resolution=payload.resolution or pipeline_config.voxelizer.default_resolution,
            credential_key=credential_key,
            root_url=settings.tiles.root_url,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    coordinator = _coordinator(request)
    job_id = coordinator.submit(query)
    status = coordinator.poll(job_id)
    return VoxelJobAccepted(job_id=job_id, status=_status_name(status), status_code=int(status))


@router.get("/{job_id}", response_model=VoxelJobStatusResponse)
def get_voxel_job(job_id: int, request: Request) -> VoxelJobStatusResponse:
    snapshot = _snapshot_or_404(_coordinator(request), job_id)
    return VoxelJobStatusResponse(
        job_id=snapshot.job_id,
        status=_status_name(snapshot.status),
        status_code=int(snapshot.status),
        result_size=snapshot.result_size,
        error=snapshot.error,
        stats=snapshot.stats,
        created_at=snapshot.created_at,
        finished_at=snapshot.finished_at,
    )


@router.get("/{job_id}/result")
def get_voxel_job_result(
    job_id: int,
    request: Request,
    offset: int = Query(default=0, ge=0),
    length: Optional[int] = Query(default=None, ge=0),
) -> Response:
    coordinator = _coordinator(request)
    snapshot = _snapshot_or_404(coordinator, job_id)
    if snapshot.status != JobStatus.DONE:
        raise HTTPException(
            status_code=409,
            detail=f"Voxel job {job_id} is {_status_name(snapshot.status)}",
        )

    data = coordinator.read_result(job_id, offset=offset, length=length)
    return Response(
        content=data,
        media_type="application/octet-stream",
        headers={
            RECORD_SIZE_HEADER: str(VOXEL_RECORD_SIZE),
            RESULT_SIZE_HEADER: str(snapshot.result_size),
        },
    )


@router.delete("/{job_id}", status_code=204)
def release_voxel_job(job_id: int, request: Request) -> Response:
    if not _coordinator(request).release(job_id):
        raise HTTPException(status_code=404, detail=f"Voxel job {job_id} not found")
    return Response(status_code=204)
