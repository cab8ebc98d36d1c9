"""Voxel queries: end-to-end pipeline, async job registry, config and CLI."""

from .config import VoxelPipelineConfig
from .config import get_voxel_pipeline_config
from .config import load_voxel_pipeline_config
from .coordinator import JobCoordinator
from .coordinator import JobSnapshot
from .coordinator import JobStatus
from .pipeline import PayloadOutcome
from .pipeline import PipelineResult
from .pipeline import PipelineStats
from .pipeline import VoxelPipeline
from .pipeline import VoxelQuery
from .pipeline import run_voxel_query

__all__ = [
    "get_voxel_pipeline_config",
    "JobCoordinator",
    "JobSnapshot",
    "JobStatus",
    "load_voxel_pipeline_config",
    "PayloadOutcome",
    "PipelineResult",
    "PipelineStats",
    "run_voxel_query",
    "VoxelPipeline",
    "VoxelPipelineConfig",
    "VoxelQuery",
]
