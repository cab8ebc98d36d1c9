from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Final, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from earth_voxels_config.settings import _resolve_config_dir
from tileset.resolver import TraversalLimits

SUPPORTED_SCHEMA_VERSIONS: Final[set[int]] = {1}

DEFAULT_VOXEL_PIPELINE_CONFIG_NAME: Final[str] = "voxel-pipeline.yaml"
DEFAULT_VOXEL_PIPELINE_CONFIG_ENV: Final[str] = "EARTH_VOXELS_PIPELINE_CONFIG"


class TraversalConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_depth: int = Field(default=64, ge=1, le=4096)
    max_nodes: int = Field(default=200_000, ge=1)
    max_documents: int = Field(default=20_000, ge=1)

    def to_limits(self) -> TraversalLimits:
        return TraversalLimits(
            max_depth=self.max_depth,
            max_nodes=self.max_nodes,
            max_documents=self.max_documents,
        )


class FetchConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    timeout_s: float = Field(default=30.0, gt=0)
    # Leaf payloads fetched and voxelized concurrently per query.
    fetch_workers: int = Field(default=4, ge=1, le=64)


class VoxelizerConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    default_resolution: int = Field(default=64, ge=1, le=4096)
    max_voxels_per_payload: Optional[int] = Field(default=5_000_000, ge=1)
    apply_node_transforms: bool = True
    y_up_to_z_up: bool = True


class JobsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_workers: int = Field(default=2, ge=1, le=64)


class VoxelPipelineConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    schema_version: int = 1

    traversal: TraversalConfig = Field(default_factory=TraversalConfig)
    fetch: FetchConfig = Field(default_factory=FetchConfig)
    voxelizer: VoxelizerConfig = Field(default_factory=VoxelizerConfig)
    jobs: JobsConfig = Field(default_factory=JobsConfig)

    @model_validator(mode="after")
    def _validate_schema_version(self) -> "VoxelPipelineConfig":
        if self.schema_version not in SUPPORTED_SCHEMA_VERSIONS:
            raise ValueError(
                f"Unsupported voxel pipeline schema_version={self.schema_version}; "
                f"supported versions: {sorted(SUPPORTED_SCHEMA_VERSIONS)}"
            )
        return self


def _absolute(path: Union[str, Path]) -> Path:
    candidate = Path(path).expanduser()
    if not candidate.is_absolute():
        candidate = (Path.cwd() / candidate).resolve()
    return candidate


def _resolve_config_path(path: Optional[Union[str, Path]]) -> Path:
    if path is not None:
        return _absolute(path)

    explicit = os.environ.get(DEFAULT_VOXEL_PIPELINE_CONFIG_ENV)
    if explicit:
        return _absolute(explicit)

    config_dir = _resolve_config_dir(os.environ)
    return config_dir / DEFAULT_VOXEL_PIPELINE_CONFIG_NAME


def _parse_yaml(text: str, *, source: Path) -> Mapping[str, Any]:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ValueError(f"Failed to load voxel pipeline YAML: {source}") from exc

    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise ValueError(f"voxel pipeline config must be a mapping: {source}")
    return data


def load_voxel_pipeline_config(
    path: Optional[Union[str, Path]] = None,
) -> VoxelPipelineConfig:
    config_path = _resolve_config_path(path)
    if not config_path.is_file():
        raise FileNotFoundError(f"voxel pipeline config file not found: {config_path}")

    raw_text = config_path.read_text(encoding="utf-8")
    data = dict(_parse_yaml(raw_text, source=config_path))

    try:
        return VoxelPipelineConfig.model_validate(data)
    except ValidationError as exc:
        raise ValueError(f"Invalid voxel pipeline config ({config_path}): {exc}") from exc


@lru_cache(maxsize=8)
def _get_voxel_pipeline_config_cached(
    config_path: str, mtime_ns: int, size: int
) -> VoxelPipelineConfig:
    _ = (mtime_ns, size)
    return load_voxel_pipeline_config(config_path)


def get_voxel_pipeline_config(
    path: Optional[Union[str, Path]] = None,
) -> VoxelPipelineConfig:
    resolved = _resolve_config_path(path)
    try:
        stat = resolved.stat()
    except FileNotFoundError as exc:
        raise FileNotFoundError(f"voxel pipeline config file not found: {resolved}") from exc
    return _get_voxel_pipeline_config_cached(str(resolved), stat.st_mtime_ns, stat.st_size)


get_voxel_pipeline_config.cache_clear = _get_voxel_pipeline_config_cached.cache_clear  # type: ignore[attr-defined]
