from __future__ import annotations

import logging
import math
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from typing import Any, Literal, Optional, Sequence

import numpy as np

from tileset.culling import Sphere
from tileset.elevation import DEFAULT_ELEVATION_URL, ElevationClient
from tileset.fetch import Fetcher
from tileset.geodesy import CartesianPoint, to_cartesian
from tileset.resolver import DEFAULT_ROOT_URL, ResolveResult, TileTreeResolver
from tileset.urls import redact_url
from voxelizer.errors import VoxelBudgetExceeded, VoxelizerError
from voxelizer.glb import decode_glb
from voxelizer.materials import load_materials
from voxelizer.mesh import extract_triangles
from voxelizer.rasterizer import rasterize
from voxelizer.wire import encode_voxels

from .config import VoxelPipelineConfig

logger = logging.getLogger(__name__)

PayloadStatus = Literal["ok", "empty", "fetch_failed", "decode_failed", "budget_exceeded"]


@dataclass(frozen=True)
class VoxelQuery:
    latitude: float
    longitude: float
    radius_m: float
    resolution: int = 64
    credential_key: str = field(default="", repr=False)
    root_url: str = DEFAULT_ROOT_URL

    def __post_init__(self) -> None:
        if not math.isfinite(self.latitude) or not -90.0 <= self.latitude <= 90.0:
            raise ValueError("latitude must be within [-90, 90]")
        if not math.isfinite(self.longitude) or not -180.0 <= self.longitude <= 180.0:
            raise ValueError("longitude must be within [-180, 180]")
        if not math.isfinite(self.radius_m) or self.radius_m <= 0:
            raise ValueError("radius_m must be > 0")
        if self.resolution <= 0:
            raise ValueError("resolution must be > 0")


@dataclass(frozen=True)
class PayloadOutcome:
    url: str
    status: PayloadStatus
    triangles: int = 0
    voxels: int = 0
    error: Optional[str] = None
    origin_offset: Optional[tuple[float, float, float]] = None
    copyright: Optional[str] = None


@dataclass
class PipelineStats:
    elevation_m: float = 0.0
    leaf_urls: int = 0
    nodes_visited: int = 0
    nodes_culled: int = 0
    documents_fetched: int = 0
    document_fetch_failures: int = 0
    traversal_truncated: bool = False
    payloads_ok: int = 0
    payloads_empty: int = 0
    payload_fetch_failures: int = 0
    payload_decode_failures: int = 0
    payloads_over_budget: int = 0
    triangles: int = 0
    voxels: int = 0
    duration_s: float = 0.0
    copyrights: list[str] = field(default_factory=list)

    def record_traversal(self, resolved: ResolveResult) -> None:
        self.leaf_urls = len(resolved.leaf_urls)
        self.nodes_visited = resolved.nodes_visited
        self.nodes_culled = resolved.nodes_culled
        self.documents_fetched = resolved.documents_fetched
        self.document_fetch_failures = resolved.fetch_failures
        self.traversal_truncated = resolved.truncated

    def record(self, outcome: PayloadOutcome) -> None:
        if outcome.status == "ok":
            self.payloads_ok += 1
        elif outcome.status == "empty":
            self.payloads_empty += 1
        elif outcome.status == "fetch_failed":
            self.payload_fetch_failures += 1
        elif outcome.status == "decode_failed":
            self.payload_decode_failures += 1
        elif outcome.status == "budget_exceeded":
            self.payloads_over_budget += 1
        self.triangles += outcome.triangles
        self.voxels += outcome.voxels
        if outcome.copyright and outcome.copyright not in self.copyrights:
            self.copyrights.append(outcome.copyright)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PipelineResult:
    data: bytes
    stats: PipelineStats
    outcomes: Sequence[PayloadOutcome] = ()

    @property
    def voxel_count(self) -> int:
        return self.stats.voxels


class VoxelPipeline:
    """Query sphere -> culled leaf payloads -> concatenated voxel records.

    Traversal is sequential. Leaf payloads are fetched and voxelized on a
    bounded pool; their records are concatenated in leaf order, so the output
    does not depend on completion order.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        *,
        config: Optional[VoxelPipelineConfig] = None,
        use_elevation: bool = False,
        elevation_url: str = DEFAULT_ELEVATION_URL,
        executor: Optional[Executor] = None,
    ) -> None:
        self._fetcher = fetcher
        self._config = config or VoxelPipelineConfig()
        self._use_elevation = use_elevation
        self._elevation_url = elevation_url
        self._executor = executor
        self._resolver = TileTreeResolver(fetcher, limits=self._config.traversal.to_limits())

    @property
    def config(self) -> VoxelPipelineConfig:
        return self._config

    def ground_height(self, query: VoxelQuery) -> float:
        if not self._use_elevation or not query.credential_key:
            return 0.0
        client = ElevationClient(
            self._fetcher,
            api_key=query.credential_key,
            base_url=self._elevation_url,
        )
        return client.elevation_m(query.latitude, query.longitude)

    def query_sphere(self, query: VoxelQuery, *, height_m: float = 0.0) -> Sphere:
        center = to_cartesian(query.longitude, query.latitude, height_m)
        return Sphere(center, float(query.radius_m))

    def voxelize_payload(
        self,
        url: str,
        content: bytes,
        *,
        resolution: int,
        origin: Optional[CartesianPoint] = None,
    ) -> tuple[PayloadOutcome, bytes]:
        settings = self._config.voxelizer
        safe_url = redact_url(url)
        triangle_count = 0
        attribution = None
        try:
            model = decode_glb(content)
            attribution = model.copyright
            triangles = extract_triangles(
                model,
                apply_node_transforms=settings.apply_node_transforms,
                y_up_to_z_up=settings.y_up_to_z_up,
            )
            triangle_count = len(triangles)
            if not triangle_count:
                return PayloadOutcome(url=safe_url, status="empty", copyright=attribution), b""
            grid = rasterize(
                triangles,
                resolution,
                materials=load_materials(model),
                origin=origin.as_tuple() if origin is not None else None,
                max_voxels=settings.max_voxels_per_payload,
            )
        except VoxelBudgetExceeded as exc:
            logger.warning("voxel_payload_over_budget", extra={"url": safe_url, "error": str(exc)})
            return (
                PayloadOutcome(
                    url=safe_url,
                    status="budget_exceeded",
                    triangles=triangle_count,
                    error=str(exc),
                    copyright=attribution,
                ),
                b"",
            )
        except (VoxelizerError, ValueError, KeyError, IndexError, TypeError, OverflowError) as exc:
            logger.warning("voxel_payload_decode_failed", extra={"url": safe_url, "error": str(exc)})
            return PayloadOutcome(url=safe_url, status="decode_failed", error=str(exc)), b""

        offset = None
        if grid.origin_offset is not None:
            offset = tuple(float(v) for v in np.asarray(grid.origin_offset))
        outcome = PayloadOutcome(
            url=safe_url,
            status="ok" if len(grid) else "empty",
            triangles=triangle_count,
            voxels=len(grid),
            origin_offset=offset,  # type: ignore[arg-type]
            copyright=attribution,
        )
        return outcome, encode_voxels(grid.voxels)

    def _process_leaf(
        self, url: str, resolution: int, origin: CartesianPoint
    ) -> tuple[PayloadOutcome, bytes]:
        fetched = self._fetcher.fetch(url)
        if not fetched.ok:
            return PayloadOutcome(url=redact_url(url), status="fetch_failed"), b""
        return self.voxelize_payload(url, fetched.content, resolution=resolution, origin=origin)

    def run(self, query: VoxelQuery) -> PipelineResult:
        t0 = time.perf_counter()
        stats = PipelineStats()
        stats.elevation_m = self.ground_height(query)
        region = self.query_sphere(query, height_m=stats.elevation_m)

        logger.info(
            "voxel_query_started",
            extra={
                "latitude": query.latitude,
                "longitude": query.longitude,
                "radius_m": query.radius_m,
                "resolution": query.resolution,
                "elevation_m": stats.elevation_m,
            },
        )

        resolved = self._resolver.resolve_root(
            query.root_url,
            region,
            credential_key=query.credential_key,
        )
        stats.record_traversal(resolved)

        outcomes: list[PayloadOutcome] = []
        chunks: list[bytes] = []
        if resolved.leaf_urls:
            owns_executor = self._executor is None
            executor = self._executor or ThreadPoolExecutor(
                max_workers=self._config.fetch.fetch_workers
            )
            try:
                results = executor.map(
                    lambda leaf: self._process_leaf(leaf, query.resolution, region.center),
                    resolved.leaf_urls,
                )
                for outcome, data in results:
                    stats.record(outcome)
                    outcomes.append(outcome)
                    if data:
                        chunks.append(data)
            finally:
                if owns_executor:
                    executor.shutdown(wait=True)

        stats.duration_s = time.perf_counter() - t0
        logger.info("voxel_query_finished", extra=stats.as_dict())
        return PipelineResult(data=b"".join(chunks), stats=stats, outcomes=outcomes)


def run_voxel_query(
    query: VoxelQuery,
    *,
    fetcher: Fetcher,
    config: Optional[VoxelPipelineConfig] = None,
    use_elevation: bool = False,
    elevation_url: str = DEFAULT_ELEVATION_URL,
) -> PipelineResult:
    pipeline = VoxelPipeline(
        fetcher,
        config=config,
        use_elevation=use_elevation,
        elevation_url=elevation_url,
    )
    return pipeline.run(query)
