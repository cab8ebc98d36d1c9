from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from .errors import VoxelBudgetExceeded
from .materials import Material, triangle_colors
from .mesh import TriangleSet
from .wire import empty_voxels

logger = logging.getLogger(__name__)

UP_AXIS = np.array([0.0, 1.0, 0.0])

_PARALLEL_EPS = 1e-12
_CEIL_TOLERANCE = 1e-9


@dataclass(frozen=True)
class VoxelGrid:
    voxels: np.ndarray
    voxel_size: float
    dims: tuple[int, int, int]
    bounds_min: np.ndarray
    bounds_max: np.ndarray
    center: np.ndarray
    rotation: np.ndarray
    origin_offset: Optional[np.ndarray] = None

    def __len__(self) -> int:
        return int(self.voxels.shape[0])


def _skew(v: np.ndarray) -> np.ndarray:
    return np.array(
        [
            [0.0, -v[2], v[1]],
            [v[2], 0.0, -v[0]],
            [-v[1], v[0], 0.0],
        ]
    )


def rotation_to_up(direction: Sequence[float]) -> np.ndarray:
    """Shortest-arc rotation taking `direction` onto +Y.

    A zero or non-finite direction yields the identity. The antiparallel case
    is a half turn about an axis perpendicular to `direction`.
    """

    d = np.asarray(direction, dtype=np.float64)
    norm = float(np.linalg.norm(d))
    if not np.isfinite(norm) or norm == 0.0:
        return np.eye(3)
    u = d / norm

    cos_angle = float(np.dot(u, UP_AXIS))
    if cos_angle > 1.0 - _PARALLEL_EPS:
        return np.eye(3)
    if cos_angle < -1.0 + _PARALLEL_EPS:
        axis = np.cross(u, np.array([1.0, 0.0, 0.0]))
        if np.linalg.norm(axis) < 1e-6:
            axis = np.cross(u, np.array([0.0, 0.0, 1.0]))
        axis = axis / np.linalg.norm(axis)
        return 2.0 * np.outer(axis, axis) - np.eye(3)

    v = np.cross(u, UP_AXIS)
    s2 = float(np.dot(v, v))
    k = _skew(v)
    return np.eye(3) + k + (k @ k) * ((1.0 - cos_angle) / s2)


def grid_shape(extent: Sequence[float], resolution: int) -> tuple[float, tuple[int, int, int]]:
    """Voxel size and cell counts for a bounding box extent.

    The longest side is divided into `resolution` cells; other sides get
    `ceil(side / size)` cells, at least one.
    """

    if resolution <= 0:
        raise ValueError("resolution must be > 0")
    ext = np.asarray(extent, dtype=np.float64)
    longest = float(ext.max()) if ext.size else 0.0
    voxel_size = longest / float(resolution)
    if not np.isfinite(voxel_size) or voxel_size <= 0.0:
        return 0.0, (0, 0, 0)
    cells = np.maximum(1, np.ceil(ext / voxel_size - _CEIL_TOLERANCE)).astype(np.int64)
    return voxel_size, (int(cells[0]), int(cells[1]), int(cells[2]))


def _empty_grid(center: np.ndarray, rotation: np.ndarray) -> VoxelGrid:
    zero = np.zeros(3)
    return VoxelGrid(
        voxels=empty_voxels(),
        voxel_size=0.0,
        dims=(0, 0, 0),
        bounds_min=zero,
        bounds_max=zero.copy(),
        center=center,
        rotation=rotation,
    )


def rasterize(
    triangles: TriangleSet,
    resolution: int,
    *,
    materials: Sequence[Material] = (),
    origin: Optional[Sequence[float]] = None,
    max_voxels: Optional[int] = None,
) -> VoxelGrid:
    """Emit one voxel per grid cell overlapped by each triangle's bounding box.

    The mesh is recentred on its bounding-box midpoint and rotated so that the
    outward direction of that midpoint becomes +Y. Voxel coordinates are cell
    indices in that rotated frame. Cells are emitted per triangle in z, y, x
    order with x varying fastest; nothing is deduplicated.
    """

    if resolution <= 0:
        raise ValueError("resolution must be > 0")

    vertices = triangles.vertices
    if len(triangles):
        finite = np.isfinite(vertices).all(axis=(1, 2))
        if not finite.all():
            triangles = TriangleSet(
                vertices=vertices[finite],
                uvs=triangles.uvs[finite],
                materials=triangles.materials[finite],
            )
            vertices = triangles.vertices

    if not len(triangles):
        return _empty_grid(np.zeros(3), np.eye(3))

    points = vertices.reshape(-1, 3)
    center = 0.5 * (points.min(axis=0) + points.max(axis=0))
    rotation = rotation_to_up(center)

    local = (vertices - center) @ rotation.T
    local_points = local.reshape(-1, 3)
    bounds_min = local_points.min(axis=0)
    bounds_max = local_points.max(axis=0)

    voxel_size, dims = grid_shape(bounds_max - bounds_min, resolution)
    if voxel_size == 0.0:
        return _empty_grid(center, rotation)

    upper = np.asarray(dims, dtype=np.int64) - 1
    first = np.clip(np.floor((local.min(axis=1) - bounds_min) / voxel_size), 0, upper).astype(np.int64)
    last = np.clip(np.floor((local.max(axis=1) - bounds_min) / voxel_size), 0, upper).astype(np.int64)
    spans = last - first + 1
    per_triangle = spans.prod(axis=1)
    total = int(per_triangle.sum())
    if max_voxels is not None and total > max_voxels:
        raise VoxelBudgetExceeded(total, max_voxels)

    colors = triangle_colors(triangles, materials)

    owner = np.repeat(np.arange(len(triangles)), per_triangle)
    starts = np.cumsum(per_triangle) - per_triangle
    cell = np.arange(total, dtype=np.int64) - np.repeat(starts, per_triangle)
    nx = spans[owner, 0]
    ny = spans[owner, 1]

    voxels = empty_voxels(total)
    voxels["x"] = first[owner, 0] + cell % nx
    voxels["y"] = first[owner, 1] + (cell // nx) % ny
    voxels["z"] = first[owner, 2] + cell // (nx * ny)
    owned_colors = colors[owner]
    voxels["r"] = owned_colors[:, 0]
    voxels["g"] = owned_colors[:, 1]
    voxels["b"] = owned_colors[:, 2]
    voxels["a"] = owned_colors[:, 3]

    origin_offset = None
    if origin is not None:
        local_origin = rotation @ (np.asarray(origin, dtype=np.float64) - center)
        origin_offset = (bounds_min - local_origin) / voxel_size

    logger.debug(
        "voxel_grid_rasterized",
        extra={
            "triangles": len(triangles),
            "voxels": total,
            "voxel_size": voxel_size,
            "dims": dims,
        },
    )
    return VoxelGrid(
        voxels=voxels,
        voxel_size=voxel_size,
        dims=dims,
        bounds_min=bounds_min,
        bounds_max=bounds_max,
        center=center,
        rotation=rotation,
        origin_offset=origin_offset,
    )
