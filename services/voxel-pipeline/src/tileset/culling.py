from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence

from .geodesy import CartesianPoint


@dataclass(frozen=True)
class Sphere:
    center: CartesianPoint
    radius: float

    def intersects(self, other: "Sphere") -> bool:
        return intersects(self, other)


_ZERO_SPHERE = Sphere(CartesianPoint(0.0, 0.0, 0.0), 0.0)


def obb_to_sphere(box: Sequence[float]) -> Sphere:
    """Circumscribe an oriented box with a sphere via the box corners' AABB.

    `box` is a 3D Tiles `boundingVolume.box`: a centre followed by three
    half-axis vectors. The result over-approximates the box, which is all
    culling needs.
    """

    if len(box) < 12:
        return _ZERO_SPHERE

    values = [float(v) for v in box[:12]]
    cx, cy, cz = values[0:3]
    h1 = values[3:6]
    h2 = values[6:9]
    h3 = values[9:12]

    min_x = min_y = min_z = math.inf
    max_x = max_y = max_z = -math.inf
    for i in range(8):
        s1 = 1.0 if i & 1 else -1.0
        s2 = 1.0 if i & 2 else -1.0
        s3 = 1.0 if i & 4 else -1.0
        x = cx + s1 * h1[0] + s2 * h2[0] + s3 * h3[0]
        y = cy + s1 * h1[1] + s2 * h2[1] + s3 * h3[1]
        z = cz + s1 * h1[2] + s2 * h2[2] + s3 * h3[2]
        min_x, max_x = min(min_x, x), max(max_x, x)
        min_y, max_y = min(min_y, y), max(max_y, y)
        min_z, max_z = min(min_z, z), max(max_z, z)

    center = CartesianPoint(
        0.5 * (min_x + max_x),
        0.5 * (min_y + max_y),
        0.5 * (min_z + max_z),
    )
    dx = max_x - min_x
    dy = max_y - min_y
    dz = max_z - min_z
    radius = 0.5 * math.sqrt(dx * dx + dy * dy + dz * dz)
    return Sphere(center, radius)


def intersects(a: Sphere, b: Sphere) -> bool:
    return a.center.distance_to(b.center) < (a.radius + b.radius)


def tile_sphere(node: Mapping[str, Any]) -> Optional[Sphere]:
    """Bounding sphere for a tile node, or None when it cannot be culled.

    `region` volumes are not converted and count as "no bounding volume".
    """

    volume = node.get("boundingVolume")
    if not isinstance(volume, Mapping):
        return None

    box = volume.get("box")
    if isinstance(box, Sequence) and not isinstance(box, (str, bytes)):
        try:
            return obb_to_sphere(box)
        except (TypeError, ValueError):
            return None

    sphere = volume.get("sphere")
    if isinstance(sphere, Sequence) and not isinstance(sphere, (str, bytes)) and len(sphere) >= 4:
        try:
            x, y, z, r = (float(v) for v in sphere[:4])
        except (TypeError, ValueError):
            return None
        return Sphere(CartesianPoint(x, y, z), r)

    return None


def node_intersects(node: Mapping[str, Any], region: Sphere) -> bool:
    sphere = tile_sphere(node)
    if sphere is None:
        return True
    return intersects(region, sphere)
