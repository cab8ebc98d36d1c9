from __future__ import annotations

import math
from dataclasses import dataclass


WGS84_A = 6378137.0
WGS84_F = 1.0 / 298.257223563
WGS84_E2 = WGS84_F * (2.0 - WGS84_F)
WGS84_B = WGS84_A * (1.0 - WGS84_F)

_INVERSE_MAX_ITERATIONS = 16
_INVERSE_TOLERANCE_RAD = 1e-14


@dataclass(frozen=True)
class CartesianPoint:
    """A point in the WGS84 Earth-centred, Earth-fixed frame (metres)."""

    x: float
    y: float
    z: float

    def as_tuple(self) -> tuple[float, float, float]:
        return self.x, self.y, self.z

    def norm(self) -> float:
        return math.sqrt(self.x * self.x + self.y * self.y + self.z * self.z)

    def distance_to(self, other: "CartesianPoint") -> float:
        dx = other.x - self.x
        dy = other.y - self.y
        dz = other.z - self.z
        return math.sqrt(dx * dx + dy * dy + dz * dz)


@dataclass(frozen=True)
class GeoPoint:
    """Geographic coordinates in degrees with ellipsoidal height in metres."""

    longitude: float
    latitude: float
    height: float = 0.0

    def to_cartesian(self) -> CartesianPoint:
        return to_cartesian(self.longitude, self.latitude, self.height)


def to_cartesian(lon_deg: float, lat_deg: float, height_m: float = 0.0) -> CartesianPoint:
    lon = math.radians(float(lon_deg))
    lat = math.radians(float(lat_deg))
    sin_lat = math.sin(lat)
    cos_lat = math.cos(lat)
    sin_lon = math.sin(lon)
    cos_lon = math.cos(lon)
    height = float(height_m)

    n = WGS84_A / math.sqrt(1.0 - WGS84_E2 * sin_lat * sin_lat)
    x = (n + height) * cos_lat * cos_lon
    y = (n + height) * cos_lat * sin_lon
    z = (n * (1.0 - WGS84_E2) + height) * sin_lat
    return CartesianPoint(x, y, z)


def to_geographic(point: CartesianPoint) -> GeoPoint:
    """Invert `to_cartesian` by fixed-point iteration on latitude.

    Converges to well below 1e-9 degrees within a handful of iterations for
    points near the ellipsoid surface.
    """

    x, y, z = float(point.x), float(point.y), float(point.z)
    p = math.hypot(x, y)
    lon = math.atan2(y, x)

    if p < 1e-9:
        # On the polar axis longitude is arbitrary.
        lat = math.copysign(math.pi / 2.0, z) if z != 0.0 else 0.0
        height = abs(z) - WGS84_B
        return GeoPoint(longitude=0.0, latitude=math.degrees(lat), height=height)

    lat = math.atan2(z, p * (1.0 - WGS84_E2))
    height = 0.0
    for _ in range(_INVERSE_MAX_ITERATIONS):
        sin_lat = math.sin(lat)
        n = WGS84_A / math.sqrt(1.0 - WGS84_E2 * sin_lat * sin_lat)
        height = p / math.cos(lat) - n
        next_lat = math.atan2(z, p * (1.0 - WGS84_E2 * n / (n + height)))
        if abs(next_lat - lat) < _INVERSE_TOLERANCE_RAD:
            lat = next_lat
            break
        lat = next_lat

    sin_lat = math.sin(lat)
    n = WGS84_A / math.sqrt(1.0 - WGS84_E2 * sin_lat * sin_lat)
    cos_lat = math.cos(lat)
    if abs(cos_lat) > 1e-12:
        height = p / cos_lat - n
    else:
        height = abs(z) - n * (1.0 - WGS84_E2)
    return GeoPoint(
        longitude=math.degrees(lon),
        latitude=math.degrees(lat),
        height=height,
    )
