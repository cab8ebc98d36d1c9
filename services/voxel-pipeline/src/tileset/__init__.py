"""3D Tiles traversal (tileset JSON -> culled leaf mesh URLs)."""

from .culling import Sphere
from .culling import intersects
from .culling import obb_to_sphere
from .culling import tile_sphere
from .elevation import ElevationClient
from .fetch import FetchResult
from .fetch import Fetcher
from .fetch import HttpxFetcher
from .geodesy import CartesianPoint
from .geodesy import GeoPoint
from .geodesy import to_cartesian
from .geodesy import to_geographic
from .resolver import DEFAULT_ROOT_URL
from .resolver import ResolveResult
from .resolver import TileTreeResolver
from .resolver import TraversalContext
from .resolver import TraversalLimits

__all__ = [
    "CartesianPoint",
    "DEFAULT_ROOT_URL",
    "ElevationClient",
    "FetchResult",
    "Fetcher",
    "GeoPoint",
    "HttpxFetcher",
    "intersects",
    "obb_to_sphere",
    "ResolveResult",
    "Sphere",
    "tile_sphere",
    "TileTreeResolver",
    "to_cartesian",
    "to_geographic",
    "TraversalContext",
    "TraversalLimits",
]
