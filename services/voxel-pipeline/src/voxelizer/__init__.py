"""GLB payloads -> world-space triangles -> colored voxel records."""

from .errors import GlbDecodeError
from .errors import VoxelBudgetExceeded
from .errors import VoxelizerError
from .glb import DecodedImage
from .glb import GltfModel
from .glb import decode_glb
from .materials import Material
from .materials import load_materials
from .mesh import TriangleSet
from .mesh import extract_triangles
from .rasterizer import VoxelGrid
from .rasterizer import rasterize
from .rasterizer import rotation_to_up
from .wire import VOXEL_DTYPE
from .wire import VOXEL_RECORD_SIZE
from .wire import decode_voxels
from .wire import encode_voxels

__all__ = [
    "decode_glb",
    "decode_voxels",
    "DecodedImage",
    "encode_voxels",
    "extract_triangles",
    "GlbDecodeError",
    "GltfModel",
    "load_materials",
    "Material",
    "rasterize",
    "rotation_to_up",
    "TriangleSet",
    "VOXEL_DTYPE",
    "VOXEL_RECORD_SIZE",
    "VoxelBudgetExceeded",
    "VoxelGrid",
    "VoxelizerError",
]
