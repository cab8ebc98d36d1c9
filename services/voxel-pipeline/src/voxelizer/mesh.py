from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterator, Optional, Sequence

import numpy as np

from .errors import GlbDecodeError
from .glb import GltfModel

logger = logging.getLogger(__name__)

TRIANGLES_MODE = 4
DRACO_EXTENSION = "KHR_draco_mesh_compression"

# glTF is Y-up, 3D Tiles content is Z-up: (x, y, z) -> (x, -z, y).
Y_UP_TO_Z_UP = np.array(
    [
        [1.0, 0.0, 0.0, 0.0],
        [0.0, 0.0, -1.0, 0.0],
        [0.0, 1.0, 0.0, 0.0],
        [0.0, 0.0, 0.0, 1.0],
    ]
)


@dataclass(frozen=True)
class TriangleSet:
    vertices: np.ndarray  # (n, 3, 3) float64
    uvs: np.ndarray  # (n, 3, 2) float64
    materials: np.ndarray  # (n,) int32, -1 = no material

    def __len__(self) -> int:
        return int(self.vertices.shape[0])

    @classmethod
    def empty(cls) -> "TriangleSet":
        return cls(
            vertices=np.zeros((0, 3, 3), dtype=np.float64),
            uvs=np.zeros((0, 3, 2), dtype=np.float64),
            materials=np.zeros((0,), dtype=np.int32),
        )

    @classmethod
    def concatenate(cls, parts: Sequence["TriangleSet"]) -> "TriangleSet":
        parts = [p for p in parts if len(p)]
        if not parts:
            return cls.empty()
        return cls(
            vertices=np.concatenate([p.vertices for p in parts]),
            uvs=np.concatenate([p.uvs for p in parts]),
            materials=np.concatenate([p.materials for p in parts]),
        )


def _quaternion_matrix(q: Sequence[float]) -> np.ndarray:
    x, y, z, w = (float(v) for v in q)
    n = x * x + y * y + z * z + w * w
    if n == 0.0:
        return np.eye(3)
    s = 2.0 / n
    return np.array(
        [
            [1.0 - s * (y * y + z * z), s * (x * y - z * w), s * (x * z + y * w)],
            [s * (x * y + z * w), 1.0 - s * (x * x + z * z), s * (y * z - x * w)],
            [s * (x * z - y * w), s * (y * z + x * w), 1.0 - s * (x * x + y * y)],
        ]
    )


def node_matrix(node: dict[str, Any]) -> np.ndarray:
    """Local 4x4 transform of a glTF node (`matrix` or TRS)."""

    matrix = node.get("matrix")
    if isinstance(matrix, list) and len(matrix) == 16:
        return np.asarray(matrix, dtype=np.float64).reshape(4, 4).T

    out = np.eye(4)
    scale = node.get("scale")
    if isinstance(scale, list) and len(scale) == 3:
        out[:3, :3] = np.diag(np.asarray(scale, dtype=np.float64))
    rotation = node.get("rotation")
    if isinstance(rotation, list) and len(rotation) == 4:
        out[:3, :3] = _quaternion_matrix(rotation) @ out[:3, :3]
    translation = node.get("translation")
    if isinstance(translation, list) and len(translation) == 3:
        out[:3, 3] = np.asarray(translation, dtype=np.float64)
    return out


def _scene_roots(model: GltfModel) -> list[int]:
    scenes = model.items("scenes")
    scene_index = model.document.get("scene", 0)
    if scenes and isinstance(scene_index, int) and 0 <= scene_index < len(scenes):
        scene = scenes[scene_index]
        if isinstance(scene, dict) and isinstance(scene.get("nodes"), list):
            return [i for i in scene["nodes"] if isinstance(i, int)]

    nodes = model.items("nodes")
    referenced: set[int] = set()
    for node in nodes:
        if isinstance(node, dict):
            referenced.update(i for i in node.get("children", []) if isinstance(i, int))
    return [i for i in range(len(nodes)) if i not in referenced]


def _mesh_instances(model: GltfModel, *, apply_node_transforms: bool) -> Iterator[tuple[int, np.ndarray]]:
    nodes = model.items("nodes")
    if not nodes:
        for mesh_index in range(len(model.items("meshes"))):
            yield mesh_index, np.eye(4)
        return

    if not apply_node_transforms:
        for node in nodes:
            if isinstance(node, dict) and isinstance(node.get("mesh"), int):
                yield node["mesh"], np.eye(4)
        return

    stack: list[tuple[int, np.ndarray, frozenset[int]]] = [
        (i, np.eye(4), frozenset()) for i in reversed(_scene_roots(model))
    ]
    while stack:
        index, parent, path = stack.pop()
        if index in path or not 0 <= index < len(nodes) or not isinstance(nodes[index], dict):
            continue
        node = nodes[index]
        world = parent @ node_matrix(node)
        if isinstance(node.get("mesh"), int):
            yield node["mesh"], world
        children = node.get("children")
        if isinstance(children, list):
            child_path = path | {index}
            for child in reversed(children):
                if isinstance(child, int):
                    stack.append((child, world, child_path))


def _primitive_triangles(
    model: GltfModel,
    primitive: dict[str, Any],
    transform: np.ndarray,
    offset: Optional[np.ndarray],
) -> Optional[TriangleSet]:
    if primitive.get("mode", TRIANGLES_MODE) != TRIANGLES_MODE:
        logger.debug("gltf_primitive_not_triangles", extra={"mode": primitive.get("mode")})
        return None

    extensions = primitive.get("extensions")
    if isinstance(extensions, dict) and DRACO_EXTENSION in extensions:
        raise GlbDecodeError("Draco-compressed primitives are not supported")

    attributes = primitive.get("attributes")
    if not isinstance(attributes, dict) or "POSITION" not in attributes:
        return None

    positions = model.read_accessor(attributes["POSITION"]).astype(np.float64)
    if positions.shape[1] != 3:
        raise GlbDecodeError("POSITION accessor must be VEC3")
    vertex_count = positions.shape[0]

    uvs = np.zeros((vertex_count, 2), dtype=np.float64)
    if "TEXCOORD_0" in attributes:
        texcoords = model.read_accessor(attributes["TEXCOORD_0"]).astype(np.float64)
        if texcoords.shape == (vertex_count, 2):
            uvs = texcoords

    if "indices" in primitive:
        indices = model.read_accessor(primitive["indices"]).reshape(-1).astype(np.int64)
        if indices.size and (indices.min() < 0 or indices.max() >= vertex_count):
            raise GlbDecodeError("Primitive indices reference missing vertices")
    else:
        indices = np.arange(vertex_count, dtype=np.int64)

    usable = indices.size - indices.size % 3
    if usable == 0:
        return None
    corners = indices[:usable].reshape(-1, 3)

    homogeneous = np.concatenate([positions, np.ones((vertex_count, 1))], axis=1)
    world = (homogeneous @ transform.T)[:, :3]
    if offset is not None:
        world = world + offset

    material = primitive.get("material")
    material_index = -1
    if isinstance(material, int) and not isinstance(material, bool) and 0 <= material < 2**31:
        material_index = material
    return TriangleSet(
        vertices=world[corners],
        uvs=uvs[corners],
        materials=np.full(corners.shape[0], material_index, dtype=np.int32),
    )


def extract_triangles(
    model: GltfModel,
    *,
    apply_node_transforms: bool = True,
    y_up_to_z_up: bool = True,
    apply_rtc_center: bool = True,
) -> TriangleSet:
    """Flatten every triangle primitive of a glTF model into world space.

    Primitives that cannot be read (compressed, sparse or malformed accessors)
    are skipped with a warning; the rest of the model still contributes.
    """

    meshes = model.items("meshes")
    axis = Y_UP_TO_Z_UP if y_up_to_z_up else np.eye(4)
    offset = model.rtc_center if apply_rtc_center else None

    parts: list[TriangleSet] = []
    for mesh_index, node_transform in _mesh_instances(model, apply_node_transforms=apply_node_transforms):
        if not 0 <= mesh_index < len(meshes) or not isinstance(meshes[mesh_index], dict):
            continue
        primitives = meshes[mesh_index].get("primitives")
        if not isinstance(primitives, list):
            continue
        transform = axis @ node_transform
        for primitive_index, primitive in enumerate(primitives):
            if not isinstance(primitive, dict):
                continue
            try:
                part = _primitive_triangles(model, primitive, transform, offset)
            except GlbDecodeError as exc:
                logger.warning(
                    "gltf_primitive_skipped",
                    extra={"mesh": mesh_index, "primitive": primitive_index, "error": str(exc)},
                )
                continue
            if part is not None:
                parts.append(part)

    triangles = TriangleSet.concatenate(parts)
    logger.debug("gltf_triangles_extracted", extra={"triangles": len(triangles)})
    return triangles
