from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Sequence

import numpy as np

from .glb import DecodedImage, GltfModel
from .mesh import TriangleSet

WHITE = (1.0, 1.0, 1.0, 1.0)

# Texture extensions that carry an alternative `source` image index.
_TEXTURE_SOURCE_EXTENSIONS = ("KHR_texture_basisu", "EXT_texture_webp", "EXT_texture_avif")


@dataclass(frozen=True)
class Material:
    base_color: tuple[float, float, float, float] = WHITE
    texture: Optional[DecodedImage] = None

    def rgba(self) -> np.ndarray:
        """RGB scaled by 255 and truncated; alpha is always opaque."""

        rgb = np.nan_to_num(np.asarray(self.base_color[:3], dtype=np.float64), nan=0.0)
        out = np.full(4, 255, dtype=np.uint8)
        out[:3] = np.clip(rgb * 255.0, 0.0, 255.0).astype(np.uint8)
        return out


def _base_color_factor(pbr: dict[str, Any]) -> tuple[float, float, float, float]:
    factor = pbr.get("baseColorFactor")
    if not isinstance(factor, list) or len(factor) != 4:
        return WHITE
    try:
        r, g, b, a = (float(v) for v in factor)
    except (TypeError, ValueError):
        return WHITE
    return (r, g, b, a)


def _texture_image(model: GltfModel, texture_index: Any) -> Optional[DecodedImage]:
    textures = model.items("textures")
    if not isinstance(texture_index, int) or not 0 <= texture_index < len(textures):
        return None
    texture = textures[texture_index]
    if not isinstance(texture, dict):
        return None

    sources = [texture.get("source")]
    extensions = texture.get("extensions")
    if isinstance(extensions, dict):
        for name in _TEXTURE_SOURCE_EXTENSIONS:
            ext = extensions.get(name)
            if isinstance(ext, dict):
                sources.append(ext.get("source"))

    for source in sources:
        if isinstance(source, int) and source in model.images:
            return model.images[source]
    return None


def load_materials(model: GltfModel) -> list[Material]:
    """Base colour factor and decoded base-colour texture per glTF material."""

    out: list[Material] = []
    for material in model.items("materials"):
        if not isinstance(material, dict):
            out.append(Material())
            continue
        pbr = material.get("pbrMetallicRoughness")
        if not isinstance(pbr, dict):
            out.append(Material())
            continue
        texture = None
        texture_info = pbr.get("baseColorTexture")
        if isinstance(texture_info, dict):
            texture = _texture_image(model, texture_info.get("index"))
        out.append(Material(base_color=_base_color_factor(pbr), texture=texture))
    return out


def sample_texels(image: DecodedImage, uv: np.ndarray) -> np.ndarray:
    """RGB texels at `uv` (n, 2) with wrap-around addressing."""

    uv = np.nan_to_num(np.asarray(uv, dtype=np.float64), nan=0.0, posinf=0.0, neginf=0.0)
    width, height = image.width, image.height
    x = np.mod(np.floor(uv[:, 0] * width).astype(np.int64), width)
    y = np.mod(np.floor(uv[:, 1] * height).astype(np.int64), height)
    return image.pixels[y, x, :3]


def triangle_colors(triangles: TriangleSet, materials: Sequence[Material]) -> np.ndarray:
    """One RGBA colour per triangle, sampled at the triangle's first vertex."""

    colors = np.full((len(triangles), 4), 255, dtype=np.uint8)
    for material_index in np.unique(triangles.materials):
        index = int(material_index)
        if not 0 <= index < len(materials):
            continue
        material = materials[index]
        mask = triangles.materials == material_index
        colors[mask] = material.rgba()
        if material.texture is not None and material.texture.width and material.texture.height:
            colors[mask, :3] = sample_texels(material.texture, triangles.uvs[mask, 0, :])
    return colors
