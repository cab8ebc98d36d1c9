from __future__ import annotations

import numpy as np

from glb_fixtures import build_glb


def _image():
    from voxelizer.glb import DecodedImage

    pixels = np.array(
        [
            [[10, 0, 0], [20, 0, 0]],
            [[30, 0, 0], [40, 0, 0]],
        ],
        dtype=np.uint8,
    )
    return DecodedImage(pixels=pixels)


def test_texel_lookup_wraps_with_floored_modulo() -> None:
    from voxelizer.materials import sample_texels

    uv = np.array([[0.0, 0.0], [0.75, 0.25], [-0.25, 1.25], [2.0, -0.5], [np.nan, 0.0]])
    texels = sample_texels(_image(), uv)
    assert texels[:, 0].tolist() == [10, 20, 20, 30, 10]


def test_triangle_colors_from_factor_texture_and_missing_material() -> None:
    from voxelizer.materials import Material, triangle_colors
    from voxelizer.mesh import TriangleSet

    triangles = TriangleSet(
        vertices=np.zeros((3, 3, 3)),
        uvs=np.array([[[0.6, 0.6]] * 3, [[0.0, 0.0]] * 3, [[0.0, 0.0]] * 3]),
        materials=np.array([1, 0, -1], dtype=np.int32),
    )
    materials = [
        Material(base_color=(1.0, 0.5, 0.0, 0.5)),
        Material(base_color=(1.0, 1.0, 1.0, 1.0), texture=_image()),
    ]

    colors = triangle_colors(triangles, materials)
    assert colors.tolist() == [
        [40, 0, 0, 255],
        [255, 127, 0, 255],
        [255, 255, 255, 255],
    ]


def test_load_materials_resolves_textures() -> None:
    from voxelizer.glb import decode_glb
    from voxelizer.materials import load_materials

    texture = np.full((2, 2, 3), 7, dtype=np.uint8)
    model = decode_glb(build_glb([[0, 0, 0], [1, 0, 0], [0, 1, 0]], base_color=[0.2, 0.4, 0.6, 1.0], texture=texture))

    (material,) = load_materials(model)
    assert material.base_color == (0.2, 0.4, 0.6, 1.0)
    assert material.texture is not None
    assert material.rgba().tolist() == [51, 102, 153, 255]


def test_base_color_factor_truncates_and_stays_opaque() -> None:
    from voxelizer.materials import Material, triangle_colors
    from voxelizer.mesh import TriangleSet

    triangles = TriangleSet(
        vertices=np.zeros((2, 3, 3)),
        uvs=np.zeros((2, 3, 2)),
        materials=np.array([0, 1], dtype=np.int32),
    )
    materials = [
        Material(base_color=(0.5, 0.5, 0.5, 0.5)),
        Material(base_color=(0.999, 1.5, -0.2, 0.0), texture=_image()),
    ]

    colors = triangle_colors(triangles, materials)
    assert colors.tolist() == [
        [127, 127, 127, 255],
        [10, 0, 0, 255],
    ]
