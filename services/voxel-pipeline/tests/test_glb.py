from __future__ import annotations

import struct

import numpy as np
import pytest

from glb_fixtures import build_glb, pack_glb

_DEEP_JSON = b"[" * 200_000


def test_decode_glb_reads_document_and_accessors() -> None:
    from voxelizer.glb import decode_glb

    model = decode_glb(build_glb([[0, 0, 0], [1, 0, 0], [0, 1, 0]], indices=[0, 1, 2]))

    assert model.document["asset"]["version"] == "2.0"
    positions = model.read_accessor(0)
    assert positions.dtype == np.float32
    assert positions.shape == (3, 3)
    assert model.read_accessor(1).reshape(-1).tolist() == [0, 1, 2]


@pytest.mark.parametrize(
    "payload,message",
    [
        (b"glTF", "shorter than its header"),
        (struct.pack("<4sII", b"nope", 2, 12), "bad magic"),
        (struct.pack("<4sII", b"glTF", 1, 12), "Unsupported GLB version"),
        (struct.pack("<4sII", b"glTF", 2, 400), "truncated"),
        (struct.pack("<4sII", b"glTF", 2, 12), "no JSON chunk"),
        (struct.pack("<4sII", b"glTF", 2, 24) + struct.pack("<II", 4, 0x004E4942) + b"\0\0\0\0", "must be JSON"),
        (
            struct.pack("<4sII", b"glTF", 2, 20 + len(_DEEP_JSON))
            + struct.pack("<II", len(_DEEP_JSON), 0x4E4F534A)
            + _DEEP_JSON,
            "Invalid glTF JSON",
        ),
    ],
)
def test_decode_glb_rejects_malformed_payloads(payload: bytes, message: str) -> None:
    from voxelizer.errors import GlbDecodeError
    from voxelizer.glb import decode_glb

    with pytest.raises(GlbDecodeError, match=message):
        decode_glb(payload)


def test_strided_and_normalized_accessors() -> None:
    from voxelizer.glb import decode_glb

    # Two VEC2 u8 normalized elements interleaved with padding (stride 4).
    binary = bytes([255, 0, 9, 9, 0, 255, 9, 9])
    document = {
        "asset": {"version": "2.0"},
        "buffers": [{"byteLength": len(binary)}],
        "bufferViews": [{"buffer": 0, "byteOffset": 0, "byteLength": 8, "byteStride": 4}],
        "accessors": [
            {"bufferView": 0, "componentType": 5121, "count": 2, "type": "VEC2", "normalized": True}
        ],
    }
    model = decode_glb(pack_glb(document, binary))

    values = model.read_accessor(0)
    assert values.tolist() == [[1.0, 0.0], [0.0, 1.0]]


def test_accessor_out_of_bounds_is_a_decode_error() -> None:
    from voxelizer.errors import GlbDecodeError
    from voxelizer.glb import decode_glb

    document = {
        "asset": {"version": "2.0"},
        "buffers": [{"byteLength": 4}],
        "bufferViews": [{"buffer": 0, "byteLength": 4}],
        "accessors": [{"bufferView": 0, "componentType": 5126, "count": 3, "type": "VEC3"}],
    }
    model = decode_glb(pack_glb(document, b"\0\0\0\0"))
    with pytest.raises(GlbDecodeError, match="exceeds"):
        model.read_accessor(0)


def test_embedded_png_is_decoded_and_bad_images_are_dropped() -> None:
    from voxelizer.glb import decode_glb

    texture = np.array([[[255, 0, 0], [0, 255, 0]]], dtype=np.uint8)
    model = decode_glb(build_glb([[0, 0, 0], [1, 0, 0], [0, 1, 0]], texture=texture))
    image = model.images[0]
    assert (image.width, image.height, image.channels) == (2, 1, 3)
    assert image.pixels[0, 1].tolist() == [0, 255, 0]

    document = {
        "asset": {"version": "2.0"},
        "images": [{"uri": "data:image/png;base64,bm90IGFuIGltYWdl"}],
    }
    assert decode_glb(pack_glb(document)).images == {}


def test_rtc_center_is_exposed() -> None:
    from voxelizer.glb import decode_glb

    model = decode_glb(build_glb([[0, 0, 0], [1, 0, 0], [0, 1, 0]], rtc_center=[10, 20, 30]))
    assert model.rtc_center.tolist() == [10.0, 20.0, 30.0]


@pytest.mark.parametrize(
    "view,accessor,field",
    [
        ({"byteOffset": float("inf"), "byteLength": 12}, {}, "byteOffset"),
        ({"byteLength": float("nan")}, {}, "byteLength"),
        ({"byteLength": 12, "byteStride": "wide"}, {}, "byteStride"),
        ({"byteLength": 12}, {"count": [1]}, "count"),
        ({"byteLength": 12}, {"byteOffset": float("-inf")}, "byteOffset"),
    ],
)
def test_non_integer_layout_fields_are_decode_errors(view, accessor, field) -> None:
    from voxelizer.errors import GlbDecodeError
    from voxelizer.glb import decode_glb

    document = {
        "asset": {"version": "2.0"},
        "buffers": [{"byteLength": 12}],
        "bufferViews": [dict({"buffer": 0}, **view)],
        "accessors": [dict({"bufferView": 0, "componentType": 5126, "count": 1, "type": "VEC3"}, **accessor)],
    }
    model = decode_glb(pack_glb(document, b"\0" * 12))
    with pytest.raises(GlbDecodeError, match=field):
        model.read_accessor(0)


def test_asset_copyright_is_exposed() -> None:
    from voxelizer.glb import decode_glb

    triangle = [[0, 0, 0], [1, 0, 0], [0, 1, 0]]
    assert decode_glb(build_glb(triangle, copyright=" Google ")).copyright == "Google"
    assert decode_glb(build_glb(triangle)).copyright is None
    assert decode_glb(build_glb(triangle, copyright="")).copyright is None
