from __future__ import annotations

import base64
import io
import json
import logging
import struct
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import unquote_to_bytes

import numpy as np
from PIL import Image

from .errors import GlbDecodeError

logger = logging.getLogger(__name__)

GLB_MAGIC = b"glTF"
GLB_VERSION = 2
CHUNK_JSON = 0x4E4F534A
CHUNK_BIN = 0x004E4942

MESHOPT_EXTENSIONS = ("EXT_meshopt_compression", "KHR_meshopt_compression")

_HEADER = struct.Struct("<4sII")
_CHUNK_HEADER = struct.Struct("<II")

COMPONENT_DTYPES: dict[int, np.dtype] = {
    5120: np.dtype("<i1"),
    5121: np.dtype("<u1"),
    5122: np.dtype("<i2"),
    5123: np.dtype("<u2"),
    5125: np.dtype("<u4"),
    5126: np.dtype("<f4"),
}

TYPE_COMPONENTS: dict[str, int] = {
    "SCALAR": 1,
    "VEC2": 2,
    "VEC3": 3,
    "VEC4": 4,
    "MAT2": 4,
    "MAT3": 9,
    "MAT4": 16,
}

_NORMALIZED_DIVISORS: dict[int, float] = {
    5120: 127.0,
    5121: 255.0,
    5122: 32767.0,
    5123: 65535.0,
}


def _int_field(obj: dict[str, Any], key: str, default: int, label: str) -> int:
    value = obj.get(key, default)
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError) as exc:
        raise GlbDecodeError(f"{label}.{key} is not an integer: {value!r}") from exc


@dataclass(frozen=True)
class DecodedImage:
    pixels: np.ndarray

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def channels(self) -> int:
        return int(self.pixels.shape[2])


@dataclass
class GltfModel:
    """A decoded GLB: the glTF JSON document, its BIN chunk and decoded images."""

    document: dict[str, Any]
    binary: bytes = b""
    images: dict[int, DecodedImage] = field(default_factory=dict)

    def items(self, name: str) -> list[Any]:
        value = self.document.get(name)
        return value if isinstance(value, list) else []

    def item(self, name: str, index: Any) -> dict[str, Any]:
        items = self.items(name)
        if not isinstance(index, int) or isinstance(index, bool) or not 0 <= index < len(items):
            raise GlbDecodeError(f"{name}[{index!r}] does not exist")
        value = items[index]
        if not isinstance(value, dict):
            raise GlbDecodeError(f"{name}[{index}] must be an object")
        return value

    @property
    def copyright(self) -> Optional[str]:
        """`asset.copyright` stripped, or None when missing or blank."""

        asset = self.document.get("asset")
        if not isinstance(asset, dict):
            return None
        value = asset.get("copyright")
        if isinstance(value, str) and value.strip():
            return value.strip()
        return None

    @property
    def rtc_center(self) -> Optional[np.ndarray]:
        extensions = self.document.get("extensions")
        if not isinstance(extensions, dict):
            return None
        rtc = extensions.get("CESIUM_RTC")
        if not isinstance(rtc, dict):
            return None
        center = rtc.get("center")
        if not isinstance(center, list) or len(center) != 3:
            return None
        try:
            return np.asarray([float(v) for v in center], dtype=np.float64)
        except (TypeError, ValueError):
            return None

    def buffer_bytes(self, index: Any) -> bytes:
        buffer = self.item("buffers", index)
        uri = buffer.get("uri")
        if uri is None:
            return self.binary
        if isinstance(uri, str) and uri.startswith("data:"):
            return _decode_data_uri(uri)
        raise GlbDecodeError(f"External buffer URIs are not supported: {uri!r}")

    def buffer_view_bytes(self, index: Any) -> bytes:
        view = self.item("bufferViews", index)
        data = self.buffer_bytes(view.get("buffer"))
        label = f"bufferViews[{index}]"
        start = _int_field(view, "byteOffset", 0, label)
        length = _int_field(view, "byteLength", 0, label)
        if start < 0 or length < 0 or start + length > len(data):
            raise GlbDecodeError(f"bufferViews[{index}] exceeds its buffer")
        return data[start : start + length]

    def read_accessor(self, index: Any) -> np.ndarray:
        """Read an accessor as a `(count, components)` array.

        Normalized integer accessors come back as float64 in [0, 1] / [-1, 1];
        everything else keeps its component dtype.
        """

        accessor = self.item("accessors", index)
        if "sparse" in accessor:
            raise GlbDecodeError(f"accessors[{index}] is sparse (unsupported)")

        component_type = accessor.get("componentType")
        dtype = COMPONENT_DTYPES.get(component_type)  # type: ignore[arg-type]
        if dtype is None:
            raise GlbDecodeError(f"accessors[{index}] has unsupported componentType {component_type!r}")
        components = TYPE_COMPONENTS.get(accessor.get("type"))  # type: ignore[arg-type]
        if components is None:
            raise GlbDecodeError(f"accessors[{index}] has unsupported type {accessor.get('type')!r}")

        count = _int_field(accessor, "count", 0, f"accessors[{index}]")
        if count < 0:
            raise GlbDecodeError(f"accessors[{index}] has a negative count")

        if "bufferView" not in accessor:
            values = np.zeros((count, components), dtype=dtype)
        else:
            view_index = accessor["bufferView"]
            view = self.item("bufferViews", view_index)
            extensions = view.get("extensions")
            if isinstance(extensions, dict) and any(name in extensions for name in MESHOPT_EXTENSIONS):
                raise GlbDecodeError(f"bufferViews[{view_index}] is meshopt-compressed")
            data = self.buffer_view_bytes(view_index)
            values = _read_strided(
                data,
                offset=_int_field(accessor, "byteOffset", 0, f"accessors[{index}]"),
                stride=_int_field(view, "byteStride", 0, f"bufferViews[{view_index}]"),
                count=count,
                components=components,
                dtype=dtype,
                label=f"accessors[{index}]",
            )

        if accessor.get("normalized") and component_type in _NORMALIZED_DIVISORS:
            scaled = values.astype(np.float64) / _NORMALIZED_DIVISORS[component_type]
            return np.maximum(scaled, -1.0)
        return values


def _read_strided(
    data: bytes,
    *,
    offset: int,
    stride: int,
    count: int,
    components: int,
    dtype: np.dtype,
    label: str,
) -> np.ndarray:
    element_size = dtype.itemsize * components
    if count == 0:
        return np.zeros((0, components), dtype=dtype)
    if stride == 0:
        stride = element_size
    if stride < element_size:
        raise GlbDecodeError(f"{label} has byteStride smaller than its element size")

    needed = offset + stride * (count - 1) + element_size
    if offset < 0 or needed > len(data):
        raise GlbDecodeError(f"{label} exceeds its buffer view")

    if stride == element_size:
        flat = np.frombuffer(data, dtype=dtype, count=count * components, offset=offset)
        return flat.reshape(count, components).copy()

    raw = np.frombuffer(data, dtype=np.uint8, count=needed - offset, offset=offset)
    rows = np.arange(count)[:, None] * stride + np.arange(element_size)[None, :]
    packed = np.ascontiguousarray(raw[rows])
    return packed.view(dtype).reshape(count, components)


def _decode_data_uri(uri: str) -> bytes:
    header, sep, payload = uri.partition(",")
    if not sep:
        raise GlbDecodeError("Malformed data URI")
    if header.endswith(";base64"):
        try:
            return base64.b64decode(payload, validate=False)
        except ValueError as exc:
            raise GlbDecodeError("Malformed base64 data URI") from exc
    return unquote_to_bytes(payload)


def _decode_image(data: bytes) -> DecodedImage:
    with Image.open(io.BytesIO(data)) as img:
        img.load()
        if "A" in img.getbands() or "transparency" in img.info:
            converted = img.convert("RGBA")
        else:
            converted = img.convert("RGB")
    return DecodedImage(pixels=np.asarray(converted, dtype=np.uint8))


def _decode_images(model: GltfModel) -> dict[int, DecodedImage]:
    decoded: dict[int, DecodedImage] = {}
    for index, image in enumerate(model.items("images")):
        if not isinstance(image, dict):
            continue
        try:
            if "bufferView" in image:
                data = model.buffer_view_bytes(image["bufferView"])
            elif isinstance(image.get("uri"), str) and image["uri"].startswith("data:"):
                data = _decode_data_uri(image["uri"])
            else:
                logger.debug("glb_image_external_skipped", extra={"image": index})
                continue
            decoded[index] = _decode_image(data)
        except Exception as exc:  # noqa: BLE001
            logger.warning("glb_image_decode_failed", extra={"image": index, "error": str(exc)})
    return decoded


def decode_glb(data: bytes, *, decode_images: bool = True) -> GltfModel:
    if len(data) < _HEADER.size:
        raise GlbDecodeError("GLB payload is shorter than its header")

    magic, version, length = _HEADER.unpack_from(data, 0)
    if magic != GLB_MAGIC:
        raise GlbDecodeError("Not a GLB payload (bad magic)")
    if version != GLB_VERSION:
        raise GlbDecodeError(f"Unsupported GLB version: {version}")
    if length > len(data):
        raise GlbDecodeError(f"GLB payload truncated: header says {length} bytes, got {len(data)}")

    json_chunk: Optional[bytes] = None
    bin_chunk: Optional[bytes] = None
    offset = _HEADER.size
    while offset + _CHUNK_HEADER.size <= length:
        chunk_length, chunk_type = _CHUNK_HEADER.unpack_from(data, offset)
        start = offset + _CHUNK_HEADER.size
        end = start + chunk_length
        if end > length:
            raise GlbDecodeError("GLB chunk extends past the end of the payload")
        if json_chunk is None:
            if chunk_type != CHUNK_JSON:
                raise GlbDecodeError("First GLB chunk must be JSON")
            json_chunk = bytes(data[start:end])
        elif chunk_type == CHUNK_BIN and bin_chunk is None:
            bin_chunk = bytes(data[start:end])
        offset = end

    if json_chunk is None:
        raise GlbDecodeError("GLB payload has no JSON chunk")

    try:
        document = json.loads(json_chunk.decode("utf-8").rstrip(" \x00"))
    except (ValueError, RecursionError) as exc:
        raise GlbDecodeError(f"Invalid glTF JSON: {exc}") from exc
    if not isinstance(document, dict):
        raise GlbDecodeError("glTF JSON must be an object")

    model = GltfModel(document=document, binary=bin_chunk or b"")
    if decode_images:
        model.images = _decode_images(model)
    return model
