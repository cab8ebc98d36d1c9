from __future__ import annotations

import numpy as np

VOXEL_DTYPE = np.dtype(
    [
        ("x", "<i4"),
        ("y", "<i4"),
        ("z", "<i4"),
        ("r", "u1"),
        ("g", "u1"),
        ("b", "u1"),
        ("a", "u1"),
    ]
)
VOXEL_RECORD_SIZE = VOXEL_DTYPE.itemsize


def empty_voxels(count: int = 0) -> np.ndarray:
    return np.zeros(count, dtype=VOXEL_DTYPE)


def encode_voxels(voxels: np.ndarray) -> bytes:
    """Little-endian records, concatenated without a header."""

    return np.ascontiguousarray(voxels, dtype=VOXEL_DTYPE).tobytes()


def decode_voxels(data: bytes) -> np.ndarray:
    if len(data) % VOXEL_RECORD_SIZE:
        raise ValueError(
            f"Voxel buffer length {len(data)} is not a multiple of {VOXEL_RECORD_SIZE}"
        )
    return np.frombuffer(data, dtype=VOXEL_DTYPE).copy()
