from __future__ import annotations


class VoxelizerError(RuntimeError):
    pass


class GlbDecodeError(VoxelizerError):
    pass


class VoxelBudgetExceeded(VoxelizerError):
    def __init__(self, produced: int, limit: int) -> None:
        super().__init__(f"Payload would produce {produced} voxels (limit {limit})")
        self.produced = produced
        self.limit = limit
