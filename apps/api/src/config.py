from __future__ import annotations

from functools import lru_cache

from earth_voxels_config import Settings


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
