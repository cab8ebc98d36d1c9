from .settings import (
    ApiSettings,
    Settings,
    TilesSettings,
)

__all__ = [
    "ApiSettings",
    "Settings",
    "TilesSettings",
]
