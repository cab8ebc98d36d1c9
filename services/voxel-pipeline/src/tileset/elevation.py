from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from urllib.parse import urlencode

from .fetch import Fetcher

logger = logging.getLogger(__name__)

DEFAULT_ELEVATION_URL = "https://maps.googleapis.com/maps/api/elevation/json"


@dataclass(frozen=True)
class ElevationClient:
    """Ground height lookup used to lift the query sphere onto the terrain.

    Any failure degrades to `fallback_m` (sea level by default).
    """

    fetcher: Fetcher
    api_key: str
    base_url: str = DEFAULT_ELEVATION_URL
    fallback_m: float = 0.0

    def url_for(self, lat: float, lon: float) -> str:
        query = urlencode({"locations": f"{float(lat)},{float(lon)}", "key": self.api_key})
        return f"{self.base_url}?{query}"

    def elevation_m(self, lat: float, lon: float) -> float:
        result = self.fetcher.fetch(self.url_for(lat, lon))
        if not result.ok:
            return self.fallback_m

        try:
            payload = json.loads(result.content)
        except ValueError:
            logger.warning("elevation_response_invalid", extra={"lat": lat, "lon": lon})
            return self.fallback_m

        if not isinstance(payload, dict) or payload.get("status") != "OK":
            status = payload.get("status") if isinstance(payload, dict) else None
            logger.warning(
                "elevation_lookup_failed",
                extra={"lat": lat, "lon": lon, "status": status},
            )
            return self.fallback_m

        results = payload.get("results")
        if not isinstance(results, list) or not results:
            return self.fallback_m
        first = results[0]
        if not isinstance(first, dict):
            return self.fallback_m
        try:
            return float(first["elevation"])
        except (KeyError, TypeError, ValueError):
            return self.fallback_m
