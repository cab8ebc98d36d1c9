from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx

from .urls import redact_url

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "earth-voxels/0.1"


@dataclass(frozen=True)
class FetchResult:
    url: str
    content: bytes = b""
    content_type: str = ""

    @property
    def ok(self) -> bool:
        return len(self.content) > 0


class Fetcher(Protocol):
    def fetch(self, url: str) -> FetchResult: ...


class HttpxFetcher:
    """Blocking fetcher that never raises: failures come back as empty content.

    One `httpx.Client` is shared across calls (and threads) so connections are
    kept alive between tile requests.
    """

    def __init__(
        self,
        *,
        timeout_s: float = 30.0,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        if timeout_s <= 0:
            raise ValueError("timeout_s must be > 0")
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout_s),
            follow_redirects=True,
            headers={"User-Agent": user_agent},
            transport=transport,
        )

    def fetch(self, url: str) -> FetchResult:
        try:
            resp = self._client.get(url)
        except httpx.HTTPError as exc:
            logger.warning(
                "tile_fetch_failed",
                extra={"url": redact_url(url), "error": str(exc)},
            )
            return FetchResult(url=url)

        if resp.status_code >= 400:
            logger.warning(
                "tile_fetch_http_error",
                extra={"url": redact_url(url), "status_code": resp.status_code},
            )
            return FetchResult(url=url)

        content_type = resp.headers.get("Content-Type", "")
        logger.debug(
            "tile_fetched",
            extra={
                "url": redact_url(url),
                "bytes": len(resp.content),
                "content_type": content_type,
            },
        )
        return FetchResult(url=url, content=resp.content, content_type=content_type)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "HttpxFetcher":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
