from __future__ import annotations

import posixpath
from typing import Final, Literal, Optional
from urllib.parse import parse_qsl, quote, urlencode, urljoin, urlsplit, urlunsplit

KEY_PARAM: Final[str] = "key"
SESSION_PARAM: Final[str] = "session"

MESH_SUFFIX: Final[str] = ".glb"
DOCUMENT_SUFFIX: Final[str] = ".json"

ContentKind = Literal["mesh", "document", "unknown"]

_REDACTED: Final[str] = "***"


def resolve_content_url(uri: str, base_url: str) -> str:
    """Resolve a tile content URI against the URL of the document holding it."""

    uri = uri.strip()
    parsed = urlsplit(uri)
    if parsed.scheme in {"http", "https"}:
        return uri

    base = urlsplit(base_url)
    if uri.startswith("//"):
        return f"{base.scheme}:{uri}"
    if uri.startswith("/"):
        return urlunsplit((base.scheme, base.netloc, parsed.path, parsed.query, parsed.fragment))
    return urljoin(base_url, uri)


def query_param(url: str, name: str) -> Optional[str]:
    for key, value in parse_qsl(urlsplit(url).query, keep_blank_values=True):
        if key == name:
            return value
    return None


def has_query_param(url: str, name: str) -> bool:
    return query_param(url, name) is not None


def session_from_url(url: str) -> Optional[str]:
    value = query_param(url, SESSION_PARAM)
    if value:
        return value
    return None


def _append_param(url: str, name: str, value: str) -> str:
    base, sep, fragment = url.partition("#")
    separator = "&" if "?" in base else "?"
    appended = f"{base}{separator}{urlencode({name: value}, quote_via=quote)}"
    return f"{appended}{sep}{fragment}"


def with_credentials(url: str, *, credential_key: str, session: Optional[str]) -> str:
    """Append `key` and `session` query parameters unless already present.

    `key` is always appended when missing, even with an empty credential;
    `session` only when there is a token.
    """

    out = url
    if not has_query_param(out, KEY_PARAM):
        out = _append_param(out, KEY_PARAM, credential_key)
    if session and not has_query_param(out, SESSION_PARAM):
        out = _append_param(out, SESSION_PARAM, session)
    return out


def classify_content_url(url: str) -> ContentKind:
    path = urlsplit(url).path.lower()
    if path.endswith(MESH_SUFFIX):
        return "mesh"
    if path.endswith(DOCUMENT_SUFFIX):
        return "document"
    return "unknown"


def tile_identifier(url: str) -> str:
    """Stable identifier for a tile URL: path and query without credentials."""

    parts = urlsplit(url)
    kept = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if key not in {KEY_PARAM, SESSION_PARAM}
    ]
    path = posixpath.normpath(parts.path) if parts.path else "/"
    ident = f"{parts.netloc}{path}"
    query = urlencode(kept)
    return f"{ident}?{query}" if query else ident


def redact_url(url: str) -> str:
    """Replace credential values so URLs can be logged."""

    parts = urlsplit(url)
    if not parts.query:
        return url
    pairs = [
        (key, _REDACTED if key in {KEY_PARAM, SESSION_PARAM} else value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
    ]
    return urlunsplit(
        (parts.scheme, parts.netloc, parts.path, urlencode(pairs, safe="*"), parts.fragment)
    )
