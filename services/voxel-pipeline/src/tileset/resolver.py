from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Iterator, Mapping, Optional, Union

from .culling import Sphere, node_intersects
from .fetch import FetchResult, Fetcher
from .urls import (
    classify_content_url,
    redact_url,
    resolve_content_url,
    session_from_url,
    tile_identifier,
    with_credentials,
)

logger = logging.getLogger(__name__)

DEFAULT_ROOT_URL = "https://tile.googleapis.com/v1/3dtiles/root.json"

GLB_MAGIC = b"glTF"
_GLB_CONTENT_TYPES = {"model/gltf-binary", "application/octet-stream+gltf"}


@dataclass(frozen=True)
class TraversalContext:
    """Per-branch traversal state; derive new contexts instead of mutating."""

    region: Sphere
    base_url: str
    credential_key: str = ""
    session: Optional[str] = None

    def with_base_url(self, base_url: str) -> "TraversalContext":
        return replace(self, base_url=base_url)

    def with_session(self, session: Optional[str]) -> "TraversalContext":
        return replace(self, session=session)


@dataclass(frozen=True)
class TraversalLimits:
    max_depth: int = 64
    max_nodes: int = 200_000
    max_documents: int = 20_000

    def __post_init__(self) -> None:
        if self.max_depth <= 0:
            raise ValueError("max_depth must be > 0")
        if self.max_nodes <= 0:
            raise ValueError("max_nodes must be > 0")
        if self.max_documents <= 0:
            raise ValueError("max_documents must be > 0")


@dataclass
class ResolveResult:
    leaf_urls: list[str] = field(default_factory=list)
    nodes_visited: int = 0
    nodes_culled: int = 0
    documents_fetched: int = 0
    fetch_failures: int = 0
    parse_fallbacks: int = 0
    truncated: bool = False


@dataclass(frozen=True)
class _PendingNode:
    node: Mapping[str, Any]
    context: TraversalContext
    depth: int


@dataclass(frozen=True)
class _PendingContent:
    url: str
    context: TraversalContext
    depth: int


_Pending = Union[_PendingNode, _PendingContent]


def iter_content_uris(node: Mapping[str, Any]) -> Iterator[str]:
    """Yield `content` then every `contents[]` URI of a tile node."""

    entries: list[Any] = []
    if "content" in node:
        entries.append(node["content"])
    contents = node.get("contents")
    if isinstance(contents, list):
        entries.extend(contents)

    for entry in entries:
        if not isinstance(entry, Mapping):
            continue
        uri = entry.get("uri", entry.get("url"))
        if isinstance(uri, str) and uri.strip():
            yield uri


def _looks_like_glb(fetched: FetchResult) -> bool:
    if fetched.content[:4] == GLB_MAGIC:
        return True
    content_type = fetched.content_type.split(";", 1)[0].strip().lower()
    return content_type in _GLB_CONTENT_TYPES


class TileTreeResolver:
    """Collects the mesh payload URLs of a tile tree that touch a query sphere.

    The walk uses an explicit stack in pre-order, so leaf URLs come out in the
    same order a depth-first recursion would produce them. External tileset
    documents are fetched as they are reached; each distinct document is
    fetched at most once per walk.
    """

    def __init__(self, fetcher: Fetcher, *, limits: Optional[TraversalLimits] = None) -> None:
        self._fetcher = fetcher
        self._limits = limits or TraversalLimits()

    @property
    def limits(self) -> TraversalLimits:
        return self._limits

    def resolve_root(
        self,
        root_url: str,
        region: Sphere,
        *,
        credential_key: str,
    ) -> ResolveResult:
        result = ResolveResult()
        url = with_credentials(root_url, credential_key=credential_key, session=None)

        fetched = self._fetcher.fetch(url)
        result.documents_fetched += 1
        if not fetched.ok:
            result.fetch_failures += 1
            logger.warning("tile_root_unavailable", extra={"url": redact_url(url)})
            return result

        try:
            document = json.loads(fetched.content)
        except (ValueError, RecursionError) as exc:
            result.parse_fallbacks += 1
            logger.warning(
                "tile_root_invalid_json",
                extra={"url": redact_url(url), "error": str(exc)},
            )
            return result

        if not isinstance(document, Mapping):
            logger.warning("tile_root_not_an_object", extra={"url": redact_url(url)})
            return result

        session = document.get("session")
        if not (isinstance(session, str) and session):
            session = session_from_url(url)

        root = document.get("root")
        if not isinstance(root, Mapping):
            logger.warning("tile_root_missing_root_node", extra={"url": redact_url(url)})
            return result

        context = TraversalContext(
            region=region,
            base_url=url,
            credential_key=credential_key,
            session=session,
        )
        self._walk([_PendingNode(root, context, 0)], result, visited={tile_identifier(url)})
        return result

    def resolve(self, node: Mapping[str, Any], context: TraversalContext) -> ResolveResult:
        result = ResolveResult()
        self._walk([_PendingNode(node, context, 0)], result, visited=set())
        return result

    def _walk(self, stack: list[_Pending], result: ResolveResult, *, visited: set[str]) -> None:
        limits = self._limits
        while stack:
            item = stack.pop()
            if isinstance(item, _PendingContent):
                self._follow(item, stack, result, visited)
                continue

            if result.nodes_visited >= limits.max_nodes:
                result.truncated = True
                logger.warning("tile_tree_node_budget_exhausted", extra={"max_nodes": limits.max_nodes})
                break
            result.nodes_visited += 1

            if not node_intersects(item.node, item.context.region):
                result.nodes_culled += 1
                continue

            children = item.node.get("children")
            if isinstance(children, list) and children:
                if item.depth + 1 > limits.max_depth:
                    result.truncated = True
                    logger.warning("tile_tree_depth_limit", extra={"depth": item.depth})
                    continue
                for child in reversed(children):
                    if isinstance(child, Mapping):
                        stack.append(_PendingNode(child, item.context, item.depth + 1))
                continue

            context = item.context
            pending: list[_PendingContent] = []
            for uri in iter_content_uris(item.node):
                resolved = resolve_content_url(uri, context.base_url)
                adopted = session_from_url(resolved)
                if adopted:
                    context = context.with_session(adopted)
                url = with_credentials(
                    resolved,
                    credential_key=context.credential_key,
                    session=context.session,
                )
                pending.append(_PendingContent(url, context, item.depth))
            stack.extend(reversed(pending))

        logger.info(
            "tile_tree_resolved",
            extra={
                "leaf_urls": len(result.leaf_urls),
                "nodes_visited": result.nodes_visited,
                "nodes_culled": result.nodes_culled,
                "documents_fetched": result.documents_fetched,
                "fetch_failures": result.fetch_failures,
                "truncated": result.truncated,
            },
        )

    def _add_leaf(self, url: str, result: ResolveResult) -> None:
        result.leaf_urls.append(url)
        logger.debug("tile_leaf_found", extra={"url": redact_url(url)})

    def _follow(
        self,
        item: _PendingContent,
        stack: list[_Pending],
        result: ResolveResult,
        visited: set[str],
    ) -> None:
        url = item.url
        kind = classify_content_url(url)
        if kind == "mesh":
            self._add_leaf(url, result)
            return

        ident = tile_identifier(url)
        if ident in visited:
            logger.debug("tile_document_already_visited", extra={"url": redact_url(url)})
            return
        if item.depth + 1 > self._limits.max_depth:
            result.truncated = True
            logger.warning("tile_tree_depth_limit", extra={"depth": item.depth})
            return
        if result.documents_fetched >= self._limits.max_documents:
            result.truncated = True
            logger.warning(
                "tile_tree_document_budget_exhausted",
                extra={"max_documents": self._limits.max_documents},
            )
            return
        visited.add(ident)

        fetched = self._fetcher.fetch(url)
        result.documents_fetched += 1
        if not fetched.ok:
            result.fetch_failures += 1
            return

        if kind == "unknown" and _looks_like_glb(fetched):
            self._add_leaf(url, result)
            return

        try:
            document = json.loads(fetched.content)
        except (ValueError, RecursionError):
            result.parse_fallbacks += 1
            self._add_leaf(url, result)
            return

        if not isinstance(document, Mapping):
            if not document:
                self._add_leaf(url, result)
            else:
                logger.debug("tile_document_not_an_object", extra={"url": redact_url(url)})
            return

        child_context = item.context.with_base_url(url)
        root = document.get("root")
        if isinstance(root, Mapping):
            stack.append(_PendingNode(root, child_context, item.depth + 1))
        elif document:
            stack.append(_PendingNode(document, child_context, item.depth + 1))
        else:
            self._add_leaf(url, result)
