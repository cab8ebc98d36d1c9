from __future__ import annotations

import pytest

from tile_fakes import FakeFetcher

BASE = "https://tiles.example/v1"
NEAR_BOX = [0, 0, 0, 5, 0, 0, 0, 5, 0, 0, 0, 5]
FAR_BOX = [1e6, 0, 0, 5, 0, 0, 0, 5, 0, 0, 0, 5]


def _region():
    from tileset.culling import Sphere
    from tileset.geodesy import CartesianPoint

    return Sphere(CartesianPoint(0.0, 0.0, 0.0), 10.0)


def _context(**kwargs):
    from tileset.resolver import TraversalContext

    kwargs.setdefault("base_url", f"{BASE}/root.json")
    kwargs.setdefault("credential_key", "K")
    return TraversalContext(region=_region(), **kwargs)


def test_culled_subtrees_are_never_fetched() -> None:
    from tileset.resolver import TileTreeResolver

    fetcher = FakeFetcher({f"{BASE}/far.json": {"root": {"content": {"uri": "x.glb"}}}})
    node = {
        "boundingVolume": {"box": NEAR_BOX},
        "children": [
            {"boundingVolume": {"box": FAR_BOX}, "content": {"uri": "far.json"}},
            {"boundingVolume": {"box": NEAR_BOX}, "content": {"uri": "near.glb"}},
        ],
    }

    result = TileTreeResolver(fetcher).resolve(node, _context())

    assert result.leaf_urls == [f"{BASE}/near.glb?key=K"]
    assert result.nodes_culled == 1
    assert fetcher.requests == []


def test_root_session_and_adopted_session_propagate() -> None:
    from tileset.resolver import TileTreeResolver

    fetcher = FakeFetcher(
        {
            f"{BASE}/root.json": {
                "session": "S0",
                "root": {
                    "children": [
                        {"boundingVolume": {"box": NEAR_BOX}, "content": {"uri": "/v1/sub.json?session=S1"}},
                        {"boundingVolume": {"box": NEAR_BOX}, "content": {"uri": "plain.glb"}},
                    ]
                },
            },
            f"{BASE}/sub.json": {"root": {"children": [{"content": {"uri": "deep/a.glb"}}]}},
        }
    )

    result = TileTreeResolver(fetcher).resolve_root(f"{BASE}/root.json", _region(), credential_key="K")

    assert result.leaf_urls == [
        f"{BASE}/deep/a.glb?key=K&session=S1",
        f"{BASE}/plain.glb?key=K&session=S0",
    ]
    assert fetcher.requests == [
        f"{BASE}/root.json?key=K",
        f"{BASE}/sub.json?session=S1&key=K",
    ]


def test_adopted_session_does_not_leak_into_siblings() -> None:
    from tileset.resolver import TileTreeResolver

    node = {
        "children": [
            {"content": {"uri": "a.glb?session=X"}},
            {"content": {"uri": "b.glb"}},
        ]
    }
    result = TileTreeResolver(FakeFetcher()).resolve(node, _context())
    assert result.leaf_urls == [f"{BASE}/a.glb?session=X&key=K", f"{BASE}/b.glb?key=K"]


def test_leaf_order_matches_depth_first_content_order() -> None:
    from tileset.resolver import TileTreeResolver

    fetcher = FakeFetcher({f"{BASE}/a.json": {"root": {"content": {"uri": "b.glb"}}}})
    node = {"content": {"uri": "a.json"}, "contents": [{"uri": "c.glb"}, {"url": "d.glb"}]}

    result = TileTreeResolver(fetcher).resolve(node, _context(credential_key=""))
    assert result.leaf_urls == [f"{BASE}/b.glb?key=", f"{BASE}/c.glb?key=", f"{BASE}/d.glb?key="]


def test_extensionless_content_fallbacks() -> None:
    from tileset.resolver import TileTreeResolver

    fetcher = FakeFetcher(
        {
            f"{BASE}/mesh": b"glTF\x02\x00\x00\x00binary",
            f"{BASE}/broken": b"{not json",
            f"{BASE}/empty": {},
            f"{BASE}/tileset": {"content": {"uri": "inner.glb"}},
            f"{BASE}/list": [],
            f"{BASE}/array": [1, 2, 3],
        }
    )
    node = {
        "contents": [
            {"uri": "mesh"},
            {"uri": "broken"},
            {"uri": "empty"},
            {"uri": "tileset"},
            {"uri": "list"},
            {"uri": "array"},
            {"uri": "missing"},
        ]
    }

    result = TileTreeResolver(fetcher).resolve(node, _context(credential_key=""))

    assert result.leaf_urls == [
        f"{BASE}/mesh?key=",
        f"{BASE}/broken?key=",
        f"{BASE}/empty?key=",
        f"{BASE}/inner.glb?key=",
        f"{BASE}/list?key=",
    ]
    assert result.parse_fallbacks == 1
    assert result.fetch_failures == 1
    assert result.documents_fetched == 7


def test_cyclic_documents_terminate() -> None:
    from tileset.resolver import TileTreeResolver

    fetcher = FakeFetcher(
        {
            f"{BASE}/root.json": {"root": {"content": {"uri": "a.json"}}},
            f"{BASE}/a.json": {"root": {"contents": [{"uri": "root.json"}, {"uri": "a.json"}, {"uri": "x.glb"}]}},
        }
    )

    result = TileTreeResolver(fetcher).resolve_root(f"{BASE}/root.json", _region(), credential_key="K")

    assert result.leaf_urls == [f"{BASE}/x.glb?key=K"]
    assert len(fetcher.requested(f"{BASE}/a.json")) == 1
    assert len(fetcher.requested(f"{BASE}/root.json")) == 1


def test_depth_limit_truncates(caplog: pytest.LogCaptureFixture) -> None:
    from tileset.resolver import TileTreeResolver, TraversalLimits

    node: dict = {"content": {"uri": "leaf.glb"}}
    for _ in range(5):
        node = {"children": [node]}

    caplog.set_level("WARNING")
    result = TileTreeResolver(FakeFetcher(), limits=TraversalLimits(max_depth=2)).resolve(node, _context())

    assert result.truncated
    assert result.leaf_urls == []
    assert any(r.getMessage() == "tile_tree_depth_limit" for r in caplog.records)


def test_node_and_document_budgets() -> None:
    from tileset.resolver import TileTreeResolver, TraversalLimits

    node = {"children": [{"content": {"uri": f"t{i}.glb"}} for i in range(10)]}
    result = TileTreeResolver(FakeFetcher(), limits=TraversalLimits(max_nodes=4)).resolve(node, _context())
    assert result.truncated
    assert result.nodes_visited == 4
    assert len(result.leaf_urls) == 3

    fetcher = FakeFetcher({f"{BASE}/d{i}.json": {"content": {"uri": f"m{i}.glb"}} for i in range(5)})
    node = {"contents": [{"uri": f"d{i}.json"} for i in range(5)]}
    result = TileTreeResolver(fetcher, limits=TraversalLimits(max_documents=2)).resolve(node, _context())
    assert result.truncated
    assert result.documents_fetched == 2
    assert len(result.leaf_urls) == 2


def test_root_failures_return_empty_results() -> None:
    from tileset.resolver import TileTreeResolver

    missing = TileTreeResolver(FakeFetcher()).resolve_root(f"{BASE}/root.json", _region(), credential_key="K")
    assert missing.leaf_urls == []
    assert missing.fetch_failures == 1

    broken = FakeFetcher({f"{BASE}/root.json": b"nope"})
    result = TileTreeResolver(broken).resolve_root(f"{BASE}/root.json", _region(), credential_key="K")
    assert result.leaf_urls == []
    assert result.parse_fallbacks == 1


def test_limits_must_be_positive() -> None:
    from tileset.resolver import TraversalLimits

    with pytest.raises(ValueError, match="max_depth"):
        TraversalLimits(max_depth=0)


def test_deeply_nested_json_is_a_parse_fallback() -> None:
    from tileset.culling import Sphere
    from tileset.geodesy import CartesianPoint
    from tileset.resolver import TileTreeResolver

    nested = b"[" * 200_000
    fetcher = FakeFetcher(
        {
            f"{BASE}/root.json": {"root": {"content": {"uri": "deep.json"}}},
            f"{BASE}/deep.json": nested,
            f"{BASE}/other/root.json": nested,
        }
    )
    resolver = TileTreeResolver(fetcher)
    region = Sphere(CartesianPoint(0.0, 0.0, 0.0), 10.0)

    result = resolver.resolve_root(f"{BASE}/root.json", region, credential_key="K")
    assert result.leaf_urls == [f"{BASE}/deep.json?key=K"]
    assert result.parse_fallbacks == 1

    root = resolver.resolve_root(f"{BASE}/other/root.json", region, credential_key="K")
    assert root.leaf_urls == []
    assert root.parse_fallbacks == 1
