"""Tests for multi-hop relationship queries."""

import asyncio

from capindex.models import Band, IndexSnapshot, RelationshipEdge
from capindex.query import RelationshipGraph


class StaticManager:
    def __init__(self, snapshot):
        self._snapshot = snapshot

    async def snapshot(self):
        return self._snapshot


def _edge(a, b, score):
    return RelationshipEdge.create(a, b, score, 5.0, 5.0, Band.SAME_DOMAIN, score)


def _graph():
    # a-b-c form a triangle, c-d-e a tail
    edges = (
        _edge("skill:a", "skill:b", 0.9),
        _edge("skill:b", "agent:c", 0.8),
        _edge("agent:c", "skill:a", 0.7),
        _edge("agent:c", "persona:d", 0.6),
        _edge("persona:d", "memory:e", 0.2),
    )
    snapshot = IndexSnapshot(built_at=0.0, element_count=5, edges=edges, config_version="test")
    manager = StaticManager(snapshot)
    return RelationshipGraph(lambda: manager)


def test_find_related_by_depth():
    graph = _graph()
    one = asyncio.run(graph.find_related("skill:a", depth=1))
    assert one["related"] == {1: ["agent:c", "skill:b"]}
    assert one["total"] == 2

    three = asyncio.run(graph.find_related("skill:a", depth=3))
    assert three["related"] == {1: ["agent:c", "skill:b"], 2: ["persona:d"], 3: ["memory:e"]}
    assert three["total"] == 4


def test_find_related_respects_min_score():
    result = asyncio.run(_graph().find_related("skill:a", depth=5, min_score=0.5))
    assert "memory:e" not in sum(result["related"].values(), [])


def test_find_related_unknown_element():
    result = asyncio.run(_graph().find_related("skill:zzz", depth=2))
    assert result == {"element": "skill:zzz", "related": {}, "total": 0}


def test_find_path_shortest():
    path = asyncio.run(_graph().find_path("skill:a", "persona:d"))
    assert path.path == ["skill:a", "agent:c", "persona:d"]
    assert path.strength == 0.7 * 0.6


def test_find_path_limits():
    graph = _graph()
    assert asyncio.run(graph.find_path("skill:a", "persona:d", max_depth=1)) is None
    assert asyncio.run(graph.find_path("skill:a", "missing:x")) is None
    assert asyncio.run(graph.find_path("skill:a", "skill:a")).path == ["skill:a"]
