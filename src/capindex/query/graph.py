"""Relationship graph traversal over the current index snapshot."""

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable

from ..models import IndexSnapshot, RelationshipEdge

MAX_DEPTH = 5


@dataclass
class ElementPath:
    """A chain of elements linked by relationship edges."""
    path: list[str]
    edges: list[RelationshipEdge] = field(default_factory=list)

    @property
    def strength(self) -> float:
        """Product of edge scores along the path (1.0 for an empty path)."""
        total = 1.0
        for edge in self.edges:
            total *= edge.score
        return total


def _adjacency(snapshot: IndexSnapshot, min_score: float) -> dict[str, list[RelationshipEdge]]:
    graph: dict[str, list[RelationshipEdge]] = {}
    for edge in snapshot.edges:
        if edge.score < min_score:
            continue
        graph.setdefault(edge.from_id, []).append(edge)
        graph.setdefault(edge.to_id, []).append(edge)
    return graph


class RelationshipGraph:
    """Multi-hop queries; the index manager is resolved on first use.

    ``manager_provider`` is any zero-argument callable returning an
    IndexManager, typically a ``LazyProvider``.
    """

    def __init__(self, manager_provider: Callable[[], Any]):
        self._manager_provider = manager_provider

    async def _snapshot(self) -> IndexSnapshot:
        return await self._manager_provider().snapshot()

    async def find_related(self, element_id: str, depth: int = 1, min_score: float = 0.0) -> dict[str, Any]:
        """Find elements related to ``element_id`` by traversing edges.

        Args:
            element_id: Element to start from.
            depth: How many hops to traverse (capped at MAX_DEPTH).
            min_score: Ignore edges scoring below this.

        Returns:
            Dict with related element ids at each depth level.
        """
        depth = max(0, min(depth, MAX_DEPTH))
        graph = _adjacency(await self._snapshot(), min_score)
        visited = {element_id}
        current = {element_id}
        result: dict[int, list[str]] = {}

        for d in range(depth):
            next_level = set()
            for node in current:
                for edge in graph.get(node, []):
                    linked = edge.other(node)
                    if linked not in visited:
                        next_level.add(linked)
            visited |= next_level
            if not next_level:
                break
            result[d + 1] = sorted(next_level)
            current = next_level

        return {
            "element": element_id,
            "related": result,
            "total": sum(len(v) for v in result.values()),
        }

    async def find_path(
        self,
        from_id: str,
        to_id: str,
        max_depth: int = MAX_DEPTH,
        min_score: float = 0.0,
    ) -> ElementPath | None:
        """Shortest path between two elements, or None within ``max_depth`` hops."""
        if from_id == to_id:
            return ElementPath([from_id])
        max_depth = max(0, min(max_depth, MAX_DEPTH))
        graph = _adjacency(await self._snapshot(), min_score)

        visited = {from_id}
        queue = deque([ElementPath([from_id])])
        while queue:
            current = queue.popleft()
            if len(current.edges) >= max_depth:
                continue
            node = current.path[-1]
            for edge in sorted(graph.get(node, []), key=lambda e: -e.score):
                linked = edge.other(node)
                if linked in visited:
                    continue
                visited.add(linked)
                step = ElementPath(current.path + [linked], current.edges + [edge])
                if linked == to_id:
                    return step
                queue.append(step)
        return None
