"""Summary statistics for a relationship snapshot."""

import time
from collections import Counter
from typing import Any

from ..models import Band, IndexSnapshot, parse_element_id


def snapshot_stats(snapshot: IndexSnapshot, now: float | None = None) -> dict[str, Any]:
    """Counts by band and element type, plus build bookkeeping."""
    now = time.time() if now is None else now
    bands = Counter(e.band for e in snapshot.edges)

    connected: Counter = Counter()
    for edge in snapshot.edges:
        for element_id in (edge.from_id, edge.to_id):
            connected[parse_element_id(element_id)[0]] += 1

    return {
        "elements": snapshot.element_count,
        "edges": len(snapshot.edges),
        "bands": {band.value: bands.get(band, 0) for band in Band},
        "edges_by_type": dict(sorted(connected.items())),
        "strategy": snapshot.strategy,
        "comparisons": snapshot.comparisons,
        "skipped": list(snapshot.skipped),
        "age_seconds": snapshot.age(now),
        "config_version": snapshot.config_version,
    }
