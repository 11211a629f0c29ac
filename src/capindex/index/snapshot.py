"""Persisted index snapshots: JSON encoding and atomic replacement."""

import json
import logging
import os
import uuid
from pathlib import Path
from typing import Any

from ..models import IndexSnapshot, RelationshipEdge

logger = logging.getLogger(__name__)

SNAPSHOT_FILENAME = "relationship-index.json"
FORMAT_VERSION = 1


def snapshot_to_dict(snapshot: IndexSnapshot) -> dict[str, Any]:
    return {
        "format": FORMAT_VERSION,
        "built_at": snapshot.built_at,
        "element_count": snapshot.element_count,
        "config_version": snapshot.config_version,
        "fingerprint": snapshot.fingerprint,
        "strategy": snapshot.strategy,
        "comparisons": snapshot.comparisons,
        "skipped": list(snapshot.skipped),
        "edges": [e.to_dict() for e in snapshot.edges],
    }


def snapshot_from_dict(data: dict[str, Any]) -> IndexSnapshot:
    """Rebuild a snapshot. Raises KeyError/ValueError/TypeError on malformed data."""
    if data.get("format") != FORMAT_VERSION:
        raise ValueError(f"Unsupported snapshot format {data.get('format')!r}")
    return IndexSnapshot(
        built_at=float(data["built_at"]),
        element_count=int(data["element_count"]),
        edges=tuple(RelationshipEdge.from_dict(e) for e in data["edges"]),
        config_version=str(data["config_version"]),
        fingerprint=str(data.get("fingerprint", "")),
        strategy=str(data.get("strategy", "full")),
        comparisons=int(data.get("comparisons", 0)),
        skipped=tuple(data.get("skipped", ())),
    )


def write_snapshot(path: str | Path, snapshot: IndexSnapshot) -> Path:
    """Write the snapshot next to ``path`` and rename it over the old one.

    Readers see either the previous file or the complete new one.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex[:8]}.tmp")
    try:
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(snapshot_to_dict(snapshot), f, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    finally:
        if tmp.exists():
            tmp.unlink()
    logger.debug("Wrote snapshot with %d edges to %s", len(snapshot.edges), path)
    return path


def read_snapshot(path: str | Path) -> IndexSnapshot | None:
    """Load a snapshot, or None if it is missing or unreadable."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as e:
        logger.warning("Cannot read index snapshot %s: %s", path, e)
        return None

    try:
        return snapshot_from_dict(json.loads(text))
    except (json.JSONDecodeError, KeyError, ValueError, TypeError) as e:
        logger.warning("Ignoring malformed index snapshot %s: %s", path, e)
        return None
