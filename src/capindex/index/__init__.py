"""Index orchestration: snapshots, caching and queries."""

from .manager import IndexManager, RelatedResult
from .snapshot import read_snapshot, write_snapshot
from .stats import snapshot_stats

__all__ = ["IndexManager", "RelatedResult", "read_snapshot", "snapshot_stats", "write_snapshot"]
