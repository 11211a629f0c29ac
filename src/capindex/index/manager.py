"""Index manager: caching, rebuilds, persistence and the query surface.

Query path: in-memory snapshot if still current, else a snapshot persisted
by any process if it matches the active config and element population, else
a rebuild. Rebuild results are cached in memory and written to disk in the
background under a file lock.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from ..clustering import RelationshipBuilder, prepare_elements
from ..config import IndexConfig
from ..errors import CapIndexError, ElementReadError, LockTimeout
from ..locking import FileLock
from ..models import IndexSnapshot, RelationshipEdge
from ..storage import ElementStoreBase, population_fingerprint
from .snapshot import SNAPSHOT_FILENAME, read_snapshot, write_snapshot

logger = logging.getLogger(__name__)

STATE_DIR_NAME = ".capindex"
UNAVAILABLE_WITH_CACHE = "Index temporarily unavailable, showing cached results"
UNAVAILABLE_NO_CACHE = "Index temporarily unavailable, no cached results yet"


@dataclass
class RelatedResult:
    """Answer to "what is related to element X", always safe to show."""
    element_id: str
    edges: list[RelationshipEdge] = field(default_factory=list)
    built_at: float | None = None
    stale: bool = False
    notice: str | None = None


class IndexManager:
    """Owns the relationship index of one portfolio within one process."""

    def __init__(
        self,
        store: ElementStoreBase,
        config: IndexConfig,
        state_dir: str | Path,
        *,
        seed: int | None = None,
        persist: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.config = config
        self.state_dir = Path(state_dir)
        self.snapshot_path = self.state_dir / SNAPSHOT_FILENAME
        self.lock_path = self.state_dir / f"{SNAPSHOT_FILENAME}.lock"
        self.seed = seed
        self.persist = persist
        self.rebuild_count = 0
        self.last_persist_ok: bool | None = None

        self._clock = clock
        self._snapshot: IndexSnapshot | None = None
        self._snapshot_generation = -1
        self._generation = 0
        self._force_rebuild = False
        self._build_lock: asyncio.Lock | None = None
        self._build_lock_loop = None
        self._pending: set[asyncio.Task] = set()

        store.subscribe(self.invalidate)

    @classmethod
    def for_portfolio(cls, root: str | Path, config: IndexConfig | None = None, **kwargs) -> "IndexManager":
        """Manager over a portfolio directory, keeping state in ``<root>/.capindex``."""
        from ..storage.filesystem import FilesystemElementStore

        root = Path(root).expanduser()
        return cls(
            FilesystemElementStore(root),
            config or IndexConfig.defaults(),
            root / STATE_DIR_NAME,
            **kwargs,
        )

    @property
    def last_snapshot(self) -> IndexSnapshot | None:
        return self._snapshot

    def invalidate(self) -> None:
        """Force the next query to rebuild, regardless of TTL."""
        self._generation += 1
        self._force_rebuild = True
        logger.debug("Relationship index invalidated (generation %d)", self._generation)

    def reload_config(self, config: IndexConfig) -> None:
        """Switch to a new configuration; snapshots of other versions become stale."""
        if config.version != self.config.version:
            logger.info("Index configuration changed: %s -> %s", self.config.version, config.version)
        self.config = config

    async def get_related(self, element_id: str, limit: int | None = None) -> list[RelationshipEdge]:
        """Edges touching ``element_id``, strongest first."""
        snapshot = await self.snapshot()
        edges = snapshot.edges_for(element_id)
        return edges[:limit] if limit else edges

    async def related(self, element_id: str, limit: int | None = None) -> RelatedResult:
        """Like get_related, but never raises: failures come back as a notice."""
        stale = False
        notice = None
        try:
            snapshot = await self.snapshot()
        except Exception as e:
            # store, lock and IO failures are expected; anything else keeps its traceback
            logger.warning(
                "Relationship index unavailable: %s",
                e,
                exc_info=not isinstance(e, (CapIndexError, OSError)),
            )
            snapshot = self._snapshot
            stale = True
            notice = UNAVAILABLE_WITH_CACHE if snapshot else UNAVAILABLE_NO_CACHE

        if snapshot is None:
            return RelatedResult(element_id, stale=stale, notice=notice)
        edges = snapshot.edges_for(element_id)
        return RelatedResult(
            element_id,
            edges=edges[:limit] if limit else edges,
            built_at=snapshot.built_at,
            stale=stale,
            notice=notice,
        )

    async def snapshot(self) -> IndexSnapshot:
        """Return a current snapshot, loading or rebuilding as needed."""
        if self._is_current(self._snapshot, self._snapshot_generation):
            return self._snapshot

        async with self._get_build_lock():
            # another caller may have refreshed it while we waited
            if self._is_current(self._snapshot, self._snapshot_generation):
                return self._snapshot
            if not self._force_rebuild:
                loaded = await self._load_persisted()
                if loaded is not None:
                    return loaded
            return await self._rebuild_locked()

    async def rebuild(self) -> IndexSnapshot:
        """Rebuild now, regardless of cache state."""
        async with self._get_build_lock():
            return await self._rebuild_locked()

    async def flush(self) -> None:
        """Wait for background snapshot writes to finish."""
        while self._pending:
            pending = list(self._pending)
            await asyncio.gather(*pending)
            self._pending.difference_update(pending)

    def _is_current(self, snapshot: IndexSnapshot | None, generation: int) -> bool:
        if snapshot is None or generation != self._generation:
            return False
        if snapshot.config_version != self.config.version:
            return False
        return snapshot.age(self._clock()) <= self.config.ttl_seconds

    def _get_build_lock(self) -> asyncio.Lock:
        loop = asyncio.get_running_loop()
        if self._build_lock is None or self._build_lock_loop is not loop:
            self._build_lock = asyncio.Lock()
            self._build_lock_loop = loop
        return self._build_lock

    async def _load_persisted(self) -> IndexSnapshot | None:
        """Adopt the on-disk snapshot if it matches config, TTL and population."""
        generation = self._generation
        disk = await asyncio.to_thread(read_snapshot, self.snapshot_path)
        if disk is None:
            return None
        if disk.config_version != self.config.version:
            logger.info(
                "Ignoring persisted snapshot built under config %s (active %s)",
                disk.config_version,
                self.config.version,
            )
            return None
        if disk.age(self._clock()) > self.config.ttl_seconds:
            logger.debug("Persisted snapshot expired")
            return None
        if self._snapshot is not None and disk.built_at < self._snapshot.built_at:
            return None

        refs = await asyncio.to_thread(self.store.list_elements)
        if population_fingerprint(refs) != disk.fingerprint:
            logger.debug("Persisted snapshot does not match the current element population")
            return None

        self._snapshot = disk
        self._snapshot_generation = generation
        logger.info("Loaded relationship index from %s (%d edges)", self.snapshot_path, len(disk.edges))
        return disk

    async def _rebuild_locked(self) -> IndexSnapshot:
        generation = self._generation
        config = self.config
        start = time.monotonic()

        refs = await asyncio.to_thread(self.store.list_elements)
        items = []
        skipped = []
        for ref in refs:
            try:
                text = await asyncio.to_thread(self.store.read_content, ref.id)
            except (ElementReadError, OSError) as e:
                logger.warning("Skipping element %s for this build: %s", ref.id, e)
                skipped.append(ref.id)
                continue
            items.append((ref, text))

        elements = prepare_elements(items, config)
        # skipped elements stay out of the fingerprint so no other process adopts a partial build
        fingerprint = population_fingerprint([ref for ref, _ in items])
        seed = self.seed if self.seed is not None else int(fingerprint[:16], 16)
        result = await RelationshipBuilder(config).build(elements, seed=seed)

        built_at = self._clock()
        if self._snapshot is not None:
            built_at = max(built_at, self._snapshot.built_at)
        snapshot = IndexSnapshot(
            built_at=built_at,
            element_count=len(elements),
            edges=tuple(result.edges),
            config_version=config.version,
            fingerprint=fingerprint,
            strategy=result.strategy,
            comparisons=result.comparisons,
            skipped=tuple(skipped),
        )

        self._snapshot = snapshot
        self._snapshot_generation = generation
        if self._generation == generation:
            self._force_rebuild = False
        self.rebuild_count += 1

        logger.info(
            "Relationship index rebuilt: %d elements, %d edges, %s strategy, %.0fms",
            snapshot.element_count,
            len(snapshot.edges),
            snapshot.strategy,
            (time.monotonic() - start) * 1000.0,
        )
        if self.persist:
            self._schedule_persist(snapshot)
        return snapshot

    def _schedule_persist(self, snapshot: IndexSnapshot) -> None:
        task = asyncio.get_running_loop().create_task(self._persist(snapshot))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _persist(self, snapshot: IndexSnapshot) -> bool:
        settings = self.config.index
        lock = FileLock(self.lock_path, timeout_ms=settings.lock_timeout_ms, stale_ms=settings.stale_lock_ms)
        try:
            async with lock:
                await asyncio.to_thread(write_snapshot, self.snapshot_path, snapshot)
        except LockTimeout as e:
            logger.warning("Relationship index not persisted, serving in-memory results: %s", e)
            self.last_persist_ok = False
            return False
        except OSError as e:
            logger.warning("Relationship index not persisted: %s", e)
            self.last_persist_ok = False
            return False
        self.last_persist_ok = True
        return True
