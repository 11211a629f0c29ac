"""Tests for the index manager: caching, persistence and failure handling."""

import asyncio
import logging
import tempfile
from pathlib import Path

import pytest

from capindex.config import IndexConfig
from capindex.errors import CircularInitializationError, ElementReadError, ElementStoreError
from capindex.index import IndexManager, read_snapshot, snapshot_stats, write_snapshot
from capindex.index.manager import UNAVAILABLE_NO_CACHE, UNAVAILABLE_WITH_CACHE
from capindex.lazy import LazyProvider
from capindex.locking import FileLock
from capindex.models import Band
from capindex.query import RelationshipGraph
from capindex.storage.memory import MemoryElementStore

REVIEW = (
    "code review pull request diff comment approve merge branch commit "
    "lint test coverage refactor style naming function class module import "
    "docstring typing error exception logging performance security dependency version release changelog"
)
GARDEN = (
    "tomato basil soil compost seed water sunlight shade mulch prune "
    "harvest greenhouse trellis weed fertilizer root leaf flower pollinator bee "
    "worm rain frost season planting spacing pot raised bed garden"
)


class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


class FlakyStore(MemoryElementStore):
    """Memory store that can be switched into failing states."""

    def __init__(self, elements=None):
        super().__init__(elements)
        self.fail_listing = False
        self.broken: set[str] = set()

    def list_elements(self):
        if self.fail_listing:
            raise ElementStoreError("portfolio unavailable")
        return super().list_elements()

    def read_content(self, element_id):
        if element_id in self.broken:
            raise ElementReadError(element_id, "permission denied")
        return super().read_content(element_id)


def _store():
    return FlakyStore({
        "skill:review": REVIEW,
        "agent:reviewer": REVIEW + " automation checklist",
        "memory:garden": GARDEN,
    })


def _manager(store, tmpdir, config=None, **kwargs):
    kwargs.setdefault("persist", False)
    kwargs.setdefault("clock", FakeClock())
    return IndexManager(store, config or IndexConfig.defaults(), Path(tmpdir) / ".capindex", **kwargs)


def test_get_related_finds_similar_elements():
    with tempfile.TemporaryDirectory() as tmpdir:
        manager = _manager(_store(), tmpdir)
        edges = asyncio.run(manager.get_related("skill:review"))
        assert [e.other("skill:review") for e in edges] == ["agent:reviewer"]
        assert edges[0].band == Band.SAME_DOMAIN
        assert asyncio.run(manager.get_related("memory:garden")) == []


def test_ttl_expiry_triggers_rebuild():
    with tempfile.TemporaryDirectory() as tmpdir:
        clock = FakeClock()
        manager = _manager(_store(), tmpdir, clock=clock)

        async def run():
            await manager.snapshot()
            await manager.snapshot()
            assert manager.rebuild_count == 1
            clock.now += 299
            await manager.snapshot()
            assert manager.rebuild_count == 1
            clock.now += 2
            await manager.snapshot()
            assert manager.rebuild_count == 2

        asyncio.run(run())


def test_element_change_invalidates():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = _store()
        manager = _manager(store, tmpdir)

        async def run():
            first = await manager.snapshot()
            store.put("template", "review", REVIEW + " template")
            second = await manager.snapshot()
            assert manager.rebuild_count == 2
            assert second.element_count == first.element_count + 1
            assert second.edges_for("template:review")

        asyncio.run(run())


def test_config_change_triggers_rebuild():
    with tempfile.TemporaryDirectory() as tmpdir:
        manager = _manager(_store(), tmpdir)

        async def run():
            v1 = await manager.snapshot()
            v2_config = IndexConfig.from_dict({"performance": {"similarity_threshold": 0.0}})
            manager.reload_config(v2_config)
            v2 = await manager.snapshot()
            assert manager.rebuild_count == 2
            assert v1.config_version != v2.config_version
            assert v2.config_version == v2_config.version
            # a zero threshold keeps every compared pair
            assert len(v2.edges) == 3

        asyncio.run(run())


def test_concurrent_queries_share_one_rebuild():
    with tempfile.TemporaryDirectory() as tmpdir:
        manager = _manager(_store(), tmpdir)

        async def run():
            snapshots = await asyncio.gather(*(manager.snapshot() for _ in range(5)))
            assert all(s is snapshots[0] for s in snapshots)

        asyncio.run(run())
        assert manager.rebuild_count == 1


def test_rebuild_count_is_per_manager():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = _store()
        first = _manager(store, tmpdir)
        second = _manager(store, tmpdir)
        asyncio.run(first.rebuild())
        asyncio.run(first.rebuild())
        assert first.rebuild_count == 2
        assert second.rebuild_count == 0


def test_persisted_snapshot_adopted_by_other_manager():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = _store()
        clock = FakeClock()
        writer = _manager(store, tmpdir, persist=True, clock=clock)

        async def build():
            snapshot = await writer.snapshot()
            await writer.flush()
            return snapshot

        built = asyncio.run(build())
        assert writer.last_persist_ok is True
        assert writer.snapshot_path.exists()

        reader = _manager(store, tmpdir, clock=clock)
        loaded = asyncio.run(reader.snapshot())
        assert reader.rebuild_count == 0
        assert loaded.edges == built.edges
        assert loaded.fingerprint == built.fingerprint


def test_persisted_snapshot_ignored_after_config_change():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = _store()
        clock = FakeClock()
        writer = _manager(store, tmpdir, persist=True, clock=clock)

        async def build():
            await writer.snapshot()
            await writer.flush()

        asyncio.run(build())
        config = IndexConfig.from_dict({"sampling": {"base_sample_size": 3}})
        reader = _manager(store, tmpdir, config=config, clock=clock)
        asyncio.run(reader.snapshot())
        assert reader.rebuild_count == 1


def test_persisted_snapshot_ignored_after_population_change():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = _store()
        clock = FakeClock()
        writer = _manager(store, tmpdir, persist=True, clock=clock)

        async def build():
            await writer.snapshot()
            await writer.flush()

        asyncio.run(build())
        store.remove("memory:garden")
        reader = _manager(store, tmpdir, clock=clock)
        snapshot = asyncio.run(reader.snapshot())
        assert reader.rebuild_count == 1
        assert snapshot.element_count == 2


def test_unreadable_element_skipped(caplog):
    with tempfile.TemporaryDirectory() as tmpdir:
        store = _store()
        store.broken.add("memory:garden")
        manager = _manager(store, tmpdir)
        with caplog.at_level(logging.WARNING, logger="capindex.index.manager"):
            snapshot = asyncio.run(manager.snapshot())
        assert snapshot.skipped == ("memory:garden",)
        assert snapshot.element_count == 2
        assert "memory:garden" in caplog.text


def test_related_without_cache_reports_unavailable():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = _store()
        store.fail_listing = True
        manager = _manager(store, tmpdir)
        result = asyncio.run(manager.related("skill:review"))
        assert result.edges == []
        assert result.stale
        assert result.notice == UNAVAILABLE_NO_CACHE


def test_related_serves_cache_when_rebuild_fails():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = _store()
        manager = _manager(store, tmpdir)

        async def run():
            fresh = await manager.related("skill:review")
            assert fresh.notice is None
            assert not fresh.stale

            store.fail_listing = True
            store.notify_changed()
            cached = await manager.related("skill:review")
            assert cached.stale
            assert cached.notice == UNAVAILABLE_WITH_CACHE
            assert cached.edges == fresh.edges

        asyncio.run(run())


def test_lock_timeout_keeps_serving(caplog):
    with tempfile.TemporaryDirectory() as tmpdir:
        config = IndexConfig.from_dict({"index": {"lock_timeout_ms": 50}})
        manager = _manager(_store(), tmpdir, config=config, persist=True)

        async def run():
            blocker = FileLock(manager.lock_path, stale_ms=60000)
            handle = await blocker.acquire()
            try:
                snapshot = await manager.snapshot()
                await manager.flush()
            finally:
                blocker.release(handle)
            return snapshot

        with caplog.at_level(logging.WARNING, logger="capindex.index.manager"):
            snapshot = asyncio.run(run())
        assert snapshot.edges
        assert manager.last_persist_ok is False
        assert not manager.snapshot_path.exists()
        assert "not persisted" in caplog.text


def test_snapshot_file_round_trip():
    with tempfile.TemporaryDirectory() as tmpdir:
        manager = _manager(_store(), tmpdir)
        snapshot = asyncio.run(manager.snapshot())
        path = write_snapshot(Path(tmpdir) / "relationship-index.json", snapshot)
        assert read_snapshot(path) == snapshot

        path.write_text("{not json")
        assert read_snapshot(path) is None
        assert read_snapshot(Path(tmpdir) / "missing.json") is None


def test_snapshot_stats():
    with tempfile.TemporaryDirectory() as tmpdir:
        clock = FakeClock()
        manager = _manager(_store(), tmpdir, clock=clock)
        snapshot = asyncio.run(manager.snapshot())
        stats = snapshot_stats(snapshot, now=clock.now + 10)
        assert stats["elements"] == 3
        assert stats["edges"] == 1
        assert stats["bands"]["same-domain"] == 1
        assert stats["edges_by_type"] == {"agent": 1, "skill": 1}
        assert stats["age_seconds"] == 10
        assert stats["strategy"] == "full"
        assert stats["comparisons"] == 3


def test_lazy_provider_resolves_once():
    calls = []

    def factory():
        calls.append(1)
        return object()

    provider = LazyProvider(factory, "thing")
    assert not provider.resolved
    assert provider() is provider.get()
    assert provider.resolved
    assert calls == [1]


def test_lazy_provider_detects_cycle():
    provider = None

    def factory():
        return provider.get()

    provider = LazyProvider(factory, "index manager")
    with pytest.raises(CircularInitializationError):
        provider.get()
    assert not provider.resolved


def test_graph_resolves_manager_on_first_use():
    with tempfile.TemporaryDirectory() as tmpdir:
        registry = {}
        provider = LazyProvider(lambda: registry["manager"], "index manager")
        graph = RelationshipGraph(provider)
        # the manager does not exist yet when the graph is built
        registry["manager"] = _manager(_store(), tmpdir)
        assert not provider.resolved

        result = asyncio.run(graph.find_related("agent:reviewer"))
        assert result["related"] == {1: ["skill:review"]}
        assert provider.resolved


class DuplicatingStore(MemoryElementStore):
    """Lists one element twice, which the relationship builder refuses."""

    def list_elements(self):
        refs = super().list_elements()
        return refs + refs[:1]


def test_related_survives_unexpected_build_error():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = DuplicatingStore({"skill:review": REVIEW, "agent:reviewer": REVIEW})
        manager = _manager(store, tmpdir)
        result = asyncio.run(manager.related("skill:review"))
        assert result.edges == []
        assert result.stale
        assert result.notice == UNAVAILABLE_NO_CACHE


def test_partial_snapshot_not_adopted():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = _store()
        store.broken.add("memory:garden")
        clock = FakeClock()
        writer = _manager(store, tmpdir, persist=True, clock=clock)

        async def build():
            snapshot = await writer.snapshot()
            await writer.flush()
            return snapshot

        partial = asyncio.run(build())
        assert partial.skipped == ("memory:garden",)
        assert writer.snapshot_path.exists()

        store.broken.clear()
        reader = _manager(store, tmpdir, clock=clock)
        snapshot = asyncio.run(reader.snapshot())
        assert reader.rebuild_count == 1
        assert snapshot.skipped == ()
        assert snapshot.element_count == 3
