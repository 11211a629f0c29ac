"""Tests for the cross-process file lock."""

import asyncio
import json
import logging
import multiprocessing
import os
import sys
import tempfile
import time
from pathlib import Path

import pytest

from capindex.errors import LockTimeout
from capindex.locking import FileLock


def test_second_acquire_times_out():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "index.lock"

        async def run():
            first = FileLock(path)
            handle = await first.acquire()
            with pytest.raises(LockTimeout) as exc:
                await FileLock(path, timeout_ms=100).acquire()
            assert exc.value.holder == handle.owner
            first.release(handle)
            second = await FileLock(path, timeout_ms=100).acquire()
            assert second.owner != handle.owner

        asyncio.run(run())


def test_concurrent_acquire_is_exclusive():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "index.lock"
        inside = 0
        peak = 0

        async def worker():
            nonlocal inside, peak
            lock = FileLock(path, timeout_ms=5000)
            async with lock:
                inside += 1
                peak = max(peak, inside)
                await asyncio.sleep(0.01)
                inside -= 1

        async def run():
            await asyncio.gather(*(worker() for _ in range(5)))

        asyncio.run(run())
        assert peak == 1
        assert not path.exists()


def test_stale_lock_is_broken(caplog):
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "index.lock"
        path.write_text(json.dumps({"owner": "crashed-host:123:dead", "pid": 123, "acquired_at": time.time() - 3600}))

        lock = FileLock(path, timeout_ms=500, stale_ms=1000)
        with caplog.at_level(logging.WARNING, logger="capindex.locking"):
            handle = asyncio.run(lock.acquire())
        assert lock.holder()["owner"] == handle.owner
        assert "crashed-host:123:dead" in caplog.text
        assert list(Path(tmpdir).iterdir()) == [path]


def test_unreadable_stale_marker_uses_file_age():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "index.lock"
        path.write_text("not json")
        old = time.time() - 3600
        os.utime(path, (old, old))

        lock = FileLock(path, timeout_ms=500, stale_ms=1000)
        handle = asyncio.run(lock.acquire())
        assert lock.is_held(handle)


def test_fresh_lock_is_not_broken():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "index.lock"
        path.write_text(json.dumps({"owner": "busy-host:1:beef", "pid": 1, "acquired_at": time.time()}))
        with pytest.raises(LockTimeout):
            asyncio.run(FileLock(path, timeout_ms=100, stale_ms=60000).acquire())
        assert json.loads(path.read_text())["owner"] == "busy-host:1:beef"


def test_release_is_idempotent():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "index.lock"
        lock = FileLock(path)
        handle = asyncio.run(lock.acquire())
        lock.release(handle)
        lock.release(handle)
        lock.release()
        assert handle.released
        assert not path.exists()


def test_release_leaves_foreign_marker():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "index.lock"
        lock = FileLock(path)
        handle = asyncio.run(lock.acquire())
        # the lock was broken and taken over by someone else meanwhile
        path.write_text(json.dumps({"owner": "other:2:cafe", "pid": 2, "acquired_at": time.time()}))
        lock.release(handle)
        assert path.exists()


def _hold_lock(path, ready, done):
    async def hold():
        lock = FileLock(path)
        handle = await lock.acquire()
        ready.set()
        while not done.is_set():
            await asyncio.sleep(0.01)
        lock.release(handle)

    asyncio.run(hold())


@pytest.mark.skipif(sys.platform == "win32", reason="needs fork")
def test_lock_excludes_other_process():
    ctx = multiprocessing.get_context("fork")
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "index.lock"
        ready, done = ctx.Event(), ctx.Event()
        proc = ctx.Process(target=_hold_lock, args=(path, ready, done))
        proc.start()
        try:
            assert ready.wait(10)
            with pytest.raises(LockTimeout):
                asyncio.run(FileLock(path, timeout_ms=200).acquire())
        finally:
            done.set()
            proc.join(10)
        assert proc.exitcode == 0

        lock = FileLock(path, timeout_ms=1000)
        handle = asyncio.run(lock.acquire())
        assert lock.is_held(handle)
        lock.release(handle)


def _stale_marker(path, owner="crashed-host:123:dead"):
    marker = {"owner": owner, "pid": 123, "acquired_at": time.time() - 3600}
    path.write_text(json.dumps(marker))
    return marker


def test_break_waits_for_guard_holder():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "index.lock"
        _stale_marker(path)
        lock = FileLock(path, timeout_ms=100, stale_ms=1000)
        # another waiter is mid-break
        lock.guard_path.touch()
        with pytest.raises(LockTimeout):
            asyncio.run(lock.acquire())
        assert json.loads(path.read_text())["owner"] == "crashed-host:123:dead"
        assert lock.guard_path.exists()


def test_abandoned_guard_is_cleared(caplog):
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "index.lock"
        _stale_marker(path)
        lock = FileLock(path, timeout_ms=1000, stale_ms=1000)
        lock.guard_path.touch()
        old = time.time() - 3600
        os.utime(lock.guard_path, (old, old))

        with caplog.at_level(logging.WARNING, logger="capindex.locking"):
            handle = asyncio.run(lock.acquire())
        assert lock.is_held(handle)
        assert "abandoned" in caplog.text
        assert not lock.guard_path.exists()


def test_break_keeps_lock_taken_meanwhile():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "index.lock"
        seen = _stale_marker(path)
        # the stale marker was broken and the lock retaken before this waiter acts
        fresh = {"owner": "fresh-host:7:f00d", "pid": 7, "acquired_at": time.time()}
        path.write_text(json.dumps(fresh))

        lock = FileLock(path, stale_ms=1000)
        assert lock._break_stale(seen) is False
        assert json.loads(path.read_text()) == fresh
        assert not lock.guard_path.exists()
