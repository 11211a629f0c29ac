"""Advisory cross-process file lock with stale-lock recovery.

The lock is a marker file created with ``O_CREAT | O_EXCL``. It records the
owner token and acquisition time so a waiter can recognise, and break, a lock
left behind by a crashed process.
"""

import asyncio
import json
import logging
import os
import random
import socket
import time
import uuid
from pathlib import Path
from typing import Any

from .errors import LockTimeout
from .models import LockHandle

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 5000
DEFAULT_STALE_MS = 30000
MIN_RETRY_MS = 25
MAX_RETRY_MS = 250


def new_owner_token() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class FileLock:
    """Serialises writers across processes sharing one lock path."""

    def __init__(
        self,
        path: str | Path,
        timeout_ms: float = DEFAULT_TIMEOUT_MS,
        stale_ms: float = DEFAULT_STALE_MS,
    ):
        self.path = Path(path)
        self.timeout_ms = timeout_ms
        self.stale_ms = stale_ms
        self._handle: LockHandle | None = None

    async def acquire(self) -> LockHandle:
        """Create the lock marker, waiting up to ``timeout_ms``.

        Raises LockTimeout when the deadline passes.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        owner = new_owner_token()
        start = time.monotonic()
        deadline = start + self.timeout_ms / 1000.0
        delay_ms = MIN_RETRY_MS

        while True:
            handle = self._try_create(owner)
            if handle is not None:
                logger.debug("Acquired lock %s as %s", self.path, owner)
                return handle

            marker = self.holder()
            if marker is None:
                # released between our attempt and the read
                continue
            if self._is_stale(marker) and self._break_stale(marker):
                continue

            now = time.monotonic()
            if now >= deadline:
                holder = marker.get("owner") if marker else None
                raise LockTimeout(self.path, holder, (now - start) * 1000.0)

            sleep_ms = min(delay_ms * random.uniform(0.5, 1.0), (deadline - now) * 1000.0)
            await asyncio.sleep(max(sleep_ms, 1.0) / 1000.0)
            delay_ms = min(delay_ms * 2, MAX_RETRY_MS)

    def release(self, handle: LockHandle | None = None) -> None:
        """Remove the marker if it is still ours. Safe to call repeatedly."""
        handle = handle or self._handle
        if handle is None or handle.released:
            return
        handle.released = True
        if self._handle is handle:
            self._handle = None

        marker = self.holder()
        if marker is None or marker.get("owner") != handle.owner:
            logger.debug("Lock %s no longer held by %s, nothing to release", self.path, handle.owner)
            return
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass

    def holder(self) -> dict[str, Any] | None:
        """Return the current marker contents, ``{}`` if unreadable, None if absent."""
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError:
            return {}
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            return {}
        return data if isinstance(data, dict) else {}

    def is_held(self, handle: LockHandle) -> bool:
        if handle.released:
            return False
        marker = self.holder()
        return bool(marker) and marker.get("owner") == handle.owner and not self._is_stale(marker)

    def _try_create(self, owner: str) -> LockHandle | None:
        acquired_at = time.time()
        payload = json.dumps({"owner": owner, "pid": os.getpid(), "acquired_at": acquired_at})
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return None
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(payload)
        self._handle = LockHandle(path=str(self.path), owner=owner, acquired_at=acquired_at)
        return self._handle

    def _marker_time(self, marker: dict[str, Any] | None) -> float | None:
        if marker is None:
            return None
        acquired_at = marker.get("acquired_at")
        if isinstance(acquired_at, (int, float)) and not isinstance(acquired_at, bool):
            return float(acquired_at)
        # Marker still being written or corrupt: fall back to the file age
        try:
            return self.path.stat().st_mtime
        except FileNotFoundError:
            return None

    def _is_stale(self, marker: dict[str, Any] | None) -> bool:
        acquired_at = self._marker_time(marker)
        if acquired_at is None:
            return False
        return (time.time() - acquired_at) * 1000.0 > self.stale_ms

    @property
    def guard_path(self) -> Path:
        return self.path.with_name(f"{self.path.name}.break")

    def _break_stale(self, marker: dict[str, Any]) -> bool:
        """Delete a stale marker. Returns True if it is gone.

        Only the waiter holding the break guard may delete another owner's
        marker, and only after re-reading it and finding the same stale
        marker, so a fresh lock taken meanwhile is never removed.
        """
        guard = self.guard_path
        try:
            fd = os.open(guard, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            self._clear_abandoned_guard(guard)
            return False
        os.close(fd)

        try:
            current = self.holder()
            if current is None:
                return True
            if current != marker or not self._is_stale(current):
                return False
            age_ms = (time.time() - (self._marker_time(current) or time.time())) * 1000.0
            try:
                self.path.unlink()
            except FileNotFoundError:
                return True
        finally:
            guard.unlink(missing_ok=True)

        logger.warning(
            "Broke stale lock %s held by %s (age %.0fms > %.0fms)",
            self.path,
            marker.get("owner", "<unknown>"),
            age_ms,
            self.stale_ms,
        )
        return True

    def _clear_abandoned_guard(self, guard: Path) -> None:
        """Remove a break guard left behind by a waiter that died mid-break."""
        try:
            age_ms = (time.time() - guard.stat().st_mtime) * 1000.0
        except FileNotFoundError:
            return
        if age_ms > self.stale_ms:
            logger.warning("Removing abandoned lock break guard %s", guard)
            guard.unlink(missing_ok=True)

    async def __aenter__(self) -> LockHandle:
        return await self.acquire()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.release()
