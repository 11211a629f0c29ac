"""Portfolio watcher: turns file events into element change notifications."""

import logging
import threading
from pathlib import Path
from typing import Callable

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .storage.filesystem import ELEMENT_SUFFIXES

logger = logging.getLogger(__name__)


class ElementChangeHandler(FileSystemEventHandler):
    """Collects element file events and debounces them."""

    def __init__(self, root: Path, debounce: float = 1.0):
        super().__init__()
        self._root = root
        self._pending: set[str] = set()
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._debounce = debounce
        self._callback: Callable[[list[str]], None] | None = None

    def set_callback(self, callback: Callable[[list[str]], None]) -> None:
        self._callback = callback

    def _is_element(self, path: str) -> bool:
        p = Path(path)
        try:
            parts = p.relative_to(self._root).parts
        except ValueError:
            return False
        # state, config and editor temp files live under hidden names
        if any(part.startswith(".") for part in parts):
            return False
        return p.suffix.lower() in ELEMENT_SUFFIXES

    def on_created(self, event):
        if not event.is_directory and self._is_element(event.src_path):
            self._add(event.src_path)

    def on_modified(self, event):
        if not event.is_directory and self._is_element(event.src_path):
            self._add(event.src_path)

    def on_deleted(self, event):
        if not event.is_directory and self._is_element(event.src_path):
            self._add(event.src_path)

    def on_moved(self, event):
        for path in (event.src_path, getattr(event, "dest_path", "")):
            if path and not event.is_directory and self._is_element(path):
                self._add(path)

    def _add(self, path: str) -> None:
        with self._lock:
            self._pending.add(path)
            logger.debug("Detected element change: %s", path)
            if self._timer:
                self._timer.cancel()
            self._timer = threading.Timer(self._debounce, self._flush)
            self._timer.daemon = True
            self._timer.start()

    def _flush(self) -> None:
        with self._lock:
            paths = sorted(self._pending)
            self._pending.clear()
            self._timer = None
        if paths and self._callback:
            self._callback(paths)

    def cancel(self) -> None:
        with self._lock:
            if self._timer:
                self._timer.cancel()
                self._timer = None
            self._pending.clear()


class PortfolioWatcher:
    """Watches a portfolio directory and reports batches of changed element files.

    The callback runs on a timer thread.
    """

    def __init__(self, root: str | Path, callback: Callable[[list[str]], None], debounce: float = 1.0):
        self.root = Path(root).expanduser().resolve()
        self.handler = ElementChangeHandler(self.root, debounce=debounce)
        self.handler.set_callback(callback)
        self.observer = Observer()

    def start(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        self.observer.schedule(self.handler, str(self.root), recursive=True)
        self.observer.start()
        logger.info("Watching %s for element changes", self.root)

    def stop(self) -> None:
        self.handler.cancel()
        self.observer.stop()
        self.observer.join()
        logger.info("Stopped watching %s", self.root)
