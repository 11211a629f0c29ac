"""Abstract base class for element stores and factory function."""

import hashlib
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable

from ..models import ElementRef

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[], None]


class ElementStoreBase(ABC):
    """Read access to a portfolio's elements plus change notification."""

    def __init__(self) -> None:
        self._subscribers: list[ChangeCallback] = []

    @abstractmethod
    def list_elements(self) -> list[ElementRef]:
        """Return references to every element, sorted by id."""

    @abstractmethod
    def read_content(self, element_id: str) -> str:
        """Return the textual content of an element.

        Raises ElementReadError if the element is missing or unreadable.
        """

    def subscribe(self, callback: ChangeCallback) -> None:
        if callback not in self._subscribers:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: ChangeCallback) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def notify_changed(self) -> None:
        """Tell subscribers that elements were created, edited or deleted."""
        for callback in list(self._subscribers):
            try:
                callback()
            except Exception:
                logger.exception("Element change subscriber %r failed", callback)


def population_fingerprint(refs: list[ElementRef]) -> str:
    """Hash of ids and modification times; changes whenever the population does."""
    digest = hashlib.sha256()
    for ref in sorted(refs, key=lambda r: r.id):
        digest.update(f"{ref.id}\x00{ref.modified:.6f}\n".encode("utf-8"))
    return digest.hexdigest()[:32]


def get_element_store(backend: str, root: str | Path | None = None) -> ElementStoreBase:
    """Factory: return the element store for a backend name."""
    if backend == "filesystem":
        from .filesystem import FilesystemElementStore
        if root is None:
            raise ValueError("The filesystem element store needs a portfolio root")
        return FilesystemElementStore(root)
    elif backend == "memory":
        from .memory import MemoryElementStore
        return MemoryElementStore()
    else:
        raise ValueError(f"Unknown element store backend: {backend}")
