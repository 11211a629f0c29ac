"""Lazily resolved handles for collaborators with cyclic dependencies.

A component that needs the index manager during its own construction gets a
``LazyProvider`` instead of the manager; the manager is built on first use.
"""

import logging
from typing import Callable, Generic, TypeVar

from .errors import CircularInitializationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LazyProvider(Generic[T]):
    """Resolve ``factory()`` once, on first access."""

    def __init__(self, factory: Callable[[], T], name: str = "instance"):
        self._factory = factory
        self._name = name
        self._instance: T | None = None
        self._resolved = False
        self._resolving = False

    @classmethod
    def of(cls, instance: T, name: str = "instance") -> "LazyProvider[T]":
        provider = cls(lambda: instance, name)
        provider.get()
        return provider

    @property
    def resolved(self) -> bool:
        return self._resolved

    def get(self) -> T:
        if self._resolved:
            return self._instance
        if self._resolving:
            raise CircularInitializationError(
                f"{self._name} was requested while it was still being constructed"
            )
        self._resolving = True
        try:
            instance = self._factory()
        finally:
            self._resolving = False
        self._instance = instance
        self._resolved = True
        logger.debug("Resolved lazy %s", self._name)
        return instance

    __call__ = get
