"""Element store abstraction and implementations."""

from .base import ElementStoreBase, get_element_store, population_fingerprint

__all__ = ["ElementStoreBase", "get_element_store", "population_fingerprint"]
