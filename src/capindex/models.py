"""Data models used throughout capindex."""

from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ElementType(str, Enum):
    """Kinds of element a portfolio can hold."""
    PERSONA = "persona"
    SKILL = "skill"
    TEMPLATE = "template"
    AGENT = "agent"
    MEMORY = "memory"
    ENSEMBLE = "ensemble"

    @property
    def folder(self) -> str:
        return _FOLDERS.get(self.value, f"{self.value}s")


_FOLDERS = {"memory": "memories"}


class Band(str, Enum):
    """Qualitative classification of a relationship edge."""
    SAME_DOMAIN = "same-domain"
    COMMON_WORD_OVERLAP = "common-word-overlap"
    DISTINCT_DOMAINS = "distinct-domains"
    UNCLASSIFIED = "unclassified"


def format_element_id(element_type: str, name: str) -> str:
    return f"{element_type}:{name}"


def parse_element_id(element_id: str) -> tuple[str, str]:
    """Split a ``type:name`` id. Raises ValueError on malformed ids."""
    element_type, sep, name = element_id.partition(":")
    if not sep or not element_type or not name:
        raise ValueError(f"Invalid element id {element_id!r}, expected 'type:name'")
    return element_type, name


@dataclass(frozen=True)
class ElementRef:
    """A reference to an element held by an element store."""
    type: str
    name: str
    modified: float = 0.0

    @property
    def id(self) -> str:
        return format_element_id(self.type, self.name)


@dataclass(frozen=True)
class RelationshipEdge:
    """An undirected, scored relationship between two elements.

    ``from_id`` always sorts before ``to_id``; use ``create`` to build edges
    from an arbitrary pair.
    """
    from_id: str
    to_id: str
    jaccard: float
    entropy_from: float
    entropy_to: float
    band: Band
    score: float

    @classmethod
    def create(
        cls,
        id_a: str,
        id_b: str,
        jaccard: float,
        entropy_a: float,
        entropy_b: float,
        band: Band,
        score: float,
    ) -> "RelationshipEdge":
        if id_a == id_b:
            raise ValueError(f"Self-relationship is not allowed: {id_a}")
        if id_b < id_a:
            id_a, id_b = id_b, id_a
            entropy_a, entropy_b = entropy_b, entropy_a
        return cls(id_a, id_b, jaccard, entropy_a, entropy_b, band, score)

    @property
    def key(self) -> tuple[str, str]:
        return (self.from_id, self.to_id)

    def involves(self, element_id: str) -> bool:
        return element_id in (self.from_id, self.to_id)

    def other(self, element_id: str) -> str:
        """Return the id on the other side of the edge."""
        if element_id == self.from_id:
            return self.to_id
        if element_id == self.to_id:
            return self.from_id
        raise ValueError(f"{element_id} is not part of edge {self.from_id} <-> {self.to_id}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "from": self.from_id,
            "to": self.to_id,
            "jaccard": self.jaccard,
            "entropy_from": self.entropy_from,
            "entropy_to": self.entropy_to,
            "band": self.band.value,
            "score": self.score,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RelationshipEdge":
        return cls.create(
            data["from"],
            data["to"],
            float(data["jaccard"]),
            float(data["entropy_from"]),
            float(data["entropy_to"]),
            Band(data["band"]),
            float(data.get("score", 0.0)),
        )


@dataclass(frozen=True)
class IndexSnapshot:
    """One immutable result of an index build."""
    built_at: float
    element_count: int
    edges: tuple[RelationshipEdge, ...]
    config_version: str
    fingerprint: str = ""
    strategy: str = "full"
    comparisons: int = 0
    skipped: tuple[str, ...] = ()

    def edges_for(self, element_id: str) -> list[RelationshipEdge]:
        related = [e for e in self.edges if e.involves(element_id)]
        related.sort(key=lambda e: (-e.score, e.from_id, e.to_id))
        return related

    def age(self, now: float) -> float:
        return max(0.0, now - self.built_at)


@dataclass
class BuildResult:
    """Edges and bookkeeping produced by one relationship build."""
    edges: list[RelationshipEdge]
    comparisons: int
    strategy: str
    cluster_comparisons: int = 0
    comparisons_by_type_pair: Counter = field(default_factory=Counter)


@dataclass
class LockHandle:
    """Proof of a held file lock."""
    path: str
    owner: str
    acquired_at: float
    released: bool = False
