"""Relationship discovery: exhaustive and sampled strategies."""

from .keywords import KeywordCluster, build_keyword_clusters
from .relationships import RelationshipBuilder, ScoredElement, prepare_element, prepare_elements

__all__ = [
    "KeywordCluster",
    "RelationshipBuilder",
    "ScoredElement",
    "build_keyword_clusters",
    "prepare_element",
    "prepare_elements",
]
