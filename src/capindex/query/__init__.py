"""Queries over the relationship index."""

from .graph import ElementPath, RelationshipGraph

__all__ = ["ElementPath", "RelationshipGraph"]
