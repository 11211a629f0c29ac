"""Capability-relationship index for element portfolios."""

from .config import IndexConfig, load_config
from .index.manager import IndexManager, RelatedResult
from .models import Band, ElementRef, ElementType, IndexSnapshot, RelationshipEdge

__version__ = "0.1.0"

__all__ = [
    "Band",
    "ElementRef",
    "ElementType",
    "IndexConfig",
    "IndexManager",
    "IndexSnapshot",
    "RelatedResult",
    "RelationshipEdge",
    "load_config",
]
