# kg_pipeline/ingest/__init__.py

from .semantic_scholar import CitationGraphFetcher, SemanticScholarFetcher
from .traversal import TraversalConfig, TraversalState, expand

__all__ = [
    "CitationGraphFetcher",
    "SemanticScholarFetcher",
    "TraversalConfig",
    "TraversalState",
    "expand",
]
