from .paper import Paper, PaperMetadata, PaperRef
from .entities import (
    AnyEntity,
    Concept,
    ConceptCategory,
    Dataset,
    Edge,
    Entity,
    EntityKind,
    ImprovementKind,
    Method,
    MethodCategory,
)

__all__ = [
    "AnyEntity",
    "Concept",
    "ConceptCategory",
    "Dataset",
    "Edge",
    "Entity",
    "EntityKind",
    "ImprovementKind",
    "Method",
    "MethodCategory",
    "Paper",
    "PaperMetadata",
    "PaperRef",
]
