# kg_pipeline/models/entities.py

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, Field


class EntityKind(str, Enum):
    CONCEPT = "concept"
    METHOD = "method"
    DATASET = "dataset"


class ConceptCategory(str, Enum):
    TECHNIQUE = "technique"
    ARCHITECTURE = "architecture"
    LOSS_FUNCTION = "loss_function"
    REPRESENTATION = "representation"
    OTHER = "other"


class MethodCategory(str, Enum):
    ALGORITHM = "algorithm"
    TECHNIQUE = "technique"
    OPTIMIZATION = "optimization"
    RENDERING = "rendering"
    TRAINING = "training"


class ImprovementKind(str, Enum):
    SPEED = "speed"
    QUALITY = "quality"
    GENERALIZATION = "generalization"
    SIMPLICITY = "simplicity"


def _new_id() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Entity(BaseModel):
    """
    Common shape of the three canonical entity kinds.

    Fields
    ------
    normalized_key:
        Deduplication key, unique per kind. Datasets use their exact
        display name.
    introduced_by:
        Id of the paper that first introduced the entity (provenance).
    """

    entity_id: str = Field(default_factory=_new_id)
    name: str
    normalized_key: str
    description: str = ""
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    introduced_by: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)

    kind: EntityKind = EntityKind.CONCEPT


class Concept(Entity):
    kind: EntityKind = EntityKind.CONCEPT
    category: Optional[ConceptCategory] = None


class Method(Entity):
    kind: EntityKind = EntityKind.METHOD
    category: Optional[MethodCategory] = None
    computational_complexity: Optional[str] = None


class Dataset(Entity):
    kind: EntityKind = EntityKind.DATASET
    url: Optional[str] = None


AnyEntity = Union[Concept, Method, Dataset]

ENTITY_TYPES: Dict[EntityKind, type] = {
    EntityKind.CONCEPT: Concept,
    EntityKind.METHOD: Method,
    EntityKind.DATASET: Dataset,
}


class Edge(BaseModel):
    """
    A typed relationship between two nodes.

    `source` / `target` are paper ids for paper endpoints and entity ids
    for concept/method/dataset endpoints.
    """

    kind: str
    source: str
    target: str
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    improvement_kind: Optional[ImprovementKind] = None
    quantitative_gain: Optional[Dict[str, Any]] = None
    explanation: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
