# kg_pipeline/llm/schemas.py

"""
Strict response schemas, one per oracle call site.

A response that does not validate against its schema is treated as a
MalformedDataError by the oracle; nothing here accepts partial objects.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from kg_pipeline.models.entities import ConceptCategory, ImprovementKind, MethodCategory

_NULLISH = {"", "null", "none", "n/a"}


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and value.strip().lower() in _NULLISH:
        return None
    return value


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)


class _NamedPayload(_Payload):
    name: str = ""
    description: str = ""

    @field_validator("name", "description", mode="before")
    @classmethod
    def _null_text(cls, value: Any) -> Any:
        return "" if value is None else value


# ---------------------------------------------------------------------------
# Entity extraction
# ---------------------------------------------------------------------------

class RawConcept(_NamedPayload):
    category: Optional[ConceptCategory] = None
    # Missing confidence is read as "fully confident", like a missing weight.
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)

    @field_validator("category", mode="before")
    @classmethod
    def _coerce_category(cls, value: Any) -> Any:
        value = _blank_to_none(value)
        if value is None:
            return None
        try:
            return ConceptCategory(str(value).lower())
        except ValueError:
            return ConceptCategory.OTHER


class RawMethod(_NamedPayload):
    category: Optional[MethodCategory] = None
    computational_complexity: Optional[str] = None
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)

    @field_validator("category", mode="before")
    @classmethod
    def _coerce_category(cls, value: Any) -> Any:
        value = _blank_to_none(value)
        if value is None:
            return None
        try:
            return MethodCategory(str(value).lower())
        except ValueError:
            return None

    @field_validator("computational_complexity", mode="before")
    @classmethod
    def _blank_complexity(cls, value: Any) -> Any:
        return _blank_to_none(value)


class RawDataset(_NamedPayload):
    url: Optional[str] = None

    @field_validator("url", mode="before")
    @classmethod
    def _blank_url(cls, value: Any) -> Any:
        return _blank_to_none(value)


class RawMetric(_Payload):
    name: str
    value: Optional[Union[float, str]] = None
    unit: Optional[str] = None


class ExtractionPayload(_Payload):
    concepts: List[RawConcept] = Field(default_factory=list)
    methods: List[RawMethod] = Field(default_factory=list)
    datasets: List[RawDataset] = Field(default_factory=list)
    metrics: List[RawMetric] = Field(default_factory=list)

    @field_validator("concepts", "methods", "datasets", "metrics", mode="before")
    @classmethod
    def _null_list(cls, value: Any) -> Any:
        return [] if value is None else value


# ---------------------------------------------------------------------------
# Pairwise concept classification
# ---------------------------------------------------------------------------

class RelationshipType(str, Enum):
    IMPROVES_ON = "improves_on"
    EXTENDS = "extends"
    USES = "uses"
    EVALUATES = "evaluates"
    NONE = "none"


class ClassificationPayload(_Payload):
    has_relationship: bool = False
    relationship_type: RelationshipType = RelationshipType.NONE
    improvement_category: Optional[ImprovementKind] = None
    quantitative_gain: Optional[Dict[str, Any]] = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    explanation: str = ""

    @field_validator("explanation", mode="before")
    @classmethod
    def _null_explanation(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("relationship_type", mode="before")
    @classmethod
    def _coerce_type(cls, value: Any) -> Any:
        value = _blank_to_none(value)
        return RelationshipType.NONE if value is None else value

    @field_validator("improvement_category", mode="before")
    @classmethod
    def _coerce_improvement(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @property
    def is_improvement(self) -> bool:
        return self.has_relationship and self.relationship_type is RelationshipType.IMPROVES_ON
