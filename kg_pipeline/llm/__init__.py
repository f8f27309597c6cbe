# kg_pipeline/llm/__init__.py

from .client import LLMOracle, OpenAIOracle, parse_structured
from .schemas import ClassificationPayload, ExtractionPayload, RelationshipType

__all__ = [
    "LLMOracle",
    "OpenAIOracle",
    "parse_structured",
    "ClassificationPayload",
    "ExtractionPayload",
    "RelationshipType",
]
