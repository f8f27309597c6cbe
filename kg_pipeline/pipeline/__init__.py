# kg_pipeline/pipeline/__init__.py

from .coordinator import BatchResult, PaperTask, PipelineCoordinator, RunStats, TaskStatus
from .extraction import ExtractionPipeline, ValidatedEntities
from .relationships import RelationshipEngine, RelationshipResult
from .validator import GraphValidator, ValidationReport

__all__ = [
    "BatchResult",
    "ExtractionPipeline",
    "GraphValidator",
    "PaperTask",
    "PipelineCoordinator",
    "RelationshipEngine",
    "RelationshipResult",
    "RunStats",
    "TaskStatus",
    "ValidatedEntities",
    "ValidationReport",
]
