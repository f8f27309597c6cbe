# kg_pipeline/errors.py

"""
Error taxonomy shared by the pipeline stages.

Everything raised on purpose by this package derives from
KnowledgeGraphError, so stage boundaries can tell "this item is bad"
(catch, log, skip) apart from "the environment is broken" (let it fail
the paper).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


class KnowledgeGraphError(Exception):
    """Base class for all expected pipeline errors."""


class TransientExternalError(KnowledgeGraphError):
    """
    Network / timeout / rate-limit failure talking to the oracle or the
    citation fetcher. Callers may retry with backoff.
    """

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MalformedDataError(KnowledgeGraphError):
    """
    Unparsable or schema-violating data (oracle output, store row).
    Never retried with the same input.
    """


class ConstraintViolationError(KnowledgeGraphError):
    """
    Insert rejected because an entity with the same key already exists.
    Resolved by re-reading the existing entity.
    """

    def __init__(self, kind: str, key: str) -> None:
        super().__init__(f"{kind} with key {key!r} already exists")
        self.kind = kind
        self.key = key


class ReferentialIntegrityError(KnowledgeGraphError):
    """A link would point at a missing node, or would be a forbidden self-loop."""


class StageError(KnowledgeGraphError):
    """A whole pipeline stage failed for one paper."""

    def __init__(self, stage: str, paper_id: str, cause: BaseException) -> None:
        super().__init__(f"stage {stage!r} failed for paper {paper_id}: {cause!r}")
        self.stage = stage
        self.paper_id = paper_id
        self.cause = cause


@dataclass
class ConsistencyViolation:
    """
    A validator finding. Reported inside a ValidationReport, never raised.
    """

    check: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
