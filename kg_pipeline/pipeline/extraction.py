# kg_pipeline/pipeline/extraction.py

"""
Extraction pipeline: paper -> validated, deduplicated, persisted entities.

Three passes run in a fixed order, followed by persistence:

  1. raw extraction      one structured oracle call per paper
  2. disambiguation      normalized-key lookups against the store
  3. validation/scoring  drop incomplete, low-confidence and repeated items

Persistence is get-or-insert per item; a ConstraintViolationError from a
concurrent insert is resolved by re-reading the winner. Store errors on
one item are recorded and do not stop the others.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Set, Tuple

from pydantic import ValidationError

from kg_pipeline.config.settings import settings
from kg_pipeline.errors import (
    ConstraintViolationError,
    KnowledgeGraphError,
    MalformedDataError,
    TransientExternalError,
)
from kg_pipeline.graph.schema import PAPER_LINK_FOR_KIND
from kg_pipeline.graph.store import CanonicalStore
from kg_pipeline.llm.client import LLMOracle
from kg_pipeline.llm.prompts import build_extraction_prompt
from kg_pipeline.llm.schemas import ExtractionPayload, RawMetric
from kg_pipeline.models.entities import (
    AnyEntity,
    Concept,
    Dataset,
    EntityKind,
    Method,
)
from kg_pipeline.models.paper import Paper
from kg_pipeline.utils.text import normalize_entity_name

logger = logging.getLogger(__name__)


@dataclass
class ExtractedItem:
    """One concept, method or dataset as it moves through the passes."""

    kind: EntityKind
    name: str
    normalized_key: str
    description: str = ""
    confidence: float = 1.0
    category: Optional[str] = None
    computational_complexity: Optional[str] = None
    url: Optional[str] = None

    # Set when disambiguation found a canonical entity, and after persistence.
    entity_id: Optional[str] = None
    reused: bool = False


@dataclass
class PersistenceFailure:
    kind: EntityKind
    name: str
    error: str


@dataclass
class ValidatedEntities:
    paper_id: str
    concepts: List[ExtractedItem] = field(default_factory=list)
    methods: List[ExtractedItem] = field(default_factory=list)
    datasets: List[ExtractedItem] = field(default_factory=list)
    metrics: List[RawMetric] = field(default_factory=list)

    entities_created: int = 0
    edges_created: int = 0
    failures: List[PersistenceFailure] = field(default_factory=list)

    # Set when pass 1 degraded to an empty result.
    oracle_error: Optional[str] = None

    def items(self) -> List[ExtractedItem]:
        return [*self.concepts, *self.methods, *self.datasets]

    @property
    def concept_ids(self) -> List[str]:
        return [c.entity_id for c in self.concepts if c.entity_id]

    @property
    def is_empty(self) -> bool:
        return not (self.concepts or self.methods or self.datasets)


class ExtractionPipeline:
    def __init__(
        self,
        oracle: LLMOracle,
        store: CanonicalStore,
        *,
        max_fulltext_chars: Optional[int] = None,
        min_confidence: Optional[float] = None,
        short_description_chars: Optional[int] = None,
        short_description_penalty: Optional[float] = None,
    ) -> None:
        self.oracle = oracle
        self.store = store
        self.max_fulltext_chars = (
            settings.max_fulltext_chars if max_fulltext_chars is None else max_fulltext_chars
        )
        self.min_confidence = settings.min_confidence if min_confidence is None else min_confidence
        self.short_description_chars = (
            settings.short_description_chars
            if short_description_chars is None
            else short_description_chars
        )
        self.short_description_penalty = (
            settings.short_description_penalty
            if short_description_penalty is None
            else short_description_penalty
        )

    async def extract(self, paper: Paper) -> ValidatedEntities:
        result = ValidatedEntities(paper_id=paper.paper_id)

        payload, error = await self.raw_extraction(paper)
        result.oracle_error = error

        items = self.disambiguate(payload)
        result.concepts, result.methods, result.datasets = self.validate_and_score(items)
        result.metrics = [m for m in payload.metrics if m.name]

        self.persist(paper, result)

        logger.info(
            "Extracted %d concept(s), %d method(s), %d dataset(s) from %s "
            "(%d new entities, %d new edges, %d failures)",
            len(result.concepts),
            len(result.methods),
            len(result.datasets),
            paper.paper_id,
            result.entities_created,
            result.edges_created,
            len(result.failures),
        )
        return result

    # ------------------------------------------------------------------
    # Pass 1: raw extraction
    # ------------------------------------------------------------------
    async def raw_extraction(self, paper: Paper) -> Tuple[ExtractionPayload, Optional[str]]:
        """
        Ask the oracle for {concepts, methods, datasets, metrics}.

        Oracle failures degrade to an empty payload; the error message is
        returned alongside so callers can report it.
        """
        prompt = build_extraction_prompt(paper, self.max_fulltext_chars)
        try:
            payload = await self.oracle.complete(prompt, structured_output=ExtractionPayload)
        except (TransientExternalError, MalformedDataError) as exc:
            logger.warning("Raw extraction failed for %s: %s", paper.paper_id, exc)
            return ExtractionPayload(), str(exc)
        return payload, None

    # ------------------------------------------------------------------
    # Pass 2: disambiguation
    # ------------------------------------------------------------------
    def _bind(self, item: ExtractedItem) -> ExtractedItem:
        existing = self.store.get_by_normalized_key(item.kind, item.normalized_key)
        if existing is not None:
            item.name = existing.name
            item.normalized_key = existing.normalized_key
            item.entity_id = existing.entity_id
            item.reused = True
        return item

    def disambiguate(self, payload: ExtractionPayload) -> List[ExtractedItem]:
        """
        Compute keys and rebind items to canonical entities where the key
        is already known.
        """
        items: List[ExtractedItem] = []

        for c in payload.concepts:
            items.append(
                ExtractedItem(
                    kind=EntityKind.CONCEPT,
                    name=c.name,
                    normalized_key=normalize_entity_name(c.name),
                    description=c.description,
                    confidence=c.confidence,
                    category=c.category.value if c.category else None,
                )
            )
        for m in payload.methods:
            items.append(
                ExtractedItem(
                    kind=EntityKind.METHOD,
                    name=m.name,
                    normalized_key=normalize_entity_name(m.name),
                    description=m.description,
                    confidence=m.confidence,
                    category=m.category.value if m.category else None,
                    computational_complexity=m.computational_complexity,
                )
            )
        for d in payload.datasets:
            # Datasets match on their exact display name.
            items.append(
                ExtractedItem(
                    kind=EntityKind.DATASET,
                    name=d.name,
                    normalized_key=d.name,
                    description=d.description,
                    url=d.url,
                )
            )

        for item in items:
            if item.normalized_key:
                self._bind(item)
        return items

    # ------------------------------------------------------------------
    # Pass 3: validation & scoring
    # ------------------------------------------------------------------
    def validate_and_score(
        self, items: List[ExtractedItem]
    ) -> Tuple[List[ExtractedItem], List[ExtractedItem], List[ExtractedItem]]:
        """
        Drop incomplete and low-confidence items, then keep the first
        surviving item for each key.
        """
        concepts: List[ExtractedItem] = []
        methods: List[ExtractedItem] = []
        datasets: List[ExtractedItem] = []
        seen: Set[Tuple[EntityKind, str]] = set()

        for item in items:
            if not item.name or not item.normalized_key or not item.description:
                logger.debug("Dropping incomplete %s %r", item.kind.value, item.name)
                continue

            if item.kind is not EntityKind.DATASET and item.confidence < self.min_confidence:
                logger.debug(
                    "Dropping low-confidence %s %r (%.2f)",
                    item.kind.value,
                    item.name,
                    item.confidence,
                )
                continue

            marker = (item.kind, item.normalized_key)
            if marker in seen:
                logger.debug("Dropping repeated %s %r", item.kind.value, item.name)
                continue
            seen.add(marker)

            if item.kind is EntityKind.DATASET:
                datasets.append(item)
            elif item.kind is EntityKind.CONCEPT:
                # Length of the description stands in for its quality.
                if len(item.description) < self.short_description_chars:
                    item.confidence *= self.short_description_penalty
                concepts.append(item)
            else:
                methods.append(item)

            item.confidence = min(1.0, max(0.0, item.confidence))

        return concepts, methods, datasets

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def _build_entity(self, paper: Paper, item: ExtractedItem) -> AnyEntity:
        common = dict(
            name=item.name,
            normalized_key=item.normalized_key,
            description=item.description,
            confidence=item.confidence,
            introduced_by=paper.paper_id,
        )
        try:
            if item.kind is EntityKind.CONCEPT:
                return Concept(category=item.category, **common)
            if item.kind is EntityKind.METHOD:
                return Method(
                    category=item.category,
                    computational_complexity=item.computational_complexity,
                    **common,
                )
            return Dataset(url=item.url, **common)
        except ValidationError as exc:
            raise MalformedDataError(f"invalid {item.kind.value} {item.name!r}: {exc}") from exc

    def _get_or_insert(self, paper: Paper, item: ExtractedItem) -> Tuple[AnyEntity, bool]:
        existing = self.store.get_by_normalized_key(item.kind, item.normalized_key)
        if existing is not None:
            return existing, False

        try:
            return self.store.insert(item.kind, self._build_entity(paper, item)), True
        except ConstraintViolationError:
            # Another worker inserted the same key first.
            existing = self.store.get_by_normalized_key(item.kind, item.normalized_key)
            if existing is None:
                raise
            return existing, False

    def persist(self, paper: Paper, result: ValidatedEntities) -> None:
        for item in result.items():
            try:
                entity, created = self._get_or_insert(paper, item)
                item.entity_id = entity.entity_id
                item.name = entity.name
                if created:
                    result.entities_created += 1

                attrs = {}
                if item.kind is EntityKind.CONCEPT:
                    attrs["confidence"] = item.confidence
                _, linked = self.store.link(
                    PAPER_LINK_FOR_KIND[item.kind],
                    paper.paper_id,
                    entity.entity_id,
                    **attrs,
                )
                if linked:
                    result.edges_created += 1
            except KnowledgeGraphError as exc:
                logger.warning(
                    "Could not persist %s %r for %s: %s",
                    item.kind.value,
                    item.name,
                    paper.paper_id,
                    exc,
                )
                result.failures.append(
                    PersistenceFailure(kind=item.kind, name=item.name, error=str(exc))
                )
