# kg_pipeline/pipeline/relationships.py

"""
Relationship engine: classify a paper's concepts against existing ones
and record CONCEPT_IMPROVES edges.

Only directed (new, old) pairs classified as "improves_on" with
has_relationship=True are persisted. Citation edges are not classified
again here; they were recorded by the traversal.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from kg_pipeline.config.settings import settings
from kg_pipeline.errors import KnowledgeGraphError
from kg_pipeline.graph.schema import EdgeType
from kg_pipeline.graph.store import CanonicalStore
from kg_pipeline.llm.client import LLMOracle
from kg_pipeline.llm.prompts import build_classification_prompt
from kg_pipeline.llm.schemas import ClassificationPayload
from kg_pipeline.models.entities import Concept, Edge, EntityKind, ImprovementKind
from kg_pipeline.models.paper import Paper
from kg_pipeline.pipeline.extraction import ValidatedEntities

logger = logging.getLogger(__name__)

DEFAULT_IMPROVEMENT_KIND = ImprovementKind.QUALITY
DEFAULT_CONFIDENCE = 0.7


@dataclass
class PairFailure:
    new_concept_id: str
    old_concept_id: str
    error: str


@dataclass
class RelationshipResult:
    paper_id: str
    improvements: List[Edge] = field(default_factory=list)
    classified_pairs: int = 0
    skipped_pairs: int = 0
    citations: List[Edge] = field(default_factory=list)
    failures: List[PairFailure] = field(default_factory=list)


class RelationshipEngine:
    def __init__(
        self,
        oracle: LLMOracle,
        store: CanonicalStore,
        *,
        candidate_limit: Optional[int] = None,
    ) -> None:
        self.oracle = oracle
        self.store = store
        self.candidate_limit = (
            settings.relationship_candidate_limit if candidate_limit is None else candidate_limit
        )

    def _paper_concepts(self, paper: Paper, entities: Optional[ValidatedEntities]) -> List[Concept]:
        if entities is not None and entities.concept_ids:
            concepts = []
            for concept_id in dict.fromkeys(entities.concept_ids):
                concept = self.store.get_entity(EntityKind.CONCEPT, concept_id)
                if concept is not None:
                    concepts.append(concept)
            return concepts
        return self.store.concepts_for_paper(paper.paper_id)

    async def classify(self, new: Concept, old: Concept, paper: Paper) -> ClassificationPayload:
        prompt = build_classification_prompt(new, old, paper)
        return await self.oracle.complete(prompt, structured_output=ClassificationPayload)

    async def map_relationships(
        self,
        paper: Paper,
        entities: Optional[ValidatedEntities] = None,
    ) -> RelationshipResult:
        result = RelationshipResult(paper_id=paper.paper_id)

        for new in self._paper_concepts(paper, entities):
            for old in self.store.candidate_concepts(new, self.candidate_limit):
                if self.store.has_edge(EdgeType.CONCEPT_IMPROVES, new.entity_id, old.entity_id):
                    result.skipped_pairs += 1
                    continue

                try:
                    verdict = await self.classify(new, old, paper)
                    result.classified_pairs += 1
                    if not verdict.is_improvement:
                        continue

                    edge, created = self.store.link(
                        EdgeType.CONCEPT_IMPROVES,
                        new.entity_id,
                        old.entity_id,
                        improvement_kind=verdict.improvement_category or DEFAULT_IMPROVEMENT_KIND,
                        confidence=(
                            verdict.confidence
                            if verdict.confidence is not None
                            else DEFAULT_CONFIDENCE
                        ),
                        quantitative_gain=verdict.quantitative_gain,
                        explanation=verdict.explanation or None,
                    )
                except KnowledgeGraphError as exc:
                    logger.warning(
                        "Skipping pair %s -> %s for %s: %s",
                        new.name,
                        old.name,
                        paper.paper_id,
                        exc,
                    )
                    result.failures.append(
                        PairFailure(
                            new_concept_id=new.entity_id,
                            old_concept_id=old.entity_id,
                            error=str(exc),
                        )
                    )
                    continue

                if created:
                    logger.info("%s improves on %s", new.name, old.name)
                    result.improvements.append(edge)

        result.citations = self.store.edges_for_paper(
            paper.paper_id, EdgeType.PAPER_CITES
        ) + self.store.edges_for_paper(paper.paper_id, EdgeType.PAPER_CITES, incoming=True)
        return result
