# kg_pipeline/pipeline/validator.py

"""
Graph validator.

Read-only checks over the canonical store:

  - exact duplicates   concepts / methods sharing a normalized key
  - soft duplicates    names within `similarity_threshold` edit similarity
  - consistency        paper exists, links point at real concepts,
                       confidences are in [0, 1], no improvement self-loops
  - conflicts          repeated paper->concept links, cycles in the
                       CONCEPT_IMPROVES graph

Findings are collected into a ValidationReport; the validator never
raises. A check that fails internally is recorded as an issue.
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from numbers import Real
from typing import Callable, Dict, List, Optional, Union

from kg_pipeline.config.settings import settings
from kg_pipeline.errors import ConsistencyViolation
from kg_pipeline.graph.schema import EdgeType
from kg_pipeline.graph.store import CanonicalStore
from kg_pipeline.models.entities import EntityKind
from kg_pipeline.models.paper import Paper
from kg_pipeline.utils.text import name_similarity

logger = logging.getLogger(__name__)

# Entity kinds checked for duplicates; datasets are keyed on exact names.
DEDUP_KINDS = (EntityKind.CONCEPT, EntityKind.METHOD)


@dataclass
class DuplicateFinding:
    kind: str
    key: str
    entity_ids: List[str]
    names: List[str]
    similarity: Optional[float] = None


@dataclass
class Conflict:
    kind: str
    message: str
    nodes: List[str] = field(default_factory=list)


@dataclass
class ValidationReport:
    paper_id: Optional[str]
    duplicates: List[DuplicateFinding] = field(default_factory=list)
    consistency_ok: bool = True
    conflicts: List[Conflict] = field(default_factory=list)
    issues: List[ConsistencyViolation] = field(default_factory=list)

    @property
    def duplicate_count(self) -> int:
        return len(self.duplicates)

    @property
    def cycles(self) -> List[List[str]]:
        return [c.nodes for c in self.conflicts if c.kind == "improvement_cycle"]


def _in_unit_range(value) -> bool:
    if value is None:
        return True
    return isinstance(value, Real) and not isinstance(value, bool) and 0.0 <= value <= 1.0


def find_cycles(adjacency: Dict[str, List[str]]) -> List[List[str]]:
    """
    Directed cycles in `adjacency`, found by iterative depth-first search.

    Each cycle is returned as a node path that starts and ends on the same
    node, e.g. ["a", "b", "c", "a"]. Every back edge yields one cycle.
    """
    white, grey, black = 0, 1, 2
    color: Dict[str, int] = {}
    cycles: List[List[str]] = []

    for root in list(adjacency):
        if color.get(root, white) != white:
            continue

        color[root] = grey
        path = [root]
        on_path = {root: 0}
        stack = [(root, iter(adjacency.get(root, ())))]

        while stack:
            node, children = stack[-1]
            descended = False
            for child in children:
                state = color.get(child, white)
                if state == grey:
                    cycles.append(path[on_path[child]:] + [child])
                elif state == white:
                    color[child] = grey
                    on_path[child] = len(path)
                    path.append(child)
                    stack.append((child, iter(adjacency.get(child, ()))))
                    descended = True
                    break
            if not descended:
                stack.pop()
                path.pop()
                del on_path[node]
                color[node] = black

    return cycles


class GraphValidator:
    def __init__(
        self,
        store: CanonicalStore,
        *,
        similarity_threshold: Optional[float] = None,
        max_duplicates: Optional[int] = None,
    ) -> None:
        self.store = store
        self.similarity_threshold = (
            settings.similarity_threshold if similarity_threshold is None else similarity_threshold
        )
        self.max_duplicates = settings.max_duplicates if max_duplicates is None else max_duplicates

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------
    def validate(self, paper: Union[Paper, str]) -> ValidationReport:
        paper_id = paper if isinstance(paper, str) else paper.paper_id
        report = ValidationReport(paper_id=paper_id)

        self._run(report, "duplicates", self._check_duplicates)
        self._run(report, "paper", lambda r: self._check_paper(r, paper_id))
        self._run(report, "concept_links", lambda r: self._check_concept_links(r, paper_id))
        self._run(report, "improvements", self._check_improvements)
        self._run(report, "cycles", self._check_cycles)

        return self._finish(report)

    def validate_graph(self) -> ValidationReport:
        """Global checks only: duplicates, improvement edges and cycles."""
        report = ValidationReport(paper_id=None)

        self._run(report, "duplicates", self._check_duplicates)
        self._run(report, "improvements", self._check_improvements)
        self._run(report, "cycles", self._check_cycles)

        return self._finish(report)

    def _run(
        self,
        report: ValidationReport,
        name: str,
        check: Callable[[ValidationReport], None],
    ) -> None:
        try:
            check(report)
        except Exception as exc:
            logger.exception("Validation check %r failed", name)
            report.issues.append(
                ConsistencyViolation(
                    check=name,
                    message=f"check could not run: {exc}",
                    details={"error": repr(exc)},
                )
            )

    def _finish(self, report: ValidationReport) -> ValidationReport:
        # Conflicts are reported but do not fail validation.
        report.consistency_ok = (
            report.duplicate_count <= self.max_duplicates and not report.issues
        )
        if not report.consistency_ok:
            logger.warning(
                "Validation failed for %s: %d duplicate(s), %d issue(s), %d conflict(s)",
                report.paper_id or "graph",
                report.duplicate_count,
                len(report.issues),
                len(report.conflicts),
            )
        return report

    # ------------------------------------------------------------------
    # Duplicates
    # ------------------------------------------------------------------
    def _check_duplicates(self, report: ValidationReport) -> None:
        for kind in DEDUP_KINDS:
            entities = self.store.list_all(kind)

            groups = defaultdict(list)
            for entity in entities:
                groups[entity.normalized_key].append(entity)

            for key, members in groups.items():
                if len(members) > 1:
                    report.duplicates.append(
                        DuplicateFinding(
                            kind=kind.value,
                            key=key,
                            entity_ids=[e.entity_id for e in members],
                            names=[e.name for e in members],
                        )
                    )

            for i, a in enumerate(entities):
                for b in entities[i + 1:]:
                    if a.normalized_key == b.normalized_key:
                        continue
                    score = name_similarity(a.name, b.name)
                    if score >= self.similarity_threshold:
                        report.duplicates.append(
                            DuplicateFinding(
                                kind=f"similar_{kind.value}",
                                key=f"{a.normalized_key} ~ {b.normalized_key}",
                                entity_ids=[a.entity_id, b.entity_id],
                                names=[a.name, b.name],
                                similarity=score,
                            )
                        )

    # ------------------------------------------------------------------
    # Consistency
    # ------------------------------------------------------------------
    def _check_paper(self, report: ValidationReport, paper_id: str) -> None:
        if not self.store.has_paper(paper_id):
            report.issues.append(
                ConsistencyViolation(
                    check="paper_exists",
                    message=f"paper {paper_id} is not in the store",
                    details={"paper_id": paper_id},
                )
            )

    def _check_concept_links(self, report: ValidationReport, paper_id: str) -> None:
        edges = self.store.edges_for_paper(paper_id, EdgeType.PAPER_INTRODUCES_CONCEPT)

        for edge in edges:
            if self.store.get_entity(EntityKind.CONCEPT, edge.target) is None:
                report.issues.append(
                    ConsistencyViolation(
                        check="dangling_concept_link",
                        message=f"paper {paper_id} links missing concept {edge.target}",
                        details={"paper_id": paper_id, "concept_id": edge.target},
                    )
                )
            if not _in_unit_range(edge.confidence):
                report.issues.append(
                    ConsistencyViolation(
                        check="confidence_range",
                        message=f"link {paper_id} -> {edge.target} has confidence {edge.confidence!r}",
                        details={"paper_id": paper_id, "concept_id": edge.target},
                    )
                )

        for concept_id, n in Counter(e.target for e in edges).items():
            if n > 1:
                report.conflicts.append(
                    Conflict(
                        kind="duplicate_link",
                        message=f"paper {paper_id} links concept {concept_id} {n} times",
                        nodes=[paper_id, concept_id],
                    )
                )

    def _check_improvements(self, report: ValidationReport) -> None:
        for edge in self.store.list_edges(EdgeType.CONCEPT_IMPROVES):
            pair = {"source": edge.source, "target": edge.target}
            for end in (edge.source, edge.target):
                if self.store.get_entity(EntityKind.CONCEPT, end) is None:
                    report.issues.append(
                        ConsistencyViolation(
                            check="dangling_improvement",
                            message=f"improvement {edge.source} -> {edge.target} references missing concept {end}",
                            details=pair,
                        )
                    )
            if edge.source == edge.target:
                report.issues.append(
                    ConsistencyViolation(
                        check="improvement_self_loop",
                        message=f"concept {edge.source} improves on itself",
                        details=pair,
                    )
                )
            if not _in_unit_range(edge.confidence):
                report.issues.append(
                    ConsistencyViolation(
                        check="confidence_range",
                        message=f"improvement {edge.source} -> {edge.target} has confidence {edge.confidence!r}",
                        details=pair,
                    )
                )

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------
    def _check_cycles(self, report: ValidationReport) -> None:
        adjacency: Dict[str, List[str]] = defaultdict(list)
        for edge in self.store.list_edges(EdgeType.CONCEPT_IMPROVES):
            # Self-loops are reported as consistency issues already.
            if edge.source != edge.target:
                adjacency[edge.source].append(edge.target)

        for cycle in find_cycles(dict(adjacency)):
            report.conflicts.append(
                Conflict(
                    kind="improvement_cycle",
                    message="improvement cycle: " + " -> ".join(cycle),
                    nodes=cycle,
                )
            )
