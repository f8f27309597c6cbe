# kg_pipeline/graph/store.py

"""
Canonical store for papers, entities and edges.

The store is a thin, lock-protected layer over a networkx MultiDiGraph:

  - node ids are "<type>:<raw id>" (see graph.schema)
  - paper nodes carry a `paper` attribute (models.Paper)
  - entity nodes carry an `entity` attribute (Concept / Method / Dataset)
    plus `key` (normalized key) and `seq` (insertion order)
  - edges use the edge kind as the MultiDiGraph edge key, so an edge kind
    can exist at most once per (source, target) pair

Uniqueness of normalized keys is enforced by a per-kind index that is
checked and updated under the same lock as the graph write, which makes
"get or insert" atomic per key across concurrent workers.
"""

from __future__ import annotations

import dataclasses
import threading
from itertools import count
from typing import Any, Dict, List, Optional, Tuple

import networkx as nx
from pydantic import ValidationError

from kg_pipeline.errors import (
    ConstraintViolationError,
    MalformedDataError,
    ReferentialIntegrityError,
)
from kg_pipeline.graph.schema import (
    EDGE_ENDPOINTS,
    EdgeType,
    NodeType,
    entity_node_id,
    node_id_for,
    node_type_for_kind,
    paper_node_id,
    split_node_id,
)
from kg_pipeline.models.entities import AnyEntity, Concept, Edge, EntityKind
from kg_pipeline.models.paper import Paper


# Paper fields that ensure_paper may fill in; full_text has its own path.
_MERGEABLE_PAPER_FIELDS = (
    "title",
    "abstract",
    "arxiv_id",
    "semantic_scholar_id",
    "doi",
    "published_date",
    "citation_count",
    "pdf_url",
    "authors",
)


def _is_kind(key: Any, data: Dict[str, Any], edge_kind: EdgeType) -> bool:
    # Edges written by link() are keyed by kind; rows added to the graph by
    # other means are matched on their `type` attribute.
    return key == edge_kind.value or data.get("type") == edge_kind.value


class CanonicalStore:
    """
    In-process canonical store backed by a networkx MultiDiGraph.

    Pass an existing graph (e.g. one loaded with load_latest_graph) to
    continue building on top of it; indices are rebuilt from the nodes.
    """

    def __init__(self, graph: Optional[nx.MultiDiGraph] = None) -> None:
        self._graph: nx.MultiDiGraph = graph if graph is not None else nx.MultiDiGraph()
        self._lock = threading.RLock()
        self._keys: Dict[EntityKind, Dict[str, str]] = {kind: {} for kind in EntityKind}
        self._seq = count()
        self._reindex()

    @classmethod
    def from_graph(cls, graph: nx.MultiDiGraph) -> "CanonicalStore":
        return cls(graph)

    @property
    def graph(self) -> nx.MultiDiGraph:
        return self._graph

    def _reindex(self) -> None:
        highest = -1
        entity_nodes = []
        for node_id, data in self._graph.nodes(data=True):
            entity = data.get("entity")
            if entity is None:
                continue
            seq = data.get("seq", 0)
            highest = max(highest, seq)
            entity_nodes.append((seq, node_id, entity))

        # First writer wins when a loaded snapshot already holds duplicates;
        # the validator reports the rest.
        for _seq, _node_id, entity in sorted(entity_nodes, key=lambda t: t[0]):
            self._keys[entity.kind].setdefault(entity.normalized_key, entity.entity_id)

        self._seq = count(highest + 1)

    # ------------------------------------------------------------------
    # Papers
    # ------------------------------------------------------------------

    def ensure_paper(self, paper: Paper) -> Paper:
        """
        Insert the paper, or fill in fields the stored copy is missing.

        Existing non-empty values are never overwritten or cleared.
        """
        node_id = paper_node_id(paper.paper_id)
        with self._lock:
            if node_id in self._graph and "paper" in self._graph.nodes[node_id]:
                stored: Paper = self._graph.nodes[node_id]["paper"]
                updates = {}
                for name in _MERGEABLE_PAPER_FIELDS:
                    current = getattr(stored, name)
                    incoming = getattr(paper, name)
                    if not current and incoming:
                        updates[name] = incoming
                if updates:
                    stored = dataclasses.replace(stored, **updates)
                    self._graph.nodes[node_id]["paper"] = stored
                return stored

            stored = dataclasses.replace(paper, authors=list(paper.authors))
            self._graph.add_node(node_id, type=NodeType.PAPER.value, paper=stored)
            return stored

    def get_paper(self, paper_id: str) -> Optional[Paper]:
        with self._lock:
            data = self._graph.nodes.get(paper_node_id(paper_id))
            if not data:
                return None
            return data.get("paper")

    def has_paper(self, paper_id: str) -> bool:
        return self.get_paper(paper_id) is not None

    def attach_full_text(self, paper_id: str, text: str) -> Paper:
        """
        Attach parsed full text to a paper. Allowed exactly once per paper.
        """
        with self._lock:
            stored = self.get_paper(paper_id)
            if stored is None:
                raise ReferentialIntegrityError(f"unknown paper {paper_id!r}")
            if stored.full_text:
                raise ConstraintViolationError("paper.full_text", paper_id)
            stored = dataclasses.replace(stored, full_text=text)
            self._graph.nodes[paper_node_id(paper_id)]["paper"] = stored
            return stored

    def list_papers(self) -> List[Paper]:
        with self._lock:
            return [
                data["paper"]
                for _, data in self._graph.nodes(data=True)
                if data.get("type") == NodeType.PAPER.value and "paper" in data
            ]

    # ------------------------------------------------------------------
    # Entities
    # ------------------------------------------------------------------

    def get_by_normalized_key(self, kind: EntityKind, key: str) -> Optional[AnyEntity]:
        with self._lock:
            entity_id = self._keys[kind].get(key)
            if entity_id is None:
                return None
            return self.get_entity(kind, entity_id)

    def get_entity(self, kind: EntityKind, entity_id: str) -> Optional[AnyEntity]:
        with self._lock:
            data = self._graph.nodes.get(entity_node_id(kind, entity_id))
            if not data:
                return None
            return data.get("entity")

    def insert(self, kind: EntityKind, entity: AnyEntity) -> AnyEntity:
        """
        Insert a new entity.

        Raises ConstraintViolationError when an entity of the same kind
        already holds `entity.normalized_key`.
        """
        if entity.kind != kind:
            raise MalformedDataError(
                f"cannot insert a {entity.kind.value} as a {kind.value}"
            )
        if not entity.normalized_key:
            raise MalformedDataError(f"{kind.value} {entity.name!r} has an empty key")

        with self._lock:
            if entity.normalized_key in self._keys[kind]:
                raise ConstraintViolationError(kind.value, entity.normalized_key)

            self._graph.add_node(
                entity_node_id(kind, entity.entity_id),
                type=node_type_for_kind(kind).value,
                key=entity.normalized_key,
                seq=next(self._seq),
                entity=entity,
            )
            self._keys[kind][entity.normalized_key] = entity.entity_id
            return entity

    def list_all(self, kind: EntityKind) -> List[AnyEntity]:
        """All entities of a kind in insertion order."""
        node_type = node_type_for_kind(kind).value
        with self._lock:
            rows = [
                (data.get("seq", 0), data["entity"])
                for _, data in self._graph.nodes(data=True)
                if data.get("type") == node_type and "entity" in data
            ]
        rows.sort(key=lambda r: r[0])
        return [entity for _, entity in rows]

    def concepts_for_paper(self, paper_id: str) -> List[Concept]:
        concepts = []
        for edge in self.edges_for_paper(paper_id, EdgeType.PAPER_INTRODUCES_CONCEPT):
            concept = self.get_entity(EntityKind.CONCEPT, edge.target)
            if concept is not None:
                concepts.append(concept)
        return concepts

    def candidate_concepts(self, concept: Concept, limit: int) -> List[Concept]:
        """
        Up to `limit` other concepts worth comparing against `concept`.

        Ranked by the number of key tokens shared with `concept`, then by
        insertion order. The concept itself is never returned.
        """
        if limit <= 0:
            return []

        tokens = set(concept.normalized_key.split("-"))
        others = [
            (position, other)
            for position, other in enumerate(self.list_all(EntityKind.CONCEPT))
            if other.entity_id != concept.entity_id
        ]
        others.sort(
            key=lambda item: (
                -len(tokens & set(item[1].normalized_key.split("-"))),
                item[0],
            )
        )
        return [other for _, other in others[:limit]]

    # ------------------------------------------------------------------
    # Edges
    # ------------------------------------------------------------------

    def _has_payload(self, node_id: str) -> bool:
        data = self._graph.nodes.get(node_id)
        return bool(data) and ("paper" in data or "entity" in data)

    def link(
        self,
        edge_kind: EdgeType,
        source_id: str,
        target_id: str,
        **attrs: Any,
    ) -> Tuple[Edge, bool]:
        """
        Create an edge of `edge_kind`, or return the existing one.

        Returns (edge, created). Re-linking an already linked pair is a
        no-op with created=False.
        """
        source_type, target_type = EDGE_ENDPOINTS[edge_kind]
        u = node_id_for(source_type, source_id)
        v = node_id_for(target_type, target_id)

        if edge_kind is EdgeType.CONCEPT_IMPROVES and source_id == target_id:
            raise ReferentialIntegrityError(f"concept {source_id} cannot improve itself")

        with self._lock:
            for node_id in (u, v):
                if not self._has_payload(node_id):
                    raise ReferentialIntegrityError(
                        f"{edge_kind.value} endpoint {node_id} does not exist"
                    )

            if self._graph.has_edge(u, v, key=edge_kind.value):
                data = self._graph.get_edge_data(u, v, key=edge_kind.value)
                return self._edge_from_data(u, v, edge_kind.value, data), False

            try:
                edge = Edge(kind=edge_kind.value, source=source_id, target=target_id, **attrs)
            except ValidationError as exc:
                raise MalformedDataError(
                    f"invalid {edge_kind.value} attributes: {exc}"
                ) from exc

            self._graph.add_edge(u, v, key=edge_kind.value, type=edge_kind.value, edge=edge)
            return edge, True

    @staticmethod
    def _edge_from_data(u: str, v: str, kind: str, data: Dict[str, Any]) -> Edge:
        # Read path: rows are taken as stored (no validation) so that the
        # validator can report bad values instead of failing on them.
        stored = data.get("edge")
        fields = dict(stored) if stored is not None else {
            k: val for k, val in data.items() if k not in ("type", "edge")
        }
        fields.update(kind=kind, source=split_node_id(u)[1], target=split_node_id(v)[1])
        return Edge.model_construct(**fields)

    def has_edge(self, edge_kind: EdgeType, source_id: str, target_id: str) -> bool:
        source_type, target_type = EDGE_ENDPOINTS[edge_kind]
        with self._lock:
            return self._graph.has_edge(
                node_id_for(source_type, source_id),
                node_id_for(target_type, target_id),
                key=edge_kind.value,
            )

    def list_edges(self, edge_kind: EdgeType) -> List[Edge]:
        with self._lock:
            return [
                self._edge_from_data(u, v, edge_kind.value, data)
                for u, v, k, data in self._graph.edges(keys=True, data=True)
                if _is_kind(k, data, edge_kind)
            ]

    def edges_for_paper(
        self,
        paper_id: str,
        edge_kind: EdgeType,
        *,
        incoming: bool = False,
    ) -> List[Edge]:
        node_id = paper_node_id(paper_id)
        with self._lock:
            if node_id not in self._graph:
                return []
            if incoming:
                rows = self._graph.in_edges(node_id, keys=True, data=True)
            else:
                rows = self._graph.out_edges(node_id, keys=True, data=True)
            return [
                self._edge_from_data(u, v, edge_kind.value, data)
                for u, v, k, data in rows
                if _is_kind(k, data, edge_kind)
            ]

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def stats(self) -> Dict[str, int]:
        with self._lock:
            node_counts: Dict[str, int] = {t.value: 0 for t in NodeType}
            for _, data in self._graph.nodes(data=True):
                node_type = data.get("type")
                if node_type in node_counts:
                    node_counts[node_type] += 1

            edge_counts: Dict[str, int] = {e.value: 0 for e in EdgeType}
            for _, _, k, data in self._graph.edges(keys=True, data=True):
                edge_kind = data.get("type", k)
                if edge_kind in edge_counts:
                    edge_counts[edge_kind] += 1

        return {
            "papers": node_counts[NodeType.PAPER.value],
            "concepts": node_counts[NodeType.CONCEPT.value],
            "methods": node_counts[NodeType.METHOD.value],
            "datasets": node_counts[NodeType.DATASET.value],
            "citations": edge_counts[EdgeType.PAPER_CITES.value],
            "concept_links": edge_counts[EdgeType.PAPER_INTRODUCES_CONCEPT.value],
            "method_links": edge_counts[EdgeType.PAPER_USES_METHOD.value],
            "dataset_links": edge_counts[EdgeType.PAPER_EVALUATES_ON_DATASET.value],
            "improvements": edge_counts[EdgeType.CONCEPT_IMPROVES.value],
        }
