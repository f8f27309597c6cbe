# kg_pipeline/graph/schema.py

from enum import Enum

from kg_pipeline.models.entities import EntityKind


class NodeType(str, Enum):
    PAPER = "paper"
    CONCEPT = "concept"
    METHOD = "method"
    DATASET = "dataset"


class EdgeType(str, Enum):
    # Paper -> entity edges written by the extraction pipeline
    PAPER_INTRODUCES_CONCEPT = "PAPER_INTRODUCES_CONCEPT"
    PAPER_USES_METHOD = "PAPER_USES_METHOD"
    PAPER_EVALUATES_ON_DATASET = "PAPER_EVALUATES_ON_DATASET"

    # Paper -> paper citation edges recorded during traversal
    PAPER_CITES = "PAPER_CITES"

    # Concept -> concept improvement edges (new -> old)
    CONCEPT_IMPROVES = "CONCEPT_IMPROVES"


# (source node type, target node type) for each edge kind
EDGE_ENDPOINTS = {
    EdgeType.PAPER_INTRODUCES_CONCEPT: (NodeType.PAPER, NodeType.CONCEPT),
    EdgeType.PAPER_USES_METHOD: (NodeType.PAPER, NodeType.METHOD),
    EdgeType.PAPER_EVALUATES_ON_DATASET: (NodeType.PAPER, NodeType.DATASET),
    EdgeType.PAPER_CITES: (NodeType.PAPER, NodeType.PAPER),
    EdgeType.CONCEPT_IMPROVES: (NodeType.CONCEPT, NodeType.CONCEPT),
}

# Edge kind used to link a paper to an entity of the given kind
PAPER_LINK_FOR_KIND = {
    EntityKind.CONCEPT: EdgeType.PAPER_INTRODUCES_CONCEPT,
    EntityKind.METHOD: EdgeType.PAPER_USES_METHOD,
    EntityKind.DATASET: EdgeType.PAPER_EVALUATES_ON_DATASET,
}


def node_type_for_kind(kind: EntityKind) -> NodeType:
    return NodeType(kind.value)


def paper_node_id(paper_id: str) -> str:
    """Return the canonical node id for a paper."""
    return f"paper:{paper_id}"


def entity_node_id(kind: EntityKind, entity_id: str) -> str:
    """Return the canonical node id for a concept/method/dataset."""
    return f"{kind.value}:{entity_id}"


def node_id_for(node_type: NodeType, raw_id: str) -> str:
    return f"{node_type.value}:{raw_id}"


def split_node_id(node_id: str):
    """Inverse of node_id_for: "concept:abc" -> ("concept", "abc")."""
    prefix, _, raw = node_id.partition(":")
    return prefix, raw
