# tests/test_validator.py

from kg_pipeline.graph.schema import EdgeType, entity_node_id, paper_node_id
from kg_pipeline.models.entities import Concept, EntityKind, Method
from kg_pipeline.pipeline.validator import GraphValidator, find_cycles

from conftest import make_paper


def _add_concept(store, name, key=None, paper_id=None):
    c = store.insert(
        EntityKind.CONCEPT,
        Concept(name=name, normalized_key=key or name.lower().replace(" ", "-")),
    )
    if paper_id:
        store.link(EdgeType.PAPER_INTRODUCES_CONCEPT, paper_id, c.entity_id, confidence=0.9)
    return c


def _force_duplicate(store, name, key):
    """Write a second entity with an existing key straight into the graph."""
    dup = Concept(name=name, normalized_key=key)
    store.graph.add_node(
        entity_node_id(EntityKind.CONCEPT, dup.entity_id),
        type="concept",
        key=key,
        seq=999,
        entity=dup,
    )
    return dup


def test_clean_paper_is_consistent(store):
    store.ensure_paper(make_paper("p1"))
    _add_concept(store, "Gaussian Splatting", paper_id="p1")
    _add_concept(store, "Volume Rendering", paper_id="p1")

    report = GraphValidator(store).validate("p1")

    assert report.consistency_ok
    assert report.duplicates == []
    assert report.issues == []
    assert report.conflicts == []


def test_exact_duplicates_reported(store):
    store.ensure_paper(make_paper("p1"))
    original = _add_concept(store, "NeRF", paper_id="p1")
    dup = _force_duplicate(store, "Nerf", "nerf")

    report = GraphValidator(store).validate("p1")

    exact = [d for d in report.duplicates if d.kind == "concept"]
    assert len(exact) == 1
    assert set(exact[0].entity_ids) == {original.entity_id, dup.entity_id}
    # one duplicate is within tolerance
    assert report.consistency_ok


def test_soft_duplicates_reported(store):
    store.insert(EntityKind.METHOD, Method(name="Adaptive Density Control", normalized_key="adaptive-density-control"))
    store.insert(EntityKind.METHOD, Method(name="Adaptive Densiti Control", normalized_key="adaptive-densiti-control"))
    store.insert(EntityKind.METHOD, Method(name="Ray Marching", normalized_key="ray-marching"))

    report = GraphValidator(store).validate_graph()

    assert [d.kind for d in report.duplicates] == ["similar_method"]
    assert report.duplicates[0].similarity >= 0.85

    strict = GraphValidator(store, similarity_threshold=0.99).validate_graph()
    assert strict.duplicates == []


def test_too_many_duplicates_fail_consistency(store):
    store.ensure_paper(make_paper("p1"))
    for i in range(6):
        key = f"concept-{i}"
        _add_concept(store, f"Concept {i}", key=key)
        _force_duplicate(store, f"Concept {i}", key)

    report = GraphValidator(store, similarity_threshold=1.0).validate("p1")

    assert report.duplicate_count == 6
    assert not report.consistency_ok
    assert GraphValidator(store, similarity_threshold=1.0, max_duplicates=6).validate("p1").consistency_ok


def test_missing_paper_is_an_issue(store):
    report = GraphValidator(store).validate("ghost")

    assert not report.consistency_ok
    assert [i.check for i in report.issues] == ["paper_exists"]


def test_dangling_link_and_bad_confidence(store):
    store.ensure_paper(make_paper("p1"))
    c = _add_concept(store, "NeRF")
    G = store.graph
    G.add_edge(
        paper_node_id("p1"),
        "concept:ghost",
        key=EdgeType.PAPER_INTRODUCES_CONCEPT.value,
        type=EdgeType.PAPER_INTRODUCES_CONCEPT.value,
    )
    G.add_edge(
        paper_node_id("p1"),
        entity_node_id(EntityKind.CONCEPT, c.entity_id),
        key=EdgeType.PAPER_INTRODUCES_CONCEPT.value,
        type=EdgeType.PAPER_INTRODUCES_CONCEPT.value,
        confidence=1.7,
    )

    report = GraphValidator(store).validate("p1")

    checks = sorted(i.check for i in report.issues)
    assert checks == ["confidence_range", "dangling_concept_link"]
    assert not report.consistency_ok


def test_duplicate_paper_concept_link_is_a_conflict(store):
    store.ensure_paper(make_paper("p1"))
    c = _add_concept(store, "NeRF", paper_id="p1")
    store.graph.add_edge(
        paper_node_id("p1"),
        entity_node_id(EntityKind.CONCEPT, c.entity_id),
        type=EdgeType.PAPER_INTRODUCES_CONCEPT.value,
        confidence=0.5,
    )

    report = GraphValidator(store).validate("p1")

    assert [x.kind for x in report.conflicts] == ["duplicate_link"]
    assert report.consistency_ok


def test_cycle_detected_only_after_closing_edge(store):
    a = _add_concept(store, "Alpha")
    b = _add_concept(store, "Beta")
    c = _add_concept(store, "Gamma")
    validator = GraphValidator(store)

    store.link(EdgeType.CONCEPT_IMPROVES, a.entity_id, b.entity_id, confidence=0.8)
    store.link(EdgeType.CONCEPT_IMPROVES, b.entity_id, c.entity_id, confidence=0.8)
    assert validator.validate_graph().cycles == []

    store.link(EdgeType.CONCEPT_IMPROVES, c.entity_id, a.entity_id, confidence=0.8)
    report = validator.validate_graph()

    assert len(report.cycles) == 1
    cycle = report.cycles[0]
    assert cycle[0] == cycle[-1]
    assert set(cycle) == {a.entity_id, b.entity_id, c.entity_id}
    assert report.consistency_ok


def test_raw_self_loop_and_dangling_improvement(store):
    a = _add_concept(store, "Alpha")
    node = entity_node_id(EntityKind.CONCEPT, a.entity_id)
    store.graph.add_edge(node, node, key=EdgeType.CONCEPT_IMPROVES.value, type=EdgeType.CONCEPT_IMPROVES.value)
    store.graph.add_edge(node, "concept:ghost", key=EdgeType.CONCEPT_IMPROVES.value, type=EdgeType.CONCEPT_IMPROVES.value)

    report = GraphValidator(store).validate_graph()

    checks = sorted(i.check for i in report.issues)
    assert checks == ["dangling_improvement", "improvement_self_loop"]


def test_check_failure_becomes_issue(store, monkeypatch):
    store.ensure_paper(make_paper("p1"))

    def broken(kind):
        raise RuntimeError("read failed")

    monkeypatch.setattr(store, "list_all", broken)

    report = GraphValidator(store).validate("p1")

    assert [i.check for i in report.issues] == ["duplicates"]
    assert not report.consistency_ok


def test_find_cycles_iterative():
    assert find_cycles({"a": ["b"], "b": ["c"], "c": []}) == []
    assert find_cycles({"a": ["b"], "b": ["a"]}) == [["a", "b", "a"]]

    # a long chain would overflow a recursive search
    chain = {str(i): [str(i + 1)] for i in range(5000)}
    chain["5000"] = ["0"]
    cycles = find_cycles(chain)
    assert len(cycles) == 1
    assert len(cycles[0]) == 5002


def test_mutual_improvement_cycle_keeps_paper_consistent(store):
    store.ensure_paper(make_paper("p"))
    a = _add_concept(store, "Alpha", paper_id="p")
    b = _add_concept(store, "Beta", paper_id="p")
    store.link(EdgeType.CONCEPT_IMPROVES, a.entity_id, b.entity_id, confidence=0.8)
    store.link(EdgeType.CONCEPT_IMPROVES, b.entity_id, a.entity_id, confidence=0.8)

    report = GraphValidator(store).validate("p")

    assert report.duplicate_count == 0
    assert report.issues == []
    assert len(report.cycles) == 1
    assert set(report.cycles[0]) == {a.entity_id, b.entity_id}
    assert report.consistency_ok
