# tests/test_traversal.py

from kg_pipeline.graph.schema import EdgeType
from kg_pipeline.graph.store import CanonicalStore
from kg_pipeline.ingest.traversal import (
    TraversalConfig,
    TraversalState,
    expand,
    rank_neighbours,
    resolve_seed_id,
)
from kg_pipeline.models.paper import PaperRef

from conftest import FakeFetcher


def _seed_with_refs(fetcher):
    fetcher.add("S", citation_count=100)
    # r3..r10 with citation counts equal to their number, listed ascending
    fetcher.references["S"] = [fetcher.add(f"r{n}", citation_count=n) for n in range(3, 11)]


def _walk(fetcher, store, seed="S", limit=3, top_n=2, state=None):
    return [
        ref.paper_id
        for ref in expand(
            seed,
            limit,
            fetcher=fetcher,
            store=store,
            config=TraversalConfig(fetch_limit=10, top_n=top_n),
            state=state,
        )
    ]


def test_expands_highest_cited_neighbours_first(fetcher, store):
    _seed_with_refs(fetcher)

    assert _walk(fetcher, store) == ["S", "r10", "r9"]


def test_same_snapshot_same_sequence(fetcher):
    _seed_with_refs(fetcher)
    fetcher.references["r10"] = [fetcher.add("x1", citation_count=50)]
    fetcher.citations["r9"] = [fetcher.add("x2", citation_count=50)]

    first = _walk(fetcher, CanonicalStore(), limit=6)
    second = _walk(fetcher, CanonicalStore(), limit=6)

    assert first == second == ["S", "r10", "r9", "x1", "x2"]


def test_papers_and_citation_edges_persisted(fetcher, store):
    _seed_with_refs(fetcher)
    fetcher.citations["S"] = [fetcher.add("c1", citation_count=1)]

    _walk(fetcher, store, limit=2)

    assert store.get_paper("S").title == "Paper S"
    assert store.get_paper("S").abstract == "Abstract of S."
    # every sighted neighbour exists, at least as a stub
    assert store.has_paper("r3")
    assert store.has_edge(EdgeType.PAPER_CITES, "S", "r3")
    assert store.has_edge(EdgeType.PAPER_CITES, "c1", "S")


def test_visited_nodes_not_yielded_twice(fetcher, store):
    fetcher.add("A", citation_count=5)
    fetcher.add("B", citation_count=4)
    fetcher.references["A"] = [PaperRef("B", citation_count=4)]
    fetcher.references["B"] = [PaperRef("A", citation_count=5)]
    fetcher.citations["A"] = [PaperRef("B", citation_count=4)]

    assert _walk(fetcher, store, seed="A", limit=10) == ["A", "B"]


def test_unreachable_paper_is_skipped(fetcher, store):
    _seed_with_refs(fetcher)
    fetcher.broken_papers.add("r10")
    del fetcher.papers["r9"]

    assert _walk(fetcher, store, limit=3, top_n=4) == ["S", "r8", "r7"]


def test_neighbour_failure_yields_without_expanding(fetcher, store):
    _seed_with_refs(fetcher)
    fetcher.broken_neighbours.add("S")

    assert _walk(fetcher, store, limit=5) == ["S"]


def test_limit_stops_before_fetching_neighbours(fetcher, store):
    _seed_with_refs(fetcher)
    fetcher.broken_neighbours.add("S")

    assert _walk(fetcher, store, limit=1) == ["S"]


def test_arxiv_seed_resolves_and_marks_both_ids(fetcher, store):
    fetcher.add("s2hex", citation_count=10, arxiv_id="2308.04079")
    fetcher.aliases["arXiv:2308.04079"] = "s2hex"
    fetcher.references["s2hex"] = [PaperRef("s2hex"), fetcher.add("r1", citation_count=1)]

    state = TraversalState()
    ids = _walk(fetcher, store, seed="https://arxiv.org/abs/2308.04079", limit=5, state=state)

    assert ids == ["s2hex", "r1"]
    assert {"arXiv:2308.04079", "s2hex", "r1"} <= state.visited
    assert fetcher.requests[0] == "arXiv:2308.04079"


def test_generator_is_lazy(fetcher, store):
    _seed_with_refs(fetcher)

    walk = expand("S", 3, fetcher=fetcher, store=store)
    assert fetcher.requests == []

    next(walk)
    assert fetcher.requests == ["S"]


def test_rank_neighbours_dedupes_and_keeps_tie_order():
    refs = [PaperRef("a", citation_count=1), PaperRef("b", citation_count=5)]
    cites = [PaperRef("a", citation_count=99), PaperRef("c", citation_count=5)]

    ranked = rank_neighbours(refs, cites)

    assert [r.paper_id for r in ranked] == ["b", "c", "a"]


def test_resolve_seed_id():
    assert resolve_seed_id("2308.04079") == "arXiv:2308.04079"
    assert resolve_seed_id(" abc123 ") == "abc123"
