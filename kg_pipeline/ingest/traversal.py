# kg_pipeline/ingest/traversal.py

"""
Bounded breadth-first traversal of the citation graph.

Starting from a seed paper, papers are popped from a FIFO frontier,
fetched, persisted and yielded. After each yield (while under the limit)
the paper's references and citations are fetched, recorded as
PAPER_CITES edges, ranked by citation count, and the top N are queued.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Iterator, List, Optional, Set

from kg_pipeline.config.settings import settings
from kg_pipeline.errors import KnowledgeGraphError
from kg_pipeline.graph.schema import EdgeType
from kg_pipeline.graph.store import CanonicalStore
from kg_pipeline.ingest.semantic_scholar import CitationGraphFetcher
from kg_pipeline.models.paper import Paper, PaperRef
from kg_pipeline.utils.text import extract_arxiv_id

logger = logging.getLogger(__name__)


@dataclass
class TraversalConfig:
    """
    fetch_limit : K, references and citations fetched per expanded paper
    top_n       : N, neighbours queued per expanded paper
    """
    fetch_limit: int = field(default_factory=lambda: settings.traversal_fetch_limit)
    top_n: int = field(default_factory=lambda: settings.traversal_top_n)


@dataclass
class TraversalState:
    """
    Frontier and visited set of one walk.

    Passed in explicitly so a caller can inspect it afterwards or share
    it between walks that must not revisit each other's papers.
    """
    frontier: Deque[str] = field(default_factory=deque)
    visited: Set[str] = field(default_factory=set)


def resolve_seed_id(seed: str) -> str:
    """
    Map a user-supplied seed onto a fetchable id.

    arXiv ids and URLs become "arXiv:<id>"; anything else is used as-is.
    """
    seed = (seed or "").strip()
    arxiv_id = extract_arxiv_id(seed)
    if arxiv_id:
        return f"arXiv:{arxiv_id}"
    return seed


def _record_neighbours(
    store: CanonicalStore,
    paper_id: str,
    references: List[PaperRef],
    citations: List[PaperRef],
) -> None:
    """Ensure stub papers for every neighbour and record the citation edges."""
    for ref in references:
        if ref.paper_id == paper_id:
            continue
        try:
            store.ensure_paper(Paper.from_ref(ref))
            store.link(EdgeType.PAPER_CITES, paper_id, ref.paper_id)
        except KnowledgeGraphError as exc:
            logger.warning("Could not record reference %s -> %s: %s", paper_id, ref.paper_id, exc)

    for ref in citations:
        if ref.paper_id == paper_id:
            continue
        try:
            store.ensure_paper(Paper.from_ref(ref))
            store.link(EdgeType.PAPER_CITES, ref.paper_id, paper_id)
        except KnowledgeGraphError as exc:
            logger.warning("Could not record citation %s -> %s: %s", ref.paper_id, paper_id, exc)


def rank_neighbours(references: List[PaperRef], citations: List[PaperRef]) -> List[PaperRef]:
    """
    Merge references then citations, keep the first occurrence of each id,
    and sort by descending citation count. The sort is stable, so ties
    keep discovery order.
    """
    seen: Set[str] = set()
    merged: List[PaperRef] = []
    for ref in list(references) + list(citations):
        if ref.paper_id in seen:
            continue
        seen.add(ref.paper_id)
        merged.append(ref)
    return sorted(merged, key=lambda r: -r.citation_count)


def expand(
    seed: str,
    limit: int,
    *,
    fetcher: CitationGraphFetcher,
    store: CanonicalStore,
    config: Optional[TraversalConfig] = None,
    state: Optional[TraversalState] = None,
) -> Iterator[PaperRef]:
    """
    Yield up to `limit` papers reachable from `seed`, breadth-first.

    The generator is lazy and single-use. Given the same citation graph
    it yields the same sequence. Papers that cannot be fetched are
    skipped; papers whose neighbours cannot be fetched are yielded but
    not expanded.
    """
    if config is None:
        config = TraversalConfig()
    if state is None:
        state = TraversalState()

    state.frontier.append(resolve_seed_id(seed))
    yielded = 0

    while state.frontier and yielded < limit:
        paper_id = state.frontier.popleft()
        if paper_id in state.visited:
            continue
        state.visited.add(paper_id)

        try:
            meta = fetcher.get_paper(paper_id)
        except KnowledgeGraphError as exc:
            logger.warning("Skipping %s: metadata fetch failed: %s", paper_id, exc)
            continue

        if meta is None:
            logger.warning("Skipping %s: not found", paper_id)
            continue

        if meta.paper_id != paper_id:
            # Alias (e.g. arXiv:<id>) resolved to a paper we already walked.
            if meta.paper_id in state.visited:
                continue
            state.visited.add(meta.paper_id)

        paper = store.ensure_paper(Paper.from_metadata(meta))
        yielded += 1
        logger.info("[%d/%d] %s (%s)", yielded, limit, paper.title or paper.paper_id, paper.paper_id)
        yield paper.to_ref()

        if yielded >= limit:
            break

        try:
            references = fetcher.get_references(paper.paper_id, config.fetch_limit)
            citations = fetcher.get_citations(paper.paper_id, config.fetch_limit)
        except KnowledgeGraphError as exc:
            logger.warning("Not expanding %s: neighbour fetch failed: %s", paper.paper_id, exc)
            continue

        _record_neighbours(store, paper.paper_id, references, citations)

        for ref in rank_neighbours(references, citations)[: config.top_n]:
            state.frontier.append(ref.paper_id)

    logger.info("Traversal finished: %d paper(s), %d queued", yielded, len(state.frontier))
