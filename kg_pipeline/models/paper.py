# kg_pipeline/models/paper.py

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional


@dataclass(frozen=True)
class PaperRef:
    """
    Lightweight pointer to a paper as seen in the citation network.

    `citation_count` is the ranking signal used by the traversal; it is
    0 when the citation service did not report one.
    """
    paper_id: str
    title: str = ""
    citation_count: int = 0
    arxiv_id: Optional[str] = None


@dataclass
class PaperMetadata:
    """Full metadata for a single paper, as returned by the citation fetcher."""
    paper_id: str
    title: str
    abstract: Optional[str] = None
    arxiv_id: Optional[str] = None
    doi: Optional[str] = None
    year: Optional[int] = None
    published_date: Optional[date] = None
    citation_count: int = 0
    reference_count: int = 0
    pdf_url: Optional[str] = None
    authors: List[str] = field(default_factory=list)

    def to_ref(self) -> PaperRef:
        return PaperRef(
            paper_id=self.paper_id,
            title=self.title,
            citation_count=self.citation_count,
            arxiv_id=self.arxiv_id,
        )


@dataclass
class Paper:
    """
    Paper node as held by the canonical store.

    `full_text` is attached later by an external parser and may be set
    exactly once (see CanonicalStore.attach_full_text).
    """
    paper_id: str
    title: str = ""
    abstract: Optional[str] = None
    arxiv_id: Optional[str] = None
    semantic_scholar_id: Optional[str] = None
    doi: Optional[str] = None
    published_date: Optional[date] = None
    citation_count: int = 0
    pdf_url: Optional[str] = None
    authors: List[str] = field(default_factory=list)
    full_text: Optional[str] = None

    @classmethod
    def from_metadata(cls, meta: PaperMetadata) -> "Paper":
        return cls(
            paper_id=meta.paper_id,
            title=meta.title,
            abstract=meta.abstract,
            arxiv_id=meta.arxiv_id,
            semantic_scholar_id=meta.paper_id,
            doi=meta.doi,
            published_date=meta.published_date,
            citation_count=meta.citation_count,
            pdf_url=meta.pdf_url,
            authors=list(meta.authors),
        )

    @classmethod
    def from_ref(cls, ref: PaperRef) -> "Paper":
        return cls(
            paper_id=ref.paper_id,
            title=ref.title,
            arxiv_id=ref.arxiv_id,
            citation_count=ref.citation_count,
        )

    def to_ref(self) -> PaperRef:
        return PaperRef(
            paper_id=self.paper_id,
            title=self.title,
            citation_count=self.citation_count,
            arxiv_id=self.arxiv_id,
        )
