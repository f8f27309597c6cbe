# tests/conftest.py

from __future__ import annotations

import asyncio
import json
from typing import Dict, List, Optional, Set

import pytest

from kg_pipeline.errors import TransientExternalError
from kg_pipeline.graph.store import CanonicalStore
from kg_pipeline.ingest.semantic_scholar import CitationGraphFetcher
from kg_pipeline.llm.client import LLMOracle, parse_structured
from kg_pipeline.llm.schemas import ClassificationPayload, ExtractionPayload
from kg_pipeline.models.paper import Paper, PaperMetadata, PaperRef


class ScriptedOracle(LLMOracle):
    """
    Oracle that answers from fixed scripts.

    extraction:     paper title -> response
    classification: (new concept name, old concept name) -> response

    A response is a dict (serialized and parsed like a real reply), a raw
    string, or an exception instance to raise.
    """

    def __init__(self, extraction=None, classification=None, delays=None):
        self.extraction: Dict[str, object] = dict(extraction or {})
        self.classification: Dict[tuple, object] = dict(classification or {})
        self.delays: Dict[str, float] = dict(delays or {})
        self.calls: List[str] = []

    @staticmethod
    def _resolve(response, schema):
        if isinstance(response, BaseException):
            raise response
        if isinstance(response, dict):
            response = json.dumps(response)
        return parse_structured(response, schema)

    async def complete(self, prompt, *, temperature=None, max_tokens=None, structured_output=None):
        self.calls.append(prompt)

        if structured_output is ExtractionPayload:
            for title, response in self.extraction.items():
                if f"Title: {title}\n" in prompt:
                    delay = self.delays.get(title)
                    if delay:
                        await asyncio.sleep(delay)
                    return self._resolve(response, structured_output)
            return ExtractionPayload()

        if structured_output is ClassificationPayload:
            new_part, _, old_part = prompt.partition("Existing concept:")
            for (new, old), response in self.classification.items():
                if f"Name: {new}\n" in new_part and f"Name: {old}\n" in old_part:
                    return self._resolve(response, structured_output)
            return ClassificationPayload()

        return ""


class FakeFetcher(CitationGraphFetcher):
    """In-memory citation graph."""

    def __init__(self):
        self.papers: Dict[str, PaperMetadata] = {}
        self.aliases: Dict[str, str] = {}
        self.references: Dict[str, List[PaperRef]] = {}
        self.citations: Dict[str, List[PaperRef]] = {}
        self.broken_papers: Set[str] = set()
        self.broken_neighbours: Set[str] = set()
        self.requests: List[str] = []

    def add(self, paper_id: str, title: Optional[str] = None, citation_count: int = 0, **extra):
        meta = PaperMetadata(
            paper_id=paper_id,
            title=title or f"Paper {paper_id}",
            abstract=f"Abstract of {paper_id}.",
            citation_count=citation_count,
            **extra,
        )
        self.papers[paper_id] = meta
        return meta.to_ref()

    def get_paper(self, paper_id):
        self.requests.append(paper_id)
        if paper_id in self.broken_papers:
            raise TransientExternalError(f"cannot reach {paper_id}")
        return self.papers.get(self.aliases.get(paper_id, paper_id))

    def get_references(self, paper_id, limit):
        if paper_id in self.broken_neighbours:
            raise TransientExternalError(f"references of {paper_id} unavailable")
        return list(self.references.get(paper_id, []))[:limit]

    def get_citations(self, paper_id, limit):
        if paper_id in self.broken_neighbours:
            raise TransientExternalError(f"citations of {paper_id} unavailable")
        return list(self.citations.get(paper_id, []))[:limit]


def make_paper(paper_id: str, title: Optional[str] = None, **kwargs) -> Paper:
    return Paper(
        paper_id=paper_id,
        title=title or f"Paper {paper_id}",
        abstract=kwargs.pop("abstract", f"Abstract of {paper_id}."),
        **kwargs,
    )


def concept(name, description="A sufficiently long description.", confidence=0.9, category="technique"):
    return {"name": name, "description": description, "confidence": confidence, "category": category}


@pytest.fixture
def store():
    return CanonicalStore()


@pytest.fixture
def fetcher():
    return FakeFetcher()
