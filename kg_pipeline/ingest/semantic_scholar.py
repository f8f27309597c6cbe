# kg_pipeline/ingest/semantic_scholar.py

"""
Citation-graph access.

`CitationGraphFetcher` is the small interface the traversal engine
needs; `SemanticScholarFetcher` implements it against the Semantic
Scholar Graph API (https://api.semanticscholar.org/).
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Dict, List, Optional

import requests
from tenacity import Retrying

from kg_pipeline.config.settings import settings
from kg_pipeline.errors import MalformedDataError, TransientExternalError
from kg_pipeline.models.paper import PaperMetadata, PaperRef
from kg_pipeline.retry import retry_policy

logger = logging.getLogger(__name__)

PAPER_FIELDS = (
    "paperId,externalIds,title,abstract,year,authors,citationCount,"
    "referenceCount,publicationDate,openAccessPdf"
)
NEIGHBOUR_FIELDS = "paperId,title,year,citationCount,externalIds"


class CitationGraphFetcher(ABC):
    """Read access to a citation network."""

    @abstractmethod
    def get_paper(self, paper_id: str) -> Optional[PaperMetadata]:
        """Metadata for `paper_id`, or None when the paper is unknown."""

    @abstractmethod
    def get_references(self, paper_id: str, limit: int) -> List[PaperRef]:
        """Up to `limit` papers cited by `paper_id`."""

    @abstractmethod
    def get_citations(self, paper_id: str, limit: int) -> List[PaperRef]:
        """Up to `limit` papers citing `paper_id`."""


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------

def _parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def parse_paper(d: Dict[str, Any]) -> PaperMetadata:
    """Map a Graph API paper object onto PaperMetadata."""
    paper_id = d.get("paperId")
    if not paper_id:
        raise MalformedDataError("paper payload without paperId")

    ext = d.get("externalIds") or {}

    pdf_url = None
    oapdf = d.get("openAccessPdf")
    if isinstance(oapdf, dict):
        pdf_url = oapdf.get("url") or None

    authors = [a["name"] for a in d.get("authors") or [] if a.get("name")]

    return PaperMetadata(
        paper_id=paper_id,
        title=d.get("title") or "",
        abstract=d.get("abstract"),
        arxiv_id=ext.get("ArXiv"),
        doi=ext.get("DOI"),
        year=d.get("year"),
        published_date=_parse_date(d.get("publicationDate")),
        citation_count=d.get("citationCount") or 0,
        reference_count=d.get("referenceCount") or 0,
        pdf_url=pdf_url,
        authors=authors,
    )


def parse_neighbours(payload: Dict[str, Any], side: str) -> List[PaperRef]:
    """
    Extract PaperRefs from a /references or /citations page.

    `side` is "citedPaper" for references and "citingPaper" for citations.
    Entries the API could not resolve (no paperId) are dropped.
    """
    refs: List[PaperRef] = []
    for item in payload.get("data") or []:
        d = (item or {}).get(side) or {}
        paper_id = d.get("paperId")
        if not paper_id:
            continue
        ext = d.get("externalIds") or {}
        refs.append(
            PaperRef(
                paper_id=paper_id,
                title=d.get("title") or "",
                citation_count=d.get("citationCount") or 0,
                arxiv_id=ext.get("ArXiv"),
            )
        )
    return refs


# ---------------------------------------------------------------------------
# Semantic Scholar client
# ---------------------------------------------------------------------------

class SemanticScholarFetcher(CitationGraphFetcher):
    """
    Blocking Semantic Scholar client.

    Requests are spaced by `request_delay` seconds (0.6s without an API
    key, 0.1s with one). 429, 5xx and network errors raise
    TransientExternalError and are retried with backoff; 404 on a paper
    lookup returns None.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        *,
        request_delay: Optional[float] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
        retry_attempts: Optional[int] = None,
        retry_initial_wait: Optional[float] = None,
    ) -> None:
        if api_key is None and settings.SEMANTIC_SCHOLAR_API_KEY is not None:
            api_key = settings.SEMANTIC_SCHOLAR_API_KEY.get_secret_value()

        self.base_url = (base_url or settings.S2_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.http_timeout_s
        self.request_delay = (
            settings.effective_s2_delay(has_api_key=bool(api_key))
            if request_delay is None
            else request_delay
        )

        self._session = session or requests.Session()
        if api_key:
            self._session.headers["x-api-key"] = api_key

        self._retry = retry_policy(attempts=retry_attempts, initial_wait=retry_initial_wait)
        self._rate_lock = threading.Lock()
        self._last_request = 0.0

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------
    def _wait_for_slot(self) -> None:
        with self._rate_lock:
            elapsed = time.monotonic() - self._last_request
            if elapsed < self.request_delay:
                time.sleep(self.request_delay - elapsed)
            self._last_request = time.monotonic()

    def _get_once(self, path: str, params: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        self._wait_for_slot()
        url = f"{self.base_url}{path}"
        try:
            resp = self._session.get(url, params=params, timeout=self.timeout)
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise TransientExternalError(f"GET {path} failed: {exc}") from exc

        if resp.status_code == 404:
            return None
        if resp.status_code == 429 or resp.status_code >= 500:
            raise TransientExternalError(
                f"GET {path} returned HTTP {resp.status_code}",
                status_code=resp.status_code,
            )
        if not resp.ok:
            raise MalformedDataError(f"GET {path} returned HTTP {resp.status_code}")

        try:
            return resp.json()
        except ValueError as exc:
            raise MalformedDataError(f"GET {path} returned invalid JSON") from exc

    def _get(self, path: str, params: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        for attempt in Retrying(**self._retry):
            with attempt:
                return self._get_once(path, params)
        return None

    # ------------------------------------------------------------------
    # CitationGraphFetcher
    # ------------------------------------------------------------------
    def get_paper(self, paper_id: str) -> Optional[PaperMetadata]:
        payload = self._get(f"/paper/{paper_id}", {"fields": PAPER_FIELDS})
        if payload is None:
            logger.warning("Paper not found on Semantic Scholar: %s", paper_id)
            return None
        logger.debug("Fetched paper %s", paper_id)
        return parse_paper(payload)

    def get_references(self, paper_id: str, limit: int) -> List[PaperRef]:
        payload = self._get(
            f"/paper/{paper_id}/references",
            {"fields": NEIGHBOUR_FIELDS, "limit": limit},
        )
        refs = parse_neighbours(payload or {}, "citedPaper")[:limit]
        logger.debug("Fetched %d references for %s", len(refs), paper_id)
        return refs

    def get_citations(self, paper_id: str, limit: int) -> List[PaperRef]:
        payload = self._get(
            f"/paper/{paper_id}/citations",
            {"fields": NEIGHBOUR_FIELDS, "limit": limit},
        )
        refs = parse_neighbours(payload or {}, "citingPaper")[:limit]
        logger.debug("Fetched %d citations for %s", len(refs), paper_id)
        return refs
