# kg_pipeline/pipeline/coordinator.py

"""
Pipeline coordinator.

Runs each paper through read -> extraction -> relationships -> validation,
strictly in that order, and runs many papers concurrently under a worker
bound and a per-paper timeout. A failing or timed-out paper is recorded
as failed; it never stops the batch.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

from kg_pipeline.config.settings import settings
from kg_pipeline.errors import StageError
from kg_pipeline.graph.store import CanonicalStore
from kg_pipeline.ingest.semantic_scholar import CitationGraphFetcher
from kg_pipeline.ingest.traversal import TraversalConfig, TraversalState, expand
from kg_pipeline.llm.client import LLMOracle
from kg_pipeline.models.paper import Paper
from kg_pipeline.pipeline.extraction import ExtractionPipeline, ValidatedEntities
from kg_pipeline.pipeline.relationships import RelationshipEngine, RelationshipResult
from kg_pipeline.pipeline.validator import GraphValidator, ValidationReport

logger = logging.getLogger(__name__)

# Returns full text for a paper, or None when none is available.
TextLoader = Callable[[Paper], Optional[str]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TaskStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class PaperTask:
    """Lifecycle record of one paper: pending -> processing -> completed | failed."""

    paper: Paper
    status: TaskStatus = TaskStatus.PENDING
    created_at: datetime = field(default_factory=_utcnow)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    error: Optional[str] = None
    failed_stage: Optional[str] = None

    entities: Optional[ValidatedEntities] = None
    relationships: Optional[RelationshipResult] = None
    validation: Optional[ValidationReport] = None

    @property
    def paper_id(self) -> str:
        return self.paper.paper_id

    def start(self) -> None:
        self.status = TaskStatus.PROCESSING
        self.started_at = _utcnow()

    def complete(self) -> None:
        self.status = TaskStatus.COMPLETED
        self.finished_at = _utcnow()

    def fail(self, error: str, stage: Optional[str] = None) -> None:
        self.status = TaskStatus.FAILED
        self.error = error
        self.failed_stage = stage
        self.finished_at = _utcnow()


class RunStats:
    """Counters for one run. Safe to update from several workers."""

    FIELDS = (
        "papers_attempted",
        "papers_succeeded",
        "papers_failed",
        "entities_created",
        "edges_created",
        "improvements_created",
        "validation_failures",
    )

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts: Dict[str, int] = {name: 0 for name in self.FIELDS}

    def add(self, **increments: int) -> None:
        with self._lock:
            for name, value in increments.items():
                if name not in self._counts:
                    raise KeyError(f"unknown counter {name!r}")
                self._counts[name] += value

    def __getattr__(self, name: str) -> int:
        if name in RunStats.FIELDS:
            with self._lock:
                return self._counts[name]
        raise AttributeError(name)

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counts)


@dataclass
class BatchResult:
    tasks: List[PaperTask]
    completion_order: List[str]
    stats: RunStats

    @property
    def succeeded(self) -> List[PaperTask]:
        return [t for t in self.tasks if t.status is TaskStatus.COMPLETED]

    @property
    def failed(self) -> List[PaperTask]:
        return [t for t in self.tasks if t.status is TaskStatus.FAILED]

    @property
    def ok(self) -> bool:
        return not self.failed


class PipelineCoordinator:
    def __init__(
        self,
        store: CanonicalStore,
        oracle: LLMOracle,
        fetcher: Optional[CitationGraphFetcher] = None,
        *,
        max_workers: Optional[int] = None,
        unit_timeout_s: Optional[float] = None,
        extraction: Optional[ExtractionPipeline] = None,
        relationships: Optional[RelationshipEngine] = None,
        validator: Optional[GraphValidator] = None,
        text_loader: Optional[TextLoader] = None,
        traversal_config: Optional[TraversalConfig] = None,
    ) -> None:
        self.store = store
        self.fetcher = fetcher
        self.max_workers = settings.max_workers if max_workers is None else max_workers
        self.unit_timeout_s = settings.unit_timeout_s if unit_timeout_s is None else unit_timeout_s
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be at least 1, got {self.max_workers}")

        self.extraction = extraction or ExtractionPipeline(oracle, store)
        self.relationships = relationships or RelationshipEngine(oracle, store)
        self.validator = validator or GraphValidator(store)
        self.text_loader = text_loader
        self.traversal_config = traversal_config

    # ------------------------------------------------------------------
    # Single paper
    # ------------------------------------------------------------------
    def _read(self, paper: Paper) -> Paper:
        paper = self.store.ensure_paper(paper)
        if self.text_loader is not None and not paper.full_text:
            text = self.text_loader(paper)
            if text:
                paper = self.store.attach_full_text(paper.paper_id, text)
        return paper

    async def process_paper(
        self,
        paper: Paper,
        task: Optional[PaperTask] = None,
        stats: Optional[RunStats] = None,
    ) -> PaperTask:
        """
        Run all stages for one paper.

        Raises StageError (chained to the original exception) naming the
        stage that failed. Work persisted by earlier stages is kept.
        """
        if task is None:
            task = PaperTask(paper=paper)
        if stats is None:
            stats = RunStats()

        stage = "read"
        try:
            paper = await asyncio.to_thread(self._read, paper)
            task.paper = paper

            stage = "extraction"
            task.entities = await self.extraction.extract(paper)
            stats.add(
                entities_created=task.entities.entities_created,
                edges_created=task.entities.edges_created,
            )

            stage = "relationships"
            task.relationships = await self.relationships.map_relationships(paper, task.entities)
            created = len(task.relationships.improvements)
            stats.add(improvements_created=created, edges_created=created)

            stage = "validation"
            task.validation = self.validator.validate(paper)
            if not task.validation.consistency_ok:
                stats.add(validation_failures=1)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise StageError(stage, paper.paper_id, exc) from exc

        return task

    async def _run_unit(
        self,
        task: PaperTask,
        semaphore: asyncio.Semaphore,
        stats: RunStats,
        completion_order: List[str],
    ) -> PaperTask:
        async with semaphore:
            task.start()
            stats.add(papers_attempted=1)
            try:
                await asyncio.wait_for(
                    self.process_paper(task.paper, task, stats),
                    timeout=self.unit_timeout_s,
                )
            except asyncio.TimeoutError:
                logger.error("Paper %s timed out after %.0fs", task.paper_id, self.unit_timeout_s)
                task.fail(f"timed out after {self.unit_timeout_s}s", stage="timeout")
            except StageError as exc:
                logger.error(
                    "Paper %s failed in %s stage",
                    task.paper_id,
                    exc.stage,
                    exc_info=exc.cause,
                )
                task.fail(str(exc.cause) or repr(exc.cause), stage=exc.stage)
            else:
                task.complete()
            finally:
                completion_order.append(task.paper_id)

            if task.status is TaskStatus.COMPLETED:
                stats.add(papers_succeeded=1)
            else:
                stats.add(papers_failed=1)
            return task

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------
    async def process_batch(
        self,
        papers: Sequence[Paper],
        stats: Optional[RunStats] = None,
    ) -> BatchResult:
        """
        Process `papers` concurrently, at most `max_workers` at a time.

        Always returns once every paper has settled. Tasks are listed in
        submission order; `completion_order` lists paper ids as they
        finished.
        """
        if stats is None:
            stats = RunStats()

        tasks = [PaperTask(paper=p) for p in papers]
        completion_order: List[str] = []
        semaphore = asyncio.Semaphore(self.max_workers)

        logger.info("Processing batch of %d paper(s) with %d worker(s)", len(tasks), self.max_workers)

        outcomes = await asyncio.gather(
            *(self._run_unit(t, semaphore, stats, completion_order) for t in tasks),
            return_exceptions=True,
        )

        for task, outcome in zip(tasks, outcomes):
            if isinstance(outcome, BaseException) and task.status is not TaskStatus.FAILED:
                logger.error("Paper %s aborted: %r", task.paper_id, outcome)
                task.fail(repr(outcome))
                if task.paper_id not in completion_order:
                    completion_order.append(task.paper_id)
                stats.add(papers_failed=1)

        result = BatchResult(tasks=tasks, completion_order=completion_order, stats=stats)
        logger.info(
            "Batch complete: %d succeeded, %d failed",
            len(result.succeeded),
            len(result.failed),
        )
        return result

    async def run(self, seed: str, limit: Optional[int] = None) -> BatchResult:
        """Traverse from `seed`, then process every paper the walk selected."""
        if self.fetcher is None:
            raise ValueError("a CitationGraphFetcher is required to run from a seed")

        if limit is None:
            limit = settings.default_paper_limit
        state = TraversalState()

        logger.info("Traversing from %s (limit %d)", seed, limit)
        refs = await asyncio.to_thread(
            lambda: list(
                expand(
                    seed,
                    limit,
                    fetcher=self.fetcher,
                    store=self.store,
                    config=self.traversal_config,
                    state=state,
                )
            )
        )
        logger.info("Traversal selected %d paper(s)", len(refs))

        papers = [self.store.get_paper(r.paper_id) or Paper.from_ref(r) for r in refs]
        return await self.process_batch(papers)
