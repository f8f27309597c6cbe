# kg_pipeline/cli/main.py

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from kg_pipeline.config.settings import settings
from kg_pipeline.graph.storage import load_latest_graph, save_graph
from kg_pipeline.graph.store import CanonicalStore
from kg_pipeline.ingest.semantic_scholar import SemanticScholarFetcher
from kg_pipeline.llm.client import OpenAIOracle
from kg_pipeline.logging_utils import configure_logging
from kg_pipeline.pipeline.coordinator import BatchResult, PipelineCoordinator
from kg_pipeline.pipeline.validator import GraphValidator, ValidationReport

app = typer.Typer(help="Build a research knowledge graph from a seed paper's citation network.")
console = Console()


def _load_store(graph_dir: Optional[Path], fresh: bool = False) -> CanonicalStore:
    if fresh:
        return CanonicalStore()
    G = load_latest_graph(graph_dir)
    if G is None:
        console.print("[yellow]No saved graph found; starting from an empty graph.[/yellow]")
        return CanonicalStore()
    return CanonicalStore.from_graph(G)


def _print_counts(title: str, counts: dict) -> None:
    table = Table(title=title)
    table.add_column("Counter", style="cyan")
    table.add_column("Value", justify="right")
    for name, value in counts.items():
        table.add_row(name, str(value))
    console.print(table)


def _print_failures(result: BatchResult) -> None:
    if not result.failed:
        return
    table = Table(title="Failed papers")
    table.add_column("Paper")
    table.add_column("Stage")
    table.add_column("Error")
    for task in result.failed:
        table.add_row(task.paper_id, task.failed_stage or "-", task.error or "")
    console.print(table)


def _print_report(report: ValidationReport) -> None:
    status = "[green]OK[/green]" if report.consistency_ok else "[red]NOT OK[/red]"
    console.print(f"Consistency: {status}")

    if report.duplicates:
        table = Table(title=f"Duplicates ({report.duplicate_count})")
        table.add_column("Kind")
        table.add_column("Key")
        table.add_column("Names")
        for d in report.duplicates:
            table.add_row(d.kind, d.key, ", ".join(d.names))
        console.print(table)

    for conflict in report.conflicts:
        console.print(f"[yellow]conflict[/yellow] {conflict.kind}: {conflict.message}")
    for issue in report.issues:
        console.print(f"[red]issue[/red] {issue.check}: {issue.message}")


@app.command("run")
def run(
    seed: str = typer.Argument(..., help="Seed paper: Semantic Scholar id, arXiv id or arXiv URL."),
    limit: int = typer.Option(
        settings.default_paper_limit, "--limit", "-n", min=1, help="Maximum papers to process."
    ),
    workers: int = typer.Option(
        settings.max_workers, "--workers", "-w", min=1, help="Papers processed concurrently."
    ),
    timeout: float = typer.Option(
        settings.unit_timeout_s, "--timeout", help="Per-paper timeout in seconds."
    ),
    graph_dir: Optional[Path] = typer.Option(
        None, "--graph-dir", help="Snapshot directory. Defaults to settings.graph_dir."
    ),
    fresh: bool = typer.Option(
        False, "--fresh", help="Ignore any saved graph and start from empty."
    ),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Overrides KG_LOG_LEVEL."),
):
    """
    Traverse from SEED, run every selected paper through the pipeline and
    save a graph snapshot. Exits with code 1 if any paper failed.
    """
    configure_logging(log_level)
    console.rule("[bold cyan]Knowledge graph pipeline[/bold cyan]")

    store = _load_store(graph_dir, fresh)
    coordinator = PipelineCoordinator(
        store,
        OpenAIOracle(),
        SemanticScholarFetcher(),
        max_workers=workers,
        unit_timeout_s=timeout,
    )

    result = asyncio.run(coordinator.run(seed, limit))

    path = save_graph(store.graph, directory=graph_dir)
    console.print(f"[green]Graph saved to: [bold]{path}[/bold][/green]")

    _print_counts("Run", result.stats.snapshot())
    _print_failures(result)

    if not result.ok:
        raise typer.Exit(code=1)


@app.command("validate")
def validate(
    graph_dir: Optional[Path] = typer.Option(
        None, "--graph-dir", help="Snapshot directory. Defaults to settings.graph_dir."
    ),
):
    """
    Run the global validation checks on the saved graph.
    Exits with code 1 when the graph is not consistent.
    """
    store = _load_store(graph_dir)
    report = GraphValidator(store).validate_graph()
    _print_report(report)
    if not report.consistency_ok:
        raise typer.Exit(code=1)


@app.command("stats")
def stats(
    graph_dir: Optional[Path] = typer.Option(
        None, "--graph-dir", help="Snapshot directory. Defaults to settings.graph_dir."
    ),
):
    """Print node and edge counts of the saved graph."""
    store = _load_store(graph_dir)
    _print_counts("Graph", store.stats())


if __name__ == "__main__":
    app()
