# kg_pipeline/graph/storage.py

"""
Pickle snapshots of the canonical store graph.

Each save writes a timestamped file and refreshes graph-latest.pkl next to
it, so a later run can pick up where the previous one stopped.
"""

from __future__ import annotations

import logging
import pickle
import shutil
import time
from pathlib import Path
from typing import Optional

import networkx as nx

from kg_pipeline.config.settings import settings

logger = logging.getLogger(__name__)

LATEST_NAME = "graph-latest.pkl"


def _ensure_dir(directory: Optional[Path]) -> Path:
    """Create `directory` (default: settings.graph_dir) and return it."""
    if directory is None:
        directory = settings.graph_dir

    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def save_graph(
    G: nx.MultiDiGraph,
    name: Optional[str] = None,
    directory: Optional[Path] = None,
) -> Path:
    """Pickle `G` into `directory` and return the written path."""
    directory = _ensure_dir(directory)

    if name is None:
        ts = time.strftime("%Y%m%d-%H%M%S")
        name = f"graph-{ts}.pkl"

    path = directory / name

    with path.open("wb") as f:
        pickle.dump(G, f, protocol=pickle.HIGHEST_PROTOCOL)

    latest_path = directory / LATEST_NAME
    if latest_path != path:
        try:
            shutil.copy2(path, latest_path)
        except OSError:
            logger.warning("Could not refresh %s; snapshot kept at %s", latest_path, path)

    logger.info("Saved graph snapshot to %s", path)

    return path


def load_latest_graph(directory: Optional[Path] = None) -> Optional[nx.MultiDiGraph]:
    """
    Load the most recent snapshot from the target directory.

    Prefers "graph-latest.pkl"; otherwise the most recently modified
    *.pkl file. Returns None when the directory holds no snapshot.
    """
    directory = _ensure_dir(directory)

    latest = directory / LATEST_NAME
    if not latest.is_file():
        candidates = [p for p in directory.glob("*.pkl") if p.is_file()]
        if not candidates:
            return None
        latest = max(candidates, key=lambda p: p.stat().st_mtime)

    with latest.open("rb") as f:
        G = pickle.load(f)

    if not isinstance(G, nx.MultiDiGraph):
        raise TypeError(f"{latest} does not contain a MultiDiGraph snapshot")

    return G
