# kg_pipeline/__init__.py

"""Incremental research knowledge-graph pipeline."""

__version__ = "0.1.0"
