# kg_pipeline/llm/prompts.py

"""
Prompt builders for the two oracle call sites.

Both prompts ask for a single JSON object matching the schemas in
kg_pipeline.llm.schemas.
"""

from __future__ import annotations

from typing import Optional

from kg_pipeline.config.settings import settings
from kg_pipeline.models.entities import Concept
from kg_pipeline.models.paper import Paper
from kg_pipeline.utils.text import clean_whitespace, truncate

SYSTEM_PROMPT = (
    "You are an expert research assistant who reads machine learning and "
    "computer vision papers and extracts structured technical information. "
    "Always respond with a single valid JSON object and nothing else."
)


EXTRACTION_TEMPLATE = """\
Read the paper below and list the technical entities it introduces or relies on.

Title: {title}

Abstract:
{abstract}
{full_text_block}
Return JSON with exactly these keys:
{{
  "concepts": [
    {{"name": "...", "description": "one or two sentences",
      "category": "technique | architecture | loss_function | representation | other",
      "confidence": 0.0-1.0}}
  ],
  "methods": [
    {{"name": "...", "description": "...",
      "category": "algorithm | technique | optimization | rendering | training",
      "computational_complexity": "e.g. O(n log n) or null",
      "confidence": 0.0-1.0}}
  ],
  "datasets": [
    {{"name": "...", "description": "...", "url": "... or null"}}
  ],
  "metrics": [
    {{"name": "...", "value": "number or string", "unit": "... or null"}}
  ]
}}

Guidelines:
- Only list concepts and methods the paper introduces or materially builds on.
- Use the paper's own canonical names, without citation markers.
- Lower the confidence when an entity is only mentioned in passing.
- Use empty lists when nothing applies.
"""


CLASSIFICATION_TEMPLATE = """\
Decide whether the new concept stands in a technical relationship to an existing one.

New concept (from "{paper_title}"):
  Name: {new_name}
  Description: {new_description}

Existing concept:
  Name: {old_name}
  Description: {old_description}

Return JSON with exactly these keys:
{{
  "has_relationship": true or false,
  "relationship_type": "improves_on | extends | uses | evaluates | none",
  "improvement_category": "speed | quality | generalization | simplicity or null",
  "quantitative_gain": {{"metric": "...", "value": "..."}} or null,
  "confidence": 0.0-1.0,
  "explanation": "one sentence"
}}

Only answer "improves_on" when the new concept is presented as a better
replacement for the existing one.
"""


def build_extraction_prompt(paper: Paper, max_fulltext_chars: Optional[int] = None) -> str:
    limit = max_fulltext_chars if max_fulltext_chars is not None else settings.max_fulltext_chars

    full_text_block = ""
    if paper.full_text:
        excerpt = truncate(clean_whitespace(paper.full_text), limit)
        full_text_block = f"\nFull text (excerpt):\n{excerpt}\n"

    return EXTRACTION_TEMPLATE.format(
        title=paper.title or paper.paper_id,
        abstract=(paper.abstract or "(no abstract available)").strip(),
        full_text_block=full_text_block,
    )


def build_classification_prompt(new: Concept, existing: Concept, paper: Paper) -> str:
    return CLASSIFICATION_TEMPLATE.format(
        paper_title=paper.title or paper.paper_id,
        new_name=new.name,
        new_description=new.description or "(none)",
        old_name=existing.name,
        old_description=existing.description or "(none)",
    )
