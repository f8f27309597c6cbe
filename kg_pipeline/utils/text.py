# kg_pipeline/utils/text.py

from __future__ import annotations

import re
from typing import Optional

from rapidfuzz.distance import Levenshtein

_NON_ALNUM = re.compile(r"[^a-z0-9]+")

_ARXIV_PATTERNS = (
    re.compile(r"arxiv\.org/(?:abs|pdf)/(\d{4}\.\d{4,5})", re.IGNORECASE),
    re.compile(r"arxiv:(\d{4}\.\d{4,5})", re.IGNORECASE),
    re.compile(r"^(\d{4}\.\d{4,5})(?:v\d+)?$"),
)


def normalize_entity_name(name: str) -> str:
    """
    Normalize an entity name into its deduplication key.

    "3D Gaussian Splatting" -> "3d-gaussian-splatting"
    """
    folded = (name or "").lower().strip()
    return _NON_ALNUM.sub("-", folded).strip("-")


def name_similarity(a: str, b: str) -> float:
    """
    1 - levenshtein(a, b) / max(len(a), len(b)), case-insensitive.

    Two empty strings are identical (1.0).
    """
    s1 = (a or "").lower()
    s2 = (b or "").lower()
    if not s1 and not s2:
        return 1.0
    return Levenshtein.normalized_similarity(s1, s2)


def extract_arxiv_id(value: str) -> Optional[str]:
    """
    Pull a bare arXiv id out of "2308.04079", "arXiv:2308.04079" or an
    arxiv.org URL. Returns None for anything else.
    """
    value = (value or "").strip()
    for pattern in _ARXIV_PATTERNS:
        match = pattern.search(value)
        if match:
            return match.group(1)
    return None


def truncate(text: str, max_chars: int) -> str:
    text = text or ""
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "..."


def clean_whitespace(text: Optional[str]) -> str:
    return re.sub(r"\s+", " ", text or "").strip()
