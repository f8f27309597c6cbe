# kg_pipeline/config/settings.py

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
        env_prefix="KG_",
    )

    # ------------------------------------------------------------------
    # Core paths
    # ------------------------------------------------------------------
    DATA_DIR: Path = Field(
        default=Path("data"),
        description="Base data directory for graph snapshots.",
    )

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Log level used by the CLI (DEBUG, INFO, WARNING, ERROR).",
    )

    # ------------------------------------------------------------------
    # LLM oracle
    # ------------------------------------------------------------------
    OPENAI_API_KEY: Optional[SecretStr] = Field(
        default=None,
        description="API key for the OpenAI-compatible completion endpoint.",
    )

    OPENAI_BASE_URL: Optional[str] = Field(
        default=None,
        description="Optional base URL override (proxies, OpenAI-compatible servers).",
    )

    LLM_MODEL: str = Field(
        default="gpt-4o-mini",
        description="Model name used for extraction and classification prompts.",
    )

    LLM_TEMPERATURE: float = Field(default=0.2, ge=0.0, le=2.0)

    LLM_MAX_TOKENS: int = Field(default=4096, gt=0)

    # ------------------------------------------------------------------
    # Citation graph (Semantic Scholar)
    # ------------------------------------------------------------------
    SEMANTIC_SCHOLAR_API_KEY: Optional[SecretStr] = Field(
        default=None,
        description="Optional Semantic Scholar key; raises the rate limit.",
    )

    S2_BASE_URL: str = Field(
        default="https://api.semanticscholar.org/graph/v1",
        description="Base URL of the Semantic Scholar Graph API.",
    )

    s2_request_delay_s: Optional[float] = Field(
        default=None,
        description=(
            "Pause before every Semantic Scholar request. "
            "If None, 0.6s without an API key and 0.1s with one."
        ),
    )

    http_timeout_s: float = Field(default=30.0, gt=0)

    # ------------------------------------------------------------------
    # Retries for transient external failures
    # ------------------------------------------------------------------
    retry_attempts: int = Field(default=3, ge=1)
    retry_initial_wait_s: float = Field(default=1.0, ge=0.0)
    retry_max_wait_s: float = Field(default=10.0, ge=0.0)

    # ------------------------------------------------------------------
    # Coordinator
    # ------------------------------------------------------------------
    max_workers: int = Field(
        default=3,
        ge=1,
        description="Number of papers processed concurrently.",
    )
    unit_timeout_s: float = Field(
        default=300.0,
        gt=0,
        description="Per-paper timeout; a unit exceeding it is recorded as failed.",
    )
    default_paper_limit: int = Field(default=50, ge=1)

    # ------------------------------------------------------------------
    # Traversal
    # ------------------------------------------------------------------
    traversal_fetch_limit: int = Field(
        default=10,
        ge=1,
        description="K: references and citations fetched per expanded paper.",
    )
    traversal_top_n: int = Field(
        default=5,
        ge=1,
        description="N: neighbours pushed onto the frontier per expanded paper.",
    )

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------
    max_fulltext_chars: int = Field(default=3000, ge=0)
    min_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    short_description_chars: int = Field(default=20, ge=0)
    short_description_penalty: float = Field(default=0.8, ge=0.0, le=1.0)

    # ------------------------------------------------------------------
    # Relationships / validation
    # ------------------------------------------------------------------
    relationship_candidate_limit: int = Field(
        default=10,
        ge=0,
        description="Upper bound on candidate concepts classified per concept.",
    )
    similarity_threshold: float = Field(
        default=0.85,
        ge=0.0,
        le=1.0,
        description=(
            "Normalized edit-distance similarity at which two names are "
            "reported as soft duplicates. Uncalibrated heuristic."
        ),
    )
    max_duplicates: int = Field(
        default=5,
        ge=0,
        description="Duplicate findings tolerated before consistency_ok flips to False.",
    )

    # ------------------------------------------------------------------
    # Convenience derived paths
    # ------------------------------------------------------------------
    @property
    def graph_dir(self) -> Path:
        return self.DATA_DIR / "graphs"

    def effective_s2_delay(self, has_api_key: Optional[bool] = None) -> float:
        """Seconds between Semantic Scholar requests; keyed clients may go faster."""
        if self.s2_request_delay_s is not None:
            return self.s2_request_delay_s
        if has_api_key is None:
            has_api_key = self.SEMANTIC_SCHOLAR_API_KEY is not None
        return 0.1 if has_api_key else 0.6


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Singleton-style accessor so we only construct Settings once and
    ensure the data directories exist on first access.
    """
    global _settings
    if _settings is None:
        _settings = Settings()

        _settings.DATA_DIR.mkdir(parents=True, exist_ok=True)
        _settings.graph_dir.mkdir(parents=True, exist_ok=True)

    return _settings


settings = get_settings()
