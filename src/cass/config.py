"""Configuration management for CASS.

Uses pydantic-settings to load configuration from environment variables.
Admission policy constants live in a nested model so they can be overridden
with ``POLICY__<FIELD>`` variables without touching code.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _find_env_file() -> Path | None:
    """Search for .env file in common locations."""
    cwd = Path.cwd()
    check_dir = cwd
    for _ in range(5):
        if (check_dir / ".env").exists():
            return check_dir / ".env"
        parent = check_dir.parent
        if parent == check_dir:
            break
        check_dir = parent

    # src/cass/config.py -> project root
    project_root = Path(__file__).resolve().parent.parent.parent
    if (project_root / ".env").exists():
        return project_root / ".env"

    return None


_env_file = _find_env_file()


class PolicyConfig(BaseModel):
    """Admissibility policy constants.

    Defaults reproduce the eligibility policy the review team works with.
    """

    # Project rules
    min_year: int = 2024
    max_funding: float = 500_000
    low_funding: float = 100_000
    min_team: int = 1
    max_team: int = 10
    small_team: int = 3
    min_description_length: int = 50

    # Funding program rules
    max_program_amount: float = 1_000_000

    # Resource rules
    stale_after_days: int = 30
    fresh_within_days: int = 7
    keyword_bonus: int = 5
    keyword_bonus_cap: int = 25

    # Starting scores per record kind
    project_base_score: int = 100
    funding_base_score: int = 80
    resource_base_score: int = 60

    # Admission and tiers
    min_admission_score: int = 30
    perfect_cutoff: int = 90
    good_cutoff: int = 70
    maybe_cutoff: int = 50

    trusted_sources: list[str] = Field(
        default_factory=lambda: ["YCombinator", "ProductHunt", "HackerNews", "GitHub"]
    )
    domain_keywords: list[str] = Field(
        default_factory=lambda: [
            "blockchain", "crypto", "defi", "web3", "nft", "dao", "ethereum", "bitcoin",
        ]
    )
    early_stage_keywords: list[str] = Field(
        default_factory=lambda: ["seed", "pre-seed", "early", "mvp", "prototype", "angel"]
    )
    relevance_keywords: list[str] = Field(
        default_factory=lambda: [
            "startup", "founder", "launch", "mvp", "funding", "investor", "accelerator",
        ]
    )


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=str(_env_file) if _env_file else ".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # =========================
    # Environment
    # =========================
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = False

    # =========================
    # PostgreSQL
    # =========================
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "cass"
    postgres_user: str = "cass"
    postgres_password: str = Field(default="", repr=False)

    @computed_field
    @property
    def database_url(self) -> str:
        """SQLAlchemy database URL for PostgreSQL."""
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # Staging tables, one per category
    staging_tables: dict[str, str] = Field(
        default_factory=lambda: {
            "projects": "queue_projects",
            "funding_programs": "queue_investors",
            "resources": "queue_news",
        }
    )

    # =========================
    # Redis
    # =========================
    redis_url: str = ""

    # =========================
    # Cache
    # =========================
    cache_max_entries: int = 10_000

    # =========================
    # Pipeline timeouts (seconds)
    # =========================
    fetch_timeout_seconds: float = 10.0
    lookup_timeout_seconds: float = 10.0
    scorer_timeout_seconds: float = 15.0
    write_timeout_seconds: float = 15.0

    # =========================
    # Scorer concurrency
    # =========================
    scorer_concurrency: int = 5
    scorer_batch_pause_seconds: float = 0.2
    scorer_fallback_score: int = 50

    # =========================
    # Deduplication
    # =========================
    dedup_fuzzy_titles: bool = True
    dedup_check_days: int = 30
    dedup_history_limit: int = 1000
    dedup_title_threshold: float = 0.9

    # =========================
    # Entity resolution
    # =========================
    match_threshold: float = 0.7
    resolution_blocking: bool = False

    # =========================
    # LLM scorer
    # =========================
    llm_provider: Literal["openai", "heuristic"] = "openai"
    llm_model: str = "gpt-4o-mini"
    openai_api_key: str = Field(default="", repr=False)

    # =========================
    # Logging
    # =========================
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "json"

    # =========================
    # Admission policy
    # =========================
    policy: PolicyConfig = Field(default_factory=PolicyConfig)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
