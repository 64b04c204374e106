"""Shared pytest fixtures for CASS tests."""

import asyncio
from datetime import datetime, timezone
from typing import Any

import pytest

from cass.aggregation import ScoreResult
from cass.config import PolicyConfig, Settings
from cass.deduplication import HistoryItem
from cass.errors import UniqueConflictError
from cass.models import Category, RawRecord, RecordKind, StagingRecord
from cass.staging import TITLE_COLUMNS, TITLE_KEY_COLUMN, title_key

FIXED_NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


# =========================
# Collaborator fakes
# =========================


class InMemoryStore:
    """Staging store with a unique constraint on each category's conflict key.

    Title lookups go through the normalized title column, derived from the
    display name for rows written without one.

    Batch inserts are atomic: a conflict anywhere in the batch inserts
    nothing and raises UniqueConflictError.
    """

    def __init__(self):
        self.rows: dict[Category, dict[str, dict[str, Any]]] = {category: {} for category in Category}
        self.exists_calls: list[tuple[Category, list[str]]] = []
        self.batch_calls: list[tuple[Category, int]] = []
        self.upserts: list[tuple[Category, str]] = []
        self.history: dict[Category, list[HistoryItem]] = {category: [] for category in Category}

    def seed(self, category: Category, key: str, title: str = "") -> None:
        data = {TITLE_COLUMNS[category]: title}
        self.rows[category][key] = {**data, TITLE_KEY_COLUMN: title_key(category, data)}

    async def exists(self, category: Category, values: list[str]) -> dict[str, bool]:
        self.exists_calls.append((category, list(values)))
        rows = self.rows[category]
        titles = {row.get(TITLE_KEY_COLUMN) or title_key(category, row) for row in rows.values()}
        return {value: value in rows or value in titles for value in values}

    async def recent(self, category: Category, since: datetime, limit: int) -> list[HistoryItem]:
        return self.history[category][:limit]

    async def batch_insert(
        self, category: Category, records: list[StagingRecord]
    ) -> list[StagingRecord]:
        self.batch_calls.append((category, len(records)))
        rows = self.rows[category]
        keys = [record.key for record in records]
        if any(key in rows for key in keys) or len(set(keys)) != len(keys):
            raise UniqueConflictError(f"duplicate key in {category.value}")
        for record in records:
            rows[record.key] = dict(record.data)
        return records

    async def upsert(
        self, category: Category, record: StagingRecord, conflict_key: str
    ) -> StagingRecord:
        self.upserts.append((category, record.key))
        self.rows[category][record.key] = dict(record.data)
        return record


class FixedScorer:
    """Scorer returning a constant result and counting calls."""

    def __init__(self, score: int = 70, recommended: bool = True):
        self.result = ScoreResult(score=score, recommended=recommended, rationale="Fixed", confidence=0.9)
        self.calls: list[dict[str, Any]] = []

    async def score(self, attributes: dict[str, Any]) -> ScoreResult:
        self.calls.append(attributes)
        return self.result


class HangingScorer:
    """Scorer that never answers within any reasonable timeout."""

    async def score(self, attributes: dict[str, Any]) -> ScoreResult:
        await asyncio.sleep(60)
        raise AssertionError("unreachable")


class FailingScorer:
    """Scorer that always raises."""

    async def score(self, attributes: dict[str, Any]) -> ScoreResult:
        raise RuntimeError("model unavailable")


# =========================
# Fixtures
# =========================


@pytest.fixture
def policy() -> PolicyConfig:
    """Default admission policy."""
    return PolicyConfig()


@pytest.fixture
def settings() -> Settings:
    """Settings with short timeouts and no inter-batch pause."""
    return Settings(
        fetch_timeout_seconds=0.5,
        lookup_timeout_seconds=0.5,
        scorer_timeout_seconds=0.05,
        write_timeout_seconds=0.5,
        scorer_batch_pause_seconds=0.0,
        redis_url="",
        openai_api_key="",
    )


@pytest.fixture
def clock():
    """Clock fixed at 2024-06-01 12:00 UTC."""
    return lambda: FIXED_NOW


@pytest.fixture
def store() -> InMemoryStore:
    """Empty in-memory staging store."""
    return InMemoryStore()


@pytest.fixture
def fixed_scorer() -> FixedScorer:
    """Scorer always returning 70 and recommending."""
    return FixedScorer()


@pytest.fixture
def hanging_scorer() -> HangingScorer:
    return HangingScorer()


@pytest.fixture
def failing_scorer() -> FailingScorer:
    return FailingScorer()


@pytest.fixture
def make_record():
    """Factory for raw records with sensible defaults."""

    def _make(
        title: str = "Acme",
        url: str = "https://acme.io",
        kind: RecordKind = RecordKind.PROJECT,
        source: str = "ProductHunt",
        description: str = "",
        published_at: datetime | None = None,
        author: str | None = None,
        **attributes: Any,
    ) -> RawRecord:
        return RawRecord(
            source=source,
            kind=kind,
            title=title,
            description=description,
            url=url,
            author=author,
            published_at=published_at,
            attributes=attributes,
        )

    return _make


@pytest.fixture
def scenario_records(make_record) -> list[RawRecord]:
    """Acme twice from two sources plus an over-funded Globex."""
    return [
        make_record(title="Acme", url="https://acme.io", source="ProductHunt", funding_amount=0, founded_year=2024),
        make_record(title="ACME Inc", url="https://acme.io", source="HackerNews", funding_amount=50000),
        make_record(
            title="Globex",
            url="https://globex.com",
            source="Wellfound",
            funding_amount=600000,
            founded_year=2020,
        ),
    ]
