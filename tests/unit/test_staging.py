"""Tests for staging projection and conflict-aware routing."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from cass.cache import PipelineCache, existence_key
from cass.errors import UniqueConflictError
from cass.models import Category, RecordKind, StagingRecord
from cass.resolution import EntityResolver
from cass.staging import TITLE_COLUMNS, TITLE_KEY_COLUMN, StagingRouter, StagingTransformer, synthesize_description


def _row(key: str, title: str = "Acme", category: Category = Category.PROJECTS) -> StagingRecord:
    conflict_key = "website" if category == Category.PROJECTS else "url"
    return StagingRecord(
        category=category,
        conflict_key=conflict_key,
        data={conflict_key: key, TITLE_COLUMNS[category]: title},
    )


class FlakySink:
    """Sink whose first batch insert hangs past the write timeout."""

    def __init__(self, hangs: int = 1):
        self.hangs = hangs
        self.calls = 0

    async def batch_insert(self, category, records):
        self.calls += 1
        if self.calls <= self.hangs:
            await asyncio.sleep(5)
        return records

    async def upsert(self, category, record, conflict_key):
        return record


@pytest.fixture
def fast_writes(settings):
    return settings.model_copy(update={"write_timeout_seconds": 0.05})


class TestSynthesizeDescription:
    """Tests for description expansion and capping."""

    def test_short_description_is_expanded(self):
        text = synthesize_description("Acme", "ProductHunt", "project", "Tiny.")

        assert text == (
            "Acme - ProductHunt project candidate staged for review. "
            "Collected from ProductHunt and awaiting curator evaluation."
        )

    def test_long_description_is_capped(self):
        text = synthesize_description("Acme", "ProductHunt", "project", "x" * 1500)

        assert len(text) == 1000
        assert text.endswith("...")

    def test_adequate_description_is_kept(self):
        original = "A description that is comfortably longer than fifty characters."
        assert synthesize_description("Acme", "GitHub", "project", original) == original


class TestStagingTransformer:
    """Tests for category projection."""

    def test_project_row(self, make_record, clock):
        entity = EntityResolver().resolve(
            [make_record(url="https://www.acme.io/?utm_source=ph", funding_amount=0, founded_year=2024)]
        )[0]
        record = StagingTransformer(batch_id="run-1", clock=clock).transform(entity)

        assert record.category == Category.PROJECTS
        assert record.conflict_key == "website"
        assert record.key == "https://acme.io"
        assert record.data["company_name"] == "Acme"
        assert record.data["status"] == "pending_review"
        assert record.data["batch_id"] == "run-1"
        assert record.data["created_at"] == clock()
        assert record.data["founders"] == []
        assert len(record.data["description"]) >= 50

    def test_rows_carry_normalized_title(self, make_record, clock):
        entity = EntityResolver().resolve([make_record(title="Globex Labs LLC", url="https://globex.com")])[0]
        record = StagingTransformer(clock=clock).transform(entity)

        assert record.data["company_name"] == "Globex Labs LLC"
        assert record.data[TITLE_KEY_COLUMN] == "globex"

    def test_funding_program_row(self, make_record, clock):
        entity = EntityResolver().resolve(
            [make_record(title="Builders Grant", kind=RecordKind.FUNDING_PROGRAM, url="https://grants.example.org/b")]
        )[0]
        record = StagingTransformer(clock=clock).transform(entity)

        assert record.category == Category.FUNDING_PROGRAMS
        assert record.key == "https://grants.example.org/b"
        assert len(record.data["description"]) >= 100
        assert record.data["funding_type"] == "grant"
        assert record.data["min_amount"] == 10_000
        assert record.data["active_status"] is True

    def test_resource_row(self, make_record, clock):
        entity = EntityResolver().resolve(
            [
                make_record(
                    title="Launch Guide",
                    kind=RecordKind.RESOURCE,
                    url="https://blog.example.com/guide",
                    description="How to launch.",
                    author="jdoe",
                )
            ]
        )[0]
        record = StagingTransformer(clock=clock).transform(entity)

        assert record.data["title"] == "Launch Guide"
        assert record.data["published_date"] == clock()
        assert record.data["author"] == "jdoe"
        assert record.data["publication"] == "ProductHunt"


class TestStagingRouter:
    """Tests for batched writes with conflict fallback."""

    @pytest.mark.asyncio
    async def test_batch_insert(self, store, settings):
        router = StagingRouter(store, settings=settings)
        result = await router.route_records([_row("https://acme.io"), _row("https://globex.com", "Globex")])

        assert result.inserted_by_category == {"projects": 2}
        assert result.staged == 2
        assert store.batch_calls == [(Category.PROJECTS, 2)]

    @pytest.mark.asyncio
    async def test_rerouting_updates_instead_of_duplicating(self, store, settings):
        router = StagingRouter(store, settings=settings)
        rows = [_row("https://acme.io"), _row("https://globex.com", "Globex")]

        await router.route_records(rows)
        second = await router.route_records(rows)

        assert second.updated_by_category == {"projects": 2}
        assert second.inserted_by_category == {"projects": 0}
        assert second.errors == []
        assert len(store.rows[Category.PROJECTS]) == 2

    @pytest.mark.asyncio
    async def test_repeated_key_in_batch_is_skipped(self, store, settings):
        router = StagingRouter(store, settings=settings)
        result = await router.route_records([_row("https://acme.io"), _row("https://acme.io", "Acme Inc")])

        assert result.inserted_by_category == {"projects": 1}
        assert result.skipped_by_category == {"projects": 1}
        assert store.rows[Category.PROJECTS]["https://acme.io"]["company_name"] == "Acme"

    @pytest.mark.asyncio
    async def test_mixed_new_and_existing(self, store, settings):
        store.seed(Category.PROJECTS, "https://acme.io", "Acme")
        router = StagingRouter(store, settings=settings)

        result = await router.route_records([_row("https://acme.io"), _row("https://globex.com", "Globex")])

        assert result.inserted_by_category == {"projects": 1}
        assert result.updated_by_category == {"projects": 1}
        assert store.upserts == [(Category.PROJECTS, "https://acme.io")]

    @pytest.mark.asyncio
    async def test_failures_are_accumulated_per_category(self, store, settings):
        async def batch_insert(category, records):
            if category == Category.PROJECTS:
                raise RuntimeError("disk full")
            return await store.batch_insert(category, records)

        sink = AsyncMock()
        sink.batch_insert.side_effect = batch_insert
        router = StagingRouter(sink, settings=settings)

        result = await router.route_records(
            [
                _row("https://acme.io"),
                _row("https://globex.com", "Globex"),
                _row("https://blog.example.com/guide", "Guide", Category.RESOURCES),
            ]
        )

        assert result.inserted_by_category == {"projects": 0, "resources": 1}
        assert result.errors == [
            "[staging] projects: https://acme.io: disk full",
            "[staging] projects: https://globex.com: disk full",
        ]

    @pytest.mark.asyncio
    async def test_failed_upsert_is_reported(self, store, settings):
        store.seed(Category.PROJECTS, "https://acme.io", "Acme")
        store.upsert = AsyncMock(side_effect=RuntimeError("constraint missing"))
        router = StagingRouter(store, settings=settings)

        result = await router.route_records([_row("https://acme.io")])

        assert result.updated_by_category == {"projects": 0}
        assert result.errors == ["[staging] projects: https://acme.io: constraint missing"]

    @pytest.mark.asyncio
    async def test_timed_out_write_is_retried_once(self, fast_writes):
        sink = FlakySink(hangs=1)
        result = await StagingRouter(sink, settings=fast_writes).route_records([_row("https://acme.io")])

        assert sink.calls == 2
        assert result.inserted_by_category == {"projects": 1}

    @pytest.mark.asyncio
    async def test_second_timeout_is_a_failure(self, fast_writes):
        sink = FlakySink(hangs=2)
        result = await StagingRouter(sink, settings=fast_writes).route_records([_row("https://acme.io")])

        assert sink.calls == 2
        assert result.errors == ["[staging] projects: https://acme.io: write timed out after retry"]

    @pytest.mark.asyncio
    async def test_written_keys_are_cached(self, store, settings):
        cache = PipelineCache()
        router = StagingRouter(store, settings=settings, cache=cache)

        await router.route_records([_row("https://acme.io", "ACME Inc")])

        assert await cache.get(existence_key(Category.PROJECTS, "https://acme.io")) is True
        assert await cache.get(existence_key(Category.PROJECTS, "acme")) is True

    @pytest.mark.asyncio
    async def test_conflict_raised_by_sink_mock(self, settings):
        sink = AsyncMock()
        sink.batch_insert.side_effect = UniqueConflictError("duplicate")
        sink.upsert.side_effect = lambda category, record, key: record

        result = await StagingRouter(sink, settings=settings).route_records([_row("https://acme.io")])

        assert result.updated_by_category == {"projects": 1}
        sink.upsert.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_route_entities(self, store, settings, clock, scenario_records):
        entities = EntityResolver().resolve(scenario_records[:2])
        router = StagingRouter(store, StagingTransformer(clock=clock), settings=settings)

        result = await router.route(entities)

        assert result.staged == 1
        row = store.rows[Category.PROJECTS]["https://acme.io"]
        assert row["funding_amount"] == 50000
