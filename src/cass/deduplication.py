"""Duplicate filter against already-committed staging records.

A record is a duplicate when its identifying URL, or its normalized title,
already exists in the store. Existence checks are batched: one lookup call
per category for the whole input. An optional recent-history collaborator
adds near-duplicate detection on titles, with description overlap as a
secondary signal only.

Lookups fail open: if a category's lookup errors or times out, its records
are treated as unique and the failure is reported as an issue.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Protocol
from uuid import UUID

from pydantic import BaseModel, Field

from .cache import CacheBackend, CachePriority, existence_key, ttl_for
from .config import Settings, get_settings
from .errors import PipelineIssue, SourceFailure
from .logging import get_context_logger, log_source_failure
from .models import Category, RawRecord, category_for
from .resolution.similarity import normalize_name, normalize_url, string_similarity, text_overlap

logger = get_context_logger(__name__, stage="deduplication")

NEAR_TITLE_WITH_DESCRIPTION = 0.8
MIN_DESCRIPTION_OVERLAP = 0.5


class ExistenceLookup(Protocol):
    """Read-only batched existence query into the store."""

    async def exists(self, category: Category, values: list[str]) -> dict[str, bool]: ...


class HistoryItem(BaseModel):
    """A recently stored staging record."""

    title: str
    description: str = ""
    url: str = ""


class RecentHistory(Protocol):
    """Bounded recent-history query into the store."""

    async def recent(
        self, category: Category, since: datetime, limit: int
    ) -> list[HistoryItem]: ...


class DuplicateReason(str, Enum):
    """Why a record was flagged as a duplicate."""

    URL = "url"
    TITLE = "title"
    NEAR_TITLE = "near_title"


class DuplicateMatch(BaseModel):
    """A record that collides with a stored record."""

    record: RawRecord
    reason: DuplicateReason
    matched_value: str
    similarity: float = 1.0


class DuplicateFilterResult(BaseModel):
    """Unique records, duplicates and lookup issues for one batch."""

    unique: list[RawRecord] = Field(default_factory=list)
    duplicates: list[DuplicateMatch] = Field(default_factory=list)
    issues: list[PipelineIssue] = Field(default_factory=list)


def identifying_url(record: RawRecord) -> str:
    """Normalized identifying URL: website for projects, url otherwise."""
    if category_for(record.kind) == Category.PROJECTS:
        return normalize_url(record.attributes.website or record.url)
    return normalize_url(record.url)


class DuplicateFilter:
    """Removes records already committed to staging."""

    def __init__(
        self,
        lookup: ExistenceLookup,
        cache: CacheBackend | None = None,
        history: RecentHistory | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """Initialize the filter.

        Args:
            lookup: Batched existence lookup
            cache: Shared cache remembering known-existing keys
            history: Recent-history source for near-duplicate checks
            settings: Settings (default: from environment)
            clock: Returns the reference "now" for the history window
        """
        self.lookup = lookup
        self.cache = cache
        self.history = history
        self.settings = settings or get_settings()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def filter(self, records: list[RawRecord]) -> DuplicateFilterResult:
        """Split records into unique and duplicate.

        Args:
            records: Candidate records

        Returns:
            Unique records in input order, duplicates and any lookup issues
        """
        by_category: dict[Category, list[RawRecord]] = {}
        for record in records:
            by_category.setdefault(category_for(record.kind), []).append(record)

        outcomes = await asyncio.gather(
            *(self._filter_category(category, group) for category, group in by_category.items())
        )

        duplicates: dict[UUID, DuplicateMatch] = {}
        result = DuplicateFilterResult()
        for matches, issues in outcomes:
            for match in matches:
                duplicates[match.record.record_id] = match
            result.issues.extend(issues)

        for record in records:
            match = duplicates.get(record.record_id)
            if match is None:
                result.unique.append(record)
            else:
                result.duplicates.append(match)

        logger.info(
            f"Duplicate filter: {len(result.unique)} unique, {len(result.duplicates)} duplicates",
            extra={"unique": len(result.unique), "duplicates": len(result.duplicates)},
        )
        return result

    async def _filter_category(
        self, category: Category, records: list[RawRecord]
    ) -> tuple[list[DuplicateMatch], list[PipelineIssue]]:
        issues: list[PipelineIssue] = []
        keys = {
            record.record_id: (identifying_url(record), self._title_key(record))
            for record in records
        }

        values: list[str] = []
        for url_key, title_key in keys.values():
            for value in (url_key, title_key):
                if value and value not in values:
                    values.append(value)

        existing = await self._cached(category, values)
        pending = [value for value in values if value not in existing]
        if pending:
            try:
                found = await self._lookup(category, pending)
            except SourceFailure as failure:
                log_source_failure(failure.source, failure.operation, failure.message, failure.timed_out)
                issues.append(PipelineIssue.from_source_failure("deduplication", failure))
                found = set()
            existing |= found
            await self._remember(category, found)

        matches: list[DuplicateMatch] = []
        remaining: list[RawRecord] = []
        for record in records:
            url_key, title_key = keys[record.record_id]
            if url_key and url_key in existing:
                matches.append(DuplicateMatch(record=record, reason=DuplicateReason.URL, matched_value=url_key))
            elif title_key and title_key in existing:
                matches.append(DuplicateMatch(record=record, reason=DuplicateReason.TITLE, matched_value=title_key))
            else:
                remaining.append(record)

        if self.history is not None and self.settings.dedup_fuzzy_titles and remaining:
            try:
                near = await self._near_duplicates(category, remaining)
            except SourceFailure as failure:
                log_source_failure(failure.source, failure.operation, failure.message, failure.timed_out)
                issues.append(PipelineIssue.from_source_failure("deduplication", failure))
                near = []
            matches.extend(near)

        return matches, issues

    def _title_key(self, record: RawRecord) -> str:
        return normalize_name(record.title) if self.settings.dedup_fuzzy_titles else ""

    async def _lookup(self, category: Category, values: list[str]) -> set[str]:
        try:
            result = await asyncio.wait_for(
                self.lookup.exists(category, values),
                timeout=self.settings.lookup_timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise SourceFailure(category.value, "lookup", "existence lookup timed out", timed_out=True)
        except Exception as e:
            raise SourceFailure(category.value, "lookup", str(e)) from e
        return {value for value, present in result.items() if present}

    async def _near_duplicates(
        self, category: Category, records: list[RawRecord]
    ) -> list[DuplicateMatch]:
        since = self._clock() - timedelta(days=self.settings.dedup_check_days)
        try:
            recent = await asyncio.wait_for(
                self.history.recent(category, since, self.settings.dedup_history_limit),
                timeout=self.settings.lookup_timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise SourceFailure(category.value, "history", "recent history lookup timed out", timed_out=True)
        except Exception as e:
            raise SourceFailure(category.value, "history", str(e)) from e

        stored = [(normalize_name(item.title), item) for item in recent if item.title]
        matches = []
        for record in records:
            match = self._near_match(record, stored)
            if match is not None:
                matches.append(match)
        return matches

    def _near_match(
        self, record: RawRecord, stored: list[tuple[str, HistoryItem]]
    ) -> DuplicateMatch | None:
        title = normalize_name(record.title)
        if not title:
            return None
        for stored_title, item in stored:
            similarity = string_similarity(title, stored_title)
            if similarity >= self.settings.dedup_title_threshold:
                return DuplicateMatch(
                    record=record,
                    reason=DuplicateReason.NEAR_TITLE,
                    matched_value=item.title,
                    similarity=round(similarity, 3),
                )
            if (
                similarity >= NEAR_TITLE_WITH_DESCRIPTION
                and record.description
                and item.description
                and text_overlap(record.description, item.description) >= MIN_DESCRIPTION_OVERLAP
            ):
                return DuplicateMatch(
                    record=record,
                    reason=DuplicateReason.NEAR_TITLE,
                    matched_value=item.title,
                    similarity=round(similarity, 3),
                )
        return None

    async def _cached(self, category: Category, values: list[str]) -> set[str]:
        if self.cache is None:
            return set()
        keys = {existence_key(category, value): value for value in values}
        found = await self.cache.get_many(list(keys))
        return {keys[key] for key in found}

    async def _remember(self, category: Category, values: set[str]) -> None:
        if self.cache is None:
            return
        for value in values:
            await self.cache.set(
                existence_key(category, value),
                True,
                ttl=ttl_for(category),
                priority=CachePriority.HIGH,
                tags={category.value},
            )
