"""Conflict-aware staging writer.

Per category:
1. Try one batched insert of every record
2. On a uniqueness conflict, fall back to per-record handling: insert,
   and on conflict update by the identifying key (last writer wins)
3. Records repeating an identifying key already handled in the batch are
   skipped

Categories write concurrently; writes within a category are sequential.
Every write carries a timeout and a timed-out write is retried once.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Protocol, TypeVar

from ..cache import CacheBackend, CachePriority, existence_key, ttl_for
from ..config import Settings, get_settings
from ..errors import PipelineIssue, UniqueConflictError, WriteFailure
from ..logging import get_context_logger, log_source_failure, log_write_outcome
from ..models import Category, RouteResult, StagingRecord, UnifiedEntity
from .transform import TITLE_KEY_COLUMN, StagingTransformer, title_key

logger = get_context_logger(__name__, stage="staging")

T = TypeVar("T")


class WriteSink(Protocol):
    """Write interface into the staging store."""

    async def batch_insert(
        self, category: Category, records: list[StagingRecord]
    ) -> list[StagingRecord]: ...

    async def upsert(
        self, category: Category, record: StagingRecord, conflict_key: str
    ) -> StagingRecord: ...


@dataclass
class CategoryOutcome:
    """Write outcome for one category."""

    category: Category
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    failures: list[WriteFailure] = field(default_factory=list)


class StagingRouter:
    """Routes entities into their staging tables."""

    def __init__(
        self,
        sink: WriteSink,
        transformer: StagingTransformer | None = None,
        settings: Settings | None = None,
        cache: CacheBackend | None = None,
    ):
        """Initialize the router.

        Args:
            sink: Staging write interface
            transformer: Builds category rows from entities
            settings: Settings for write timeouts
            cache: Shared cache; written keys are remembered as existing
        """
        self.sink = sink
        self.transformer = transformer or StagingTransformer()
        self.settings = settings or get_settings()
        self.cache = cache

    async def route(self, entities: list[UnifiedEntity]) -> RouteResult:
        """Transform and write entities.

        Raises:
            FatalPipelineError: If an entity has no staging category
        """
        return await self.route_records(self.transformer.transform_all(entities))

    async def route_records(self, records: list[StagingRecord]) -> RouteResult:
        """Write already-transformed staging records."""
        by_category: dict[Category, list[StagingRecord]] = {}
        for record in records:
            by_category.setdefault(record.category, []).append(record)

        outcomes = await asyncio.gather(
            *(self._route_category(category, group) for category, group in by_category.items())
        )

        result = RouteResult()
        for outcome in outcomes:
            name = outcome.category.value
            result.inserted_by_category[name] = outcome.inserted
            result.updated_by_category[name] = outcome.updated
            result.skipped_by_category[name] = outcome.skipped
            result.errors.extend(
                str(PipelineIssue.from_write_failure(failure)) for failure in outcome.failures
            )

        logger.info(
            f"Routed {len(records)} records: {result.staged} staged, {len(result.errors)} errors",
            extra={
                "inserted": result.inserted_by_category,
                "updated": result.updated_by_category,
                "errors": len(result.errors),
            },
        )
        return result

    async def _route_category(
        self, category: Category, records: list[StagingRecord]
    ) -> CategoryOutcome:
        outcome = CategoryOutcome(category=category)
        try:
            inserted = await self._write(lambda: self.sink.batch_insert(category, records))
        except UniqueConflictError:
            logger.info(
                f"Batch insert into {category.value} conflicted, falling back to per-record writes",
                extra={"category": category.value, "records": len(records)},
            )
            await self._route_individually(category, records, outcome)
            return outcome
        except Exception as e:
            message = _describe(e)
            log_source_failure(category.value, "write", message, timed_out=isinstance(e, TimeoutError))
            for record in records:
                outcome.failures.append(WriteFailure(category.value, record.key, message))
                log_write_outcome(category.value, record.key, "failed", message)
            return outcome

        outcome.inserted = len(inserted)
        for record in records:
            log_write_outcome(category.value, record.key, "inserted")
            await self._remember(record)
        return outcome

    async def _route_individually(
        self, category: Category, records: list[StagingRecord], outcome: CategoryOutcome
    ) -> None:
        handled: set[str] = set()
        for record in records:
            key = record.key
            if key and key in handled:
                outcome.skipped += 1
                log_write_outcome(category.value, key, "skipped")
                continue
            if key:
                handled.add(key)

            try:
                await self._write(lambda: self.sink.batch_insert(category, [record]))
                outcome.inserted += 1
                log_write_outcome(category.value, key, "inserted")
            except UniqueConflictError:
                try:
                    await self._write(lambda: self.sink.upsert(category, record, record.conflict_key))
                except Exception as e:
                    self._fail(outcome, record, _describe(e))
                    continue
                outcome.updated += 1
                log_write_outcome(category.value, key, "conflict_resolved")
            except Exception as e:
                self._fail(outcome, record, _describe(e))
                continue

            await self._remember(record)

    async def _write(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run a write with a timeout, retrying once if it times out."""
        timeout = self.settings.write_timeout_seconds
        try:
            return await asyncio.wait_for(operation(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Staging write timed out, retrying once")
            return await asyncio.wait_for(operation(), timeout=timeout)

    def _fail(self, outcome: CategoryOutcome, record: StagingRecord, message: str) -> None:
        outcome.failures.append(WriteFailure(outcome.category.value, record.key, message))
        log_write_outcome(outcome.category.value, record.key, "failed", message)

    async def _remember(self, record: StagingRecord) -> None:
        if self.cache is None:
            return
        category = record.category
        values = [record.key, record.data.get(TITLE_KEY_COLUMN) or title_key(category, record.data)]
        for value in values:
            if value:
                await self.cache.set(
                    existence_key(category, value),
                    True,
                    ttl=ttl_for(category),
                    priority=CachePriority.HIGH,
                    tags={category.value},
                )


def _describe(error: Exception) -> str:
    if isinstance(error, TimeoutError):
        return "write timed out after retry"
    return str(error) or type(error).__name__
