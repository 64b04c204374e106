"""Pipeline entry point.

Runs one batch through the stages in order:

    validate -> filter duplicates -> resolve entities -> aggregate -> stage

Stage-local failures are recovered inside each stage and reported in
``RunResult.errors``. Only ``FatalPipelineError`` propagates to the caller.
"""

import time
from datetime import datetime, timezone
from typing import Callable
from uuid import uuid4

from .aggregation import Aggregator, Scorer, get_scorer
from .cache import CacheBackend, create_cache
from .config import Settings, get_settings
from .deduplication import DuplicateFilter, ExistenceLookup, RecentHistory
from .ingestion import FetchAdapter, fetch_all
from .logging import get_context_logger, log_run_complete, log_run_start
from .models import RawRecord, RunResult, category_for
from .resolution import EntityResolver
from .staging import StagingRouter, StagingTransformer, WriteSink
from .store import SqlStore
from .validation import AdmissibilityValidator

logger = get_context_logger(__name__, stage="pipeline")


class Pipeline:
    """Admission, resolution and staging pipeline for one batch at a time."""

    def __init__(
        self,
        lookup: ExistenceLookup,
        sink: WriteSink,
        scorer: Scorer,
        cache: CacheBackend | None = None,
        settings: Settings | None = None,
        history: RecentHistory | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """Initialize the pipeline.

        Args:
            lookup: Batched existence lookup into staging
            sink: Staging write interface
            scorer: Fitness scorer used by the aggregator
            cache: Shared cache passed to dedup, scoring and staging
            settings: Settings (default: from environment)
            history: Optional recent-history source for near-duplicates
            clock: Returns the reference "now" for policy rules and timestamps
        """
        self.settings = settings or get_settings()
        self.cache = cache
        self.sink = sink
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self.validator = AdmissibilityValidator(self.settings.policy, clock=self._clock)
        self.duplicate_filter = DuplicateFilter(
            lookup, cache=cache, history=history, settings=self.settings, clock=self._clock
        )
        self.resolver = EntityResolver(
            threshold=self.settings.match_threshold,
            blocking=self.settings.resolution_blocking,
        )
        self.aggregator = Aggregator(scorer, settings=self.settings, cache=cache)

    async def run(self, raw_records: list[RawRecord]) -> RunResult:
        """Run a batch of raw records through every stage.

        Args:
            raw_records: Records produced by fetch adapters

        Returns:
            Counts, per-category writes and every recoverable error

        Raises:
            FatalPipelineError: On an internal invariant violation
        """
        started = time.perf_counter()
        result = RunResult(run_id=uuid4(), fetched=len(raw_records))
        run_id = str(result.run_id)
        log_run_start(run_id, len(raw_records))

        # Every record must map to a staging category
        for record in raw_records:
            category_for(record.kind)

        validation = self.validator.validate_batch(raw_records)
        result.admissible = len(validation.admissible)
        result.rejected = len(validation.rejected)
        admissible = [record for record, _ in validation.admissible]
        outcomes = {record.record_id: outcome for record, outcome in validation.admissible}

        filtered = await self.duplicate_filter.filter(admissible)
        result.unique = len(filtered.unique)
        result.duplicates = len(filtered.duplicates)
        result.errors.extend(str(issue) for issue in filtered.issues)

        entities = self.resolver.resolve(filtered.unique, outcomes)
        result.entities_resolved = len(entities)

        aggregation = await self.aggregator.aggregate(entities)
        result.errors.extend(str(issue) for issue in aggregation.issues)

        router = StagingRouter(
            self.sink,
            transformer=StagingTransformer(batch_id=run_id, clock=self._clock),
            settings=self.settings,
            cache=self.cache,
        )
        routed = await router.route(aggregation.entities)
        result.staged = routed.staged
        result.inserted_by_category = routed.inserted_by_category
        result.updated_by_category = routed.updated_by_category
        result.errors.extend(routed.errors)

        result.duration_ms = int((time.perf_counter() - started) * 1000)
        log_run_complete(run_id, result.staged, len(result.errors), result.duration_ms)
        return result

    async def close(self) -> None:
        """Release the cache connection and the staging store's engine."""
        if self.cache is not None:
            await self.cache.close()
        if isinstance(self.sink, SqlStore):
            await self.sink.close()

    async def run_sources(self, adapters: list[FetchAdapter]) -> RunResult:
        """Fetch from every source concurrently, then run the batch.

        Failed or timed-out sources are listed in ``errors``; records from
        the other sources are still processed.
        """
        fetched = await fetch_all(adapters, self.settings)
        result = await self.run(fetched.records)
        result.errors = [str(issue) for issue in fetched.issues] + result.errors
        return result


async def create_pipeline(settings: Settings | None = None) -> Pipeline:
    """Build a pipeline wired to PostgreSQL, the configured cache and scorer."""
    settings = settings or get_settings()
    store = SqlStore(settings)
    cache = await create_cache(settings)
    return Pipeline(
        lookup=store,
        sink=store,
        scorer=get_scorer(settings),
        cache=cache,
        settings=settings,
        history=store,
    )
