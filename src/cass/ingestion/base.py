"""Fetch adapter interface and concurrent fetch orchestration.

Each source implements ``FetchAdapter.fetch``. ``fetch_all`` runs every
adapter concurrently with its own timeout; a slow or failing source is
recorded as an issue and never cancels its siblings.
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Awaitable, Callable, TypeVar

from pydantic import BaseModel, Field

from ..config import Settings, get_settings
from ..errors import PipelineIssue, SourceFailure
from ..logging import get_context_logger, log_source_failure
from ..models import RawRecord

T = TypeVar("T")

logger = get_context_logger(__name__, stage="fetch")


class SourceConfig(BaseModel):
    """Configuration for one source fetch."""

    enabled: bool = True
    limit: int | None = None
    since: datetime | None = None
    timeout_seconds: float | None = None
    max_retries: int = 0
    extra_params: dict[str, Any] = Field(default_factory=dict)


class FetchResult(BaseModel):
    """Records gathered from all sources plus per-source failures."""

    records: list[RawRecord] = Field(default_factory=list)
    by_source: dict[str, int] = Field(default_factory=dict)
    issues: list[PipelineIssue] = Field(default_factory=list)


class FetchAdapter(ABC):
    """Abstract base class for source fetch adapters."""

    def __init__(self, source_name: str, config: SourceConfig | None = None):
        """Initialize the adapter.

        Args:
            source_name: Name of the source (e.g., 'ProductHunt')
            config: Fetch configuration for this source
        """
        self.source_name = source_name
        self.config = config or SourceConfig()
        self._logger = None

    @property
    def logger(self):
        """Get a logger with source context."""
        if self._logger is None:
            self._logger = get_context_logger(
                f"cass.ingestion.{self.source_name}",
                source=self.source_name,
            )
        return self._logger

    @abstractmethod
    async def fetch(self, config: SourceConfig) -> list[RawRecord]:
        """Fetch records from the source.

        Args:
            config: Fetch configuration

        Returns:
            Records mapped from the source payload
        """
        ...


class RetryConfig(BaseModel):
    """Configuration for retry behavior."""

    max_retries: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 60.0  # seconds
    exponential_base: float = 2.0


async def with_retry(
    func: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    logger=None,
) -> T:
    """Execute a function with exponential backoff retry.

    Raises:
        Exception: The last error once all retries are exhausted
    """
    if config is None:
        config = RetryConfig()

    for attempt in range(config.max_retries + 1):
        try:
            return await func()
        except Exception as e:
            if attempt >= config.max_retries:
                if logger:
                    logger.error(f"All {config.max_retries + 1} attempts failed")
                raise

            delay = min(
                config.base_delay * (config.exponential_base ** attempt),
                config.max_delay,
            )
            if logger:
                logger.warning(f"Attempt {attempt + 1} failed: {e}. Retrying in {delay:.1f}s")
            await asyncio.sleep(delay)

    raise RuntimeError("unreachable")


async def fetch_source(adapter: FetchAdapter, settings: Settings) -> list[RawRecord]:
    """Fetch one source under its timeout.

    Raises:
        SourceFailure: If the fetch fails or times out
    """
    config = adapter.config
    timeout = config.timeout_seconds or settings.fetch_timeout_seconds

    try:
        records = await asyncio.wait_for(
            with_retry(
                lambda: adapter.fetch(config),
                RetryConfig(max_retries=config.max_retries),
                logger=adapter.logger,
            ),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        raise SourceFailure(adapter.source_name, "fetch", f"no response within {timeout:.0f}s", timed_out=True)
    except Exception as e:
        raise SourceFailure(adapter.source_name, "fetch", str(e) or type(e).__name__) from e

    if config.limit is not None:
        records = records[: config.limit]
    return records


async def fetch_all(adapters: list[FetchAdapter], settings: Settings | None = None) -> FetchResult:
    """Run all enabled adapters concurrently.

    Partial results from completed sources are kept even if others fail.
    """
    settings = settings or get_settings()
    enabled = [adapter for adapter in adapters if adapter.config.enabled]

    async def run(adapter: FetchAdapter) -> list[RawRecord] | SourceFailure:
        try:
            return await fetch_source(adapter, settings)
        except SourceFailure as failure:
            return failure

    outcomes = await asyncio.gather(*(run(adapter) for adapter in enabled))

    result = FetchResult()
    for adapter, outcome in zip(enabled, outcomes):
        if isinstance(outcome, SourceFailure):
            log_source_failure(outcome.source, outcome.operation, outcome.message, outcome.timed_out)
            result.issues.append(PipelineIssue.from_source_failure("fetch", outcome))
            result.by_source[adapter.source_name] = 0
            continue
        result.records.extend(outcome)
        result.by_source[adapter.source_name] = len(outcome)

    logger.info(
        f"Fetched {len(result.records)} records from {len(enabled)} sources",
        extra={"by_source": result.by_source, "failed_sources": len(result.issues)},
    )
    return result
