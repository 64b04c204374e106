"""Source fetch adapters and orchestration."""

from .base import (
    FetchAdapter,
    FetchResult,
    RetryConfig,
    SourceConfig,
    fetch_all,
    fetch_source,
    with_retry,
)

__all__ = [
    "FetchAdapter",
    "FetchResult",
    "RetryConfig",
    "SourceConfig",
    "fetch_all",
    "fetch_source",
    "with_retry",
]
