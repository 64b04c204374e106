"""Staging: category projection and conflict-aware writes."""

from .router import StagingRouter, WriteSink
from .transform import (
    CONFLICT_KEYS,
    TITLE_COLUMNS,
    TITLE_KEY_COLUMN,
    StagingTransformer,
    synthesize_description,
    title_key,
)

__all__ = [
    "StagingRouter",
    "WriteSink",
    "CONFLICT_KEYS",
    "TITLE_COLUMNS",
    "TITLE_KEY_COLUMN",
    "StagingTransformer",
    "synthesize_description",
    "title_key",
]
