"""Domain models for CASS."""

from .base import CATEGORY_BY_KIND, Category, RecordKind, Tier, category_for
from .entities import MatchScore, MatchSignal, MatchSignalKind, UnifiedEntity
from .records import RawRecord, RecordAttributes, ValidationOutcome
from .staging import RouteResult, RunResult, StagingRecord

__all__ = [
    "CATEGORY_BY_KIND",
    "Category",
    "RecordKind",
    "Tier",
    "category_for",
    "MatchScore",
    "MatchSignal",
    "MatchSignalKind",
    "UnifiedEntity",
    "RawRecord",
    "RecordAttributes",
    "ValidationOutcome",
    "RouteResult",
    "RunResult",
    "StagingRecord",
]
