"""Match signals and unified entities produced by entity resolution."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from .base import RecordKind
from .records import RawRecord, ValidationOutcome


class MatchSignalKind(str, Enum):
    """Evidence that two records describe the same real-world entity."""

    SAME_DOMAIN = "same_domain"
    EXACT_NAME_MATCH = "exact_name_match"
    SIMILAR_NAME = "similar_name"
    SAME_SOCIAL_HANDLE = "same_social_handle"
    SAME_FOUNDER = "same_founder"
    SIMILAR_DESCRIPTION = "similar_description"
    TEMPORAL_PROXIMITY = "temporal_proximity"
    SAME_COHORT_BATCH = "same_cohort_batch"


class MatchSignal(BaseModel):
    """One weighted piece of match evidence."""

    kind: MatchSignalKind
    weight: float = Field(ge=0.0)
    detail: str | None = None


class MatchScore(BaseModel):
    """All signals collected for a pair of records."""

    signals: list[MatchSignal] = Field(default_factory=list)
    hard_identifier: bool = False

    @property
    def kinds(self) -> set[MatchSignalKind]:
        return {signal.kind for signal in self.signals}

    @property
    def weight(self) -> float:
        """Accumulated weight, capped at 1.0."""
        return min(1.0, sum(signal.weight for signal in self.signals))

    @property
    def is_definitive(self) -> bool:
        """Whether the pair matches regardless of the threshold.

        Only a shared domain together with an exact name, or a shared
        unique handle, is sufficient on its own.
        """
        return self.hard_identifier or {
            MatchSignalKind.SAME_DOMAIN,
            MatchSignalKind.EXACT_NAME_MATCH,
        } <= self.kinds

    def matches(self, threshold: float) -> bool:
        return self.is_definitive or self.weight >= threshold


class UnifiedEntity(BaseModel):
    """One real-world subject assembled from matching records.

    Built and mutated by the resolver only; the aggregator works on copies.
    """

    entity_id: str
    kind: RecordKind
    canonical_name: str
    aliases: set[str] = Field(default_factory=set)
    domains: set[str] = Field(default_factory=set)
    social_handles: dict[str, str] = Field(default_factory=dict)
    source_records: list[RawRecord] = Field(default_factory=list)
    merged_attributes: dict[str, Any] = Field(default_factory=dict)
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    completeness: int = Field(default=0, ge=0, le=100)
    match_signals: list[MatchSignalKind] = Field(default_factory=list)
    validation: ValidationOutcome | None = None

    # Set by the aggregator
    inferred_fields: dict[str, str] = Field(default_factory=dict)
    cross_referenced: bool = False
    base_score: int | None = None
    final_score: int | None = None
    recommended: bool | None = None
    rationale: str | None = None
    scorer_confidence: float | None = None
    verified: bool = False

    @property
    def primary(self) -> RawRecord:
        """The richest contributing record."""
        return self.source_records[0]

    @property
    def sources(self) -> list[str]:
        """Distinct source names in richness order."""
        seen: list[str] = []
        for record in self.source_records:
            if record.source not in seen:
                seen.append(record.source)
        return seen

    @property
    def score(self) -> int:
        """Best available score: aggregated, else admissibility, else 0."""
        if self.final_score is not None:
            return self.final_score
        if self.validation is not None:
            return self.validation.fitness_score
        return 0

    def is_inferred(self, field: str) -> bool:
        return field in self.inferred_fields
