"""Multi-signal record matcher.

Compares two records and collects weighted match signals:

- Same domain: 0.6
- Exact normalized name: 0.5
- Similar name (> 0.8 similarity): similarity x 0.3
- Same social handle: 0.4 per channel (hard identifier)
- Same founder: 0.3
- Similar description (> 0.7 overlap): overlap x 0.2
- Same cohort batch with similar name (> 0.6): 0.5
- Launched less than 30 days apart with similar name (> 0.6): 0.1

A pair matches when the accumulated weight reaches the threshold, or when
a definitive combination is present (same domain plus exact name, or a
shared handle).
"""

from dataclasses import dataclass, field
from datetime import datetime

from ..models import MatchScore, MatchSignal, MatchSignalKind, RawRecord
from .similarity import (
    extract_domain,
    extract_founders,
    extract_social_handles,
    normalize_name,
    string_similarity,
    text_overlap,
)


@dataclass
class RecordFeatures:
    """Comparison features extracted once per record."""

    name: str
    domain: str | None
    handles: dict[str, str] = field(default_factory=dict)
    founders: set[str] = field(default_factory=set)
    description: str = ""
    cohort_batch: str | None = None
    launched_at: datetime | None = None

    @classmethod
    def from_record(cls, record: RawRecord) -> "RecordFeatures":
        attrs = record.attributes
        return cls(
            name=normalize_name(record.title),
            domain=extract_domain(attrs.website or record.url),
            handles=extract_social_handles(record),
            founders=extract_founders(record),
            description=record.description[:200],
            cohort_batch=attrs.cohort_batch.upper() if attrs.cohort_batch else None,
            launched_at=attrs.launch_date or record.published_at,
        )


class SignalMatcher:
    """Scores record pairs with the weighted signal model."""

    DOMAIN_WEIGHT = 0.6
    EXACT_NAME_WEIGHT = 0.5
    SIMILAR_NAME_FACTOR = 0.3
    HANDLE_WEIGHT = 0.4
    FOUNDER_WEIGHT = 0.3
    DESCRIPTION_FACTOR = 0.2
    COHORT_WEIGHT = 0.5
    TEMPORAL_WEIGHT = 0.1

    MIN_NAME_SIMILARITY = 0.8
    MIN_DESCRIPTION_OVERLAP = 0.7
    CORROBORATING_NAME_SIMILARITY = 0.6
    TEMPORAL_WINDOW_DAYS = 30

    def __init__(self, threshold: float = 0.7):
        """Initialize the matcher.

        Args:
            threshold: Minimum accumulated weight for a match
        """
        self.threshold = threshold

    def score(self, a: RecordFeatures, b: RecordFeatures) -> MatchScore:
        """Collect all match signals between two records."""
        result = MatchScore()
        signals = result.signals

        if a.name and a.name == b.name:
            signals.append(MatchSignal(kind=MatchSignalKind.EXACT_NAME_MATCH, weight=self.EXACT_NAME_WEIGHT))

        if a.domain and a.domain == b.domain:
            signals.append(
                MatchSignal(kind=MatchSignalKind.SAME_DOMAIN, weight=self.DOMAIN_WEIGHT, detail=a.domain)
            )

        name_similarity = string_similarity(a.name, b.name) if a.name and b.name else 0.0
        if name_similarity > self.MIN_NAME_SIMILARITY:
            signals.append(
                MatchSignal(
                    kind=MatchSignalKind.SIMILAR_NAME,
                    weight=name_similarity * self.SIMILAR_NAME_FACTOR,
                    detail=f"{name_similarity:.2f}",
                )
            )

        for channel, handle in a.handles.items():
            if b.handles.get(channel) == handle:
                result.hard_identifier = True
                signals.append(
                    MatchSignal(
                        kind=MatchSignalKind.SAME_SOCIAL_HANDLE,
                        weight=self.HANDLE_WEIGHT,
                        detail=f"{channel}:{handle}",
                    )
                )

        if a.founders & b.founders:
            signals.append(MatchSignal(kind=MatchSignalKind.SAME_FOUNDER, weight=self.FOUNDER_WEIGHT))

        if a.description and b.description:
            overlap = text_overlap(a.description, b.description)
            if overlap > self.MIN_DESCRIPTION_OVERLAP:
                signals.append(
                    MatchSignal(
                        kind=MatchSignalKind.SIMILAR_DESCRIPTION,
                        weight=overlap * self.DESCRIPTION_FACTOR,
                        detail=f"{overlap:.2f}",
                    )
                )

        corroborated = name_similarity > self.CORROBORATING_NAME_SIMILARITY
        if corroborated and a.cohort_batch and a.cohort_batch == b.cohort_batch:
            signals.append(
                MatchSignal(kind=MatchSignalKind.SAME_COHORT_BATCH, weight=self.COHORT_WEIGHT, detail=a.cohort_batch)
            )

        if corroborated and a.launched_at and b.launched_at:
            days_apart = abs((a.launched_at - b.launched_at).total_seconds()) / 86400
            if days_apart < self.TEMPORAL_WINDOW_DAYS:
                signals.append(MatchSignal(kind=MatchSignalKind.TEMPORAL_PROXIMITY, weight=self.TEMPORAL_WEIGHT))

        return result

    def matches(self, a: RecordFeatures, b: RecordFeatures) -> tuple[bool, MatchScore]:
        """Decide whether two records describe the same entity."""
        score = self.score(a, b)
        return score.matches(self.threshold), score
