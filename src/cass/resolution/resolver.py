"""Within-batch entity resolver.

Greedy single-pass clustering:
1. Group records by kind (kinds are never merged with each other)
2. For each unprocessed record, compare every later unprocessed record
   using the weighted signal model
3. Matches join the cluster and are marked processed
4. Each cluster is merged into one UnifiedEntity

Comparison is O(n^2) per kind. Optional blocking restricts comparisons to
records sharing a domain or normalized-name prefix; results do not depend
on it for records that share either.
"""

from typing import Iterable
from uuid import UUID

from pydantic import BaseModel

from ..logging import get_context_logger, log_resolution_event
from ..models import MatchSignalKind, RawRecord, RecordKind, UnifiedEntity, ValidationOutcome
from .matcher import RecordFeatures, SignalMatcher
from .merge import (
    choose_canonical_name,
    completeness,
    entity_id_for,
    merge_attributes,
    order_by_richness,
    trust_weight,
)
from .similarity import extract_domain

logger = get_context_logger(__name__, stage="resolution")

BLOCK_PREFIX_LENGTH = 4


class ResolutionStats(BaseModel):
    """Summary of a resolution pass."""

    records: int
    entities: int
    merged_entities: int
    dedup_rate: float
    avg_completeness: float
    avg_confidence: float


class EntityResolver:
    """Clusters records describing the same subject into unified entities."""

    def __init__(self, threshold: float = 0.7, blocking: bool = False):
        """Initialize the resolver.

        Args:
            threshold: Minimum accumulated signal weight for a match
            blocking: Only compare records sharing a domain or name prefix
        """
        self.matcher = SignalMatcher(threshold=threshold)
        self.blocking = blocking

    def resolve(
        self,
        records: list[RawRecord],
        outcomes: dict[UUID, ValidationOutcome] | None = None,
    ) -> list[UnifiedEntity]:
        """Resolve a batch of records into unified entities.

        Every input record ends up in exactly one returned entity.

        Args:
            records: Records of the current batch
            outcomes: Validation outcomes keyed by record_id, used to attach
                the best member outcome to each entity

        Returns:
            Unified entities in order of their first member
        """
        outcomes = outcomes or {}
        entities: list[UnifiedEntity] = []

        for kind, group in _group_by_kind(records).items():
            for members, signals in self._cluster(group):
                entity = self._build_entity(kind, members, signals, outcomes)
                log_resolution_event(
                    entity.canonical_name,
                    len(members),
                    entity.confidence,
                    [signal.value for signal in signals],
                )
                entities.append(entity)

        logger.info(
            f"Resolved {len(records)} records into {len(entities)} entities",
            extra={"records": len(records), "entities": len(entities)},
        )
        return entities

    def _cluster(
        self, records: list[RawRecord]
    ) -> list[tuple[list[RawRecord], list[MatchSignalKind]]]:
        features = [RecordFeatures.from_record(record) for record in records]
        blocks = [_block_keys(f) for f in features] if self.blocking else None
        processed = [False] * len(records)
        clusters = []

        for i, seed in enumerate(features):
            if processed[i]:
                continue
            processed[i] = True
            members = [records[i]]
            signals: list[MatchSignalKind] = []

            for j in range(i + 1, len(records)):
                if processed[j]:
                    continue
                if blocks is not None and not _share_block(blocks[i], blocks[j]):
                    continue
                matched, score = self.matcher.matches(seed, features[j])
                if matched:
                    processed[j] = True
                    members.append(records[j])
                    for kind in score.kinds:
                        if kind not in signals:
                            signals.append(kind)

            clusters.append((members, signals))

        return clusters

    def _build_entity(
        self,
        kind: RecordKind,
        members: list[RawRecord],
        signals: list[MatchSignalKind],
        outcomes: dict[UUID, ValidationOutcome],
    ) -> UnifiedEntity:
        ordered = order_by_richness(members)

        aliases = [record.title for record in ordered if record.title]
        canonical = choose_canonical_name(aliases) or ordered[0].url

        domains: set[str] = set()
        social_handles: dict[str, str] = {}
        for record in ordered:
            for url in (record.attributes.website, record.url):
                domain = extract_domain(url)
                if domain:
                    domains.add(domain)
            for channel, handle in RecordFeatures.from_record(record).handles.items():
                social_handles.setdefault(channel, handle)

        merged = merge_attributes(ordered)
        confidence = sum(trust_weight(record) for record in ordered) / len(ordered)

        member_outcomes = [outcomes[r.record_id] for r in ordered if r.record_id in outcomes]
        best = max(member_outcomes, key=lambda o: o.fitness_score, default=None)

        return UnifiedEntity(
            entity_id=entity_id_for(kind, canonical, fallback=str(ordered[0].record_id)),
            kind=kind,
            canonical_name=canonical,
            aliases=set(aliases),
            domains=domains,
            social_handles=social_handles,
            source_records=ordered,
            merged_attributes=merged,
            confidence=round(min(1.0, confidence), 3),
            completeness=completeness(merged, social_handles),
            match_signals=signals,
            validation=best,
        )


def resolve_stats(entities: list[UnifiedEntity]) -> ResolutionStats:
    """Summarize a resolution pass.

    Every input record lands in exactly one entity, so the record count is
    the total of the entities' source records.
    """
    count = len(entities)
    records = sum(len(e.source_records) for e in entities)
    return ResolutionStats(
        records=records,
        entities=count,
        merged_entities=sum(1 for e in entities if len(e.source_records) > 1),
        dedup_rate=round(1 - count / records, 3) if records else 0.0,
        avg_completeness=round(sum(e.completeness for e in entities) / count, 1) if count else 0.0,
        avg_confidence=round(sum(e.confidence for e in entities) / count, 3) if count else 0.0,
    )


def _group_by_kind(records: Iterable[RawRecord]) -> dict[RecordKind, list[RawRecord]]:
    groups: dict[RecordKind, list[RawRecord]] = {}
    for record in records:
        groups.setdefault(record.kind, []).append(record)
    return groups


def _block_keys(features: RecordFeatures) -> set[str]:
    keys = set()
    if features.domain:
        keys.add(f"domain:{features.domain}")
    if features.name:
        keys.add(f"name:{features.name[:BLOCK_PREFIX_LENGTH]}")
    return keys


def _share_block(a: set[str], b: set[str]) -> bool:
    # Records without any key are compared with everything
    return not a or not b or bool(a & b)
