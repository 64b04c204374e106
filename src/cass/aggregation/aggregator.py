"""Aggregation of unified entities.

Steps, in order:
1. Cross-reference entities of different kinds sharing a normalized name
2. Fill data gaps with tagged inference rules
3. Score each entity with the pluggable scorer (bounded concurrency)
4. Apply completeness and multi-source bonuses
5. Sort by final score, then completeness, then canonical name

Input entities are never mutated; the aggregator returns copies. Running it
again on its own output leaves observed and inferred fields unchanged.
"""

import asyncio
from typing import Any

from pydantic import BaseModel, Field

from ..cache import CacheBackend, CachePriority, score_key, ttl_for
from ..config import Settings, get_settings
from ..errors import PipelineIssue, SourceFailure
from ..logging import get_context_logger, log_scorer_fallback
from ..models import RecordKind, UnifiedEntity
from ..resolution.merge import completeness
from ..resolution.similarity import normalize_name
from .inference import fill_gaps
from .scorer import ScoreResult, Scorer

logger = get_context_logger(__name__, stage="aggregation")

FALLBACK_RATIONALE = "Scoring unavailable; manual review required"

HIGH_COMPLETENESS = 80
HIGH_COMPLETENESS_BONUS = 10
MEDIUM_COMPLETENESS = 60
MEDIUM_COMPLETENESS_BONUS = 5
VERIFIED_MIN_SOURCES = 3
VERIFIED_BONUS = 10

# Attributes that describe one record kind only and are never propagated
NON_PROPAGATED = {"description", "content"}


class AggregationResult(BaseModel):
    """Aggregated entities plus summary statistics."""

    entities: list[UnifiedEntity] = Field(default_factory=list)
    original_count: int = 0
    unified_count: int = 0
    enriched_count: int = 0
    average_completeness: float = 0.0
    sources_used: list[str] = Field(default_factory=list)
    verified_count: int = 0
    fallback_count: int = 0
    issues: list[PipelineIssue] = Field(default_factory=list)


class Aggregator:
    """Enriches, scores and ranks unified entities."""

    def __init__(
        self,
        scorer: Scorer,
        settings: Settings | None = None,
        cache: CacheBackend | None = None,
    ):
        """Initialize the aggregator.

        Args:
            scorer: Fitness scorer
            settings: Settings for timeouts and concurrency
            cache: Optional cache for scorer results
        """
        self.scorer = scorer
        self.settings = settings or get_settings()
        self.cache = cache

    async def aggregate(self, entities: list[UnifiedEntity]) -> AggregationResult:
        """Aggregate a batch of entities.

        Args:
            entities: Entities from the resolver

        Returns:
            Aggregated copies sorted best-first, with statistics
        """
        working = [entity.model_copy(deep=True) for entity in entities]

        self._cross_reference(working)
        for entity in working:
            self._fill_gaps(entity)

        scores = await self._score_all(working)
        issues: list[PipelineIssue] = []
        for entity, (result, failure) in zip(working, scores):
            if failure is not None:
                issues.append(PipelineIssue.from_source_failure("aggregation", failure))
            self._apply_score(entity, result)
        fallback_count = len(issues)

        working.sort(key=lambda e: (-e.score, -e.completeness, e.canonical_name))

        sources: list[str] = []
        for entity in working:
            for source in entity.sources:
                if source not in sources:
                    sources.append(source)

        count = len(working)
        result = AggregationResult(
            entities=working,
            original_count=sum(len(e.source_records) for e in working),
            unified_count=count,
            enriched_count=sum(1 for e in working if e.completeness > 50),
            average_completeness=round(sum(e.completeness for e in working) / count, 1) if count else 0.0,
            sources_used=sources,
            verified_count=sum(1 for e in working if e.verified),
            fallback_count=fallback_count,
            issues=issues,
        )
        logger.info(
            f"Aggregated {result.original_count} records into {count} entities",
            extra={
                "unified_count": count,
                "average_completeness": result.average_completeness,
                "verified_count": result.verified_count,
                "fallback_count": fallback_count,
            },
        )
        return result

    # =========================
    # Enrichment
    # =========================

    def _cross_reference(self, entities: list[UnifiedEntity]) -> None:
        by_name: dict[str, list[UnifiedEntity]] = {}
        for entity in entities:
            name = normalize_name(entity.canonical_name)
            if name:
                by_name.setdefault(name, []).append(entity)

        for related in by_name.values():
            if len({entity.kind for entity in related}) < 2:
                continue
            for entity in related:
                for other in related:
                    if other.kind == entity.kind:
                        continue
                    for key, value in other.merged_attributes.items():
                        if key in NON_PROPAGATED or other.is_inferred(key):
                            continue
                        if entity.merged_attributes.get(key) in (None, "", []):
                            entity.merged_attributes[key] = value
                            entity.inferred_fields[key] = f"cross_reference:{other.kind.value}"
                entity.cross_referenced = True

    def _fill_gaps(self, entity: UnifiedEntity) -> None:
        if entity.kind != RecordKind.PROJECT:
            return
        inferred = fill_gaps(entity, entity.merged_attributes)
        entity.inferred_fields.update(inferred)
        entity.completeness = completeness(entity.merged_attributes, entity.social_handles)

    # =========================
    # Scoring
    # =========================

    async def _score_all(
        self, entities: list[UnifiedEntity]
    ) -> list[tuple[ScoreResult, SourceFailure | None]]:
        window = max(1, self.settings.scorer_concurrency)
        results: list[tuple[ScoreResult, SourceFailure | None]] = []

        for start in range(0, len(entities), window):
            batch = entities[start:start + window]
            results.extend(await asyncio.gather(*(self._score_one(e) for e in batch)))
            if start + window < len(entities):
                await asyncio.sleep(self.settings.scorer_batch_pause_seconds)

        return results

    async def _score_one(self, entity: UnifiedEntity) -> tuple[ScoreResult, SourceFailure | None]:
        """Score one entity; returns the result and the failure it fell back on."""
        if self.cache is not None:
            cached = await self.cache.get(score_key(entity.entity_id))
            if cached is not None:
                return ScoreResult.model_validate(cached), None

        try:
            result = await asyncio.wait_for(
                self.scorer.score(scoring_payload(entity)),
                timeout=self.settings.scorer_timeout_seconds,
            )
        except asyncio.TimeoutError:
            failure = SourceFailure(entity.canonical_name, "score", "scorer timed out", timed_out=True)
        except Exception as e:
            failure = SourceFailure(entity.canonical_name, "score", str(e))
        else:
            if self.cache is not None:
                await self.cache.set(
                    score_key(entity.entity_id),
                    result.model_dump(),
                    ttl=ttl_for("score"),
                    priority=CachePriority.LOW,
                    tags={"score"},
                )
            return result, None

        log_scorer_fallback(entity.canonical_name, failure.message, timed_out=failure.timed_out)
        return self._fallback(), failure

    def _fallback(self) -> ScoreResult:
        return ScoreResult(
            score=self.settings.scorer_fallback_score,
            recommended=False,
            rationale=FALLBACK_RATIONALE,
            confidence=0.0,
        )

    def _apply_score(self, entity: UnifiedEntity, result: ScoreResult) -> None:
        final = result.score
        if entity.completeness > HIGH_COMPLETENESS:
            final += HIGH_COMPLETENESS_BONUS
        elif entity.completeness > MEDIUM_COMPLETENESS:
            final += MEDIUM_COMPLETENESS_BONUS

        entity.verified = len(entity.sources) >= VERIFIED_MIN_SOURCES
        if entity.verified:
            final += VERIFIED_BONUS

        entity.base_score = result.score
        entity.final_score = min(100, final)
        entity.recommended = result.recommended
        entity.rationale = result.rationale
        entity.scorer_confidence = result.confidence


def scoring_payload(entity: UnifiedEntity) -> dict[str, Any]:
    """Attributes handed to the scorer."""
    primary = entity.primary
    payload: dict[str, Any] = {
        "name": entity.canonical_name,
        "kind": entity.kind.value,
        "source": primary.source,
        "url": primary.url,
        "description": primary.description or primary.attributes.content or "",
    }
    payload.update(entity.merged_attributes)
    return payload
