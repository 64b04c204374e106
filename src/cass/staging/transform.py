"""Projection of unified entities into category-specific staging rows.

Every required column is populated. Missing values get deterministic
defaults; short descriptions are expanded with a templated sentence built
from the title, source and kind. Timestamps come from the injected clock.
"""

from datetime import datetime, timezone
from typing import Any, Callable

from ..models import Category, StagingRecord, UnifiedEntity, category_for
from ..resolution.similarity import normalize_name, normalize_url

MIN_DESCRIPTION_LENGTH = 50
MAX_DESCRIPTION_LENGTH = 1000
MIN_FUNDING_DESCRIPTION_LENGTH = 100

CONFLICT_KEYS = {
    Category.PROJECTS: "website",
    Category.FUNDING_PROGRAMS: "url",
    Category.RESOURCES: "url",
}

# Column holding the display name in each staging table
TITLE_COLUMNS = {
    Category.PROJECTS: "company_name",
    Category.FUNDING_PROGRAMS: "name",
    Category.RESOURCES: "title",
}

# Normalized title persisted beside the display name for duplicate lookups
TITLE_KEY_COLUMN = "title_key"

DEFAULT_ELIGIBILITY = ["Early-stage startups", "Less than $500k funding"]
DEFAULT_STAGE_PREFERENCES = ["pre-seed", "seed"]
DEFAULT_BENEFITS = ["Funding", "Mentorship", "Network access"]
DEFAULT_MIN_AMOUNT = 10_000
DEFAULT_MAX_AMOUNT = 500_000


def synthesize_description(title: str, source: str, kind: str, description: str) -> str:
    """Expand a short description and cap a long one."""
    if len(description) < MIN_DESCRIPTION_LENGTH:
        subject = f"{title} - {source}" if title else source
        description = (
            f"{subject} {kind} candidate staged for review. "
            f"Collected from {source} and awaiting curator evaluation."
        )
    if len(description) > MAX_DESCRIPTION_LENGTH:
        description = description[: MAX_DESCRIPTION_LENGTH - 3] + "..."
    return description


def title_key(category: Category, data: dict[str, Any]) -> str:
    return normalize_name(str(data.get(TITLE_COLUMNS[category]) or ""))

class StagingTransformer:
    """Builds StagingRecords from aggregated entities."""

    def __init__(
        self,
        batch_id: str = "",
        clock: Callable[[], datetime] | None = None,
    ):
        """Initialize the transformer.

        Args:
            batch_id: Identifier of the run stamped on every row
            clock: Returns the timestamp used for created_at columns
        """
        self.batch_id = batch_id
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def transform(self, entity: UnifiedEntity) -> StagingRecord:
        """Project an entity into its category shape.

        Raises:
            FatalPipelineError: If the entity kind has no staging category
        """
        category = category_for(entity.kind)
        if category == Category.PROJECTS:
            data = self._project(entity)
        elif category == Category.FUNDING_PROGRAMS:
            data = self._funding_program(entity)
        else:
            data = self._resource(entity)
        data[TITLE_KEY_COLUMN] = title_key(category, data)

        return StagingRecord(category=category, conflict_key=CONFLICT_KEYS[category], data=data)

    def transform_all(self, entities: list[UnifiedEntity]) -> list[StagingRecord]:
        return [self.transform(entity) for entity in entities]

    # =========================
    # Category shapes
    # =========================

    def _common(self, entity: UnifiedEntity) -> dict[str, Any]:
        primary = entity.primary
        return {
            "source": primary.source,
            "sources": entity.sources,
            "source_url": primary.url,
            "batch_id": self.batch_id,
            "entity_id": entity.entity_id,
            "score": entity.score,
            "recommended": bool(entity.recommended),
            "rationale": entity.rationale or "",
            "confidence": entity.confidence,
            "completeness": entity.completeness,
            "verified": entity.verified,
            "inferred_fields": dict(entity.inferred_fields),
            "status": "pending_review",
            "created_at": self._clock(),
        }

    def _description(self, entity: UnifiedEntity) -> str:
        primary = entity.primary
        text = (
            entity.merged_attributes.get("description")
            or primary.description
            or primary.attributes.content
            or ""
        )
        return synthesize_description(entity.canonical_name, primary.source, entity.kind.value, text)

    def _project(self, entity: UnifiedEntity) -> dict[str, Any]:
        attrs = entity.merged_attributes
        primary = entity.primary
        data = self._common(entity)
        data.update(
            {
                "company_name": entity.canonical_name or "Untitled Project",
                "description": self._description(entity),
                "website": normalize_url(attrs.get("website") or primary.url),
                "founded_year": attrs.get("founded_year"),
                "team_size": attrs.get("team_size"),
                "funding_amount": attrs.get("funding_amount", 0),
                "funding_stage": attrs.get("funding_stage"),
                "location": attrs.get("location"),
                "country": attrs.get("country"),
                "business_model": attrs.get("business_model"),
                "founders": attrs.get("founders", []),
                "investors": attrs.get("investors", []),
                "industry_tags": attrs.get("categories", []),
                "tags": attrs.get("tags", []),
                "cohort_batch": attrs.get("cohort_batch"),
                "github_url": attrs.get("github_url"),
                "twitter_url": attrs.get("twitter_url"),
                "social_handles": dict(entity.social_handles),
                "aliases": sorted(entity.aliases),
            }
        )
        return data

    def _funding_program(self, entity: UnifiedEntity) -> dict[str, Any]:
        attrs = entity.merged_attributes
        primary = entity.primary
        name = entity.canonical_name or "Untitled Funding Program"

        description = self._description(entity)
        if len(description) < MIN_FUNDING_DESCRIPTION_LENGTH:
            description = (
                f"{name} - {primary.source} funding opportunity for early-stage startups. {description}"
            ).ljust(MIN_FUNDING_DESCRIPTION_LENGTH, ".")

        data = self._common(entity)
        data.update(
            {
                "name": name,
                "organization": attrs.get("organization") or primary.source,
                "description": description,
                "url": normalize_url(primary.url),
                "application_url": primary.url,
                "funding_type": attrs.get("funding_type") or "grant",
                "min_amount": attrs.get("min_amount", DEFAULT_MIN_AMOUNT),
                "max_amount": attrs.get("max_amount", DEFAULT_MAX_AMOUNT),
                "currency": "USD",
                "application_deadline": attrs.get("application_deadline"),
                "eligibility_criteria": list(DEFAULT_ELIGIBILITY),
                "stage_preferences": list(DEFAULT_STAGE_PREFERENCES),
                "benefits": list(DEFAULT_BENEFITS),
                "active_status": attrs.get("is_active", True),
            }
        )
        return data

    def _resource(self, entity: UnifiedEntity) -> dict[str, Any]:
        attrs = entity.merged_attributes
        primary = entity.primary
        data = self._common(entity)
        data.update(
            {
                "title": entity.canonical_name or "Untitled Resource",
                "content": self._description(entity),
                "url": normalize_url(primary.url),
                "published_date": primary.published_at or self._clock(),
                "author": primary.author,
                "publication": primary.source,
                "tags": attrs.get("tags", []),
                "relevance_score": entity.score,
            }
        )
        return data
