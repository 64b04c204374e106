"""Raw content records and their admissibility outcome."""

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .base import (
    RecordKind,
    Tier,
    coerce_bool,
    coerce_datetime,
    coerce_int,
    coerce_number,
    coerce_str,
    coerce_str_list,
)

NUMERIC_FIELDS = (
    "funding_amount",
    "min_amount",
    "max_amount",
    "follower_count",
    "credibility_score",
)
INTEGER_FIELDS = ("team_size", "founded_year")
DATE_FIELDS = ("launch_date", "application_deadline")
BOOL_FIELDS = ("is_solo_founder", "is_active")
LIST_FIELDS = ("founders", "categories", "tags", "investors")
STRING_FIELDS = (
    "cohort_batch",
    "funding_stage",
    "website",
    "twitter_url",
    "github_url",
    "discord_url",
    "linkedin_url",
    "location",
    "country",
    "business_model",
    "organization",
    "funding_type",
    "content",
    "startup_name",
)


class RecordAttributes(BaseModel):
    """Source-specific attributes of a record.

    Known attributes are typed; anything a source sends that is not listed
    here is kept in the residual ``model_extra`` map. Malformed values are
    dropped to ``None`` rather than rejected so a bad field degrades the
    record instead of failing it.
    """

    # Funding and team
    funding_amount: float | None = None
    funding_stage: str | None = None
    team_size: int | None = None
    is_solo_founder: bool | None = None
    founders: list[str] | None = None
    investors: list[str] | None = None

    # Timeline
    founded_year: int | None = None
    launch_date: datetime | None = None
    cohort_batch: str | None = None

    # Presence
    website: str | None = None
    twitter_url: str | None = None
    github_url: str | None = None
    discord_url: str | None = None
    linkedin_url: str | None = None
    follower_count: float | None = None

    # Profile
    location: str | None = None
    country: str | None = None
    business_model: str | None = None
    categories: list[str] | None = None
    tags: list[str] | None = None
    startup_name: str | None = None
    credibility_score: float | None = None

    # Funding programs
    organization: str | None = None
    funding_type: str | None = None
    min_amount: float | None = None
    max_amount: float | None = None
    is_active: bool | None = None
    application_deadline: datetime | None = None

    # Resources
    content: str | None = None

    model_config = ConfigDict(extra="allow", frozen=True)

    @field_validator(*NUMERIC_FIELDS, mode="before")
    @classmethod
    def _lenient_number(cls, value: Any) -> float | None:
        return coerce_number(value)

    @field_validator(*INTEGER_FIELDS, mode="before")
    @classmethod
    def _lenient_int(cls, value: Any) -> int | None:
        return coerce_int(value)

    @field_validator(*DATE_FIELDS, mode="before")
    @classmethod
    def _lenient_datetime(cls, value: Any) -> datetime | None:
        return coerce_datetime(value)

    @field_validator(*BOOL_FIELDS, mode="before")
    @classmethod
    def _lenient_bool(cls, value: Any) -> bool | None:
        return coerce_bool(value)

    @field_validator(*LIST_FIELDS, mode="before")
    @classmethod
    def _lenient_list(cls, value: Any) -> list[str] | None:
        return coerce_str_list(value)

    @field_validator(*STRING_FIELDS, mode="before")
    @classmethod
    def _lenient_str(cls, value: Any) -> str | None:
        return coerce_str(value)

    @property
    def residual(self) -> dict[str, Any]:
        """Attributes not covered by a typed field."""
        return dict(self.model_extra or {})

    def observed(self) -> dict[str, Any]:
        """All populated attributes, typed and residual, as a plain dict."""
        data = self.model_dump(exclude_none=True)
        return {
            key: value
            for key, value in data.items()
            if value is not None and value != "" and value != []
        }


class RawRecord(BaseModel):
    """A record as produced by a fetch adapter. Immutable for a run."""

    record_id: UUID = Field(default_factory=uuid4)
    source: str
    kind: RecordKind
    title: str = ""
    description: str = ""
    url: str = ""
    author: str | None = None
    published_at: datetime | None = None
    attributes: RecordAttributes = Field(default_factory=RecordAttributes)

    model_config = ConfigDict(frozen=True)

    @field_validator("title", "description", "url", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> str:
        return coerce_str(value) or ""

    @field_validator("author", mode="before")
    @classmethod
    def _lenient_author(cls, value: Any) -> str | None:
        return coerce_str(value)

    @field_validator("published_at", mode="before")
    @classmethod
    def _lenient_published(cls, value: Any) -> datetime | None:
        return coerce_datetime(value)

    @property
    def text(self) -> str:
        """Title and body text, lowercased, for keyword rules."""
        body = self.description or self.attributes.content or ""
        return f"{self.title} {body}".lower()


class ValidationOutcome(BaseModel):
    """Admissibility verdict for one record. Never mutated after creation."""

    admissible: bool
    fitness_score: int = Field(ge=0, le=100)
    tier: Tier
    reasons: list[str] = Field(default_factory=list)
    hard_rejected: bool = False

    model_config = ConfigDict(frozen=True)
