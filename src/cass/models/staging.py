"""Staging projections and run results."""

from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from .base import Category


class StagingRecord(BaseModel):
    """A category-shaped row ready to be written to staging.

    ``conflict_key`` names the column carrying the identifying value used
    for upserts; ``key`` is that value.
    """

    category: Category
    conflict_key: str
    data: dict[str, Any]

    @property
    def key(self) -> str:
        return str(self.data.get(self.conflict_key) or "")


class RouteResult(BaseModel):
    """Outcome of routing a batch of entities into staging."""

    inserted_by_category: dict[str, int] = Field(default_factory=dict)
    updated_by_category: dict[str, int] = Field(default_factory=dict)
    skipped_by_category: dict[str, int] = Field(default_factory=dict)
    errors: list[str] = Field(default_factory=list)

    @property
    def staged(self) -> int:
        """Rows inserted or updated across all categories."""
        return sum(self.inserted_by_category.values()) + sum(
            self.updated_by_category.values()
        )


class RunResult(BaseModel):
    """Summary of one pipeline run."""

    run_id: UUID = Field(default_factory=uuid4)
    fetched: int = 0
    admissible: int = 0
    rejected: int = 0
    unique: int = 0
    duplicates: int = 0
    entities_resolved: int = 0
    staged: int = 0
    inserted_by_category: dict[str, int] = Field(default_factory=dict)
    updated_by_category: dict[str, int] = Field(default_factory=dict)
    errors: list[str] = Field(default_factory=list)
    duration_ms: int = 0
