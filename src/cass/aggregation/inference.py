"""Gap-filling inference rules for project entities.

Each rule fills a field only when it is absent and returns the name of the
rule that produced the value, so the aggregator can tag it as inferred.
"""

import re
from typing import Any

from ..models import UnifiedEntity

_COHORT_BATCH = re.compile(r"^[A-Z]+(\d{2})$")

SOLO_TEAM = 1
FUNDED_TEAM = 3
COHORT_TEAM = 2
DEFAULT_TEAM = 1
FUNDED_TEAM_THRESHOLD = 200_000

PRE_SEED_CEILING = 150_000
SEED_CEILING = 500_000


def cohort_year(batch: str | None) -> int | None:
    """Year encoded in a cohort batch code (``W24`` -> 2024)."""
    if not batch:
        return None
    match = _COHORT_BATCH.match(batch.strip().upper())
    if not match:
        return None
    return 2000 + int(match.group(1))


def infer_founded_year(entity: UnifiedEntity, attrs: dict[str, Any]) -> tuple[int, str] | None:
    year = cohort_year(attrs.get("cohort_batch"))
    if year is not None:
        return year, "cohort_batch"

    launch_date = attrs.get("launch_date")
    if launch_date is not None and hasattr(launch_date, "year"):
        return launch_date.year, "launch_date"

    published = [r.published_at for r in entity.source_records if r.published_at is not None]
    if published:
        return min(published).year, "earliest_published"
    return None


def infer_team_size(attrs: dict[str, Any]) -> tuple[int, str]:
    if attrs.get("is_solo_founder"):
        return SOLO_TEAM, "solo_founder"
    funding = attrs.get("funding_amount")
    if funding is not None and funding > FUNDED_TEAM_THRESHOLD:
        return FUNDED_TEAM, "funding_band"
    if attrs.get("cohort_batch"):
        return COHORT_TEAM, "cohort_member"
    return DEFAULT_TEAM, "default"


def infer_funding_stage(attrs: dict[str, Any]) -> tuple[str, str]:
    funding = attrs.get("funding_amount")
    if funding:
        if funding < PRE_SEED_CEILING:
            return "pre-seed", "funding_band"
        if funding < SEED_CEILING:
            return "seed", "funding_band"
        return "series-a", "funding_band"
    if attrs.get("cohort_batch"):
        return "seed", "cohort_member"
    return "pre-seed", "default"


def fill_gaps(entity: UnifiedEntity, attrs: dict[str, Any]) -> dict[str, str]:
    """Fill missing fields in ``attrs`` in place.

    Returns:
        Mapping of filled field to the rule that produced it
    """
    inferred: dict[str, str] = {}

    if attrs.get("founded_year") is None:
        result = infer_founded_year(entity, attrs)
        if result is not None:
            attrs["founded_year"], inferred["founded_year"] = result

    if attrs.get("team_size") is None:
        attrs["team_size"], inferred["team_size"] = infer_team_size(attrs)

    if not attrs.get("funding_stage"):
        attrs["funding_stage"], inferred["funding_stage"] = infer_funding_stage(attrs)

    return inferred
