"""Merge policy for building unified entities from matched records."""

import hashlib
import re
from typing import Any

from ..models import RawRecord, RecordKind
from .similarity import extract_domain, normalize_name

# Source trust when a record carries no credibility score of its own
SOURCE_TRUST = {
    "ycombinator": 0.9,
    "wellfound": 0.8,
    "producthunt": 0.75,
    "hackernews": 0.7,
    "github": 0.7,
}
DEFAULT_TRUST = 0.5

# Richness bonus for sources that tend to carry complete profiles
SOURCE_RICHNESS_BONUS = {
    "ycombinator": 5,
    "wellfound": 4,
    "producthunt": 3,
    "hackernews": 2,
}

NUMERIC_ATTRIBUTES = {
    "funding_amount",
    "team_size",
    "follower_count",
    "min_amount",
    "max_amount",
    "credibility_score",
}
LIST_ATTRIBUTES = {"categories", "tags", "investors", "founders"}

# Completeness checklist: field -> importance weight
COMPLETENESS_FIELDS = {
    # Required
    "founded_year": 3,
    "team_size": 3,
    "funding_stage": 3,
    # Important
    "funding_amount": 2,
    "website": 2,
    "description": 2,
    "github_url": 2,
    "twitter_url": 2,
    "location": 2,
    # Bonus
    "cohort_batch": 1,
    "social_handles": 1,
    "discord_url": 1,
    "linkedin_url": 1,
    "categories": 1,
}

_CLEAN_NAME = re.compile(r"^[A-Za-z0-9 ]+$")


def _source_key(source: str) -> str:
    return re.sub(r"[^a-z]", "", source.lower())


def trust_weight(record: RawRecord) -> float:
    """Per-record trust in [0, 1]."""
    credibility = record.attributes.credibility_score
    if credibility is not None:
        return max(0.0, min(1.0, credibility / 100))
    return SOURCE_TRUST.get(_source_key(record.source), DEFAULT_TRUST)


def richness(record: RawRecord) -> int:
    """Count populated important fields, weighted, plus a source bonus."""
    attrs = record.attributes
    score = 0
    if record.title:
        score += 1
    if len(record.description) > 100:
        score += 2
    if record.url and "reddit.com" not in record.url:
        score += 2
    if attrs.funding_amount is not None:
        score += 3
    if attrs.team_size is not None:
        score += 2
    if attrs.cohort_batch:
        score += 5
    if attrs.github_url:
        score += 2
    if attrs.twitter_url:
        score += 2
    if attrs.launch_date is not None:
        score += 1
    return score + SOURCE_RICHNESS_BONUS.get(_source_key(record.source), 0)


def order_by_richness(records: list[RawRecord]) -> list[RawRecord]:
    """Richest first; ties keep input order."""
    return sorted(records, key=richness, reverse=True)


def merge_attributes(records: list[RawRecord]) -> dict[str, Any]:
    """Merge attributes of records given richest-first.

    Numeric fields take the maximum, list fields the union (first-seen
    order), everything else the first non-empty value.
    """
    merged: dict[str, Any] = {}
    for record in records:
        for key, value in record.attributes.observed().items():
            if key in NUMERIC_ATTRIBUTES and isinstance(value, (int, float)):
                current = merged.get(key)
                merged[key] = value if current is None else max(current, value)
            elif key in LIST_ATTRIBUTES and isinstance(value, list):
                current = merged.setdefault(key, [])
                current.extend(item for item in value if item not in current)
            elif key not in merged:
                merged[key] = value

    if "website" not in merged:
        for record in records:
            if record.kind == RecordKind.PROJECT and record.url and extract_domain(record.url):
                merged["website"] = record.url
                break

    for record in records:
        if record.description:
            merged.setdefault("description", record.description)
            break

    return merged


def choose_canonical_name(aliases: list[str]) -> str:
    """Prefer aliases without punctuation or emoji, then the shortest."""
    candidates = [alias for alias in aliases if alias]
    if not candidates:
        return ""
    clean = [alias for alias in candidates if _CLEAN_NAME.match(alias)]
    pool = clean or candidates
    return min(pool, key=len)


def completeness(merged: dict[str, Any], social_handles: dict[str, str]) -> int:
    """Importance-weighted percentage of checklist fields present."""
    total = sum(COMPLETENESS_FIELDS.values())
    present = 0
    for field, weight in COMPLETENESS_FIELDS.items():
        value = social_handles if field == "social_handles" else merged.get(field)
        if value not in (None, "", [], {}):
            present += weight
    return round(present / total * 100)


def entity_id_for(kind: RecordKind, canonical_name: str, fallback: str = "") -> str:
    """Stable identifier from kind and normalized canonical name."""
    basis = normalize_name(canonical_name) or fallback
    digest = hashlib.sha256(f"{kind.value}:{basis}".encode()).hexdigest()
    return digest[:16]
