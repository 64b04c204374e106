"""Base enums and value coercion helpers for CASS models."""

import math
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any

from pydantic import TypeAdapter, ValidationError

from ..errors import FatalPipelineError


class RecordKind(str, Enum):
    """Kinds of content records produced by fetch adapters."""

    PROJECT = "project"
    FUNDING_PROGRAM = "funding_program"
    RESOURCE = "resource"


class Category(str, Enum):
    """Staging buckets, one per record kind."""

    PROJECTS = "projects"
    FUNDING_PROGRAMS = "funding_programs"
    RESOURCES = "resources"


CATEGORY_BY_KIND = {
    RecordKind.PROJECT: Category.PROJECTS,
    RecordKind.FUNDING_PROGRAM: Category.FUNDING_PROGRAMS,
    RecordKind.RESOURCE: Category.RESOURCES,
}


def category_for(kind: RecordKind | str) -> Category:
    """Map a record kind to its staging category.

    Raises:
        FatalPipelineError: If the kind has no staging category
    """
    try:
        return CATEGORY_BY_KIND[RecordKind(kind)]
    except (KeyError, ValueError):
        raise FatalPipelineError(f"No staging category for record kind {kind!r}")


class Tier(str, Enum):
    """Admissibility tiers derived from the fitness score."""

    PERFECT = "perfect"
    GOOD = "good"
    MAYBE = "maybe"
    REJECTED = "rejected"


# =========================
# Lenient coercion
# =========================

_datetime_adapter = TypeAdapter(datetime)


def coerce_datetime(value: Any) -> datetime | None:
    """Parse a timestamp, returning None for anything unparseable.

    Naive timestamps are assumed to be UTC so that comparisons never mix
    naive and aware values.
    """
    if value is None or value == "":
        return None
    if isinstance(value, str) and len(value.strip()) == 10:
        try:
            value = date.fromisoformat(value.strip())
        except ValueError:
            return None
    if isinstance(value, date) and not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day)
    try:
        parsed = _datetime_adapter.validate_python(value)
    except ValidationError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def coerce_number(value: Any) -> float | None:
    """Parse a number such as ``50000``, ``"50,000"`` or ``"$1.5M"``.

    NaN and infinities are not numbers for any attribute and become None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return _finite(float(value))
        except OverflowError:
            return None
    if not isinstance(value, str):
        return None

    text = value.strip().lower().replace(",", "").replace("$", "")
    multiplier = 1.0
    if text.endswith("k"):
        multiplier, text = 1_000.0, text[:-1]
    elif text.endswith("m"):
        multiplier, text = 1_000_000.0, text[:-1]
    try:
        return _finite(float(text) * multiplier)
    except ValueError:
        return None


def _finite(number: float) -> float | None:
    return number if math.isfinite(number) else None


def coerce_int(value: Any) -> int | None:
    number = coerce_number(value)
    return int(number) if number is not None else None


def coerce_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "yes", "1"):
            return True
        if lowered in ("false", "no", "0"):
            return False
    return None


def coerce_str(value: Any) -> str | None:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def coerce_str_list(value: Any) -> list[str] | None:
    """Coerce a list-like or comma-separated string into a list of strings."""
    if value is None:
        return None
    if isinstance(value, str):
        items = [part.strip() for part in value.split(",")]
    elif isinstance(value, (list, tuple, set, frozenset)):
        items = [str(item).strip() for item in value if item is not None]
    else:
        return None
    items = [item for item in items if item]
    return items or None
