"""Entity resolution for CASS.

Provides the shared similarity toolkit, the multi-signal pair matcher and
the within-batch resolver that merges matching records into unified
entities.
"""

from .matcher import RecordFeatures, SignalMatcher
from .merge import choose_canonical_name, completeness, merge_attributes, trust_weight
from .resolver import EntityResolver, ResolutionStats, resolve_stats
from .similarity import (
    extract_domain,
    extract_founders,
    extract_social_handles,
    normalize_name,
    normalize_url,
    string_similarity,
    text_overlap,
)

__all__ = [
    # Matcher
    "RecordFeatures",
    "SignalMatcher",
    # Merge policy
    "choose_canonical_name",
    "completeness",
    "merge_attributes",
    "trust_weight",
    # Resolver
    "EntityResolver",
    "ResolutionStats",
    "resolve_stats",
    # Similarity
    "extract_domain",
    "extract_founders",
    "extract_social_handles",
    "normalize_name",
    "normalize_url",
    "string_similarity",
    "text_overlap",
]
