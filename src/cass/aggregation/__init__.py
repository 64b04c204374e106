"""Aggregation: cross-referencing, gap filling and rescoring."""

from .aggregator import FALLBACK_RATIONALE, AggregationResult, Aggregator, scoring_payload
from .inference import cohort_year, fill_gaps
from .scorer import HeuristicScorer, LLMScorer, ScoreResult, Scorer, get_scorer, parse_score

__all__ = [
    "FALLBACK_RATIONALE",
    "AggregationResult",
    "Aggregator",
    "scoring_payload",
    "cohort_year",
    "fill_gaps",
    "HeuristicScorer",
    "LLMScorer",
    "ScoreResult",
    "Scorer",
    "get_scorer",
    "parse_score",
]
