"""Admissibility validation for incoming records."""

from .validator import AdmissibilityValidator, BatchValidation, is_valid_url

__all__ = [
    "AdmissibilityValidator",
    "BatchValidation",
    "is_valid_url",
]
