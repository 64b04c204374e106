"""Rule-based admissibility validator.

Scores a single record against the eligibility policy for its kind.
Each rule adds or subtracts a fixed weight and may record a reason;
a handful of rules are hard rejections that end evaluation with score 0.

The validator is pure: no I/O, and the reference time comes from an
injectable clock so deadline and age rules are reproducible.
"""

from datetime import datetime, timezone
from typing import Callable
from urllib.parse import urlparse

from pydantic import BaseModel, Field

from ..config import PolicyConfig, get_settings
from ..logging import log_policy_rejection
from ..models import RawRecord, RecordKind, Tier, ValidationOutcome

# Fields that must be populated before any rule runs
REQUIRED_FIELDS = {
    RecordKind.PROJECT: ("title", "url"),
    RecordKind.FUNDING_PROGRAM: ("title", "url"),
    RecordKind.RESOURCE: ("title", "url", "body"),
}


class BatchValidation(BaseModel):
    """Result of validating a batch of records."""

    admissible: list[tuple[RawRecord, ValidationOutcome]] = Field(default_factory=list)
    rejected: list[tuple[RawRecord, ValidationOutcome]] = Field(default_factory=list)
    by_tier: dict[str, int] = Field(
        default_factory=lambda: {tier.value: 0 for tier in Tier}
    )

    @property
    def total(self) -> int:
        return len(self.admissible) + len(self.rejected)


class _Evaluation:
    """Mutable scratchpad used while rules run."""

    def __init__(self, score: int):
        self.score = score
        self.reasons: list[str] = []
        self.hard_rejected = False

    def adjust(self, delta: int, reason: str | None = None) -> None:
        self.score += delta
        if reason:
            self.reasons.append(reason)

    def reject(self, reason: str) -> None:
        self.hard_rejected = True
        self.reasons.append(reason)


class AdmissibilityValidator:
    """Scores records against the category-specific eligibility policy.

    Never raises for bad data: absent or malformed optional fields lower
    the score instead.
    """

    def __init__(
        self,
        policy: PolicyConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """Initialize the validator.

        Args:
            policy: Policy constants (default: from settings)
            clock: Returns the reference "now" (default: current UTC time)
        """
        self.policy = policy or get_settings().policy
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def validate(self, record: RawRecord) -> ValidationOutcome:
        """Validate one record.

        Args:
            record: Record to validate

        Returns:
            The admissibility outcome
        """
        missing = self._missing_fields(record)
        if missing:
            outcome = ValidationOutcome(
                admissible=False,
                fitness_score=0,
                tier=Tier.REJECTED,
                reasons=[f"Missing required fields: {', '.join(missing)}"],
                hard_rejected=True,
            )
        else:
            if record.kind == RecordKind.PROJECT:
                evaluation = self._evaluate_project(record)
            elif record.kind == RecordKind.FUNDING_PROGRAM:
                evaluation = self._evaluate_funding_program(record)
            else:
                evaluation = self._evaluate_resource(record)
            outcome = self._finish(evaluation)

        if not outcome.admissible:
            log_policy_rejection(record.title, record.kind.value, outcome.reasons)
        return outcome

    def validate_batch(self, records: list[RawRecord]) -> BatchValidation:
        """Validate a batch, partitioning it into admissible and rejected."""
        result = BatchValidation()
        for record in records:
            outcome = self.validate(record)
            if outcome.admissible:
                result.admissible.append((record, outcome))
            else:
                result.rejected.append((record, outcome))
            result.by_tier[outcome.tier.value] += 1
        return result

    def tier_for(self, score: int) -> Tier:
        """Map a score to its tier label."""
        if score >= self.policy.perfect_cutoff:
            return Tier.PERFECT
        if score >= self.policy.good_cutoff:
            return Tier.GOOD
        if score >= self.policy.maybe_cutoff:
            return Tier.MAYBE
        return Tier.REJECTED

    # =========================
    # Category rules
    # =========================

    def _evaluate_project(self, record: RawRecord) -> _Evaluation:
        policy = self.policy
        attrs = record.attributes
        evaluation = _Evaluation(policy.project_base_score)

        # Founding year
        before_min_year = False
        year = attrs.founded_year or (attrs.launch_date.year if attrs.launch_date else None)
        if year is not None:
            if year < policy.min_year:
                before_min_year = True
                evaluation.adjust(-50, f"Founded in {year} (must be {policy.min_year}+)")
            elif year == policy.min_year:
                evaluation.adjust(10)
        elif record.published_at is not None:
            if record.published_at.year < policy.min_year:
                before_min_year = True
                evaluation.adjust(-30, f"Appears to be pre-{policy.min_year}")
        else:
            evaluation.adjust(-20, "No launch date available")

        # Funding amount
        funding = attrs.funding_amount
        if funding is not None:
            if funding > policy.max_funding:
                evaluation.reject(
                    f"Funding: ${funding:,.0f} (max ${policy.max_funding:,.0f})"
                )
                if before_min_year:
                    evaluation.reasons.append(
                        f"Over funding cap and founded before {policy.min_year}"
                    )
                return evaluation
            if funding == 0:
                evaluation.adjust(20)
            elif funding < policy.low_funding:
                evaluation.adjust(10)

        # Team size
        team = attrs.team_size
        if team is not None:
            if team < policy.min_team:
                evaluation.reject("No team members")
                return evaluation
            if team > policy.max_team:
                evaluation.adjust(-40, f"Team size: {team} (max {policy.max_team})")
            elif team <= policy.small_team:
                evaluation.adjust(15)

        # Content quality
        if len(record.description) < policy.min_description_length:
            evaluation.adjust(-15, "Description too short")
        if not is_valid_url(record.url):
            evaluation.adjust(-20, "Invalid or missing URL")

        if record.source in policy.trusted_sources:
            evaluation.adjust(10)

        if _contains_any(record.text, policy.domain_keywords):
            evaluation.adjust(5)

        return evaluation

    def _evaluate_funding_program(self, record: RawRecord) -> _Evaluation:
        policy = self.policy
        attrs = record.attributes
        evaluation = _Evaluation(policy.funding_base_score)

        if attrs.is_active is False:
            evaluation.reject("Funding program not active")
            return evaluation

        if attrs.application_deadline is not None and attrs.application_deadline < self._clock():
            evaluation.reject("Application deadline passed")
            return evaluation

        if attrs.max_amount is not None and attrs.max_amount > policy.max_program_amount:
            evaluation.adjust(-20, "Funding amount too large for early-stage")

        if _contains_any(record.text, policy.early_stage_keywords):
            evaluation.adjust(20)

        return evaluation

    def _evaluate_resource(self, record: RawRecord) -> _Evaluation:
        policy = self.policy
        evaluation = _Evaluation(policy.resource_base_score)

        if record.published_at is not None:
            days_old = (self._clock() - record.published_at).total_seconds() / 86400
            if days_old > policy.stale_after_days:
                evaluation.adjust(-10, f"Content is over {policy.stale_after_days} days old")
            elif days_old <= policy.fresh_within_days:
                evaluation.adjust(10)

        text = record.text
        matches = sum(1 for keyword in policy.relevance_keywords if keyword in text)
        evaluation.adjust(min(matches * policy.keyword_bonus, policy.keyword_bonus_cap))

        return evaluation

    # =========================
    # Helpers
    # =========================

    def _finish(self, evaluation: _Evaluation) -> ValidationOutcome:
        if evaluation.hard_rejected:
            return ValidationOutcome(
                admissible=False,
                fitness_score=0,
                tier=Tier.REJECTED,
                reasons=evaluation.reasons,
                hard_rejected=True,
            )

        score = max(0, min(100, evaluation.score))
        return ValidationOutcome(
            admissible=score >= self.policy.min_admission_score,
            fitness_score=score,
            tier=self.tier_for(score),
            reasons=evaluation.reasons,
        )

    def _missing_fields(self, record: RawRecord) -> list[str]:
        missing = []
        for field in REQUIRED_FIELDS[record.kind]:
            if field == "body":
                if not (record.description or record.attributes.content):
                    missing.append("description")
            elif not getattr(record, field):
                missing.append(field)
        return missing


def is_valid_url(url: str) -> bool:
    """Check that a URL is an absolute http(s) URL."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _contains_any(text: str, keywords: list[str]) -> bool:
    return any(keyword in text for keyword in keywords)
