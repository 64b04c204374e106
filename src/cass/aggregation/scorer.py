"""Fitness scorers used by the aggregator.

A scorer turns the merged attributes of one entity into a 0-100 score, a
recommendation, a rationale and a confidence. ``HeuristicScorer`` is
deterministic and needs no I/O; ``LLMScorer`` asks a chat model and is
available with the ``llm`` extra.
"""

import json
import logging
from typing import Any, Protocol

from pydantic import BaseModel, Field

from ..config import PolicyConfig, Settings, get_settings

logger = logging.getLogger(__name__)


class ScoreResult(BaseModel):
    """Scorer output for one entity."""

    score: int = Field(ge=0, le=100)
    recommended: bool
    rationale: str
    confidence: float = Field(ge=0.0, le=1.0)


class Scorer(Protocol):
    """Pluggable fitness scorer."""

    async def score(self, attributes: dict[str, Any]) -> ScoreResult: ...


class HeuristicScorer:
    """Rule-of-thumb scorer over merged attributes.

    Starts neutral at 50 and moves in steps of 5-20 for age, funding, team
    size, traction and keywords. Recommends when the score is at least 60
    and one early-stage criterion holds.
    """

    POSITIVE_KEYWORDS = ["ai", "blockchain", "web3", "defi", "nft", "dao", "startup", "launch", "beta", "mvp"]
    NEGATIVE_KEYWORDS = ["enterprise", "fortune 500", "established", "legacy"]

    GITHUB_STARS = 100
    HACKERNEWS_POINTS = 50

    def __init__(self, policy: PolicyConfig | None = None):
        self.policy = policy or get_settings().policy

    async def score(self, attributes: dict[str, Any]) -> ScoreResult:
        return self.evaluate(attributes)

    def evaluate(self, attributes: dict[str, Any]) -> ScoreResult:
        """Score synchronously."""
        policy = self.policy
        score = 50
        reasons: list[str] = []
        early_stage = low_funding = small_team = False

        year = attributes.get("founded_year")
        if isinstance(year, int):
            if year >= policy.min_year:
                score += 20
                early_stage = True
                reasons.append(f"Early stage ({policy.min_year}+)")
            elif year >= policy.min_year - 1:
                score += 10
                reasons.append("Recent startup")
            else:
                score -= 10
                reasons.append("Older company")

        funding = attributes.get("funding_amount")
        if isinstance(funding, (int, float)):
            low_funding = funding < policy.max_funding
            if funding == 0:
                score += 20
                reasons.append("Pre-funding")
            elif funding < policy.low_funding:
                score += 10
                reasons.append("Minimal funding")
            elif funding < policy.max_funding:
                score += 5
                reasons.append("Low funding")
            else:
                score -= 20
                reasons.append("Well-funded")

        team = attributes.get("team_size")
        if isinstance(team, (int, float)):
            small_team = team <= policy.max_team
            if team <= policy.small_team:
                score += 20
                reasons.append("Small team")
            elif team <= policy.max_team:
                score += 10
                reasons.append("Lean team")
            else:
                score -= 10
                reasons.append("Large team")

        if _number(attributes.get("stars")) > self.GITHUB_STARS:
            score += 10
            reasons.append("Popular on GitHub")
        if _number(attributes.get("points")) > self.HACKERNEWS_POINTS:
            score += 10
            reasons.append("Trending on HN")

        description = str(attributes.get("description") or attributes.get("content") or "").lower()
        if any(keyword in description for keyword in self.POSITIVE_KEYWORDS):
            score += 5
            reasons.append("Relevant technology")
        if any(keyword in description for keyword in self.NEGATIVE_KEYWORDS):
            score -= 10
            reasons.append("Enterprise focus")

        score = max(0, min(100, score))
        return ScoreResult(
            score=score,
            recommended=score >= 60 and (early_stage or low_funding or small_team),
            rationale=", ".join(reasons) if reasons else "Neutral assessment",
            confidence=0.7,
        )


class LLMScorer:
    """Scorer backed by an OpenAI chat model with JSON output.

    Errors propagate to the caller; the aggregator owns the fallback.
    """

    SYSTEM_PROMPT = """You evaluate early-stage startups, funding programs and resources for a founder accelerator.

Criteria:
- Early stage (founded {min_year}+)
- Low funding (under ${max_funding:,.0f} raised)
- Small team (at most {max_team} people)
- High growth potential and active development

Score from 0 to 100 where:
- 80-100: Perfect fit
- 50-79: Good fit with some concerns
- 20-49: Poor fit
- 0-19: Not relevant

Return a JSON object with: score (number), recommended (boolean), rationale (string), confidence (0-1)."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self._client: Any = None

    def _get_client(self) -> Any:
        """Get or create the OpenAI client."""
        if self._client is not None:
            return self._client

        try:
            import openai
        except ImportError:
            raise RuntimeError("openai package not installed")

        self._client = openai.AsyncOpenAI(api_key=self.settings.openai_api_key)
        return self._client

    async def score(self, attributes: dict[str, Any]) -> ScoreResult:
        client = self._get_client()
        policy = self.settings.policy

        response = await client.chat.completions.create(
            model=self.settings.llm_model,
            messages=[
                {
                    "role": "system",
                    "content": self.SYSTEM_PROMPT.format(
                        min_year=policy.min_year,
                        max_funding=policy.max_funding,
                        max_team=policy.max_team,
                    ),
                },
                {"role": "user", "content": build_prompt(attributes)},
            ],
            temperature=0.3,
            max_tokens=300,
            response_format={"type": "json_object"},
        )

        content = response.choices[0].message.content
        if not content:
            raise ValueError("Empty response from scorer model")
        return parse_score(content)


def build_prompt(attributes: dict[str, Any]) -> str:
    """Render entity attributes as the scorer prompt."""
    parts = [
        "Evaluate this candidate:",
        f"Name: {attributes.get('name') or 'Unknown'}",
        f"Description: {attributes.get('description') or attributes.get('content') or 'No description'}",
    ]
    labels = {
        "website": "URL",
        "founded_year": "Founded",
        "funding_amount": "Funding",
        "team_size": "Team Size",
        "funding_stage": "Stage",
        "categories": "Categories",
        "source": "Source",
    }
    for key, label in labels.items():
        value = attributes.get(key)
        if value in (None, "", []):
            continue
        if isinstance(value, list):
            value = ", ".join(str(item) for item in value)
        parts.append(f"{label}: {value}")
    return "\n".join(parts)


def parse_score(content: str) -> ScoreResult:
    """Parse and clamp a JSON scorer response.

    Raises:
        ValueError: If the response is not a JSON object
    """
    content = content.strip()
    if content.startswith("```"):
        lines = content.split("\n")
        content = "\n".join(lines[1:-1])

    data = json.loads(content)
    if not isinstance(data, dict):
        raise ValueError("Scorer response is not a JSON object")

    score = int(round(max(0.0, min(100.0, _number(data.get("score"))))))
    confidence = max(0.0, min(1.0, _number(data.get("confidence"), default=0.5)))
    return ScoreResult(
        score=score,
        recommended=bool(data.get("recommended", False)),
        rationale=str(data.get("rationale") or "No rationale provided"),
        confidence=confidence,
    )


def get_scorer(settings: Settings | None = None, provider: str | None = None) -> Scorer:
    """Build the configured scorer.

    Args:
        settings: Settings holding the provider, model and API key
        provider: 'openai' or 'heuristic'. If not specified, uses settings.

    Returns:
        The LLM scorer when the provider is openai and an API key is set,
        otherwise the heuristic scorer
    """
    settings = settings or get_settings()
    provider = provider or settings.llm_provider
    if provider not in ("openai", "heuristic"):
        raise ValueError(f"Unknown scorer provider: {provider}")

    if provider == "openai" and settings.openai_api_key:
        logger.info("Using LLM scorer")
        return LLMScorer(settings)
    logger.info("Using heuristic scorer")
    return HeuristicScorer(settings.policy)


def _number(value: Any, default: float = 0.0) -> float:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        return default
