"""Tests for inference, scoring and the aggregator."""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from cass.aggregation import (
    FALLBACK_RATIONALE,
    Aggregator,
    HeuristicScorer,
    LLMScorer,
    ScoreResult,
    cohort_year,
    fill_gaps,
    get_scorer,
    parse_score,
)
from cass.aggregation.scorer import build_prompt
from cass.cache import PipelineCache
from cass.models import RecordKind
from cass.resolution import EntityResolver


def _entities(*records):
    return EntityResolver().resolve(list(records))


class ConcurrencyScorer:
    """Scorer recording the highest number of overlapping calls."""

    def __init__(self):
        self.active = 0
        self.peak = 0
        self.calls = 0

    async def score(self, attributes):
        self.active += 1
        self.calls += 1
        self.peak = max(self.peak, self.active)
        await asyncio.sleep(0.01)
        self.active -= 1
        return ScoreResult(score=60, recommended=True, rationale="ok", confidence=0.5)


class TestInference:
    """Tests for gap-filling rules."""

    @pytest.mark.parametrize("batch,year", [("W24", 2024), ("s23", 2023), ("2024", None), (None, None)])
    def test_cohort_year(self, batch, year):
        assert cohort_year(batch) == year

    def test_cohort_member(self, make_record):
        entity = _entities(make_record(cohort_batch="W24"))[0]
        attrs = dict(entity.merged_attributes)

        inferred = fill_gaps(entity, attrs)

        assert attrs["founded_year"] == 2024
        assert attrs["team_size"] == 2
        assert attrs["funding_stage"] == "seed"
        assert inferred == {
            "founded_year": "cohort_batch",
            "team_size": "cohort_member",
            "funding_stage": "cohort_member",
        }

    def test_earliest_published_year(self, make_record):
        entity = _entities(
            make_record(published_at=datetime(2023, 5, 1, tzinfo=timezone.utc)),
            make_record(source="HackerNews", published_at=datetime(2024, 2, 1, tzinfo=timezone.utc)),
        )[0]
        attrs = dict(entity.merged_attributes)

        inferred = fill_gaps(entity, attrs)

        assert attrs["founded_year"] == 2023
        assert inferred["founded_year"] == "earliest_published"

    @pytest.mark.parametrize(
        "attributes,team,stage",
        [
            ({"is_solo_founder": True}, 1, "pre-seed"),
            ({"funding_amount": 300_000}, 3, "seed"),
            ({"funding_amount": 600_000}, 3, "series-a"),
            ({"funding_amount": 50_000}, 1, "pre-seed"),
        ],
    )
    def test_team_and_stage_bands(self, make_record, attributes, team, stage):
        entity = _entities(make_record(**attributes))[0]
        attrs = dict(entity.merged_attributes)

        fill_gaps(entity, attrs)

        assert attrs["team_size"] == team
        assert attrs["funding_stage"] == stage

    def test_observed_values_are_kept(self, make_record):
        entity = _entities(make_record(founded_year=2022, team_size=7, funding_stage="seed"))[0]
        attrs = dict(entity.merged_attributes)

        assert fill_gaps(entity, attrs) == {}
        assert attrs["team_size"] == 7


class TestHeuristicScorer:
    """Tests for the deterministic scorer."""

    def test_ideal_candidate(self, policy):
        result = HeuristicScorer(policy).evaluate({"founded_year": 2024, "funding_amount": 0, "team_size": 2})

        assert result.score == 100
        assert result.recommended is True

    def test_poor_candidate(self, policy):
        result = HeuristicScorer(policy).evaluate(
            {
                "founded_year": 2015,
                "funding_amount": 5_000_000,
                "team_size": 50,
                "description": "Enterprise platform",
            }
        )

        assert result.score == 0
        assert result.recommended is False

    def test_neutral_without_data(self, policy):
        result = HeuristicScorer(policy).evaluate({})

        assert result.score == 50
        assert result.rationale == "Neutral assessment"
        assert result.recommended is False

    def test_traction_alone_is_not_a_recommendation(self, policy):
        result = HeuristicScorer(policy).evaluate({"stars": 150, "points": "80"})

        assert result.score == 70
        assert result.recommended is False


class TestScorerPlumbing:
    """Tests for response parsing, prompts and scorer selection."""

    def test_parse_score_clamps_and_strips_fences(self):
        content = '```json\n{"score": 120, "recommended": true, "rationale": "Great", "confidence": 2}\n```'
        result = parse_score(content)

        assert result.score == 100
        assert result.confidence == 1.0
        assert result.recommended is True

    @pytest.mark.parametrize("content", ["[]", "not json"])
    def test_parse_score_rejects_non_objects(self, content):
        with pytest.raises(ValueError):
            parse_score(content)

    def test_build_prompt(self):
        prompt = build_prompt({"name": "Acme", "team_size": 2, "categories": ["ai", "devtools"]})

        assert "Name: Acme" in prompt
        assert "Team Size: 2" in prompt
        assert "Categories: ai, devtools" in prompt
        assert "Description: No description" in prompt

    def test_get_scorer(self, settings):
        assert isinstance(get_scorer(settings), HeuristicScorer)
        with_key = settings.model_copy(update={"openai_api_key": "sk-test"})
        assert isinstance(get_scorer(with_key), LLMScorer)

    def test_get_scorer_provider(self, settings):
        with_key = settings.model_copy(update={"openai_api_key": "sk-test", "llm_provider": "heuristic"})
        assert isinstance(get_scorer(with_key), HeuristicScorer)
        assert isinstance(get_scorer(with_key, provider="openai"), LLMScorer)
        with pytest.raises(ValueError):
            get_scorer(settings, provider="anthropic")

    @pytest.mark.asyncio
    async def test_llm_scorer_parses_response(self, settings):
        scorer = LLMScorer(settings)
        response = MagicMock()
        response.choices = [
            MagicMock(message=MagicMock(content='{"score": 82, "recommended": true, "rationale": "Fit", "confidence": 0.8}'))
        ]
        scorer._client = AsyncMock()
        scorer._client.chat.completions.create.return_value = response

        result = await scorer.score({"name": "Acme"})

        assert result.score == 82
        assert result.rationale == "Fit"
        kwargs = scorer._client.chat.completions.create.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}


class TestAggregator:
    """Tests for enrichment, scoring and ranking."""

    @pytest.mark.asyncio
    async def test_acme_is_enriched_and_scored(self, settings, fixed_scorer, scenario_records):
        entities = _entities(*scenario_records[:2])
        result = await Aggregator(fixed_scorer, settings).aggregate(entities)

        entity = result.entities[0]
        assert entity.merged_attributes["team_size"] == 1
        assert entity.merged_attributes["funding_stage"] == "pre-seed"
        assert entity.inferred_fields == {"team_size": "default", "funding_stage": "funding_band"}
        assert entity.completeness == 50
        assert entity.final_score == 70
        assert entity.verified is False
        assert result.original_count == 2
        assert result.fallback_count == 0
        assert result.issues == []

    @pytest.mark.asyncio
    async def test_heuristic_score_for_acme(self, settings, policy, scenario_records):
        entities = _entities(*scenario_records[:2])
        result = await Aggregator(HeuristicScorer(policy), settings).aggregate(entities)

        assert result.entities[0].final_score == 100

    @pytest.mark.asyncio
    async def test_scorer_timeout_falls_back(self, settings, hanging_scorer, make_record):
        result = await Aggregator(hanging_scorer, settings).aggregate(_entities(make_record()))

        entity = result.entities[0]
        assert entity.base_score == settings.scorer_fallback_score
        assert entity.rationale == FALLBACK_RATIONALE
        assert "manual review" in entity.rationale
        assert entity.recommended is False
        assert entity.scorer_confidence == 0.0
        assert result.fallback_count == 1
        assert result.issues[0].stage == "aggregation"
        assert result.issues[0].source == "Acme"
        assert result.issues[0].timed_out is True

    @pytest.mark.asyncio
    async def test_scorer_error_falls_back(self, settings, failing_scorer, make_record):
        result = await Aggregator(failing_scorer, settings).aggregate(_entities(make_record()))

        assert result.entities[0].rationale == FALLBACK_RATIONALE
        assert [str(issue) for issue in result.issues] == ["[aggregation] Acme: model unavailable"]

    @pytest.mark.asyncio
    async def test_three_sources_are_verified(self, settings, fixed_scorer, make_record):
        entities = _entities(
            make_record(source="ProductHunt"),
            make_record(source="HackerNews"),
            make_record(source="GitHub"),
        )
        entity = (await Aggregator(fixed_scorer, settings).aggregate(entities)).entities[0]

        assert entity.verified is True
        assert entity.final_score == 80

    @pytest.mark.asyncio
    async def test_completeness_bonuses(self, settings, fixed_scorer, make_record):
        profile = dict(
            founded_year=2024,
            team_size=2,
            funding_stage="seed",
            funding_amount=10_000,
            website="https://acme.io",
            github_url="https://github.com/acme",
        )
        rich = make_record(
            description="Acme builds tools.",
            twitter_url="https://x.com/acme",
            location="Berlin",
            **profile,
        )
        medium = make_record(
            title="Zeta",
            url="https://zeta.dev",
            description="Zeta builds tools.",
            **{**profile, "website": "https://zeta.dev", "github_url": "https://github.com/zeta"},
        )
        result = await Aggregator(fixed_scorer, settings).aggregate(_entities(rich, medium))
        by_name = {e.canonical_name: e for e in result.entities}

        assert by_name["Acme"].completeness == 85
        assert by_name["Acme"].final_score == 80
        assert by_name["Zeta"].completeness == 69
        assert by_name["Zeta"].final_score == 75

    @pytest.mark.asyncio
    async def test_sort_order(self, settings, fixed_scorer, make_record):
        entities = _entities(
            make_record(title="Beta", url="https://beta.dev"),
            make_record(title="Alpha", url="https://alpha.dev"),
            make_record(title="Gamma", url="https://gamma.dev", founded_year=2024),
        )
        result = await Aggregator(fixed_scorer, settings).aggregate(entities)

        assert [e.canonical_name for e in result.entities] == ["Gamma", "Alpha", "Beta"]

    @pytest.mark.asyncio
    async def test_cross_reference_across_kinds(self, settings, fixed_scorer, make_record):
        entities = _entities(
            make_record(title="Acme", location="Berlin"),
            make_record(
                title="Acme",
                kind=RecordKind.RESOURCE,
                url="https://blog.example.com/acme",
                description="About Acme",
                tags=["devtools"],
            ),
        )
        result = await Aggregator(fixed_scorer, settings).aggregate(entities)
        by_kind = {e.kind: e for e in result.entities}
        project = by_kind[RecordKind.PROJECT]
        resource = by_kind[RecordKind.RESOURCE]

        assert project.merged_attributes["tags"] == ["devtools"]
        assert project.inferred_fields["tags"] == "cross_reference:resource"
        assert "description" not in project.merged_attributes
        assert resource.merged_attributes["location"] == "Berlin"
        assert project.cross_referenced and resource.cross_referenced
        assert "team_size" not in resource.merged_attributes

    @pytest.mark.asyncio
    async def test_input_untouched_and_idempotent(self, settings, fixed_scorer, scenario_records):
        entities = _entities(*scenario_records[:2])
        aggregator = Aggregator(fixed_scorer, settings)

        first = (await aggregator.aggregate(entities)).entities
        second = (await aggregator.aggregate(first)).entities

        assert "team_size" not in entities[0].merged_attributes
        assert entities[0].final_score is None
        assert second[0].merged_attributes == first[0].merged_attributes
        assert second[0].inferred_fields == first[0].inferred_fields
        assert second[0].final_score == first[0].final_score

    @pytest.mark.asyncio
    async def test_scores_are_cached(self, settings, fixed_scorer, scenario_records):
        scorer = fixed_scorer
        aggregator = Aggregator(scorer, settings, cache=PipelineCache())
        entities = _entities(*scenario_records[:2])

        await aggregator.aggregate(entities)
        result = await aggregator.aggregate(entities)

        assert len(scorer.calls) == 1
        assert result.entities[0].final_score == 70

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, settings, make_record):
        scorer = ConcurrencyScorer()
        bounded = settings.model_copy(update={"scorer_concurrency": 2, "scorer_timeout_seconds": 1.0})
        records = [make_record(title=name, url=f"https://{name}.dev") for name in ["a1", "b2", "c3", "d4", "e5"]]

        result = await Aggregator(scorer, bounded).aggregate(_entities(*records))

        assert scorer.calls == 5
        assert scorer.peak <= 2
        assert len(result.entities) == 5

    @pytest.mark.asyncio
    async def test_empty_batch(self, settings, fixed_scorer):
        result = await Aggregator(fixed_scorer, settings).aggregate([])

        assert result.entities == []
        assert result.average_completeness == 0.0
