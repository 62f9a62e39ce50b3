"""Tests for result scoring, ranking and tiers."""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from pydantic import ValidationError

from conftest import FIXED_NOW
from models.aggregation import AggregatedMetadata, AggregatedResult, QualityMetrics
from models.research import EngagementStats, ResearchContext
from models.scoring import RankingContext, ScoringWeights, Tier
from services.scorer import (
    SCORING_PRESETS,
    ResultScorer,
    content_type_match,
    engagement_score,
    learning_style_match,
    parse_view_count,
    topic_match,
    user_level_match,
)

_unit = st.floats(min_value=0.0, max_value=1.0, allow_nan=False)


def make_aggregated(
    result_id: str = "agg_1",
    title: str = "Photosynthesis explained",
    url: str = "https://en.wikipedia.org/wiki/Photosynthesis",
    snippet: str = "How plants turn light into sugar.",
    *,
    relevance: float = 0.8,
    confidence: float = 0.8,
    quality: float = 0.7,
    recency: float = 0.5,
    duplicate_count: int = 0,
    types: list[str] | None = None,
    domain: str | None = None,
    engagement: EngagementStats | None = None,
) -> AggregatedResult:
    return AggregatedResult(
        id=result_id,
        title=title,
        url=url,
        snippet=snippet,
        sources=["general"],
        duplicate_count=duplicate_count,
        relevance_score=relevance,
        confidence_score=confidence,
        metadata=AggregatedMetadata(
            quality_metrics=QualityMetrics(
                content_quality=quality,
                source_reliability=quality,
                recency=recency,
                relevance=relevance,
                uniqueness=quality,
                overall=quality,
            ),
            types=types if types is not None else ["general"],
            domain=domain if domain is not None else "en.wikipedia.org",
            published_date=FIXED_NOW,
            engagement=engagement,
        ),
    )


class TestViewCounts:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            (None, 0.0),
            (12000, 12000.0),
            ("1.2k", 1200.0),
            ("3M views", 3_000_000.0),
            ("1,500", 1500.0),
            ("no idea", 0.0),
        ],
    )
    def test_parse_view_count(self, raw, expected):
        assert parse_view_count(raw) == pytest.approx(expected)

    def test_engagement_score(self):
        assert engagement_score(None) == 0.5
        assert engagement_score(EngagementStats(upvotes=5000, comments=500, views="2M")) == 1.0
        assert engagement_score(EngagementStats(upvotes=100)) == pytest.approx(0.6)


class TestMatchers:
    def test_user_level_rewards_matching_vocabulary(self):
        beginner_text = "an introduction to the basic fundamentals"
        assert user_level_match(beginner_text, "beginner") > 0.5
        assert user_level_match(beginner_text, "advanced") < 0.5

    def test_learning_style_prefers_video_for_video_learners(self):
        video = make_aggregated(types=["video"])
        text = make_aggregated(types=["academic"])

        assert learning_style_match(video, "video") == pytest.approx(0.9)
        assert learning_style_match(text, "video") == pytest.approx(0.5)
        assert learning_style_match(text, "textual") == pytest.approx(0.8)

    def test_topic_match_and_exclusions(self):
        result = make_aggregated(title="Photosynthesis explained", snippet="light reactions and photosynthesis")

        assert topic_match(result, RankingContext(topic="photosynthesis")) == pytest.approx(1.0)
        assert topic_match(result, RankingContext(topic="Quantum gravity")) == 0.0
        penalised = RankingContext(topic="photosynthesis", exclude_keywords=["light"])
        assert topic_match(result, penalised) == pytest.approx(0.9)

    def test_content_type_match(self):
        result = make_aggregated(types=["video", "community"])

        assert content_type_match(result, []) == 0.5
        assert content_type_match(result, ["video"]) == 1.0
        assert content_type_match(result, ["video", "academic"]) == 0.5


class TestResultScorer:
    def test_rankings_are_dense_and_ordered(self):
        results = [
            make_aggregated("agg_low", relevance=0.3, confidence=0.3, quality=0.3),
            make_aggregated("agg_high", relevance=1.0, confidence=1.0, quality=0.9),
            make_aggregated("agg_mid", relevance=0.6, confidence=0.6, quality=0.6),
        ]

        ranked = ResultScorer().score_and_rank(results, RankingContext(topic="Photosynthesis"))

        assert [r.ranking for r in ranked] == [1, 2, 3]
        assert [r.id for r in ranked] == ["agg_high", "agg_mid", "agg_low"]
        scores = [r.final_score for r in ranked]
        assert scores == sorted(scores, reverse=True)

    def test_empty_input(self):
        assert ResultScorer().score_and_rank([], RankingContext(topic="x")) == []

    def test_excluded_keywords_are_penalised(self):
        result = make_aggregated(snippet="A sponsored advert about leaves")
        scorer = ResultScorer()

        plain = scorer.score_and_rank([result], RankingContext(topic="Photosynthesis"))[0]
        excluded = scorer.score_and_rank(
            [result], RankingContext(topic="Photosynthesis", exclude_keywords=["sponsored"])
        )[0]

        assert "irrelevant" in excluded.score_breakdown.penalties
        assert excluded.final_score < plain.final_score

    def test_outdated_content_penalised_only_when_recent_preferred(self):
        old = make_aggregated(recency=0.1)
        scorer = ResultScorer()

        any_time = scorer.score_and_rank([old], RankingContext(topic="x"))[0]
        recent = scorer.score_and_rank([old], RankingContext(topic="x", time_preference="recent"))[0]

        assert "outdated" not in any_time.score_breakdown.penalties
        assert "outdated" in recent.score_breakdown.penalties

    def test_context_boosts_only_when_preferences_are_set(self):
        scorer = ResultScorer()

        bare = scorer.score_and_rank([make_aggregated()], RankingContext(topic="x"))[0]
        assert set(bare.score_breakdown.boosts) == {"topic_match"}

        context = RankingContext(
            topic="x", user_level="beginner", learning_style="video", content_types=["video"]
        )
        rich = scorer.score_and_rank([make_aggregated()], context)[0]
        assert set(rich.score_breakdown.boosts) == {"topic_match", "user_level", "learning_style", "content_type"}

    def test_diversity_bonus_rewards_first_occurrence(self):
        same_domain = [
            make_aggregated("agg_a", relevance=0.9),
            make_aggregated("agg_b", relevance=0.8),
        ]

        ranked = ResultScorer().score_and_rank(same_domain, RankingContext(topic="x"))

        assert ranked[0].score_breakdown.diversity_bonus == pytest.approx(0.03)
        assert ranked[1].score_breakdown.diversity_bonus == 0.0

    def test_heavy_duplicates_are_penalised(self):
        ranked = ResultScorer().score_and_rank([make_aggregated(duplicate_count=5)], RankingContext(topic="x"))

        assert ranked[0].score_breakdown.penalties["duplicate_content"] == pytest.approx(0.1)

    def test_presets_exist_and_validate(self):
        for name in SCORING_PRESETS:
            assert ResultScorer.from_preset(name).config.weights

    def test_weights_must_sum_to_one(self):
        with pytest.raises(ValidationError):
            ScoringWeights(relevance=0.9, confidence=0.9)

    def test_ranking_context_from_research_context(self):
        context = ResearchContext(user_level="advanced", keywords=["chlorophyll"], quality_threshold=0.5)

        ranking = RankingContext.from_research_context("Photosynthesis", context)

        assert ranking.topic == "Photosynthesis"
        assert ranking.user_level == "advanced"
        assert ranking.keywords == ["chlorophyll"]
        assert ranking.quality_threshold == 0.5

    @settings(max_examples=75, deadline=None)
    @given(
        rows=st.lists(
            st.tuples(_unit, _unit, _unit, _unit, st.integers(min_value=0, max_value=20)),
            min_size=1,
            max_size=8,
        ),
        preset=st.sampled_from(sorted(SCORING_PRESETS)),
        recent=st.booleans(),
    )
    def test_scores_are_bounded_and_tiers_consistent(self, rows, preset, recent):
        results = [
            make_aggregated(
                f"agg_{i}",
                relevance=rel,
                confidence=conf,
                quality=quality,
                recency=recency,
                duplicate_count=dups,
                domain=f"site{i % 3}.org",
            )
            for i, (rel, conf, quality, recency, dups) in enumerate(rows)
        ]
        context = RankingContext(topic="photosynthesis", time_preference="recent" if recent else "any")

        ranked = ResultScorer.from_preset(preset).score_and_rank(results, context)

        assert len(ranked) == len(results)
        assert [r.ranking for r in ranked] == list(range(1, len(results) + 1))
        for result in ranked:
            assert 0.0 <= result.final_score <= 1.0
            assert result.tier == Tier.for_score(result.final_score)


class TestTier:
    @pytest.mark.parametrize(
        ("score", "tier"),
        [(0.95, Tier.EXCELLENT), (0.8, Tier.EXCELLENT), (0.6, Tier.GOOD), (0.45, Tier.FAIR), (0.1, Tier.POOR)],
    )
    def test_thresholds(self, score, tier):
        assert Tier.for_score(score) == tier
