"""Tests for content aggregation and near-duplicate collapsing."""

from datetime import timedelta

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from conftest import FIXED_NOW, failure, make_item, success, timeout
from models.aggregation import AggregationConfig
from models.research import ResearchContext
from services.aggregator import (
    ContentAggregator,
    content_quality,
    get_recommended_config,
    item_similarity,
    recency_score,
    source_reliability,
    validate_results,
)
from utils.text import normalize_url


def photosynthesis_results():
    wiki = make_item(snippet="Photosynthesis turns sunlight into sugar in plants.", relevance_score=0.9)
    khan = make_item(
        title="Light-dependent reactions explained",
        url="https://www.khanacademy.org/science/light-reactions",
        snippet="Thylakoid membranes capture photons and split water molecules.",
        relevance_score=0.8,
    )
    return [
        success("A", wiki, khan),
        success(
            "B",
            make_item(snippet="Chlorophyll absorbs red and blue light.", relevance_score=0.85),
            make_item(snippet="Carbon fixation happens in the Calvin cycle.", relevance_score=0.7),
        ),
        timeout("C"),
        timeout("D"),
        failure("E"),
    ]


class TestNormalisation:
    def test_tracking_and_www_are_ignored(self):
        assert normalize_url("http://www.Example.com/page/?utm_source=x&id=3&fbclid=y") == normalize_url(
            "https://example.com/page?id=3"
        )

    def test_identical_urls_are_certain_duplicates(self):
        a = make_item(title="One", url="https://example.com/a/")
        b = make_item(title="Totally different", url="https://www.example.com/a")
        assert item_similarity(a, b) == 1.0

    def test_unrelated_items_are_not_similar(self):
        a = make_item()
        b = make_item(title="Bread baking basics", url="https://bakery.example.org/bread", snippet="Flour and water.")
        assert item_similarity(a, b) < 0.3


class TestContentAggregator:
    def test_near_duplicates_across_agents_collapse(self, fixed_clock):
        output = ContentAggregator(clock=fixed_clock).aggregate(photosynthesis_results(), "Photosynthesis")

        assert len(output.aggregated_results) == 2
        merged = next(r for r in output.aggregated_results if r.duplicate_count == 1)
        assert merged.sources == ["A", "B"]
        assert merged.url == "https://en.wikipedia.org/wiki/Photosynthesis"
        single = next(r for r in output.aggregated_results if r is not merged)
        assert single.sources == ["A"]
        assert single.duplicate_count == 0

    def test_summary_counts(self, fixed_clock):
        output = ContentAggregator(clock=fixed_clock).aggregate(photosynthesis_results(), "Photosynthesis")

        assert output.summary.total_input == 4
        assert output.summary.total_output == 2
        assert output.summary.duplicates_removed == 1
        assert output.source_attribution == {"A": 2, "B": 1}
        assert output.summary.dropped_agents == []

    def test_repeats_within_one_agent_are_collapsed_first(self, fixed_clock):
        results = [
            success(
                "A",
                make_item(snippet="short", relevance_score=0.6),
                make_item(snippet="a much longer snippet about photosynthesis", relevance_score=0.9),
            )
        ]
        output = ContentAggregator(clock=fixed_clock).aggregate(results, "Photosynthesis")

        (only,) = output.aggregated_results
        assert only.duplicate_count == 0
        assert only.snippet == "a much longer snippet about photosynthesis"

    def test_malformed_agent_payload_is_dropped(self, fixed_clock):
        results = [
            success("A", make_item()),
            success("broken", make_item(title="Bad", url="not a url")),
        ]
        output = ContentAggregator(clock=fixed_clock).aggregate(results, "Photosynthesis")

        assert output.summary.dropped_agents == ["broken"]
        assert [r.sources for r in output.aggregated_results] == [["A"]]

    def test_low_quality_clusters_are_filtered(self, fixed_clock):
        results = [success("A", make_item(relevance_score=0.1))]
        config = AggregationConfig(min_relevance_score=0.3)

        output = ContentAggregator(config, clock=fixed_clock).aggregate(results, "Photosynthesis")

        assert output.aggregated_results == []
        assert output.summary.low_quality_removed == 1

    def test_results_are_capped(self, fixed_clock):
        words = ["chlorophyll", "stroma", "thylakoid", "rubisco", "stomata", "xylem", "phloem", "glucose", "carotene", "photon"]
        items = [
            make_item(title=f"{word} overview", url=f"https://{word}.org/p", snippet=f"All about {word}")
            for word in words
        ]
        output = ContentAggregator(AggregationConfig(max_results=3), clock=fixed_clock).aggregate(
            [success("A", *items)], "Photosynthesis"
        )

        assert len(output.aggregated_results) == 3
        confidences = [r.confidence_score for r in output.aggregated_results]
        assert confidences == sorted(confidences, reverse=True)

    def test_no_successful_agents(self, fixed_clock):
        output = ContentAggregator(clock=fixed_clock).aggregate([timeout("A"), failure("B")], "Photosynthesis")

        assert output.aggregated_results == []
        assert output.summary.total_input == 0

    def test_scores_stay_in_unit_interval(self, fixed_clock):
        output = ContentAggregator(clock=fixed_clock).aggregate(photosynthesis_results(), "Photosynthesis")

        for result in output.aggregated_results:
            assert 0.0 <= result.relevance_score <= 1.0
            assert 0.0 <= result.confidence_score <= 1.0
            metrics = result.metadata.quality_metrics
            assert 0.0 <= metrics.overall <= 1.0

    @settings(max_examples=30, deadline=None)
    @given(order=st.permutations(range(5)))
    def test_aggregation_ignores_agent_order(self, order):
        results = photosynthesis_results()
        aggregator = ContentAggregator(clock=lambda: FIXED_NOW)

        baseline = aggregator.aggregate(results, "Photosynthesis")
        shuffled = aggregator.aggregate([results[i] for i in order], "Photosynthesis")

        assert [(r.id, r.duplicate_count, r.sources) for r in shuffled.aggregated_results] == [
            (r.id, r.duplicate_count, r.sources) for r in baseline.aggregated_results
        ]

    def test_aggregating_twice_is_stable(self, fixed_clock):
        aggregator = ContentAggregator(clock=fixed_clock)
        first = aggregator.aggregate(photosynthesis_results(), "Photosynthesis")
        second = aggregator.aggregate(photosynthesis_results(), "Photosynthesis")

        assert first.model_dump() == second.model_dump()


class TestQualitySignals:
    def test_content_quality_rewards_substance_and_penalises_spam(self):
        assert content_quality("A detailed tutorial", "x" * 250) > content_quality("Hi", "")
        assert content_quality("Buy now", "click here") < 0.5

    def test_source_reliability(self):
        assert source_reliability("https://en.wikipedia.org/wiki/Leaf", "") == pytest.approx(0.8)
        assert source_reliability("https://biology.mit.edu/leaf", "") == pytest.approx(0.7)
        assert source_reliability("https://blog.example.com/leaf", "arxiv") == pytest.approx(0.7)

    def test_recency_buckets(self):
        assert recency_score(None, FIXED_NOW) == 0.5
        assert recency_score(FIXED_NOW - timedelta(days=10), FIXED_NOW) == 1.0
        assert recency_score(FIXED_NOW - timedelta(days=200), FIXED_NOW) == 0.7
        assert recency_score(FIXED_NOW - timedelta(days=4000), FIXED_NOW) == 0.1


class TestValidateResults:
    def test_empty_set_is_invalid(self):
        report = validate_results([])

        assert not report.is_valid
        assert "No results returned" in report.issues

    def test_limited_source_diversity_is_reported(self, fixed_clock):
        output = ContentAggregator(clock=fixed_clock).aggregate(photosynthesis_results(), "Photosynthesis")

        report = validate_results(output.aggregated_results)

        assert "Limited source diversity" in report.issues
        assert report.recommendations


class TestRecommendedConfig:
    @pytest.mark.parametrize(
        ("context", "aggregation", "scoring"),
        [
            (ResearchContext(), "balanced", "general"),
            (ResearchContext(quality_preference="high"), "quality", "general"),
            (ResearchContext(time_preference="recent"), "recent", "general"),
            (ResearchContext(user_level="advanced"), "balanced", "academic"),
            (ResearchContext(learning_style="video"), "balanced", "video"),
            (ResearchContext(content_focus="community"), "balanced", "community"),
        ],
    )
    def test_presets(self, context, aggregation, scoring):
        presets = get_recommended_config(context)

        assert presets.aggregation == aggregation
        assert presets.scoring == scoring
