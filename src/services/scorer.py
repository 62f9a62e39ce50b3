"""Multi-factor scoring, ranking and tiering of aggregated results."""

from __future__ import annotations

import math
import re
from collections.abc import Sequence

import logfire

from core.exceptions import ScoringError
from models.aggregation import AggregatedResult
from models.research import EngagementStats
from models.scoring import (
    RankingContext,
    ScoreBreakdown,
    ScoredResult,
    ScoringConfig,
    ScoringPresetName,
    ScoringWeights,
    Tier,
)
from utils.text import url_host
from utils.validation import clamp_score

SCORING_PRESETS: dict[str, ScoringConfig] = {
    "academic": ScoringConfig(
        weights=ScoringWeights(
            relevance=0.2,
            confidence=0.25,
            quality=0.3,
            recency=0.05,
            uniqueness=0.1,
            source_reliability=0.1,
            engagement=0.0,
        )
    ),
    "general": ScoringConfig(
        weights=ScoringWeights(
            relevance=0.3,
            confidence=0.2,
            quality=0.2,
            recency=0.1,
            uniqueness=0.1,
            source_reliability=0.05,
            engagement=0.05,
        )
    ),
    "community": ScoringConfig(
        weights=ScoringWeights(
            relevance=0.25,
            confidence=0.15,
            quality=0.15,
            recency=0.15,
            uniqueness=0.1,
            source_reliability=0.05,
            engagement=0.15,
        )
    ),
    "video": ScoringConfig(
        weights=ScoringWeights(
            relevance=0.3,
            confidence=0.2,
            quality=0.2,
            recency=0.15,
            uniqueness=0.05,
            source_reliability=0.05,
            engagement=0.05,
        )
    ),
}

LEVEL_INDICATORS: dict[str, tuple[str, ...]] = {
    "beginner": ("beginner", "basic", "introduction", "getting started", "101", "fundamentals"),
    "intermediate": ("intermediate", "guide", "tutorial", "overview", "practical"),
    "advanced": ("advanced", "expert", "deep dive", "comprehensive", "detailed", "professional"),
}

_VIEW_COUNT_RE = re.compile(r"(\d+(?:\.\d+)?)([kmb])?")
_VIEW_MULTIPLIERS = {"k": 1_000, "m": 1_000_000, "b": 1_000_000_000}


def parse_view_count(views: int | str | None) -> float:
    """Turn counts like ``12000``, ``"1.2k"`` or ``"3M views"`` into a number."""
    if views is None:
        return 0.0
    if isinstance(views, int):
        return float(views)
    match = _VIEW_COUNT_RE.search(re.sub(r"[,\s]", "", views.lower()))
    if not match:
        return 0.0
    return float(match.group(1)) * _VIEW_MULTIPLIERS.get(match.group(2) or "", 1)


def engagement_score(engagement: EngagementStats | None) -> float:
    score = 0.5
    if engagement is None:
        return score
    if engagement.upvotes:
        score += min(0.3, engagement.upvotes / 1000)
    if engagement.comments:
        score += min(0.2, engagement.comments / 100)
    views = parse_view_count(engagement.views)
    if views:
        score += min(0.2, views / 100_000)
    return min(1.0, score)


def user_level_match(text: str, user_level: str) -> float:
    matches = sum(1 for term in LEVEL_INDICATORS[user_level] if term in text)
    score = 0.5 + min(0.5, matches * 0.1)
    mismatches = sum(
        1
        for level, terms in LEVEL_INDICATORS.items()
        if level != user_level
        for term in terms
        if term in text
    )
    if mismatches > matches:
        score -= 0.2
    return clamp_score(score)


def learning_style_match(result: AggregatedResult, style: str) -> float:
    types = set(result.metadata.types)
    has_video = "video" in types
    has_interactive = "computational" in types
    has_text = bool(types & {"academic", "general"})
    has_community = "community" in types

    bonus = {
        "visual": 0.3 if has_video else 0.0,
        "video": 0.4 if has_video else 0.0,
        "interactive": 0.3 if has_interactive else 0.0,
        "textual": 0.3 if has_text else 0.0,
        "conversational": 0.3 if has_community else 0.0,
    }.get(style, 0.0)
    return min(1.0, 0.5 + bonus)


def topic_match(result: AggregatedResult, context: RankingContext) -> float:
    topic = context.topic.lower()
    title = result.title.lower()
    snippet = result.snippet.lower()

    score = 0.0
    if topic and topic in title:
        score += 0.5
    topic_words = [w for w in topic.split() if len(w) > 2]
    if topic_words:
        score += 0.3 * sum(1 for w in topic_words if w in title) / len(topic_words)
        score += 0.2 * sum(1 for w in topic_words if w in snippet) / len(topic_words)
    if context.keywords:
        hits = sum(1 for k in context.keywords if k.lower() in title or k.lower() in snippet)
        score += 0.2 * hits / len(context.keywords)
    if context.exclude_keywords:
        score -= 0.1 * sum(
            1 for k in context.exclude_keywords if k.lower() in title or k.lower() in snippet
        )
    return clamp_score(score)


def content_type_match(result: AggregatedResult, preferred: Sequence[str]) -> float:
    if not preferred:
        return 0.5
    wanted = [p.lower() for p in preferred]
    matches = sum(1 for t in result.metadata.types if any(p in t.lower() for p in wanted))
    return clamp_score(matches / len(wanted))


class ResultScorer:
    """Applies weights, context boosts, penalties and a diversity pass, then ranks."""

    def __init__(self, config: ScoringConfig | None = None):
        self.config = config or ScoringConfig()

    @classmethod
    def from_preset(cls, name: ScoringPresetName) -> ResultScorer:
        return cls(SCORING_PRESETS[name].model_copy(deep=True))

    def score_and_rank(
        self, aggregated: Sequence[AggregatedResult], context: RankingContext
    ) -> list[ScoredResult]:
        """Score every result, drop the ones that cannot be scored, and rank the rest.

        Returns:
            Results ordered best-first with dense 1-based rankings and tiers
        """
        scored: list[tuple[float, ScoreBreakdown, AggregatedResult]] = []
        for result in aggregated:
            try:
                score, breakdown = self._score(result, context)
            except ScoringError as exc:
                logfire.warning(exc.message, **exc.details)
                continue
            scored.append((score, breakdown, result))

        scored.sort(key=lambda entry: (-entry[0], entry[2].id))
        adjusted = self._apply_diversity(scored)
        # Stable: equal scores keep their pre-bonus order
        adjusted.sort(key=lambda entry: -entry[0])

        ranked = [
            ScoredResult(
                **result.model_dump(),
                final_score=score,
                score_breakdown=breakdown,
                ranking=position,
                tier=Tier.for_score(score),
            )
            for position, (score, breakdown, result) in enumerate(adjusted, start=1)
        ]
        logfire.debug(
            "Scored results",
            topic=context.topic,
            scored=len(ranked),
            excluded=len(aggregated) - len(ranked),
        )
        return ranked

    def _score(self, result: AggregatedResult, context: RankingContext) -> tuple[float, ScoreBreakdown]:
        weights = self.config.weights
        metrics = result.metadata.quality_metrics
        components = {
            "relevance": result.relevance_score * weights.relevance,
            "confidence": result.confidence_score * weights.confidence,
            "quality": metrics.overall * weights.quality,
            "recency": metrics.recency * weights.recency,
            "uniqueness": metrics.uniqueness * weights.uniqueness,
            "source_reliability": metrics.source_reliability * weights.source_reliability,
            "engagement": engagement_score(result.metadata.engagement) * weights.engagement,
        }
        base = sum(components.values())

        boosts = self._context_boosts(result, context)
        penalties = self._penalties(result, context)
        raw = base + sum(boosts.values()) - sum(penalties.values())
        if math.isnan(raw) or math.isinf(raw):
            raise ScoringError(result.id, "score is not a finite number")

        breakdown = ScoreBreakdown(
            components=components,
            base_score=base,
            boosts=boosts,
            penalties=penalties,
        )
        final = clamp_score(raw)
        if final != raw:
            breakdown.adjustments.append(f"clamped from {raw:.3f}")
        return final, breakdown

    def _context_boosts(self, result: AggregatedResult, context: RankingContext) -> dict[str, float]:
        weights = self.config.context_boosts
        text = f"{result.title} {result.snippet}".lower()
        boosts = {"topic_match": topic_match(result, context) * weights.topic_match}
        if context.user_level:
            boosts["user_level"] = user_level_match(text, context.user_level) * weights.user_level
        if context.learning_style:
            boosts["learning_style"] = (
                learning_style_match(result, context.learning_style) * weights.learning_style
            )
        if context.content_types:
            boosts["content_type"] = (
                content_type_match(result, context.content_types) * weights.content_type
            )
        return boosts

    def _penalties(self, result: AggregatedResult, context: RankingContext) -> dict[str, float]:
        weights = self.config.penalties
        metrics = result.metadata.quality_metrics
        penalties: dict[str, float] = {}
        if result.duplicate_count > 2:
            penalties["duplicate_content"] = weights.duplicate_content * (result.duplicate_count / 10)
        if metrics.overall < 0.4:
            penalties["low_quality"] = weights.low_quality
        if context.time_preference == "recent" and metrics.recency < 0.3:
            penalties["outdated"] = weights.outdated
        if self._is_irrelevant(result, context):
            penalties["irrelevant"] = weights.irrelevant
        return penalties

    @staticmethod
    def _is_irrelevant(result: AggregatedResult, context: RankingContext) -> bool:
        text = f"{result.title} {result.snippet}".lower()
        if any(k.lower() in text for k in context.exclude_keywords):
            return True
        threshold = context.quality_threshold
        return threshold is not None and result.metadata.quality_metrics.overall < threshold

    def _apply_diversity(
        self, ordered: list[tuple[float, ScoreBreakdown, AggregatedResult]]
    ) -> list[tuple[float, ScoreBreakdown, AggregatedResult]]:
        """Reward the first ranked occurrence of each domain and content type."""
        weights = self.config.diversity
        seen_domains: set[str] = set()
        seen_types: set[str] = set()
        adjusted = []
        for score, breakdown, result in ordered:
            bonus = 0.0
            domain = result.metadata.domain or url_host(result.url)
            if domain and domain not in seen_domains:
                seen_domains.add(domain)
                bonus += weights.new_domain
            for content_type in result.metadata.types:
                if content_type not in seen_types:
                    seen_types.add(content_type)
                    bonus += weights.new_type
            breakdown.diversity_bonus = bonus
            adjusted.append((clamp_score(score + bonus), breakdown, result))
        return adjusted


__all__ = [
    "LEVEL_INDICATORS",
    "ResultScorer",
    "SCORING_PRESETS",
    "content_type_match",
    "engagement_score",
    "learning_style_match",
    "parse_view_count",
    "topic_match",
    "user_level_match",
]
