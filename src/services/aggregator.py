"""Content aggregation: merge per-agent results, collapse near-duplicates, filter.

The aggregator is deterministic with respect to agent ordering: the candidate
pool is sorted canonically before clustering, cluster ids are hashes of the
representative's normalized URL and title, and ties are broken by id.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable, Sequence
from datetime import datetime
from hashlib import sha256

import logfire
from pydantic import BaseModel

from core.exceptions import AggregationError
from models.aggregation import (
    AggregatedMetadata,
    AggregatedResult,
    AggregationConfig,
    AggregationOutput,
    AggregationPresetName,
    AggregationSummary,
    BoostFactors,
    QualityMetrics,
    SourceAttribution,
    ValidationReport,
)
from models.research import AgentResult, AgentStatus, ResearchContext, SearchItem, utc_now
from models.scoring import ScoringPresetName
from services.chunking import classify_content_type
from services.embeddings import cluster_by_threshold
from utils.text import (
    domain_similarity,
    is_valid_url,
    jaccard,
    normalize_title,
    normalize_url,
    url_host,
)
from utils.validation import clamp_score, mean

DEFAULT_RELEVANCE = 0.5

HIGH_QUALITY_DOMAINS = (
    "wikipedia.org",
    "arxiv.org",
    "pubmed.ncbi.nlm.nih.gov",
    "scholar.google.com",
    "stackoverflow.com",
    "github.com",
    "mozilla.org",
    "w3.org",
)
RELIABLE_ENGINES = ("arxiv", "pubmed", "google scholar", "wikipedia")
EDUCATIONAL_TERMS = ("tutorial", "guide", "research", "study", "analysis", "explained", "introduction")
SPAM_TERMS = ("click here", "buy now", "limited offer", "!!!")

# Title overlap dominates; a shared host pushes identical titles over the default threshold
TITLE_WEIGHT = 0.6
DOMAIN_WEIGHT = 0.3
SNIPPET_WEIGHT = 0.1


AGGREGATION_PRESETS: dict[str, AggregationConfig] = {
    "quality": AggregationConfig(
        max_results=15,
        min_relevance_score=0.6,
        min_confidence_score=0.7,
        boost_factors=BoostFactors(
            multiple_agents=0.3, high_quality_sources=0.2, recent_content=0.15, unique_content=0.15
        ),
    ),
    "comprehensive": AggregationConfig(
        max_results=50,
        min_relevance_score=0.3,
        min_confidence_score=0.4,
        boost_factors=BoostFactors(
            multiple_agents=0.15, high_quality_sources=0.1, recent_content=0.05, unique_content=0.2
        ),
    ),
    "recent": AggregationConfig(
        max_results=25,
        min_relevance_score=0.4,
        min_confidence_score=0.5,
        boost_factors=BoostFactors(
            multiple_agents=0.1, high_quality_sources=0.1, recent_content=0.4, unique_content=0.1
        ),
    ),
    "balanced": AggregationConfig(
        max_results=30,
        min_relevance_score=0.4,
        min_confidence_score=0.5,
        boost_factors=BoostFactors(
            multiple_agents=0.2, high_quality_sources=0.15, recent_content=0.1, unique_content=0.1
        ),
    ),
}


class RecommendedPresets(BaseModel):
    aggregation: AggregationPresetName
    scoring: ScoringPresetName


def get_recommended_config(context: ResearchContext) -> RecommendedPresets:
    """Pick aggregation and scoring presets that suit the caller."""
    aggregation: AggregationPresetName = "balanced"
    if context.quality_preference == "high":
        aggregation = "quality"
    elif context.quality_preference == "comprehensive":
        aggregation = "comprehensive"
    elif context.content_focus == "recent" or context.time_preference == "recent":
        aggregation = "recent"

    scoring: ScoringPresetName = "general"
    if context.content_focus == "academic" or context.user_level == "advanced":
        scoring = "academic"
    elif context.learning_style == "video":
        scoring = "video"
    elif context.content_focus == "community":
        scoring = "community"

    return RecommendedPresets(aggregation=aggregation, scoring=scoring)


class _Candidate:
    """A search item tagged with the agent that returned it."""

    __slots__ = ("agent", "item", "timestamp", "norm_url", "norm_title", "host")

    def __init__(self, agent: str, item: SearchItem, timestamp: datetime):
        self.agent = agent
        self.item = item
        self.timestamp = timestamp
        self.norm_url = normalize_url(item.url)
        self.norm_title = normalize_title(item.title)
        self.host = url_host(item.url)

    @property
    def relevance(self) -> float:
        if self.item.relevance_score is None:
            return DEFAULT_RELEVANCE
        return self.item.relevance_score

    def sort_key(self) -> tuple[str, str, str, str]:
        return (self.norm_url, self.norm_title, self.agent, self.item.snippet)


def item_similarity(a: SearchItem, b: SearchItem) -> float:
    """Near-duplicate score in [0, 1]; identical normalized URLs score 1.0."""
    if normalize_url(a.url) == normalize_url(b.url):
        return 1.0
    return (
        TITLE_WEIGHT * jaccard(a.title, b.title)
        + DOMAIN_WEIGHT * domain_similarity(a.url, b.url)
        + SNIPPET_WEIGHT * jaccard(a.snippet, b.snippet)
    )


def content_quality(title: str, snippet: str) -> float:
    score = 0.5
    if len(snippet) > 100:
        score += 0.1
    if len(snippet) > 200:
        score += 0.1
    if 10 <= len(title) <= 100:
        score += 0.1
    text = f"{title} {snippet}".lower()
    if any(term in text for term in EDUCATIONAL_TERMS):
        score += 0.1
    if any(term in text for term in SPAM_TERMS):
        score -= 0.2
    return clamp_score(score)


def source_reliability(url: str, engine: str) -> float:
    score = 0.5
    host = url_host(url)
    if any(host == d or host.endswith("." + d) for d in HIGH_QUALITY_DOMAINS):
        score += 0.3
    if host.endswith(".edu") or host.endswith(".gov"):
        score += 0.2
    if any(name in engine.lower() for name in RELIABLE_ENGINES):
        score += 0.2
    if not is_valid_url(url):
        score -= 0.1
    return clamp_score(score)


def recency_score(published: datetime | None, now: datetime) -> float:
    if published is None:
        return 0.5
    if published.tzinfo is None:
        published = published.replace(tzinfo=now.tzinfo)
    age_days = (now - published).days
    if age_days <= 30:
        return 1.0
    if age_days <= 90:
        return 0.9
    if age_days <= 365:
        return 0.7
    if age_days <= 730:
        return 0.5
    if age_days <= 1825:
        return 0.3
    return 0.1


class ContentAggregator:
    """Turns one node's ``AgentResult`` list into ranked, deduplicated clusters."""

    def __init__(
        self,
        config: AggregationConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config = config or AggregationConfig()
        self._clock = clock
        self.logger = logfire

    @classmethod
    def from_preset(cls, name: AggregationPresetName) -> ContentAggregator:
        return cls(AGGREGATION_PRESETS[name].model_copy(deep=True))

    def aggregate(
        self,
        agent_results: Sequence[AgentResult],
        topic: str,
        context: ResearchContext | None = None,
    ) -> AggregationOutput:
        """Merge, deduplicate, score quality and filter one node's agent output.

        Args:
            agent_results: Every agent's result for the node, in any order
            topic: Topic of the node, used only for logging
            context: Caller preferences; currently only logged

        Returns:
            Aggregated clusters ordered by confidence plus summary statistics
        """
        summary = AggregationSummary()
        pool = self._collect_candidates(agent_results, summary)
        summary.total_input = sum(len(r.results) for r in agent_results)

        pool.sort(key=_Candidate.sort_key)
        sim = [
            [1.0 if i == j else item_similarity(a.item, b.item) for j, b in enumerate(pool)]
            for i, a in enumerate(pool)
        ]
        clusters = cluster_by_threshold(list(range(len(pool))), sim, self.config.duplicate_threshold)

        now = self._clock()
        built: list[AggregatedResult] = []
        for members in clusters:
            outside = [j for j in range(len(pool)) if j not in members]
            built.append(self._build_result(pool, members, outside, now))

        kept: list[AggregatedResult] = []
        for result in built:
            if (
                result.relevance_score < self.config.min_relevance_score
                or result.confidence_score < self.config.min_confidence_score
            ):
                summary.low_quality_removed += 1
                continue
            kept.append(result)

        kept.sort(key=lambda r: (-r.confidence_score, -r.relevance_score, r.id))
        output_results = kept[: self.config.max_results]

        summary.duplicates_removed = sum(r.duplicate_count for r in built)
        summary.total_output = len(output_results)
        summary.average_quality = mean(
            [r.metadata.quality_metrics.overall for r in output_results]
        )
        attribution: Counter[str] = Counter()
        types: Counter[str] = Counter()
        for result in output_results:
            attribution.update(result.sources)
            types.update(result.metadata.types)
        summary.source_distribution = dict(sorted(attribution.items()))
        summary.type_distribution = dict(sorted(types.items()))

        self.logger.info(
            "Aggregation complete",
            topic=topic,
            total_input=summary.total_input,
            clusters=len(clusters),
            output=summary.total_output,
            duplicates_removed=summary.duplicates_removed,
            low_quality_removed=summary.low_quality_removed,
            user_level=context.user_level if context else None,
        )
        return AggregationOutput(
            aggregated_results=output_results,
            summary=summary,
            source_attribution=summary.source_distribution,
        )

    def _collect_candidates(
        self, agent_results: Sequence[AgentResult], summary: AggregationSummary
    ) -> list[_Candidate]:
        pool: list[_Candidate] = []
        for result in sorted(agent_results, key=lambda r: r.agent):
            if result.status == AgentStatus.ERROR:
                continue
            try:
                self._validate_payload(result)
            except AggregationError as exc:
                summary.dropped_agents.append(result.agent)
                self.logger.warning(exc.message, **exc.details)
                continue
            pool.extend(self._collapse_agent_repeats(result))
        return pool

    @staticmethod
    def _validate_payload(result: AgentResult) -> None:
        invalid = [item.url for item in result.results if not is_valid_url(item.url)]
        if invalid:
            raise AggregationError(result.agent, f"{len(invalid)} item(s) with unusable URLs")

    @staticmethod
    def _collapse_agent_repeats(result: AgentResult) -> list[_Candidate]:
        """Keep one item per (title, host) or URL within a single agent's output."""
        best: dict[tuple[str, str], _Candidate] = {}
        by_url: dict[str, tuple[str, str]] = {}
        for item in result.results:
            candidate = _Candidate(result.agent, item, result.timestamp)
            key = by_url.get(candidate.norm_url, (candidate.norm_title, candidate.host))
            current = best.get(key)
            if current is None or (candidate.relevance, len(item.snippet)) > (
                current.relevance,
                len(current.item.snippet),
            ):
                best[key] = candidate
            by_url[candidate.norm_url] = key
        return list(best.values())

    def _build_result(
        self,
        pool: list[_Candidate],
        members: list[int],
        outside: list[int],
        now: datetime,
    ) -> AggregatedResult:
        group = sorted((pool[i] for i in members), key=_Candidate.sort_key)
        representative = max(group, key=lambda c: (c.relevance, len(c.item.snippet)))
        snippet = max((c.item.snippet for c in group), key=len)
        agents = sorted({c.agent for c in group})
        relevance_mean = mean([c.relevance for c in group])
        published = max(
            (c.item.published_date for c in group if c.item.published_date is not None),
            default=None,
        )

        rep_item = representative.item
        uniqueness = 1.0 - mean(
            [jaccard(snippet, pool[j].item.snippet) for j in outside], default=0.0
        )
        metrics_parts = {
            "content_quality": content_quality(rep_item.title, snippet),
            "source_reliability": source_reliability(rep_item.url, rep_item.source),
            "recency": recency_score(published, now),
            "relevance": clamp_score(relevance_mean),
            "uniqueness": clamp_score(uniqueness),
        }
        quality = QualityMetrics(**metrics_parts, overall=mean(list(metrics_parts.values())))

        boosts = self.config.boost_factors
        relevance = relevance_mean + (boosts.multiple_agents if len(agents) > 1 else 0.0)
        confidence = self._confidence(relevance_mean, agents, len(group) - 1, quality)

        digest = sha256(f"{representative.norm_url}|{representative.norm_title}".encode()).hexdigest()
        types = sorted({c.item.content_type or classify_content_type(c.agent) for c in group})
        engagement = max(
            (c.item.engagement for c in group if c.item.engagement is not None),
            key=lambda e: (e.upvotes or 0, e.comments or 0),
            default=None,
        )
        return AggregatedResult(
            id=f"agg_{digest[:16]}",
            title=rep_item.title,
            url=rep_item.url,
            snippet=snippet,
            sources=agents,
            duplicate_count=len(group) - 1,
            relevance_score=clamp_score(relevance),
            confidence_score=confidence,
            metadata=AggregatedMetadata(
                quality_metrics=quality,
                source_attribution=[
                    SourceAttribution(
                        agent=c.agent,
                        engine=c.item.source,
                        url=c.item.url,
                        original_score=c.item.relevance_score,
                        query=c.item.query,
                        timestamp=c.timestamp,
                    )
                    for c in group
                ],
                types=types,
                domain=representative.host,
                published_date=published,
                engagement=engagement,
            ),
        )

    def _confidence(
        self, relevance_mean: float, agents: list[str], duplicates: int, quality: QualityMetrics
    ) -> float:
        """Agreement-weighted confidence that a cluster is worth keeping."""
        boosts = self.config.boost_factors
        penalties = self.config.penalty_factors

        score = (
            0.5 * relevance_mean
            + 0.3 * min(1.0, len(agents) / 3)
            + 0.2 * quality.source_reliability
        )
        if len(agents) > 1:
            score += boosts.multiple_agents
        if quality.source_reliability >= 0.8:
            score += boosts.high_quality_sources
        if quality.recency >= 0.9:
            score += boosts.recent_content
        if quality.uniqueness >= 0.8:
            score += boosts.unique_content

        # One agent echoing the same page several times is noise, not agreement
        if len(agents) == 1 and duplicates >= 2:
            score -= penalties.duplicate_content
        if quality.source_reliability < 0.4:
            score -= penalties.low_quality_sources
        if quality.recency <= 0.3:
            score -= penalties.outdated_content
        return clamp_score(score)


def validate_results(results: Sequence[AggregatedResult]) -> ValidationReport:
    """Sanity-check an aggregated set and suggest configuration changes."""
    issues: list[str] = []
    recommendations: list[str] = []

    if not results:
        issues.append("No results returned")
        recommendations.append("Check search configuration and agent connectivity")

    low_quality = sum(1 for r in results if r.metadata.quality_metrics.overall < 0.4)
    if low_quality > len(results) * 0.5:
        issues.append("High proportion of low-quality results")
        recommendations.append("Increase quality thresholds or improve source reliability")

    unique_sources = {agent for r in results for agent in r.sources}
    if len(unique_sources) < 3:
        issues.append("Limited source diversity")
        recommendations.append("Check agent connectivity and search engine availability")

    heavy_duplicates = sum(1 for r in results if r.duplicate_count > 5)
    if heavy_duplicates > len(results) * 0.3:
        issues.append("High duplicate content rate")
        recommendations.append("Adjust duplicate detection threshold or improve query diversity")

    return ValidationReport(is_valid=not issues, issues=issues, recommendations=recommendations)


__all__ = [
    "AGGREGATION_PRESETS",
    "ContentAggregator",
    "RecommendedPresets",
    "content_quality",
    "get_recommended_config",
    "item_similarity",
    "recency_score",
    "source_reliability",
    "validate_results",
]
