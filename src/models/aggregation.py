"""Models for the content aggregation stage."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from models.research import EngagementStats

AggregationPresetName = Literal["quality", "comprehensive", "recent", "balanced"]


class BoostFactors(BaseModel):
    """Additive boosts applied to a cluster's relevance and confidence."""

    multiple_agents: float = Field(default=0.2, ge=0.0, le=1.0)
    high_quality_sources: float = Field(default=0.15, ge=0.0, le=1.0)
    recent_content: float = Field(default=0.1, ge=0.0, le=1.0)
    unique_content: float = Field(default=0.1, ge=0.0, le=1.0)


class PenaltyFactors(BaseModel):
    """Subtractive penalties applied to a cluster's confidence."""

    duplicate_content: float = Field(default=0.3, ge=0.0, le=1.0)
    low_quality_sources: float = Field(default=0.2, ge=0.0, le=1.0)
    outdated_content: float = Field(default=0.1, ge=0.0, le=1.0)


class AggregationConfig(BaseModel):
    """Tuning for deduplication, filtering and truncation."""

    model_config = ConfigDict(extra="forbid")

    duplicate_threshold: float = Field(
        default=0.8, ge=0.0, le=1.0, description="Similarity at which two items are one cluster"
    )
    max_results: int = Field(default=50, ge=1, le=500, description="Cap on aggregated output")
    min_relevance_score: float = Field(default=0.3, ge=0.0, le=1.0)
    min_confidence_score: float = Field(default=0.4, ge=0.0, le=1.0)
    boost_factors: BoostFactors = Field(default_factory=BoostFactors)
    penalty_factors: PenaltyFactors = Field(default_factory=PenaltyFactors)


class QualityMetrics(BaseModel):
    """Per-result quality signals, each in [0, 1]."""

    content_quality: float = Field(ge=0.0, le=1.0)
    source_reliability: float = Field(ge=0.0, le=1.0)
    recency: float = Field(ge=0.0, le=1.0)
    relevance: float = Field(ge=0.0, le=1.0)
    uniqueness: float = Field(ge=0.0, le=1.0)
    overall: float = Field(ge=0.0, le=1.0)


class SourceAttribution(BaseModel):
    """Which agent surfaced one member of a cluster, and how it rated it."""

    agent: str
    engine: str = ""
    url: str
    original_score: float | None = None
    query: str | None = None
    timestamp: datetime


class AggregatedMetadata(BaseModel):
    quality_metrics: QualityMetrics
    source_attribution: list[SourceAttribution] = Field(default_factory=list)
    types: list[str] = Field(default_factory=list, description="Content types seen in the cluster")
    domain: str = ""
    published_date: datetime | None = None
    engagement: EngagementStats | None = None


class AggregatedResult(BaseModel):
    """A deduplicated cluster of near-identical search items."""

    id: str
    title: str
    url: str
    snippet: str
    sources: list[str] = Field(description="Agents that contributed to the cluster, sorted")
    duplicate_count: int = Field(ge=0)
    relevance_score: float = Field(ge=0.0, le=1.0)
    confidence_score: float = Field(ge=0.0, le=1.0)
    metadata: AggregatedMetadata


class AggregationSummary(BaseModel):
    total_input: int = 0
    total_output: int = 0
    duplicates_removed: int = 0
    low_quality_removed: int = 0
    dropped_agents: list[str] = Field(default_factory=list)
    average_quality: float = 0.0
    source_distribution: dict[str, int] = Field(default_factory=dict)
    type_distribution: dict[str, int] = Field(default_factory=dict)


class AggregationOutput(BaseModel):
    """Everything the aggregator produces for one node."""

    aggregated_results: list[AggregatedResult] = Field(default_factory=list)
    summary: AggregationSummary = Field(default_factory=AggregationSummary)
    source_attribution: dict[str, int] = Field(
        default_factory=dict, description="Agent name to number of output clusters it fed"
    )


class ValidationReport(BaseModel):
    is_valid: bool
    issues: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


__all__ = [
    "AggregatedMetadata",
    "AggregatedResult",
    "AggregationConfig",
    "AggregationOutput",
    "AggregationPresetName",
    "AggregationSummary",
    "BoostFactors",
    "PenaltyFactors",
    "QualityMetrics",
    "SourceAttribution",
    "ValidationReport",
]
