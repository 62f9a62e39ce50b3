"""Models for multi-factor scoring and ranking."""

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models.aggregation import AggregatedResult
from models.research import ResearchContext

ScoringPresetName = Literal["academic", "general", "community", "video"]


class Tier(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"

    @classmethod
    def for_score(cls, score: float) -> "Tier":
        if score >= 0.8:
            return cls.EXCELLENT
        if score >= 0.6:
            return cls.GOOD
        if score >= 0.4:
            return cls.FAIR
        return cls.POOR


class ScoringWeights(BaseModel):
    """Weights of the base score; they are expected to sum to 1."""

    relevance: float = Field(default=0.25, ge=0.0, le=1.0)
    confidence: float = Field(default=0.2, ge=0.0, le=1.0)
    quality: float = Field(default=0.2, ge=0.0, le=1.0)
    recency: float = Field(default=0.1, ge=0.0, le=1.0)
    uniqueness: float = Field(default=0.1, ge=0.0, le=1.0)
    source_reliability: float = Field(default=0.1, ge=0.0, le=1.0)
    engagement: float = Field(default=0.05, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _check_total(self) -> "ScoringWeights":
        total = sum(self.model_dump().values())
        if not 0.99 <= total <= 1.01:
            raise ValueError(f"Scoring weights must sum to 1.0, got {total:.3f}")
        return self


class ContextBoosts(BaseModel):
    user_level: float = Field(default=0.15, ge=0.0, le=1.0)
    learning_style: float = Field(default=0.1, ge=0.0, le=1.0)
    topic_match: float = Field(default=0.2, ge=0.0, le=1.0)
    content_type: float = Field(default=0.1, ge=0.0, le=1.0)


class ScoringPenalties(BaseModel):
    duplicate_content: float = Field(default=0.2, ge=0.0, le=1.0)
    low_quality: float = Field(default=0.25, ge=0.0, le=1.0)
    outdated: float = Field(default=0.15, ge=0.0, le=1.0)
    irrelevant: float = Field(default=0.3, ge=0.0, le=1.0)


class DiversityBonus(BaseModel):
    """Bonus for the first ranked occurrence of a new domain or content type."""

    new_domain: float = Field(default=0.02, ge=0.0, le=0.5)
    new_type: float = Field(default=0.01, ge=0.0, le=0.5)


class ScoringConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    weights: ScoringWeights = Field(default_factory=ScoringWeights)
    context_boosts: ContextBoosts = Field(default_factory=ContextBoosts)
    penalties: ScoringPenalties = Field(default_factory=ScoringPenalties)
    diversity: DiversityBonus = Field(default_factory=DiversityBonus)


class RankingContext(BaseModel):
    """What the caller is looking for while ranking one node's results."""

    topic: str
    user_level: Literal["beginner", "intermediate", "advanced"] | None = None
    learning_style: (
        Literal["visual", "video", "interactive", "textual", "conversational"] | None
    ) = None
    time_preference: Literal["recent", "any"] = "any"
    content_types: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    exclude_keywords: list[str] = Field(default_factory=list)
    quality_threshold: float | None = Field(default=None, ge=0.0, le=1.0)

    @classmethod
    def from_research_context(cls, topic: str, context: ResearchContext) -> "RankingContext":
        return cls(
            topic=topic,
            user_level=context.user_level,
            learning_style=context.learning_style,
            time_preference=context.time_preference,
            content_types=list(context.content_types),
            keywords=list(context.keywords),
            exclude_keywords=list(context.exclude_keywords),
            quality_threshold=context.quality_threshold,
        )


class ScoreBreakdown(BaseModel):
    """Every term that went into a final score."""

    components: dict[str, float] = Field(default_factory=dict)
    base_score: float = 0.0
    boosts: dict[str, float] = Field(default_factory=dict)
    penalties: dict[str, float] = Field(default_factory=dict)
    diversity_bonus: float = 0.0
    adjustments: list[str] = Field(default_factory=list)


class ScoredResult(AggregatedResult):
    final_score: float = Field(ge=0.0, le=1.0)
    score_breakdown: ScoreBreakdown
    ranking: int = Field(ge=1)
    tier: Tier


__all__ = [
    "ContextBoosts",
    "DiversityBonus",
    "RankingContext",
    "ScoreBreakdown",
    "ScoredResult",
    "ScoringConfig",
    "ScoringPenalties",
    "ScoringPresetName",
    "ScoringWeights",
    "Tier",
]
