"""Models for hierarchical subtopic extraction."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Difficulty = Literal["beginner", "intermediate", "advanced"]
RelationshipType = Literal["prerequisite", "component", "related", "application"]


class CandidateTopic(BaseModel):
    """A topic proposal from the text-generation step, before structural validation."""

    title: str = Field(min_length=1, description="Short topic name")
    description: str = Field(default="", description="One or two sentence description")
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    difficulty: Difficulty | None = None
    estimated_time_minutes: int | None = Field(default=None, ge=1)
    prerequisites: list[str] = Field(default_factory=list)
    key_terms: list[str] = Field(default_factory=list)
    practical_applications: list[str] = Field(default_factory=list)
    subtopics: list["CandidateTopic"] = Field(default_factory=list)


class SubtopicMetadata(BaseModel):
    confidence: float = Field(ge=0.0, le=1.0)
    difficulty: Difficulty = "intermediate"
    estimated_time_minutes: int = Field(default=30, ge=1)
    prerequisites: list[str] = Field(default_factory=list)
    key_terms: list[str] = Field(default_factory=list)
    practical_applications: list[str] = Field(default_factory=list)
    source_agents: list[str] = Field(default_factory=list)
    related_concepts: list[str] = Field(default_factory=list)


class ExtractedSubtopic(BaseModel):
    """One node of the learning hierarchy."""

    id: str
    title: str
    description: str = ""
    level: int = Field(ge=1, le=3)
    parent_id: str | None = None
    children: list["ExtractedSubtopic"] = Field(default_factory=list)
    metadata: SubtopicMetadata


class TopicRelationship(BaseModel):
    source_id: str
    target_id: str
    type: RelationshipType
    strength: float = Field(ge=0.0, le=1.0)


class ExtractionConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_subtopics: int = Field(default=24, ge=1, le=200)
    hierarchy_levels: int = Field(default=3, ge=1, le=3)
    min_confidence: float = Field(default=0.6, ge=0.0, le=1.0)
    include_prerequisites: bool = True
    include_difficulty: bool = True
    include_estimated_time: bool = True
    semantic_grouping: bool = True


class TopicCoverage(BaseModel):
    """Share of topics leaning academic, practical, foundational or advanced."""

    academic: float = 0.0
    practical: float = 0.0
    foundational: float = 0.0
    advanced: float = 0.0


class ExtractionMetadata(BaseModel):
    total_topics: int = 0
    topics_by_level: dict[int, int] = Field(default_factory=dict)
    avg_confidence: float = 0.0
    coverage: TopicCoverage = Field(default_factory=TopicCoverage)
    processing_time_ms: float = 0.0


class ExtractionResult(BaseModel):
    hierarchical_topics: list[ExtractedSubtopic] = Field(default_factory=list)
    flat_topics: list[ExtractedSubtopic] = Field(default_factory=list)
    relationships: list[TopicRelationship] = Field(default_factory=list)
    metadata: ExtractionMetadata = Field(default_factory=ExtractionMetadata)


__all__ = [
    "CandidateTopic",
    "Difficulty",
    "ExtractedSubtopic",
    "ExtractionConfig",
    "ExtractionMetadata",
    "ExtractionResult",
    "RelationshipType",
    "SubtopicMetadata",
    "TopicCoverage",
    "TopicRelationship",
]
