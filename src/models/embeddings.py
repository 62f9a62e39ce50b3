"""Models for text chunking and the embedding cache."""

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models.research import utc_now

ContextType = Literal["research", "subtopic", "synthesis"]
ContentType = Literal["academic", "community", "video", "computational", "general"]


class ChunkStrategy(str, Enum):
    SENTENCE = "sentence"
    PARAGRAPH = "paragraph"
    SEMANTIC = "semantic"
    SLIDING_WINDOW = "sliding_window"


class ChunkingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_tokens: int = Field(default=512, ge=16, le=8192)
    overlap: int = Field(default=50, ge=0)
    strategy: ChunkStrategy = ChunkStrategy.SEMANTIC

    @model_validator(mode="after")
    def _overlap_below_budget(self) -> "ChunkingConfig":
        if self.overlap >= self.max_tokens:
            raise ValueError("overlap must be smaller than max_tokens")
        return self


class HierarchyInfo(BaseModel):
    level: int = Field(default=0, ge=0)
    path: list[str] = Field(default_factory=list)


class ChunkContext(BaseModel):
    """Where a piece of text sits in the topic tree; copied onto each chunk."""

    source_id: str
    context_type: ContextType = "research"
    parent_topic: str | None = None
    subtopic: str | None = None
    difficulty: str | None = None
    hierarchy: HierarchyInfo = Field(default_factory=HierarchyInfo)
    agent_source: str | None = None


class ChunkMetadata(BaseModel):
    chunk_index: int = Field(ge=0)
    total_chunks: int = Field(ge=1)
    token_count: int = Field(ge=0)
    start_offset: int = Field(ge=0)
    end_offset: int = Field(ge=0)
    context_type: ContextType = "research"
    source_id: str
    parent_topic: str | None = None
    subtopic: str | None = None
    difficulty: str | None = None
    hierarchy: HierarchyInfo = Field(default_factory=HierarchyInfo)
    agent_source: str | None = None
    content_type: ContentType = "general"


class ContentChunk(BaseModel):
    """Unit of embeddable text. Immutable once produced."""

    model_config = ConfigDict(frozen=True)

    id: str
    content: str
    metadata: ChunkMetadata


class EmbeddedChunk(BaseModel):
    chunk: ContentChunk
    embedding: list[float]


class EmbeddingCacheEntry(BaseModel):
    embedding: list[float]
    timestamp: datetime = Field(default_factory=utc_now)
    model: str


class SimilarityMatch(BaseModel):
    index: int
    score: float


__all__ = [
    "ChunkContext",
    "ChunkMetadata",
    "ChunkStrategy",
    "ChunkingConfig",
    "ContentChunk",
    "ContentType",
    "ContextType",
    "EmbeddedChunk",
    "EmbeddingCacheEntry",
    "HierarchyInfo",
    "SimilarityMatch",
]
