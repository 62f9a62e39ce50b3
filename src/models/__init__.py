"""Data models for the recursive research pipeline."""

from .aggregation import AggregatedResult, AggregationConfig, AggregationOutput, QualityMetrics
from .coordination import (
    AgentCoordinationResult,
    CoordinationStatus,
    RecursiveResearchResult,
    ResearchNode,
    ResearchPipelineConfig,
    RunStatus,
)
from .embeddings import ChunkingConfig, ChunkStrategy, ContentChunk, EmbeddingCacheEntry
from .research import (
    AgentFailure,
    AgentResult,
    AgentStatus,
    AgentSuccess,
    AgentTimeout,
    NodeStatus,
    ResearchContext,
    ResearchStatus,
    SearchItem,
)
from .scoring import RankingContext, ScoredResult, ScoringConfig, Tier
from .subtopics import ExtractedSubtopic, ExtractionConfig, ExtractionResult
from .synthesis import SynthesisResult

__all__ = [
    "AgentCoordinationResult",
    "AgentFailure",
    "AgentResult",
    "AgentStatus",
    "AgentSuccess",
    "AgentTimeout",
    "AggregatedResult",
    "AggregationConfig",
    "AggregationOutput",
    "ChunkStrategy",
    "ChunkingConfig",
    "ContentChunk",
    "CoordinationStatus",
    "EmbeddingCacheEntry",
    "ExtractedSubtopic",
    "ExtractionConfig",
    "ExtractionResult",
    "NodeStatus",
    "QualityMetrics",
    "RankingContext",
    "RecursiveResearchResult",
    "ResearchContext",
    "ResearchNode",
    "ResearchPipelineConfig",
    "ResearchStatus",
    "RunStatus",
    "ScoredResult",
    "ScoringConfig",
    "SearchItem",
    "SynthesisResult",
    "Tier",
]
