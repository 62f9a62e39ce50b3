"""Per-node coordination results and the recursive research tree."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from models.aggregation import AggregatedResult, AggregationSummary
from models.research import AgentResult, NodeStatus, utc_now
from models.scoring import ScoredResult
from models.subtopics import ExtractionResult
from models.synthesis import SynthesisResult


class ResearchPipelineConfig(BaseModel):
    """Bounds and timing for one research run."""

    model_config = ConfigDict(extra="forbid")

    max_depth: int = Field(default=3, ge=0, le=10, description="Deepest level that is researched")
    max_subtopics_per_level: int = Field(default=5, ge=0, le=50)
    agent_timeout: float = Field(default=30.0, gt=0, description="Per-call timeout in seconds")
    retry_attempts: int = Field(default=2, ge=0, le=10, description="Retries after the first call")
    retry_base_delay: float = Field(default=0.5, ge=0.0)
    coordinator_deadline: float = Field(
        default=90.0, gt=0, description="Wall-clock bound for all agents of one node"
    )
    max_concurrent_nodes: int | None = Field(
        default=None, ge=1, description="Nodes in flight at once; defaults to the breadth bound"
    )
    enable_synthesis: bool = False

    @property
    def node_concurrency(self) -> int:
        return self.max_concurrent_nodes or max(1, self.max_subtopics_per_level)


class CoordinationStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    ERROR = "error"


class AggregatedNodeContent(BaseModel):
    """Condensed view of a node's research, used by summaries and persistence hooks."""

    summary: str = ""
    key_points: list[str] = Field(default_factory=list, max_length=10)
    sources: list[str] = Field(default_factory=list)
    content_by_agent: dict[str, list[str]] = Field(
        default_factory=dict, description="Agent name to ids of the clusters it contributed to"
    )
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    completeness: float = Field(default=0.0, ge=0.0, le=1.0)


class AgentCoordinationResult(BaseModel):
    """Everything one coordinator pass produced for one topic node."""

    topic: str
    topic_id: str
    depth: int = Field(ge=0)
    agent_results: list[AgentResult] = Field(default_factory=list)
    aggregated_results: list[AggregatedResult] = Field(default_factory=list)
    aggregation_summary: AggregationSummary = Field(default_factory=AggregationSummary)
    scored_results: list[ScoredResult] = Field(default_factory=list)
    aggregated_content: AggregatedNodeContent = Field(default_factory=AggregatedNodeContent)
    extraction: ExtractionResult | None = None
    identified_subtopics: list[str] = Field(default_factory=list)
    synthesis: SynthesisResult | None = None
    status: CoordinationStatus
    errors: list[str] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=utc_now)
    completed_at: datetime = Field(default_factory=utc_now)


class ResearchNode(BaseModel):
    """One topic at one depth of the research tree."""

    model_config = ConfigDict(validate_assignment=True)

    topic_id: str = Field(frozen=True)
    topic: str = Field(frozen=True)
    depth: int = Field(ge=0, frozen=True)
    parent_id: str | None = Field(default=None, frozen=True)
    status: NodeStatus = NodeStatus.QUEUED
    result: AgentCoordinationResult | None = None
    children: list[ResearchNode] = Field(default_factory=list)
    error: str | None = None

    def iter_nodes(self) -> list[ResearchNode]:
        """Flatten the subtree in breadth-first order."""
        nodes: list[ResearchNode] = []
        frontier = [self]
        while frontier:
            nodes.extend(frontier)
            frontier = [child for node in frontier for child in node.children]
        return nodes

    def find(self, topic_id: str) -> ResearchNode | None:
        for node in self.iter_nodes():
            if node.topic_id == topic_id:
                return node
        return None


class RunStatus(str, Enum):
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"


class RecursiveResearchResult(BaseModel):
    """Outcome of one orchestrator run: the tree plus counters and timestamps."""

    root_topic: str
    root_topic_id: str
    research_tree: ResearchNode
    total_nodes: int = Field(ge=0)
    completed_nodes: int = Field(ge=0)
    start_time: datetime
    end_time: datetime
    status: RunStatus
    error: str | None = None

    @property
    def duration_seconds(self) -> float:
        return (self.end_time - self.start_time).total_seconds()


__all__ = [
    "AgentCoordinationResult",
    "AggregatedNodeContent",
    "CoordinationStatus",
    "RecursiveResearchResult",
    "ResearchNode",
    "ResearchPipelineConfig",
    "RunStatus",
]
