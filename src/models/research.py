"""Models for agent output, research nodes and run status."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field


def utc_now() -> datetime:
    return datetime.now(UTC)


class NodeStatus(str, Enum):
    """Lifecycle of one topic node in the research tree."""

    QUEUED = "queued"
    RESEARCHING = "researching"
    AGGREGATING = "aggregating"
    COMPLETED = "completed"
    ERROR = "error"
    PARTIAL = "partial"


class AgentStatus(str, Enum):
    """Outcome class of one agent call."""

    SUCCESS = "success"
    ERROR = "error"
    PARTIAL = "partial"


class EngagementStats(BaseModel):
    """Community signals attached to a search item when the backend exposes them."""

    upvotes: int | None = Field(default=None, ge=0)
    comments: int | None = Field(default=None, ge=0)
    views: int | str | None = Field(default=None, description="Raw count or text like '1.2k'")


class SearchItem(BaseModel):
    """Atomic unit returned by a search backend."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    title: str = Field(min_length=1, description="Result title")
    url: str = Field(min_length=1, description="Result URL")
    snippet: str = Field(default="", description="Text excerpt")
    source: str = Field(default="", description="Search engine that produced the item")
    relevance_score: float | None = Field(default=None, ge=0.0, le=1.0)
    published_date: datetime | None = Field(default=None)
    content_type: str | None = Field(
        default=None, description="Backend-declared type such as video, paper or discussion"
    )
    engagement: EngagementStats | None = Field(default=None)
    query: str | None = Field(default=None, description="Query that produced the item")


class AgentSuccess(BaseModel):
    """Agent answered; ``items`` may still be empty."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["success"] = "success"
    items: tuple[SearchItem, ...] = ()
    subtopic_hints: tuple[str, ...] = ()
    summary: str | None = None


class AgentTimeout(BaseModel):
    """Agent exceeded its per-call timeout on every attempt."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["timeout"] = "timeout"
    timeout_seconds: float


class AgentFailure(BaseModel):
    """Agent raised, or returned a payload that could not be used."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["error"] = "error"
    message: str
    error_code: str = "AGENT_FAILED"


AgentOutcome = Annotated[AgentSuccess | AgentTimeout | AgentFailure, Field(discriminator="kind")]


class AgentResult(BaseModel):
    """One agent's output for one node. Never mutated after creation."""

    model_config = ConfigDict(frozen=True)

    agent: str
    topic: str
    outcome: AgentOutcome
    attempts: int = Field(default=1, ge=1)
    duration_ms: float = Field(default=0.0, ge=0.0)
    timestamp: datetime = Field(default_factory=utc_now)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def status(self) -> AgentStatus:
        if isinstance(self.outcome, AgentSuccess):
            return AgentStatus.SUCCESS if self.outcome.items else AgentStatus.PARTIAL
        return AgentStatus.ERROR

    @property
    def results(self) -> tuple[SearchItem, ...]:
        return self.outcome.items if isinstance(self.outcome, AgentSuccess) else ()

    @property
    def subtopic_hints(self) -> tuple[str, ...]:
        return self.outcome.subtopic_hints if isinstance(self.outcome, AgentSuccess) else ()

    @property
    def summary(self) -> str | None:
        return self.outcome.summary if isinstance(self.outcome, AgentSuccess) else None

    @property
    def error(self) -> str | None:
        if isinstance(self.outcome, AgentTimeout):
            return f"{self.agent} timed out after {self.outcome.timeout_seconds}s"
        if isinstance(self.outcome, AgentFailure):
            return self.outcome.message
        return None


class ResearchContext(BaseModel):
    """Caller preferences that steer scoring, extraction and presets."""

    model_config = ConfigDict(extra="forbid")

    user_id: str = Field(default="anonymous")
    user_level: Literal["beginner", "intermediate", "advanced"] | None = None
    learning_style: (
        Literal["visual", "video", "interactive", "textual", "conversational"] | None
    ) = None
    time_preference: Literal["recent", "any"] = "any"
    content_types: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    exclude_keywords: list[str] = Field(default_factory=list)
    focus_areas: list[str] = Field(default_factory=list)
    exclude_areas: list[str] = Field(default_factory=list)
    quality_threshold: float | None = Field(default=None, ge=0.0, le=1.0)
    quality_preference: Literal["high", "balanced", "comprehensive"] | None = None
    content_focus: Literal["academic", "community", "recent", "general"] | None = None


class ResearchStatus(BaseModel):
    """Progress snapshot for one node, emitted on every coordinator transition."""

    topic_id: str
    topic: str
    current_depth: int = Field(ge=0)
    total_agents: int = Field(ge=0)
    completed_agents: int = Field(default=0, ge=0)
    active_agents: list[str] = Field(default_factory=list)
    status: NodeStatus = NodeStatus.QUEUED
    progress: float = Field(default=0.0, ge=0.0, le=100.0)
    start_time: datetime = Field(default_factory=utc_now)
    errors: list[str] = Field(default_factory=list)


__all__ = [
    "AgentFailure",
    "AgentOutcome",
    "AgentResult",
    "AgentStatus",
    "AgentSuccess",
    "AgentTimeout",
    "EngagementStats",
    "NodeStatus",
    "ResearchContext",
    "ResearchStatus",
    "SearchItem",
    "utc_now",
]
