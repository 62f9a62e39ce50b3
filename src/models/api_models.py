"""Request and response models for the research control API."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from models.coordination import ResearchPipelineConfig
from models.research import ResearchContext, ResearchStatus

RunState = Literal["queued", "running", "completed", "error", "cancelled"]


class StartResearchRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    topic: str = Field(min_length=1, max_length=500, description="Root topic to research")
    topic_id: str | None = Field(
        default=None,
        min_length=1,
        max_length=128,
        pattern=r"^[A-Za-z0-9_.:-]+$",
        description="Caller-chosen id; generated when omitted",
    )
    context: ResearchContext = Field(default_factory=ResearchContext)
    config: ResearchPipelineConfig | None = None


class StartResearchResponse(BaseModel):
    topic_id: str
    status: RunState
    queue_position: int | None = None
    stream_url: str
    status_url: str


class RunStatusResponse(BaseModel):
    """Run-level state plus the latest snapshot of every node seen so far."""

    topic_id: str
    topic: str
    user_id: str
    state: RunState
    queue_position: int | None = None
    total_nodes: int = 0
    completed_nodes: int = 0
    nodes: list[ResearchStatus] = Field(default_factory=list)
    error: str | None = None
    submitted_at: datetime
    finished_at: datetime | None = None


class CancelResponse(BaseModel):
    topic_id: str
    cancelled: bool
    message: str


class HistoryEntry(BaseModel):
    topic_id: str
    topic: str
    state: RunState
    total_nodes: int = 0
    completed_nodes: int = 0
    submitted_at: datetime
    finished_at: datetime | None = None


__all__ = [
    "CancelResponse",
    "HistoryEntry",
    "RunState",
    "RunStatusResponse",
    "StartResearchRequest",
    "StartResearchResponse",
]
