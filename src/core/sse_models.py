"""Wire models for research progress streamed over Server-Sent Events."""

import json
from datetime import datetime
from enum import Enum
from typing import Annotated, Literal

from pydantic import BaseModel, Field, TypeAdapter

from models.research import utc_now


class UpdateType(str, Enum):
    """Values of the ``type`` field, also used as the SSE ``event`` name."""

    STATUS = "status"
    PROGRESS = "progress"
    CONTENT = "content"
    ERROR = "error"
    COMPLETE = "complete"
    HEARTBEAT = "heartbeat"


class StatusData(BaseModel):
    status: str = Field(description="Node or run status, or 'connected'")
    message: str | None = None
    depth: int | None = None
    connection_id: str | None = None


class ProgressData(BaseModel):
    progress: float = Field(ge=0.0, le=100.0)
    current_depth: int = 0
    completed_agents: int = 0
    total_agents: int = 0
    active_agents: list[str] = Field(default_factory=list)
    estimated_completion: datetime | None = None


class ResultPreview(BaseModel):
    title: str
    url: str
    final_score: float
    tier: str


class ContentData(BaseModel):
    node_topic: str
    depth: int
    status: str
    summary: str = ""
    subtopics: list[str] = Field(default_factory=list)
    top_results: list[ResultPreview] = Field(default_factory=list)


class ErrorData(BaseModel):
    message: str
    recoverable: bool = False
    cancelled: bool = False
    code: str | None = None


class CompleteData(BaseModel):
    status: str
    total_nodes: int
    completed_nodes: int
    duration_seconds: float
    error: str | None = None


class HeartbeatData(BaseModel):
    connection_id: str
    message: str = "keep-alive"


class _BaseUpdate(BaseModel):
    topic_id: str
    timestamp: datetime = Field(default_factory=utc_now)


class StatusUpdate(_BaseUpdate):
    type: Literal[UpdateType.STATUS] = UpdateType.STATUS
    data: StatusData


class ProgressUpdate(_BaseUpdate):
    type: Literal[UpdateType.PROGRESS] = UpdateType.PROGRESS
    data: ProgressData


class ContentUpdate(_BaseUpdate):
    type: Literal[UpdateType.CONTENT] = UpdateType.CONTENT
    data: ContentData


class ErrorUpdate(_BaseUpdate):
    type: Literal[UpdateType.ERROR] = UpdateType.ERROR
    data: ErrorData


class CompleteUpdate(_BaseUpdate):
    type: Literal[UpdateType.COMPLETE] = UpdateType.COMPLETE
    data: CompleteData


class HeartbeatUpdate(_BaseUpdate):
    type: Literal[UpdateType.HEARTBEAT] = UpdateType.HEARTBEAT
    data: HeartbeatData


StreamingResearchUpdate = Annotated[
    StatusUpdate | ProgressUpdate | ContentUpdate | ErrorUpdate | CompleteUpdate | HeartbeatUpdate,
    Field(discriminator="type"),
]

_update_adapter: TypeAdapter[StreamingResearchUpdate] = TypeAdapter(StreamingResearchUpdate)


def parse_update(data: str) -> StreamingResearchUpdate:
    """Parse one JSON frame into its typed update.

    Raises:
        ValueError: If the frame is not JSON or matches no update type
    """
    try:
        parsed = json.loads(data)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON: {e}") from e
    return _update_adapter.validate_python(parsed)


def is_terminal(update: StreamingResearchUpdate) -> bool:
    """True for the update after which a run emits nothing else."""
    return update.type == UpdateType.COMPLETE


__all__ = [
    "CompleteData",
    "CompleteUpdate",
    "ContentData",
    "ContentUpdate",
    "ErrorData",
    "ErrorUpdate",
    "HeartbeatData",
    "HeartbeatUpdate",
    "ProgressData",
    "ProgressUpdate",
    "ResultPreview",
    "StatusData",
    "StatusUpdate",
    "StreamingResearchUpdate",
    "UpdateType",
    "is_terminal",
    "parse_update",
]
