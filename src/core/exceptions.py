"""Domain-specific exception hierarchy for the research pipeline."""

from __future__ import annotations

from typing import Any


class ResearchPipelineError(Exception):
    """Base exception for all expected pipeline errors."""

    def __init__(
        self,
        *,
        message: str,
        error_code: str,
        status_code: int = 400,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_payload(self) -> dict[str, Any]:
        """Serialise the error into a structured payload."""

        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class AgentError(ResearchPipelineError):
    """A single research agent failed; recorded on its result, never fatal."""

    def __init__(self, agent: str, reason: str, **details: Any) -> None:
        super().__init__(
            message=f"Agent {agent} failed: {reason}",
            error_code="AGENT_FAILED",
            status_code=502,
            details={"agent": agent, **details},
        )
        self.agent = agent
        self.reason = reason


class AgentTimeoutError(AgentError):
    """An agent did not answer within its timeout."""

    def __init__(self, agent: str, timeout_seconds: float) -> None:
        super().__init__(agent, f"timed out after {timeout_seconds}s", timeout=timeout_seconds)
        self.error_code = "AGENT_TIMEOUT"
        self.status_code = 504


class AggregationError(ResearchPipelineError):
    """An agent payload could not be merged into the aggregate."""

    def __init__(self, agent: str, reason: str) -> None:
        super().__init__(
            message=f"Could not aggregate results from {agent}: {reason}",
            error_code="AGGREGATION_FAILED",
            status_code=422,
            details={"agent": agent},
        )


class ScoringError(ResearchPipelineError):
    """A single aggregated result could not be scored."""

    def __init__(self, result_id: str, reason: str) -> None:
        super().__init__(
            message=f"Could not score result {result_id}: {reason}",
            error_code="SCORING_FAILED",
            status_code=500,
            details={"result_id": result_id},
        )


class ExtractionError(ResearchPipelineError):
    """Subtopic candidate generation failed."""

    def __init__(self, topic: str, reason: str) -> None:
        super().__init__(
            message=f"Subtopic extraction failed for '{topic}': {reason}",
            error_code="EXTRACTION_FAILED",
            status_code=502,
            details={"topic": topic},
        )


class CacheError(ResearchPipelineError):
    """The embedding cache store is unavailable."""

    def __init__(self, operation: str, reason: str) -> None:
        super().__init__(
            message=f"Embedding cache {operation} failed: {reason}",
            error_code="CACHE_UNAVAILABLE",
            status_code=503,
            details={"operation": operation},
        )


class EmbeddingError(ResearchPipelineError):
    """The embedding backend failed; aborts the enclosing embed call."""

    def __init__(self, reason: str, *, batch_size: int = 0) -> None:
        super().__init__(
            message=f"Embedding backend failed: {reason}",
            error_code="EMBEDDING_FAILED",
            status_code=502,
            details={"batch_size": batch_size},
        )


class StreamingError(ResearchPipelineError):
    """A streaming sink or connection failed."""

    def __init__(self, reason: str, *, connection_id: str | None = None) -> None:
        super().__init__(
            message=reason,
            error_code="STREAMING_FAILED",
            status_code=500,
            details={"connection_id": connection_id} if connection_id else {},
        )


class ResearchNotFoundError(ResearchPipelineError):
    """Raised when a research run cannot be located."""

    def __init__(self, topic_id: str) -> None:
        super().__init__(
            message=f"Research {topic_id} not found",
            error_code="RESEARCH_NOT_FOUND",
            status_code=404,
            details={"topic_id": topic_id},
        )


class ResearchAlreadyRunningError(ResearchPipelineError):
    """Raised when a run is requested for a topic that is already active."""

    def __init__(self, topic_id: str) -> None:
        super().__init__(
            message=f"Research {topic_id} is already running",
            error_code="RESEARCH_ALREADY_RUNNING",
            status_code=409,
            details={"topic_id": topic_id},
        )


class ResearchCancelledError(ResearchPipelineError):
    """Raised inside a run once cancellation has been requested."""

    def __init__(self, topic_id: str) -> None:
        super().__init__(
            message=f"Research {topic_id} was cancelled",
            error_code="RESEARCH_CANCELLED",
            status_code=409,
            details={"topic_id": topic_id},
        )


__all__ = [
    "ResearchPipelineError",
    "AgentError",
    "AgentTimeoutError",
    "AggregationError",
    "ScoringError",
    "ExtractionError",
    "CacheError",
    "EmbeddingError",
    "StreamingError",
    "ResearchNotFoundError",
    "ResearchAlreadyRunningError",
    "ResearchCancelledError",
]
