"""Control surface of the pipeline: start, cancel, inspect and list research runs."""

from __future__ import annotations

import asyncio
import uuid
from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime

import logfire

from agents.research_agents import ResearchAgent
from agents.synthesis import ContentSynthesizer
from api.streaming import StreamingManager
from api.task_manager import BackgroundTaskManager
from core.exceptions import EmbeddingError, ResearchCancelledError, ResearchNotFoundError
from core.orchestrator import CANCELLED_MESSAGE, RecursiveResearchOrchestrator
from core.sse_models import CompleteData, ContentData, ResultPreview
from models.api_models import HistoryEntry, RunState, RunStatusResponse
from models.coordination import (
    AgentCoordinationResult,
    RecursiveResearchResult,
    ResearchPipelineConfig,
    RunStatus,
)
from models.embeddings import ChunkContext, HierarchyInfo
from models.research import ResearchContext, ResearchStatus, utc_now
from services.coordinator import MultiAgentCoordinator
from services.embeddings import EmbeddingService
from services.subtopic_extractor import SubtopicExtractor

PREVIEW_RESULTS = 5
HISTORY_LIMIT = 100

_RUN_STATE: dict[RunStatus, RunState] = {
    RunStatus.COMPLETED: "completed",
    RunStatus.ERROR: "error",
    RunStatus.CANCELLED: "cancelled",
}


@dataclass
class RunRecord:
    """Everything the controller remembers about one run."""

    topic_id: str
    topic: str
    context: ResearchContext
    config: ResearchPipelineConfig
    state: RunState = "queued"
    submitted_at: datetime = field(default_factory=utc_now)
    finished_at: datetime | None = None
    nodes: dict[str, ResearchStatus] = field(default_factory=dict)
    result: RecursiveResearchResult | None = None
    error: str | None = None
    embedded_chunks: int = 0

    @property
    def user_id(self) -> str:
        return self.context.user_id


class ResearchController:
    """Owns run records and wires orchestrator hooks to the streaming manager."""

    def __init__(
        self,
        agents: Sequence[ResearchAgent],
        *,
        streaming: StreamingManager,
        task_manager: BackgroundTaskManager,
        default_config: ResearchPipelineConfig | None = None,
        extractor: SubtopicExtractor | None = None,
        synthesizer: ContentSynthesizer | None = None,
        embeddings: EmbeddingService | None = None,
        history_limit: int = HISTORY_LIMIT,
    ):
        self.agents = list(agents)
        self.streaming = streaming
        self.task_manager = task_manager
        self.default_config = default_config or ResearchPipelineConfig()
        self.extractor = extractor
        self.synthesizer = synthesizer
        self.embeddings = embeddings
        self.history_limit = history_limit
        self._runs: dict[str, RunRecord] = {}
        self._history: dict[str, deque[str]] = {}

    async def submit_research(
        self,
        topic: str,
        topic_id: str | None = None,
        context: ResearchContext | None = None,
        config: ResearchPipelineConfig | None = None,
    ) -> RunRecord:
        """Queue a run and return immediately.

        Raises:
            ResearchAlreadyRunningError: If ``topic_id`` is already queued or running
        """
        record = RunRecord(
            topic_id=topic_id or f"topic_{uuid.uuid4().hex[:12]}",
            topic=topic,
            context=context or ResearchContext(),
            config=config or self.default_config,
        )
        await self.task_manager.submit_research(
            record.topic_id,
            lambda cancel_event: self._execute(record, cancel_event),
            metadata={"topic": topic, "user_id": record.user_id},
        )
        self._remember(record)
        logfire.info("Research submitted", topic=topic, topic_id=record.topic_id, user_id=record.user_id)
        return record

    async def start_research(
        self,
        topic: str,
        topic_id: str | None = None,
        context: ResearchContext | None = None,
        config: ResearchPipelineConfig | None = None,
    ) -> RecursiveResearchResult:
        """Queue a run and wait for its result.

        Raises:
            ResearchCancelledError: If the run was cancelled before it started
        """
        record = await self.submit_research(topic, topic_id, context, config)
        try:
            await self.task_manager.wait_for(record.topic_id)
        except asyncio.CancelledError:
            if record.state != "cancelled":
                raise
            raise ResearchCancelledError(record.topic_id) from None
        if record.result is None:
            raise ResearchNotFoundError(record.topic_id)
        return record.result

    async def cancel_research(self, topic_id: str) -> bool:
        """Request cooperative cancellation of a queued or running run.

        Raises:
            ResearchNotFoundError: If the run is unknown
        """
        record = self._get(topic_id)
        cancelled = await self.task_manager.cancel_task(topic_id)
        task_status = await self.task_manager.get_task_status(topic_id)
        dropped = task_status is not None and task_status["status"] == "cancelled"
        if cancelled and dropped and record.state == "queued":
            record.state = "cancelled"
            record.finished_at = utc_now()
            record.error = CANCELLED_MESSAGE
            await self._broadcast_cancelled(record, duration_seconds=0.0)
        return cancelled

    def get_research_status(self, topic_id: str) -> RunStatusResponse:
        record = self._get(topic_id)
        result = record.result
        return RunStatusResponse(
            topic_id=record.topic_id,
            topic=record.topic,
            user_id=record.user_id,
            state=record.state,
            queue_position=self.task_manager.queue_position(topic_id),
            total_nodes=result.total_nodes if result else len(record.nodes),
            completed_nodes=result.completed_nodes if result else 0,
            nodes=list(record.nodes.values()),
            error=record.error,
            submitted_at=record.submitted_at,
            finished_at=record.finished_at,
        )

    def get_result(self, topic_id: str) -> RecursiveResearchResult | None:
        """Finished result of a run, or ``None`` while it is still queued or running."""
        return self._get(topic_id).result

    def get_research_history(self, user_id: str) -> list[HistoryEntry]:
        """Runs submitted by ``user_id``, newest first."""
        entries = []
        for topic_id in reversed(self._history.get(user_id, ())):
            record = self._runs.get(topic_id)
            if record is None:
                continue
            entries.append(
                HistoryEntry(
                    topic_id=record.topic_id,
                    topic=record.topic,
                    state=record.state,
                    total_nodes=record.result.total_nodes if record.result else 0,
                    completed_nodes=record.result.completed_nodes if record.result else 0,
                    submitted_at=record.submitted_at,
                    finished_at=record.finished_at,
                )
            )
        return entries

    async def _execute(self, record: RunRecord, cancel_event: asyncio.Event) -> RecursiveResearchResult:
        record.state = "running"
        topic_id = record.topic_id
        coordinator = MultiAgentCoordinator(
            self.agents,
            record.config,
            extractor=self.extractor,
            synthesizer=self.synthesizer,
        )

        async def on_status(status: ResearchStatus) -> None:
            record.nodes[status.topic_id] = status
            await self.streaming.broadcast_status(
                topic_id, status.status.value, message=status.topic, depth=status.current_depth
            )
            await self.streaming.broadcast_progress(topic_id, status)

        async def on_node(result: AgentCoordinationResult) -> None:
            await self.streaming.broadcast_content(topic_id, self._content(result))
            if self.embeddings is not None:
                await self._embed_node(record, result)

        orchestrator = RecursiveResearchOrchestrator(
            coordinator, record.config, on_status_update=on_status, on_depth_complete=on_node
        )
        await self.streaming.broadcast_status(topic_id, "started", message=record.topic, depth=0)
        try:
            result = await orchestrator.run(record.topic, topic_id, record.context, cancel_event=cancel_event)
        except Exception as exc:
            record.state = "error"
            record.error = str(exc)
            record.finished_at = utc_now()
            await self.streaming.broadcast_error(topic_id, f"Research failed: {exc}", recoverable=False)
            await self.streaming.broadcast_complete(
                topic_id,
                CompleteData(status="error", total_nodes=0, completed_nodes=0, duration_seconds=0.0, error=str(exc)),
            )
            raise

        record.result = result
        record.state = _RUN_STATE[result.status]
        record.error = result.error
        record.finished_at = result.end_time
        if result.status == RunStatus.CANCELLED:
            await self._broadcast_cancelled(record, duration_seconds=result.duration_seconds, result=result)
            return result
        if result.status == RunStatus.ERROR:
            await self.streaming.broadcast_error(
                topic_id, result.error or "Research failed", recoverable=True, code="ROOT_FAILED"
            )
        await self.streaming.broadcast_complete(
            topic_id,
            CompleteData(
                status=result.status.value,
                total_nodes=result.total_nodes,
                completed_nodes=result.completed_nodes,
                duration_seconds=result.duration_seconds,
                error=result.error,
            ),
        )
        return result

    async def _broadcast_cancelled(
        self,
        record: RunRecord,
        *,
        duration_seconds: float,
        result: RecursiveResearchResult | None = None,
    ) -> None:
        await self.streaming.broadcast_error(
            record.topic_id, CANCELLED_MESSAGE, recoverable=True, cancelled=True, code="CANCELLED"
        )
        await self.streaming.broadcast_complete(
            record.topic_id,
            CompleteData(
                status="cancelled",
                total_nodes=result.total_nodes if result else 0,
                completed_nodes=result.completed_nodes if result else 0,
                duration_seconds=duration_seconds,
                error=CANCELLED_MESSAGE,
            ),
        )

    @staticmethod
    def _content(result: AgentCoordinationResult) -> ContentData:
        return ContentData(
            node_topic=result.topic,
            depth=result.depth,
            status=result.status.value,
            summary=result.aggregated_content.summary,
            subtopics=list(result.identified_subtopics),
            top_results=[
                ResultPreview(title=r.title, url=r.url, final_score=r.final_score, tier=r.tier.value)
                for r in result.scored_results[:PREVIEW_RESULTS]
            ],
        )

    async def _embed_node(self, record: RunRecord, result: AgentCoordinationResult) -> None:
        """Chunk a finished node's summary and top results and embed them with their place in the tree."""
        parts = [result.aggregated_content.summary]
        parts.extend(f"{r.title}\n{r.snippet}" for r in result.scored_results[:PREVIEW_RESULTS])
        text = "\n\n".join(p for p in parts if p)
        context = ChunkContext(
            source_id=result.topic_id,
            parent_topic=record.topic,
            subtopic=result.topic if result.depth > 0 else None,
            hierarchy=HierarchyInfo(level=result.depth, path=self._topic_path(record, result)),
        )
        try:
            embedded = await self.embeddings.chunk_and_embed(text, context)
        except EmbeddingError as exc:
            logfire.warning("Node embedding failed", topic_id=result.topic_id, error=exc.message)
            return
        record.embedded_chunks += len(embedded)

    @staticmethod
    def _topic_path(record: RunRecord, result: AgentCoordinationResult) -> list[str]:
        # Child ids extend their parent's id with "-<index>"
        ids = [record.topic_id]
        for index in result.topic_id.removeprefix(record.topic_id).split("-")[1:]:
            ids.append(f"{ids[-1]}-{index}")
        path = [record.nodes[i].topic if i in record.nodes else i for i in ids[:-1]]
        return [*path, result.topic]

    def _remember(self, record: RunRecord) -> None:
        self._runs[record.topic_id] = record
        history = self._history.setdefault(record.user_id, deque())
        if record.topic_id in history:
            history.remove(record.topic_id)
        history.append(record.topic_id)
        while len(history) > self.history_limit:
            self._runs.pop(history.popleft(), None)

    def _get(self, topic_id: str) -> RunRecord:
        record = self._runs.get(topic_id)
        if record is None:
            raise ResearchNotFoundError(topic_id)
        return record


__all__ = ["ResearchController", "RunRecord"]
