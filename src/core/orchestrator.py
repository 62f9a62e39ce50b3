"""Recursive research orchestrator.

Builds a ``ResearchNode`` tree for a root topic. The root node is researched first;
every identified subtopic then becomes a child node one level deeper. Child nodes
are drained from a bounded work queue by a fixed pool of workers, so sibling nodes
run concurrently while the total number of nodes in flight stays bounded.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from collections.abc import Awaitable, Callable

import logfire

from models.coordination import (
    AgentCoordinationResult,
    CoordinationStatus,
    RecursiveResearchResult,
    ResearchNode,
    ResearchPipelineConfig,
    RunStatus,
)
from models.research import NodeStatus, ResearchContext, utc_now
from services.coordinator import MultiAgentCoordinator, StatusCallback, notify

DepthCallback = Callable[[AgentCoordinationResult], Awaitable[None] | None]

CANCELLED_MESSAGE = "Research cancelled"

_NODE_STATUS = {
    CoordinationStatus.SUCCESS: NodeStatus.COMPLETED,
    CoordinationStatus.PARTIAL: NodeStatus.PARTIAL,
    CoordinationStatus.ERROR: NodeStatus.ERROR,
}


def child_topic_id(parent_id: str, index: int) -> str:
    return f"{parent_id}-{index}"


class RecursiveResearchOrchestrator:
    """Drives the coordinator across a research tree bounded in depth and breadth."""

    def __init__(
        self,
        coordinator: MultiAgentCoordinator,
        config: ResearchPipelineConfig | None = None,
        *,
        on_status_update: StatusCallback | None = None,
        on_depth_complete: DepthCallback | None = None,
    ):
        self.coordinator = coordinator
        self.config = config or coordinator.config
        self.on_status_update = on_status_update
        self.on_depth_complete = on_depth_complete
        self.logger = logfire

    async def run(
        self,
        root_topic: str,
        root_topic_id: str,
        context: ResearchContext | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> RecursiveResearchResult:
        """Research ``root_topic`` and its subtopics down to ``max_depth``.

        Cancellation through ``cancel_event`` is cooperative: nodes already being
        researched finish, but nothing new is scheduled.

        Args:
            root_topic: Topic of the root node
            root_topic_id: Identifier of the root node; children derive theirs from it
            context: Caller preferences forwarded to every node
            cancel_event: Set to stop scheduling further nodes

        Returns:
            The research tree with node counters, timestamps and the run status
        """
        cancel_event = cancel_event or asyncio.Event()
        start_time = utc_now()
        root = ResearchNode(topic_id=root_topic_id, topic=root_topic, depth=0)
        pending_by_depth: Counter[int] = Counter()

        with logfire.span(
            "research run",
            topic=root_topic,
            topic_id=root_topic_id,
            max_depth=self.config.max_depth,
            breadth=self.config.max_subtopics_per_level,
        ):
            children = await self._process(root, context, cancel_event)

            queue: asyncio.Queue[ResearchNode] = asyncio.Queue()
            self._schedule(root, children, queue, pending_by_depth, cancel_event)

            async def worker() -> None:
                while True:
                    node = await queue.get()
                    try:
                        found = await self._process(node, context, cancel_event)
                        self._schedule(node, found, queue, pending_by_depth, cancel_event)
                    finally:
                        pending_by_depth[node.depth] -= 1
                        if pending_by_depth[node.depth] == 0:
                            self.logger.debug("Depth level drained", topic=root_topic, depth=node.depth)
                        queue.task_done()

            workers = [
                asyncio.create_task(worker(), name=f"research-worker-{i}")
                for i in range(self.config.node_concurrency)
            ]
            try:
                await queue.join()
            finally:
                for task in workers:
                    task.cancel()
                await asyncio.gather(*workers, return_exceptions=True)

            nodes = root.iter_nodes()
            completed = sum(
                1 for n in nodes if n.status in (NodeStatus.COMPLETED, NodeStatus.PARTIAL)
            )
            if root.status == NodeStatus.ERROR:
                run_status, error = RunStatus.ERROR, root.error or "Root topic research failed"
            elif cancel_event.is_set():
                run_status, error = RunStatus.CANCELLED, CANCELLED_MESSAGE
            else:
                run_status, error = RunStatus.COMPLETED, None

            result = RecursiveResearchResult(
                root_topic=root_topic,
                root_topic_id=root_topic_id,
                research_tree=root,
                total_nodes=len(nodes),
                completed_nodes=completed,
                start_time=start_time,
                end_time=utc_now(),
                status=run_status,
                error=error,
            )
            self.logger.info(
                "Research run finished",
                topic=root_topic,
                status=run_status.value,
                total_nodes=result.total_nodes,
                completed_nodes=result.completed_nodes,
                duration_seconds=result.duration_seconds,
            )
            return result

    async def _process(
        self,
        node: ResearchNode,
        context: ResearchContext | None,
        cancel_event: asyncio.Event,
    ) -> list[str]:
        """Research one node and return the subtopics to expand beneath it."""
        if cancel_event.is_set():
            node.status = NodeStatus.ERROR
            node.error = CANCELLED_MESSAGE
            return []

        node.status = NodeStatus.RESEARCHING
        try:
            result = await self.coordinator.coordinate(
                node.topic,
                node.topic_id,
                node.depth,
                context,
                on_status_update=self.on_status_update,
            )
        except Exception as exc:
            self.logger.error(
                "Node research failed", topic=node.topic, topic_id=node.topic_id, error=str(exc)
            )
            node.status = NodeStatus.ERROR
            node.error = str(exc) or type(exc).__name__
            return []

        node.result = result
        node.status = _NODE_STATUS[result.status]
        if result.status == CoordinationStatus.ERROR:
            node.error = "; ".join(result.errors) or "All agents failed"
        await notify(self.on_depth_complete, result)

        if node.depth >= self.config.max_depth:
            return []
        return result.identified_subtopics[: self.config.max_subtopics_per_level]

    def _schedule(
        self,
        parent: ResearchNode,
        subtopics: list[str],
        queue: asyncio.Queue[ResearchNode],
        pending_by_depth: Counter[int],
        cancel_event: asyncio.Event,
    ) -> None:
        if cancel_event.is_set() or parent.depth >= self.config.max_depth:
            return
        for index, subtopic in enumerate(subtopics[: self.config.max_subtopics_per_level]):
            child = ResearchNode(
                topic_id=child_topic_id(parent.topic_id, index),
                topic=subtopic,
                depth=parent.depth + 1,
                parent_id=parent.topic_id,
            )
            parent.children.append(child)
            pending_by_depth[child.depth] += 1
            queue.put_nowait(child)


__all__ = ["CANCELLED_MESSAGE", "DepthCallback", "RecursiveResearchOrchestrator", "child_topic_id"]
