"""Runs every research agent for one topic node and post-processes their output."""

from __future__ import annotations

import asyncio
import inspect
import time
from collections.abc import Awaitable, Callable, Sequence

import logfire

from agents.research_agents import ResearchAgent
from agents.synthesis import ContentSynthesizer
from core.exceptions import AgentError, AgentTimeoutError, ExtractionError
from core.resilience import retry_async
from models.aggregation import AggregationOutput
from models.coordination import (
    AgentCoordinationResult,
    AggregatedNodeContent,
    CoordinationStatus,
    ResearchPipelineConfig,
)
from models.research import (
    AgentFailure,
    AgentOutcome,
    AgentResult,
    AgentStatus,
    AgentSuccess,
    AgentTimeout,
    NodeStatus,
    ResearchContext,
    ResearchStatus,
    utc_now,
)
from models.scoring import RankingContext, ScoredResult
from models.subtopics import ExtractionResult
from models.synthesis import SynthesisResult
from services.aggregator import ContentAggregator, get_recommended_config
from services.scorer import ResultScorer
from services.subtopic_extractor import SubtopicExtractor
from utils.validation import mean

StatusCallback = Callable[[ResearchStatus], Awaitable[None] | None]

AGENT_PROGRESS_SHARE = 80.0
MAX_KEY_POINTS = 10
SUMMARY_LIMIT = 1000


async def notify(callback: Callable[..., Awaitable[None] | None] | None, *args: object) -> None:
    """Invoke a sync or async hook; hook failures are logged and never propagate."""
    if callback is None:
        return
    try:
        outcome = callback(*args)
        if inspect.isawaitable(outcome):
            await outcome
    except Exception as exc:
        logfire.warning("Status hook failed", error=str(exc), hook=getattr(callback, "__name__", repr(callback)))


def select_subtopics(
    topic: str,
    extraction: ExtractionResult | None,
    agent_results: Sequence[AgentResult],
    limit: int,
) -> list[str]:
    """Child topics for a node: extracted level-1 titles first, then agent hints."""
    topic_key = topic.strip().lower()
    candidates = [t.title for t in extraction.hierarchical_topics] if extraction else []
    for result in sorted(agent_results, key=lambda r: r.agent):
        candidates.extend(result.subtopic_hints)

    selected: list[str] = []
    seen: set[str] = set()
    for candidate in candidates:
        title = candidate.strip()
        key = title.lower()
        if len(title) <= 2 or key in seen or key == topic_key:
            continue
        seen.add(key)
        selected.append(title)
        if len(selected) >= limit:
            break
    return selected


class MultiAgentCoordinator:
    """Fans one topic out to all agents, then aggregates, scores and extracts subtopics."""

    def __init__(
        self,
        agents: Sequence[ResearchAgent],
        config: ResearchPipelineConfig | None = None,
        *,
        aggregator: ContentAggregator | None = None,
        scorer: ResultScorer | None = None,
        extractor: SubtopicExtractor | None = None,
        synthesizer: ContentSynthesizer | None = None,
        on_status_update: StatusCallback | None = None,
    ):
        if not agents:
            raise ValueError("At least one research agent is required")
        self.agents = list(agents)
        self.config = config or ResearchPipelineConfig()
        self.aggregator = aggregator
        self.scorer = scorer
        self.extractor = extractor or SubtopicExtractor()
        self.synthesizer = synthesizer
        self.on_status_update = on_status_update
        self.logger = logfire

    async def coordinate(
        self,
        topic: str,
        topic_id: str,
        depth: int,
        context: ResearchContext | None = None,
        *,
        on_status_update: StatusCallback | None = None,
    ) -> AgentCoordinationResult:
        """Research one node.

        Args:
            topic: Topic of the node
            topic_id: Identifier used on every status snapshot
            depth: Depth of the node; no subtopics are identified at ``max_depth``
            context: Caller preferences
            on_status_update: Overrides the coordinator-wide status hook for this call

        Returns:
            Per-agent results, aggregated and scored clusters, subtopics and status
        """
        callback = on_status_update or self.on_status_update
        started_at = utc_now()
        status = ResearchStatus(
            topic_id=topic_id,
            topic=topic,
            current_depth=depth,
            total_agents=len(self.agents),
            active_agents=[agent.name for agent in self.agents],
            status=NodeStatus.RESEARCHING,
            start_time=started_at,
        )

        with logfire.span("coordinate node", topic=topic, topic_id=topic_id, depth=depth):
            await notify(callback, status.model_copy(deep=True))
            agent_results = await self._dispatch(topic, context, status, callback)

            status.status = NodeStatus.AGGREGATING
            status.progress = AGENT_PROGRESS_SHARE
            await notify(callback, status.model_copy(deep=True))

            errors = [r.error for r in agent_results if r.error]
            aggregation = self._aggregator_for(context).aggregate(agent_results, topic, context)
            scored = self._scorer_for(context).score_and_rank(
                aggregation.aggregated_results,
                RankingContext.from_research_context(topic, context or ResearchContext()),
            )

            synthesis = await self._synthesize(topic, aggregation, scored, errors)

            extraction: ExtractionResult | None = None
            subtopics: list[str] = []
            if depth < self.config.max_depth:
                try:
                    extraction = await self.extractor.extract(agent_results, synthesis, topic, context)
                except ExtractionError as exc:
                    self.logger.warning(exc.message, **exc.details)
                    errors.append(exc.message)
                else:
                    subtopics = select_subtopics(
                        topic, extraction, agent_results, self.config.max_subtopics_per_level
                    )

            answered = [r for r in agent_results if isinstance(r.outcome, AgentSuccess)]
            # An agent that answered with no items only counts towards a partial node
            succeeded = [r for r in answered if r.status == AgentStatus.SUCCESS]
            if not answered:
                outcome = CoordinationStatus.ERROR
            elif len(succeeded) < len(agent_results):
                outcome = CoordinationStatus.PARTIAL
            else:
                outcome = CoordinationStatus.SUCCESS

            status.status = {
                CoordinationStatus.SUCCESS: NodeStatus.COMPLETED,
                CoordinationStatus.PARTIAL: NodeStatus.PARTIAL,
                CoordinationStatus.ERROR: NodeStatus.ERROR,
            }[outcome]
            status.progress = 100.0
            status.errors = list(errors)
            await notify(callback, status.model_copy(deep=True))

            self.logger.info(
                "Node coordinated",
                topic=topic,
                depth=depth,
                status=outcome.value,
                succeeded_agents=len(succeeded),
                total_agents=len(agent_results),
                results=len(scored),
                subtopics=len(subtopics),
            )
            return AgentCoordinationResult(
                topic=topic,
                topic_id=topic_id,
                depth=depth,
                agent_results=agent_results,
                aggregated_results=aggregation.aggregated_results,
                aggregation_summary=aggregation.summary,
                scored_results=scored,
                aggregated_content=self._node_content(agent_results, aggregation, scored, synthesis),
                extraction=extraction,
                identified_subtopics=subtopics,
                synthesis=synthesis,
                status=outcome,
                errors=errors,
                started_at=started_at,
                completed_at=utc_now(),
            )

    async def _dispatch(
        self,
        topic: str,
        context: ResearchContext | None,
        status: ResearchStatus,
        callback: StatusCallback | None,
    ) -> list[AgentResult]:
        """Run all agents concurrently until they settle or the node deadline passes."""
        lock = asyncio.Lock()

        async def run_and_report(agent: ResearchAgent) -> AgentResult:
            result = await self._run_agent(agent, topic, context)
            async with lock:
                status.completed_agents += 1
                status.active_agents = [a for a in status.active_agents if a != agent.name]
                status.progress = AGENT_PROGRESS_SHARE * status.completed_agents / status.total_agents
                snapshot = status.model_copy(deep=True)
            await notify(callback, snapshot)
            return result

        tasks = {
            asyncio.create_task(run_and_report(agent), name=f"agent:{agent.name}"): agent
            for agent in self.agents
        }
        done, pending = await asyncio.wait(tasks, timeout=self.config.coordinator_deadline)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        results = []
        for task, agent in tasks.items():
            if task in done:
                results.append(task.result())
            else:
                self.logger.warning("Agent missed node deadline", agent=agent.name, topic=topic)
                results.append(
                    AgentResult(
                        agent=agent.name,
                        topic=topic,
                        outcome=AgentTimeout(timeout_seconds=self.config.coordinator_deadline),
                        duration_ms=self.config.coordinator_deadline * 1000,
                    )
                )
        return results

    async def _run_agent(
        self, agent: ResearchAgent, topic: str, context: ResearchContext | None
    ) -> AgentResult:
        """One agent call with per-attempt timeout and bounded retries; never raises."""
        started = time.perf_counter()
        attempts = 0

        async def attempt() -> AgentSuccess:
            nonlocal attempts
            attempts += 1
            try:
                return await asyncio.wait_for(agent.research(topic, context), timeout=self.config.agent_timeout)
            except TimeoutError as exc:
                raise AgentTimeoutError(agent.name, self.config.agent_timeout) from exc
            except AgentError:
                raise
            except Exception as exc:
                raise AgentError(agent.name, str(exc) or type(exc).__name__) from exc

        outcome: AgentOutcome
        try:
            outcome = await retry_async(
                attempt,
                attempts=self.config.retry_attempts + 1,
                base_delay=self.config.retry_base_delay,
            )
        except AgentTimeoutError:
            outcome = AgentTimeout(timeout_seconds=self.config.agent_timeout)
        except AgentError as exc:
            outcome = AgentFailure(message=exc.reason, error_code=exc.error_code)

        if not isinstance(outcome, AgentSuccess):
            self.logger.warning("Agent failed", agent=agent.name, topic=topic, kind=outcome.kind, attempts=attempts)
        return AgentResult(
            agent=agent.name,
            topic=topic,
            outcome=outcome,
            attempts=max(1, attempts),
            duration_ms=(time.perf_counter() - started) * 1000,
        )

    def _aggregator_for(self, context: ResearchContext | None) -> ContentAggregator:
        if self.aggregator is not None:
            return self.aggregator
        if context is None:
            return ContentAggregator()
        return ContentAggregator.from_preset(get_recommended_config(context).aggregation)

    def _scorer_for(self, context: ResearchContext | None) -> ResultScorer:
        if self.scorer is not None:
            return self.scorer
        if context is None:
            return ResultScorer()
        return ResultScorer.from_preset(get_recommended_config(context).scoring)

    async def _synthesize(
        self,
        topic: str,
        aggregation: AggregationOutput,
        scored: list[ScoredResult],
        errors: list[str],
    ) -> SynthesisResult | None:
        if not (self.config.enable_synthesis and self.synthesizer and aggregation.aggregated_results):
            return None
        try:
            return await self.synthesizer.synthesize(topic, aggregation.aggregated_results, scored)
        except Exception as exc:
            self.logger.warning("Synthesis failed", topic=topic, error=str(exc))
            errors.append(f"Synthesis failed: {exc}")
            return None

    def _node_content(
        self,
        agent_results: Sequence[AgentResult],
        aggregation: AggregationOutput,
        scored: Sequence[ScoredResult],
        synthesis: SynthesisResult | None,
    ) -> AggregatedNodeContent:
        if synthesis is not None:
            summary = synthesis.synthesized_content.summary
            key_points = synthesis.synthesized_content.key_points[:MAX_KEY_POINTS]
        else:
            summary = " ".join(r.summary for r in agent_results if r.summary)[:SUMMARY_LIMIT]
            key_points = [r.title for r in scored[:MAX_KEY_POINTS]]

        content_by_agent: dict[str, list[str]] = {}
        for result in aggregation.aggregated_results:
            for agent in result.sources:
                content_by_agent.setdefault(agent, []).append(result.id)

        succeeded = sum(1 for r in agent_results if isinstance(r.outcome, AgentSuccess))
        return AggregatedNodeContent(
            summary=summary,
            key_points=key_points,
            sources=[r.url for r in scored],
            content_by_agent=dict(sorted(content_by_agent.items())),
            confidence=mean([r.confidence_score for r in aggregation.aggregated_results]),
            completeness=succeeded / len(agent_results) if agent_results else 0.0,
        )


__all__ = ["MultiAgentCoordinator", "StatusCallback", "notify", "select_subtopics"]
