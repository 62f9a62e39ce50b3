"""LLM-backed agents: node synthesis and subtopic proposals."""

from __future__ import annotations

import time
from collections.abc import Sequence

import logfire
from pydantic_ai import Agent
from pydantic_ai.models import Model

from core.config import config as global_config
from models.aggregation import AggregatedResult
from models.scoring import ScoredResult
from models.subtopics import CandidateTopic
from models.synthesis import SynthesisMetadata, SynthesisResult, SynthesizedContent
from utils.validation import mean

SYNTHESIS_SYSTEM_PROMPT = """
You are a research editor preparing learning material.

Given ranked search results about a topic, write:
- a three to five sentence summary a learner can read first
- the most important key points, one sentence each
- distinct perspectives (for example academic, practitioner, community) with the URLs behind them
- factual highlights that can be checked against the listed sources

Use only the supplied sources. Prefer higher-ranked results when they disagree.
"""

SUBTOPIC_SYSTEM_PROMPT = """
You are a curriculum designer breaking a topic into learnable subtopics.

1. Propose six to eight main subtopics that together cover the subject
2. Nest up to two further levels of subtopics where a topic clearly has parts
3. Order them from foundational to advanced
4. For each topic give a confidence between 0 and 1 that it belongs in this topic,
   a difficulty (beginner, intermediate or advanced), an estimated study time in minutes,
   prerequisites, key terms and practical applications

Base the proposals on the findings provided; do not invent unrelated areas.
"""

MAX_PROMPT_RESULTS = 15


def format_results(results: Sequence[AggregatedResult]) -> str:
    lines = []
    for position, result in enumerate(results[:MAX_PROMPT_RESULTS], start=1):
        lines.append(f"{position}. {result.title} ({result.url})\n   {result.snippet}")
    return "\n".join(lines)


class ContentSynthesizer:
    """Turns a node's aggregated and scored results into structured prose."""

    def __init__(self, model: Model | str | None = None, *, retries: int = 2):
        self.model = model or global_config.default_model
        self.agent: Agent[None, SynthesizedContent] = Agent(
            model=self.model,
            output_type=SynthesizedContent,
            system_prompt=SYNTHESIS_SYSTEM_PROMPT,
            retries=retries,
        )

    async def synthesize(
        self,
        topic: str,
        aggregated: Sequence[AggregatedResult],
        scored: Sequence[ScoredResult] | None = None,
    ) -> SynthesisResult:
        """Summarise one node; ranked results are preferred over raw aggregation order."""
        started = time.perf_counter()
        ordered: Sequence[AggregatedResult] = scored if scored else aggregated
        prompt = f"Topic: {topic}\n\nSources:\n{format_results(ordered)}"

        with logfire.span("synthesize node", topic=topic, sources=len(ordered)):
            result = await self.agent.run(prompt)

        confidence = mean([r.confidence_score for r in ordered[:MAX_PROMPT_RESULTS]])
        return SynthesisResult(
            synthesized_content=result.output,
            metadata=SynthesisMetadata(
                source_count=len(ordered),
                confidence_score=confidence,
                processing_time_ms=(time.perf_counter() - started) * 1000,
                model=self.model if isinstance(self.model, str) else self.model.model_name,
            ),
        )


class SubtopicProposalAgent:
    """Proposes candidate subtopics from a digest of a node's findings."""

    def __init__(self, model: Model | str | None = None, *, retries: int = 2):
        self.model = model or global_config.default_model
        self.agent: Agent[None, list[CandidateTopic]] = Agent(
            model=self.model,
            output_type=list[CandidateTopic],
            system_prompt=SUBTOPIC_SYSTEM_PROMPT,
            retries=retries,
        )

    async def propose(self, main_topic: str, findings: str) -> list[CandidateTopic]:
        prompt = f"Main topic: {main_topic}\n\nFindings:\n{findings or '(no findings)'}"
        result = await self.agent.run(prompt)
        logfire.debug("Subtopics proposed", topic=main_topic, count=len(result.output))
        return result.output


__all__ = [
    "ContentSynthesizer",
    "SUBTOPIC_SYSTEM_PROMPT",
    "SYNTHESIS_SYSTEM_PROMPT",
    "SubtopicProposalAgent",
    "format_results",
]
