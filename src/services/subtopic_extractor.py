"""Turns one node's findings into a bounded hierarchy of learnable subtopics."""

from __future__ import annotations

import re
import time
from collections.abc import Sequence
from typing import Protocol

import logfire

from core.exceptions import ExtractionError
from models.research import AgentResult, AgentStatus, ResearchContext
from models.subtopics import (
    CandidateTopic,
    Difficulty,
    ExtractedSubtopic,
    ExtractionConfig,
    ExtractionMetadata,
    ExtractionResult,
    SubtopicMetadata,
    TopicCoverage,
    TopicRelationship,
)
from models.synthesis import SynthesisResult
from utils.text import tokenize
from utils.validation import mean

DEFAULT_CONFIDENCE = 0.7
RELATIONSHIP_THRESHOLD = 0.3
MAX_RELATED_CONCEPTS = 5
FINDINGS_PER_AGENT = 5

_DIFFICULTY_ORDER: tuple[Difficulty, ...] = ("beginner", "intermediate", "advanced")
_APPLICATION_MARKERS = ("application", "applications", "applied", "in practice", "uses of", "use cases")
_WORD_EDGE_RE = re.compile(r"^\W+|\W+$")


class TopicGenerator(Protocol):
    """Text-generation capability that proposes candidate subtopics."""

    async def propose(self, main_topic: str, findings: str) -> list[CandidateTopic]: ...


def adjust_difficulty(difficulty: Difficulty, user_level: Difficulty) -> Difficulty:
    """Move ``difficulty`` one step toward ``user_level`` when they are more than a step apart."""
    current = _DIFFICULTY_ORDER.index(difficulty)
    target = _DIFFICULTY_ORDER.index(user_level)
    if abs(current - target) <= 1:
        return difficulty
    step = 1 if target > current else -1
    return _DIFFICULTY_ORDER[current + step]


def flatten(topics: Sequence[ExtractedSubtopic]) -> list[ExtractedSubtopic]:
    """Pre-order walk of a topic forest."""
    flat: list[ExtractedSubtopic] = []
    stack = list(reversed(topics))
    while stack:
        topic = stack.pop()
        flat.append(topic)
        stack.extend(reversed(topic.children))
    return flat


def find_relevant_agents(topic: ExtractedSubtopic, agent_results: Sequence[AgentResult]) -> list[str]:
    """Agents whose successful results mention the topic title or one of its key terms."""
    terms = [topic.title.lower(), *(t.lower() for t in topic.metadata.key_terms)]
    agents = []
    for result in agent_results:
        if result.status != AgentStatus.SUCCESS:
            continue
        for item in result.results:
            content = f"{item.title} {item.snippet}".lower()
            if any(term in content for term in terms):
                agents.append(result.agent)
                break
    return sorted(set(agents))


def related_concepts(topic: ExtractedSubtopic, agent_results: Sequence[AgentResult]) -> list[str]:
    """Capitalised words appearing within five words of one of the topic's key terms."""
    terms = [t.lower() for t in topic.metadata.key_terms if t]
    if not terms:
        return []
    concepts: list[str] = []
    for result in agent_results:
        for item in result.results:
            words = [_WORD_EDGE_RE.sub("", w) for w in f"{item.title} {item.snippet}".split()]
            lowered = [w.lower() for w in words]
            for index, word in enumerate(words):
                if len(word) <= 4 or not word[0].isupper() or word in concepts:
                    continue
                if word.lower() in terms:
                    continue
                window = lowered[max(0, index - 5) : index + 5]
                if any(term in nearby for term in terms for nearby in window):
                    concepts.append(word)
                    if len(concepts) >= MAX_RELATED_CONCEPTS:
                        return concepts
    return concepts


class SubtopicExtractor:
    """Validates and structures candidate topics into a learning hierarchy.

    Candidate topics come from a ``TopicGenerator`` when one is configured; otherwise
    the subtopic hints reported by the agents are used as flat level-1 candidates.
    """

    def __init__(
        self,
        generator: TopicGenerator | None = None,
        config: ExtractionConfig | None = None,
    ):
        self.generator = generator
        self.config = config or ExtractionConfig()
        self.logger = logfire

    async def extract(
        self,
        agent_results: Sequence[AgentResult],
        synthesis: SynthesisResult | None,
        main_topic: str,
        context: ResearchContext | None = None,
    ) -> ExtractionResult:
        """Build the subtopic hierarchy for one node.

        Args:
            agent_results: Every agent's output for the node
            synthesis: Synthesized prose for the node, when available
            main_topic: Topic being researched
            context: Caller preferences used for difficulty and area filtering

        Returns:
            Hierarchical and flattened topics with relationships and metadata

        Raises:
            ExtractionError: If the topic generator fails
        """
        started = time.perf_counter()
        candidates = await self._candidates(agent_results, synthesis, main_topic)

        roots = [self._build(candidate, 1, None, f"topic_{i}") for i, candidate in enumerate(candidates, 1)]
        for topic in flatten(roots):
            topic.metadata.source_agents = find_relevant_agents(topic, agent_results)
            topic.metadata.related_concepts = related_concepts(topic, agent_results)
            if context and context.user_level and self.config.include_difficulty:
                topic.metadata.difficulty = adjust_difficulty(topic.metadata.difficulty, context.user_level)

        roots = self._filter(roots, context)
        roots = self._enforce_max_topics(roots)

        flat = flatten(roots)
        relationships = self.build_relationships(flat)
        elapsed_ms = (time.perf_counter() - started) * 1000
        metadata = ExtractionMetadata(
            total_topics=len(flat),
            topics_by_level={level: sum(1 for t in flat if t.level == level) for level in (1, 2, 3)},
            avg_confidence=mean([t.metadata.confidence for t in flat]),
            coverage=self._coverage(flat),
            processing_time_ms=elapsed_ms,
        )
        self.logger.info(
            "Subtopics extracted",
            topic=main_topic,
            candidates=len(candidates),
            kept=len(flat),
            relationships=len(relationships),
        )
        return ExtractionResult(
            hierarchical_topics=roots,
            flat_topics=flat,
            relationships=relationships,
            metadata=metadata,
        )

    async def _candidates(
        self,
        agent_results: Sequence[AgentResult],
        synthesis: SynthesisResult | None,
        main_topic: str,
    ) -> list[CandidateTopic]:
        if self.generator is None:
            return self._candidates_from_hints(agent_results, main_topic)
        findings = self.build_findings(agent_results, synthesis)
        try:
            return list(await self.generator.propose(main_topic, findings))
        except Exception as exc:
            raise ExtractionError(main_topic, str(exc)) from exc

    @staticmethod
    def _candidates_from_hints(agent_results: Sequence[AgentResult], main_topic: str) -> list[CandidateTopic]:
        seen: set[str] = set()
        candidates = []
        for result in sorted(agent_results, key=lambda r: r.agent):
            for hint in result.subtopic_hints:
                key = hint.strip().lower()
                if not key or key in seen or key == main_topic.strip().lower():
                    continue
                seen.add(key)
                candidates.append(CandidateTopic(title=hint.strip(), key_terms=tokenize(hint, limit=5)))
        return candidates

    @staticmethod
    def build_findings(agent_results: Sequence[AgentResult], synthesis: SynthesisResult | None) -> str:
        """Plain-text digest of a node's findings handed to the topic generator."""
        lines: list[str] = []
        if synthesis is not None:
            content = synthesis.synthesized_content
            lines.append(f"Summary: {content.summary}")
            lines.extend(f"- {point}" for point in content.key_points)
        for result in sorted(agent_results, key=lambda r: r.agent):
            if result.status != AgentStatus.SUCCESS:
                continue
            lines.append(f"\n{result.agent} findings:")
            for item in result.results[:FINDINGS_PER_AGENT]:
                lines.append(f"- {item.title}: {item.snippet}")
            if result.subtopic_hints:
                lines.append(f"Suggested subtopics: {', '.join(result.subtopic_hints)}")
        return "\n".join(lines)

    def _build(
        self, candidate: CandidateTopic, level: int, parent_id: str | None, topic_id: str
    ) -> ExtractedSubtopic:
        children = []
        if level < self.config.hierarchy_levels:
            children = [
                self._build(child, level + 1, topic_id, f"{topic_id}_{i}")
                for i, child in enumerate(candidate.subtopics, 1)
            ]
        return ExtractedSubtopic(
            id=topic_id,
            title=candidate.title.strip(),
            description=candidate.description,
            level=level,
            parent_id=parent_id,
            children=children,
            metadata=SubtopicMetadata(
                confidence=candidate.confidence if candidate.confidence is not None else DEFAULT_CONFIDENCE,
                difficulty=candidate.difficulty or "intermediate",
                estimated_time_minutes=(
                    candidate.estimated_time_minutes
                    if self.config.include_estimated_time and candidate.estimated_time_minutes
                    else 30
                ),
                prerequisites=list(candidate.prerequisites) if self.config.include_prerequisites else [],
                key_terms=list(candidate.key_terms),
                practical_applications=list(candidate.practical_applications),
            ),
        )

    def _filter(
        self, topics: list[ExtractedSubtopic], context: ResearchContext | None
    ) -> list[ExtractedSubtopic]:
        focus = [a.lower() for a in context.focus_areas] if context else []
        exclude = [a.lower() for a in context.exclude_areas] if context else []

        def keep(topic: ExtractedSubtopic) -> bool:
            text = f"{topic.title} {topic.description}".lower()
            if any(area in text for area in exclude):
                return False
            if topic.level == 1 and focus and not any(area in text for area in focus):
                return False
            topic.children = [child for child in topic.children if keep(child)]
            # Low-confidence topics survive only as parents of confident descendants
            return topic.metadata.confidence >= self.config.min_confidence or bool(topic.children)

        return [topic for topic in topics if keep(topic)]

    def _enforce_max_topics(self, roots: list[ExtractedSubtopic]) -> list[ExtractedSubtopic]:
        """Drop lowest-confidence leaves until the forest fits ``max_subtopics``."""
        flat = flatten(roots)
        excess = len(flat) - self.config.max_subtopics
        if excess <= 0:
            return roots

        order = {topic.id: index for index, topic in enumerate(flat)}
        by_id = {topic.id: topic for topic in flat}
        for _ in range(excess):
            leaves = [t for t in flatten(roots) if not t.children]
            victim = min(leaves, key=lambda t: (t.metadata.confidence, -t.level, -order[t.id]))
            if victim.parent_id is None:
                roots = [t for t in roots if t.id != victim.id]
            else:
                parent = by_id[victim.parent_id]
                parent.children = [c for c in parent.children if c.id != victim.id]
        return roots

    @staticmethod
    def _coverage(flat: Sequence[ExtractedSubtopic]) -> TopicCoverage:
        total = max(1, len(flat))
        return TopicCoverage(
            academic=sum(
                1 for t in flat if any("academic" in a.lower() for a in t.metadata.source_agents)
            )
            / total,
            practical=sum(1 for t in flat if t.metadata.practical_applications) / total,
            foundational=sum(1 for t in flat if t.metadata.difficulty == "beginner") / total,
            advanced=sum(1 for t in flat if t.metadata.difficulty == "advanced") / total,
        )

    def build_relationships(self, flat: Sequence[ExtractedSubtopic]) -> list[TopicRelationship]:
        """Pairwise relationships over the flattened topics, keeping only strong ones."""
        relationships = []
        for i, first in enumerate(flat):
            for second in flat[i + 1 :]:
                relationship = self.analyze_relationship(first, second)
                if relationship is not None and relationship.strength > RELATIONSHIP_THRESHOLD:
                    relationships.append(relationship)
        return relationships

    @staticmethod
    def analyze_relationship(
        first: ExtractedSubtopic, second: ExtractedSubtopic
    ) -> TopicRelationship | None:
        """Classify how two topics relate; ``None`` when they share nothing."""
        text_first = f"{first.title} {first.description}".lower()
        text_second = f"{second.title} {second.description}".lower()

        if any(p.lower() in text_second for p in first.metadata.prerequisites):
            return TopicRelationship(source_id=second.id, target_id=first.id, type="prerequisite", strength=0.8)
        if any(p.lower() in text_first for p in second.metadata.prerequisites):
            return TopicRelationship(source_id=first.id, target_id=second.id, type="prerequisite", strength=0.8)

        if second.parent_id == first.id:
            return TopicRelationship(source_id=first.id, target_id=second.id, type="component", strength=0.6)
        if first.parent_id == second.id:
            return TopicRelationship(source_id=second.id, target_id=first.id, type="component", strength=0.6)

        shared_words = set(tokenize(first.title)) & set(tokenize(second.title))
        for concept, application, text in ((first, second, text_second), (second, first, text_first)):
            if shared_words and any(marker in text for marker in _APPLICATION_MARKERS):
                return TopicRelationship(
                    source_id=concept.id,
                    target_id=application.id,
                    type="application",
                    strength=min(0.7, 0.4 + 0.1 * len(shared_words)),
                )

        first_terms = [t.lower() for t in first.metadata.key_terms if t]
        second_terms = [t.lower() for t in second.metadata.key_terms if t]
        common = [t for t in first_terms if any(t in o or o in t for o in second_terms)]
        if common:
            return TopicRelationship(
                source_id=first.id,
                target_id=second.id,
                type="related",
                strength=min(0.7, len(common) * 0.2),
            )
        return None


__all__ = [
    "SubtopicExtractor",
    "TopicGenerator",
    "adjust_difficulty",
    "find_relevant_agents",
    "flatten",
    "related_concepts",
]
