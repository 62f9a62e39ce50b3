"""Research agents and LLM-backed helpers.

- Specialised search agents (general, academic, video, community, computational)
  that wrap an opaque search backend
- A pydantic-ai content synthesizer and subtopic proposal agent
"""

from .research_agents import (
    DEFAULT_AGENT_TYPES,
    AcademicResearchAgent,
    AgentBackend,
    CommunityDiscussionAgent,
    ComputationalAgent,
    GeneralResearchAgent,
    ResearchAgent,
    SearchOptions,
    SearxngBackend,
    SubtopicHintProvider,
    VideoLearningAgent,
    create_default_agents,
)
from .synthesis import ContentSynthesizer, SubtopicProposalAgent

__all__ = [
    "AcademicResearchAgent",
    "AgentBackend",
    "CommunityDiscussionAgent",
    "ComputationalAgent",
    "ContentSynthesizer",
    "DEFAULT_AGENT_TYPES",
    "GeneralResearchAgent",
    "ResearchAgent",
    "SearchOptions",
    "SearxngBackend",
    "SubtopicHintProvider",
    "SubtopicProposalAgent",
    "VideoLearningAgent",
    "create_default_agents",
]
