"""Wiring of the pipeline's collaborators from process configuration.

Both entry points (the API lifespan and the CLI) build their agents, extractor
and synthesizer here so that they behave the same for the same environment.
"""

from dataclasses import dataclass, field

import logfire

from agents.research_agents import ResearchAgent, SearxngBackend, create_default_agents
from agents.synthesis import ContentSynthesizer, SubtopicProposalAgent
from core.config import ServiceConfig
from core.config import config as global_config
from models.coordination import ResearchPipelineConfig
from services.embedding_cache import InMemoryEmbeddingCache
from services.embeddings import EmbeddingService, OpenAIEmbeddingBackend
from services.subtopic_extractor import SubtopicExtractor

DEFAULT_SEARXNG_URL = "http://localhost:8080"


class BootstrapError(Exception):
    """Raised when the pipeline cannot be assembled from configuration."""


@dataclass
class PipelineComponents:
    backend: SearxngBackend
    agents: list[ResearchAgent]
    extractor: SubtopicExtractor
    synthesizer: ContentSynthesizer | None = None
    embeddings: EmbeddingService | None = None
    pipeline_config: ResearchPipelineConfig = field(default_factory=ResearchPipelineConfig)

    async def aclose(self) -> None:
        await self.backend.aclose()
        if self.embeddings is not None:
            await self.embeddings.close()


def build_components(settings: ServiceConfig | None = None) -> PipelineComponents:
    """Assemble agents and LLM helpers.

    LLM-backed helpers are only created when an OpenAI key is configured; without
    one, subtopics come from agent hints and nodes are not synthesized.

    Raises:
        BootstrapError: If a component cannot be constructed
    """
    settings = settings or global_config
    base_url = settings.searxng_url or DEFAULT_SEARXNG_URL
    has_llm = settings.openai_key is not None

    try:
        backend = SearxngBackend(base_url, timeout=settings.search_timeout_seconds)
        generator = SubtopicProposalAgent(settings.default_model) if has_llm else None
        synthesizer = (
            ContentSynthesizer(settings.default_model) if has_llm and settings.enable_synthesis else None
        )
        embeddings = (
            EmbeddingService(
                OpenAIEmbeddingBackend(settings.embedding_model, settings.openai_key),
                InMemoryEmbeddingCache(settings.embedding_cache_max_entries),
                model=settings.embedding_model,
                cache_ttl_seconds=settings.embedding_cache_ttl_seconds,
            )
            if has_llm
            else None
        )
    except Exception as e:
        raise BootstrapError(f"Failed to assemble research pipeline: {e}") from e

    logfire.info(
        "Research pipeline assembled",
        search_backend=base_url,
        llm_subtopics=generator is not None,
        synthesis=synthesizer is not None,
        embeddings=embeddings is not None,
    )
    return PipelineComponents(
        backend=backend,
        agents=create_default_agents(backend),
        extractor=SubtopicExtractor(generator),
        synthesizer=synthesizer,
        embeddings=embeddings,
        pipeline_config=ResearchPipelineConfig(enable_synthesis=synthesizer is not None),
    )


__all__ = ["BootstrapError", "PipelineComponents", "build_components"]
