"""Specialised research agents that query a search backend for one topic."""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any, ClassVar, Protocol, runtime_checkable

import httpx
import logfire
from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from core.exceptions import AgentError
from models.research import AgentSuccess, ResearchContext, SearchItem

_TITLE_SEPARATOR_RE = re.compile(r"\s*(?::|\s-\s|\||–)\s*")
_ITEMS_ADAPTER = TypeAdapter(list[SearchItem])

MAX_SUBTOPIC_HINTS = 10
SUMMARY_SNIPPETS = 5


class SearchOptions(BaseModel):
    """Per-call options handed to a search backend."""

    max_results: int = Field(default=10, ge=1, le=100)
    engines: list[str] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)
    time_range: str | None = Field(default=None, description="Backend time filter such as 'year'")
    language: str = "en"


class AgentBackend(Protocol):
    """External search capability; items may be models or plain mappings."""

    async def search(
        self, query: str, options: SearchOptions
    ) -> Sequence[SearchItem | Mapping[str, Any]]: ...


@runtime_checkable
class SubtopicHintProvider(Protocol):
    """Backends that can suggest follow-up subtopics themselves."""

    async def subtopic_hints(self, topic: str, items: Sequence[SearchItem]) -> list[str]: ...


class SearxngBackend:
    """Queries a SearxNG instance through its JSON API."""

    def __init__(self, base_url: str, *, client: httpx.AsyncClient | None = None, timeout: float = 20.0):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def search(self, query: str, options: SearchOptions) -> list[dict[str, Any]]:
        params: dict[str, str] = {"q": query, "format": "json", "language": options.language}
        if options.engines:
            params["engines"] = ",".join(options.engines)
        if options.categories:
            params["categories"] = ",".join(options.categories)
        if options.time_range:
            params["time_range"] = options.time_range

        response = await self._client.get(f"{self.base_url}/search", params=params)
        response.raise_for_status()
        payload = response.json()
        results = [raw for raw in payload.get("results", []) if raw.get("title") and raw.get("url")]
        return [self._to_item(raw, query) for raw in results[: options.max_results]]

    @staticmethod
    def _to_item(raw: Mapping[str, Any], query: str) -> dict[str, Any]:
        return {
            "title": raw["title"],
            "url": raw["url"],
            "snippet": raw.get("content") or "",
            "source": raw.get("engine") or "",
            "published_date": parse_published(raw.get("publishedDate")),
            "query": query,
        }

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def title_subtopics(topic: str, items: Sequence[SearchItem], limit: int = MAX_SUBTOPIC_HINTS) -> list[str]:
    """Pull candidate subtopics out of result titles such as ``"Photosynthesis: Light Reactions"``."""
    topic_lower = topic.lower()
    hints: list[str] = []
    seen: set[str] = set()
    for item in items:
        for part in _TITLE_SEPARATOR_RE.split(item.title):
            phrase = part.strip()
            key = phrase.lower()
            if not 2 <= len(phrase.split()) <= 6 or key in seen:
                continue
            if topic_lower in key or key in topic_lower:
                continue
            seen.add(key)
            hints.append(phrase)
            if len(hints) >= limit:
                return hints
    return hints


class ResearchAgent:
    """Base research agent: builds queries, calls the backend, validates items."""

    name: ClassVar[str] = "general"
    content_type: ClassVar[str] = "general"
    engines: ClassVar[tuple[str, ...]] = ()
    categories: ClassVar[tuple[str, ...]] = ("general",)
    query_suffixes: ClassVar[tuple[str, ...]] = ("", "overview")

    def __init__(self, backend: AgentBackend, *, max_results: int = 10):
        self.backend = backend
        self.max_results = max_results

    def build_queries(self, topic: str, context: ResearchContext | None = None) -> list[str]:
        queries = [f"{topic} {suffix}".strip() for suffix in self.query_suffixes]
        if context and context.keywords:
            queries.append(f"{topic} {' '.join(context.keywords[:3])}")
        return list(dict.fromkeys(queries))

    def search_options(self, context: ResearchContext | None = None) -> SearchOptions:
        return SearchOptions(
            max_results=self.max_results,
            engines=list(self.engines),
            categories=list(self.categories),
            time_range="year" if context and context.time_preference == "recent" else None,
        )

    async def research(self, topic: str, context: ResearchContext | None = None) -> AgentSuccess:
        """Run every query for ``topic`` and return the validated items.

        Raises:
            AgentError: If the backend fails or returns a payload that is not a list of items
        """
        options = self.search_options(context)
        items: list[SearchItem] = []
        for query in self.build_queries(topic, context):
            try:
                raw = await self.backend.search(query, options)
            except httpx.HTTPError as exc:
                raise AgentError(self.name, f"search backend request failed: {exc}", query=query) from exc
            items.extend(self._validate(raw, query))
            if len(items) >= self.max_results:
                break
        items = items[: self.max_results]

        hints = title_subtopics(topic, items)
        if isinstance(self.backend, SubtopicHintProvider):
            provided = await self.backend.subtopic_hints(topic, items)
            hints = list(dict.fromkeys([*provided, *hints]))[:MAX_SUBTOPIC_HINTS]

        logfire.debug("Agent search finished", agent=self.name, topic=topic, items=len(items))
        return AgentSuccess(items=tuple(items), subtopic_hints=tuple(hints), summary=self.summarize(topic, items))

    def _validate(self, raw: Any, query: str) -> list[SearchItem]:
        try:
            items = _ITEMS_ADAPTER.validate_python(list(raw))
        except (TypeError, ValidationError) as exc:
            raise AgentError(self.name, f"malformed search payload: {exc}", query=query) from exc
        return [
            item.model_copy(
                update={
                    "content_type": item.content_type or self.content_type,
                    "query": item.query or query,
                }
            )
            for item in items
        ]

    @staticmethod
    def summarize(topic: str, items: Sequence[SearchItem]) -> str:
        if not items:
            return f"No results found for {topic}"
        snippets = " ".join(item.snippet for item in items[:SUMMARY_SNIPPETS] if item.snippet)
        return f"Found {len(items)} results for {topic}. {snippets[:500]}".strip()


class GeneralResearchAgent(ResearchAgent):
    name = "general"
    content_type = "general"
    query_suffixes = ("", "explained", "overview")


class AcademicResearchAgent(ResearchAgent):
    name = "academic"
    content_type = "academic"
    engines = ("arxiv", "google scholar", "pubmed")
    categories = ("science",)
    query_suffixes = ("", "research paper")


class VideoLearningAgent(ResearchAgent):
    name = "video"
    content_type = "video"
    engines = ("youtube",)
    categories = ("videos",)
    query_suffixes = ("tutorial", "explained")


class CommunityDiscussionAgent(ResearchAgent):
    name = "community"
    content_type = "community"
    engines = ("reddit",)
    categories = ("social media",)
    query_suffixes = ("", "discussion")


class ComputationalAgent(ResearchAgent):
    name = "computational"
    content_type = "computational"
    engines = ("wolframalpha",)
    categories = ("science",)
    query_suffixes = ("",)


DEFAULT_AGENT_TYPES: tuple[type[ResearchAgent], ...] = (
    GeneralResearchAgent,
    AcademicResearchAgent,
    VideoLearningAgent,
    CommunityDiscussionAgent,
    ComputationalAgent,
)


def create_default_agents(backend: AgentBackend, *, max_results: int = 10) -> list[ResearchAgent]:
    """One instance of each specialised agent sharing ``backend``."""
    return [agent_type(backend, max_results=max_results) for agent_type in DEFAULT_AGENT_TYPES]


def parse_published(value: str | datetime | None) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


__all__ = [
    "AcademicResearchAgent",
    "AgentBackend",
    "CommunityDiscussionAgent",
    "ComputationalAgent",
    "DEFAULT_AGENT_TYPES",
    "GeneralResearchAgent",
    "ResearchAgent",
    "SearchOptions",
    "SearxngBackend",
    "SubtopicHintProvider",
    "VideoLearningAgent",
    "create_default_agents",
    "title_subtopics",
]
