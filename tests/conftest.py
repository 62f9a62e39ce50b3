"""Shared fakes and factories for the research pipeline tests."""

import asyncio
from collections.abc import Callable, Sequence
from datetime import UTC, datetime

import pytest

from models.research import AgentFailure, AgentResult, AgentSuccess, AgentTimeout, SearchItem
from models.subtopics import CandidateTopic

FIXED_NOW = datetime(2026, 1, 15, 12, 0, tzinfo=UTC)


def make_item(
    title: str = "Photosynthesis - Wikipedia",
    url: str = "https://en.wikipedia.org/wiki/Photosynthesis",
    snippet: str = "Photosynthesis converts light energy into chemical energy.",
    **kwargs,
) -> SearchItem:
    return SearchItem(title=title, url=url, snippet=snippet, **kwargs)


def success(agent: str, *items: SearchItem, topic: str = "Photosynthesis", hints: Sequence[str] = ()) -> AgentResult:
    return AgentResult(
        agent=agent,
        topic=topic,
        outcome=AgentSuccess(items=tuple(items), subtopic_hints=tuple(hints)),
        timestamp=FIXED_NOW,
    )


def timeout(agent: str, topic: str = "Photosynthesis") -> AgentResult:
    return AgentResult(agent=agent, topic=topic, outcome=AgentTimeout(timeout_seconds=1.0), timestamp=FIXED_NOW)


def failure(agent: str, message: str = "backend exploded", topic: str = "Photosynthesis") -> AgentResult:
    return AgentResult(agent=agent, topic=topic, outcome=AgentFailure(message=message), timestamp=FIXED_NOW)


class ScriptedAgent:
    """Research agent double with scripted items, hints, delays and failures.

    ``items`` and ``hints`` may be callables of the topic so every node of a tree
    can get different output.
    """

    def __init__(
        self,
        name: str,
        items: Sequence[SearchItem] | Callable[[str], Sequence[SearchItem]] = (),
        *,
        hints: Sequence[str] | Callable[[str], Sequence[str]] = (),
        delay: float = 0.0,
        error: Exception | None = None,
        fail_times: int | None = None,
    ):
        self.name = name
        self.items = items
        self.hints = hints
        self.delay = delay
        self.error = error
        self.fail_times = fail_times
        self.calls: list[str] = []

    async def research(self, topic: str, context=None) -> AgentSuccess:
        self.calls.append(topic)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None and (self.fail_times is None or len(self.calls) <= self.fail_times):
            raise self.error
        items = self.items(topic) if callable(self.items) else self.items
        hints = self.hints(topic) if callable(self.hints) else self.hints
        return AgentSuccess(items=tuple(items), subtopic_hints=tuple(hints), summary=f"{self.name} on {topic}")


class CountingEmbeddingBackend:
    """Deterministic embedding backend that records every batch it receives."""

    def __init__(self, dimensions: int = 4, error: Exception | None = None):
        self.dimensions = dimensions
        self.error = error
        self.batches: list[list[str]] = []
        self.closed = False

    @property
    def call_count(self) -> int:
        return len(self.batches)

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.batches.append(list(texts))
        if self.error is not None:
            raise self.error
        return [[float(len(text) % 7 + 1)] + [float(i + 1) for i in range(self.dimensions - 1)] for text in texts]

    async def aclose(self) -> None:
        self.closed = True


class StaticTopicGenerator:
    """Topic generator double returning a fixed candidate list."""

    def __init__(self, candidates: Sequence[CandidateTopic] = (), error: Exception | None = None):
        self.candidates = list(candidates)
        self.error = error
        self.calls: list[tuple[str, str]] = []

    async def propose(self, main_topic: str, findings: str) -> list[CandidateTopic]:
        self.calls.append((main_topic, findings))
        if self.error is not None:
            raise self.error
        return [c.model_copy(deep=True) for c in self.candidates]


class RecordingSink:
    """Connection sink that keeps every payload written to it."""

    def __init__(self, fail: bool = False):
        self.payloads: list[str] = []
        self.fail = fail

    async def send(self, payload: str) -> None:
        if self.fail:
            raise ConnectionResetError("client went away")
        self.payloads.append(payload)


def photosynthesis_agents(*, hints: Sequence[str] | Callable[[str], Sequence[str]] = ()) -> list[ScriptedAgent]:
    """Two answering agents with one shared page and three that never answer in time."""
    wiki = make_item(snippet="Photosynthesis is the process plants use to turn sunlight into sugar.", relevance_score=0.9)
    khan = make_item(
        title="Light-dependent reactions explained",
        url="https://www.khanacademy.org/science/light-reactions",
        snippet="Thylakoid membranes capture photons and split water molecules.",
        relevance_score=0.8,
    )
    wiki_again = make_item(snippet="Chlorophyll absorbs red and blue wavelengths inside chloroplasts.", relevance_score=0.85)
    wiki_third = make_item(snippet="Carbon fixation happens during the Calvin cycle in the stroma.", relevance_score=0.7)
    return [
        ScriptedAgent("A", [wiki, khan], hints=hints),
        ScriptedAgent("B", [wiki_again, wiki_third]),
        ScriptedAgent("C", delay=5.0),
        ScriptedAgent("D", delay=5.0),
        ScriptedAgent("E", delay=5.0),
    ]


@pytest.fixture
def fixed_clock() -> Callable[[], datetime]:
    return lambda: FIXED_NOW


@pytest.fixture
def embedding_backend() -> CountingEmbeddingBackend:
    return CountingEmbeddingBackend()
