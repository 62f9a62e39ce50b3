"""Tests for the search-backed research agents."""

from datetime import datetime

import httpx
import pytest

from agents.research_agents import (
    AcademicResearchAgent,
    GeneralResearchAgent,
    SearchOptions,
    SearxngBackend,
    VideoLearningAgent,
    create_default_agents,
    parse_published,
    title_subtopics,
)
from conftest import make_item
from core.exceptions import AgentError
from models.research import ResearchContext

SEARX_PAYLOAD = {
    "results": [
        {
            "title": "Photosynthesis: Light Reactions and Calvin Cycle",
            "url": "https://en.wikipedia.org/wiki/Photosynthesis",
            "content": "Plants convert light to chemical energy.",
            "engine": "wikipedia",
            "publishedDate": "2024-05-01T00:00:00",
        },
        {"title": "", "url": "https://example.com/untitled"},
        {"title": "No link"},
        {
            "title": "Calvin cycle | Khan Academy",
            "url": "https://www.khanacademy.org/calvin",
            "content": "Carbon fixation in the stroma.",
            "engine": "duckduckgo",
        },
    ]
}


class FakeBackend:
    def __init__(self, payload=None, error=None):
        self.payload = payload if payload is not None else []
        self.error = error
        self.queries: list[tuple[str, SearchOptions]] = []

    async def search(self, query, options):
        self.queries.append((query, options))
        if self.error is not None:
            raise self.error
        return self.payload


class HintingBackend(FakeBackend):
    async def subtopic_hints(self, topic, items):
        return ["Chloroplast structure"]


class TestSearxngBackend:
    @pytest.mark.asyncio
    async def test_maps_results_and_sends_filters(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=SEARX_PAYLOAD)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        backend = SearxngBackend("http://searx.local/", client=client)

        items = await backend.search(
            "photosynthesis", SearchOptions(engines=["arxiv", "pubmed"], categories=["science"], time_range="year")
        )
        await client.aclose()

        params = seen[0].url.params
        assert seen[0].url.path == "/search"
        assert params["q"] == "photosynthesis"
        assert params["format"] == "json"
        assert params["engines"] == "arxiv,pubmed"
        assert params["categories"] == "science"
        assert params["time_range"] == "year"
        assert [i["title"] for i in items] == [
            "Photosynthesis: Light Reactions and Calvin Cycle",
            "Calvin cycle | Khan Academy",
        ]
        assert items[0]["snippet"] == "Plants convert light to chemical energy."
        assert items[0]["source"] == "wikipedia"
        assert items[0]["published_date"] == datetime(2024, 5, 1)
        assert items[1]["published_date"] is None

    @pytest.mark.asyncio
    async def test_http_errors_surface_as_agent_errors(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(502)))
        agent = GeneralResearchAgent(SearxngBackend("http://searx.local", client=client))

        with pytest.raises(AgentError, match="search backend request failed"):
            await agent.research("Photosynthesis")
        await client.aclose()

    @pytest.mark.asyncio
    async def test_end_to_end_agent_over_searxng(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200, json=SEARX_PAYLOAD)))
        agent = AcademicResearchAgent(SearxngBackend("http://searx.local", client=client), max_results=2)

        outcome = await agent.research("Photosynthesis")
        await client.aclose()

        assert len(outcome.items) == 2
        assert all(item.content_type == "academic" for item in outcome.items)
        assert outcome.items[0].query == "Photosynthesis"
        assert "Light Reactions and Calvin Cycle" in outcome.subtopic_hints


class TestResearchAgent:
    @pytest.mark.asyncio
    async def test_items_are_validated_and_tagged(self):
        backend = FakeBackend([{"title": "Leaf anatomy", "url": "https://biology.example.edu/leaf"}])

        outcome = await VideoLearningAgent(backend).research("Photosynthesis")

        assert [q for q, _ in backend.queries] == ["Photosynthesis tutorial", "Photosynthesis explained"]
        assert all(item.content_type == "video" for item in outcome.items)
        assert outcome.items[0].query == "Photosynthesis tutorial"
        assert outcome.summary.startswith("Found 2 results for Photosynthesis")

    @pytest.mark.asyncio
    async def test_malformed_payload_is_an_agent_error(self):
        agent = GeneralResearchAgent(FakeBackend([{"snippet": "no title or url"}]))

        with pytest.raises(AgentError, match="malformed search payload"):
            await agent.research("Photosynthesis")

    @pytest.mark.asyncio
    async def test_non_list_payload_is_an_agent_error(self):
        agent = GeneralResearchAgent(FakeBackend(payload=42))

        with pytest.raises(AgentError):
            await agent.research("Photosynthesis")

    @pytest.mark.asyncio
    async def test_empty_search_is_a_success_without_items(self):
        outcome = await GeneralResearchAgent(FakeBackend([])).research("Photosynthesis")

        assert outcome.items == ()
        assert outcome.summary == "No results found for Photosynthesis"

    @pytest.mark.asyncio
    async def test_stops_querying_once_enough_items(self):
        backend = FakeBackend([make_item(url=f"https://example.com/{i}") for i in range(5)])

        outcome = await GeneralResearchAgent(backend, max_results=3).research("Photosynthesis")

        assert len(backend.queries) == 1
        assert len(outcome.items) == 3

    @pytest.mark.asyncio
    async def test_context_shapes_queries_and_options(self):
        backend = FakeBackend([])
        context = ResearchContext(keywords=["chlorophyll", "stroma"], time_preference="recent")

        await GeneralResearchAgent(backend).research("Photosynthesis", context)

        queries = [q for q, _ in backend.queries]
        assert queries[-1] == "Photosynthesis chlorophyll stroma"
        assert all(options.time_range == "year" for _, options in backend.queries)

    @pytest.mark.asyncio
    async def test_backend_hints_come_first(self):
        backend = HintingBackend([make_item(title="Photosynthesis: Light Reactions")])

        outcome = await GeneralResearchAgent(backend).research("Photosynthesis")

        assert outcome.subtopic_hints[:2] == ("Chloroplast structure", "Light Reactions")

    def test_default_agents_cover_every_specialisation(self):
        agents = create_default_agents(FakeBackend())

        assert [a.name for a in agents] == ["general", "academic", "video", "community", "computational"]


class TestHelpers:
    def test_title_subtopics(self):
        items = [
            make_item(title="Photosynthesis: Light Reactions and Calvin Cycle"),
            make_item(title="Calvin cycle | Khan Academy"),
            make_item(title="Photosynthesis - Wikipedia"),
            make_item(title="calvin cycle – overview"),
        ]

        assert title_subtopics("Photosynthesis", items) == [
            "Light Reactions and Calvin Cycle",
            "Calvin cycle",
            "Khan Academy",
        ]

    def test_title_subtopics_limit(self):
        items = [make_item(title=f"Photosynthesis: aspect number {i}") for i in range(20)]

        assert len(title_subtopics("Photosynthesis", items, limit=4)) == 4

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (None, None),
            ("2024-01-02T03:04:05", datetime(2024, 1, 2, 3, 4, 5)),
            ("yesterday", None),
        ],
    )
    def test_parse_published(self, value, expected):
        assert parse_published(value) == expected
