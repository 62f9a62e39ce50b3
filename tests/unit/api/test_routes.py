"""Tests for the HTTP control surface and its SSE stream."""

import asyncio
import json

import httpx
import pytest

from api.main import create_app
from api.streaming import StreamingManager
from api.task_manager import BackgroundTaskManager
from conftest import ScriptedAgent, make_item
from models.coordination import ResearchPipelineConfig
from services.research_controller import ResearchController


class GatedAgent(ScriptedAgent):
    """Agent that holds every call until the test opens the gate."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.gate = asyncio.Event()

    async def research(self, topic, context=None):
        await self.gate.wait()
        return await super().research(topic, context)


@pytest.fixture
async def agent():
    return GatedAgent("A", [make_item()])


@pytest.fixture
async def controller(agent):
    built = ResearchController(
        [agent],
        streaming=StreamingManager(heartbeat_seconds=3600),
        task_manager=BackgroundTaskManager(2),
        default_config=ResearchPipelineConfig(
            max_depth=0, agent_timeout=5.0, retry_attempts=0, retry_base_delay=0, coordinator_deadline=5.0
        ),
    )
    yield built
    agent.gate.set()
    await built.task_manager.shutdown(timeout=1)
    await built.streaming.close()


@pytest.fixture
async def client(controller):
    transport = httpx.ASGITransport(app=create_app(controller))
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http


async def wait_until(predicate, timeout: float = 2.0) -> None:
    async def poll():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout)


class TestRoutes:
    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "active_runs": 0, "active_streams": 0}

    @pytest.mark.asyncio
    async def test_start_research_is_accepted(self, client):
        response = await client.post("/research", json={"topic": "Photosynthesis", "topic_id": "root"})

        assert response.status_code == 202
        body = response.json()
        assert body["topic_id"] == "root"
        assert body["status"] == "queued"
        assert body["stream_url"] == "/research/root/stream"
        assert body["status_url"] == "/research/root"

    @pytest.mark.asyncio
    async def test_invalid_request_is_rejected(self, client):
        response = await client.post("/research", json={"topic": "", "unexpected": True})

        assert response.status_code == 422
        assert response.json()["error"] == "INVALID_REQUEST"

    @pytest.mark.asyncio
    async def test_duplicate_run_conflicts(self, client):
        await client.post("/research", json={"topic": "Photosynthesis", "topic_id": "root"})

        response = await client.post("/research", json={"topic": "Photosynthesis", "topic_id": "root"})

        assert response.status_code == 409
        assert response.json()["error"] == "RESEARCH_ALREADY_RUNNING"

    @pytest.mark.asyncio
    async def test_unknown_run_uses_error_shape(self, client):
        response = await client.get("/research/missing")

        assert response.status_code == 404
        assert response.json() == {
            "error": "RESEARCH_NOT_FOUND",
            "message": "Research missing not found",
            "details": {"topic_id": "missing"},
            "path": "/research/missing",
        }

    @pytest.mark.asyncio
    async def test_result_is_available_once_finished(self, client, controller, agent):
        await client.post("/research", json={"topic": "Photosynthesis", "topic_id": "root"})

        pending = await client.get("/research/root/result")
        assert pending.status_code == 409

        agent.gate.set()
        await controller.task_manager.wait_for("root", timeout=2)

        status = (await client.get("/research/root")).json()
        assert status["state"] == "completed"
        assert status["total_nodes"] == 1
        result = await client.get("/research/root/result")
        assert result.status_code == 200
        assert result.json()["root_topic"] == "Photosynthesis"
        assert result.json()["status"] == "completed"

    @pytest.mark.asyncio
    async def test_cancel(self, client, controller):
        await client.post("/research", json={"topic": "Photosynthesis", "topic_id": "root"})
        await wait_until(lambda: controller.get_research_status("root").state == "running")

        response = await client.delete("/research/root")

        assert response.json() == {
            "topic_id": "root",
            "cancelled": True,
            "message": "Research cancellation requested",
        }

    @pytest.mark.asyncio
    async def test_history(self, client, agent, controller):
        agent.gate.set()
        body = {"topic": "Photosynthesis", "topic_id": "h1", "context": {"user_id": "alice"}}
        await client.post("/research", json=body)
        await controller.task_manager.wait_for("h1", timeout=2)

        history = (await client.get("/users/alice/history")).json()

        assert [h["topic_id"] for h in history] == ["h1"]
        assert (await client.get("/users/bob/history")).json() == []

    @pytest.mark.asyncio
    async def test_stream_of_unknown_run(self, client):
        response = await client.get("/research/missing/stream")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_stream_delivers_events_until_complete(self, client, controller, agent):
        await client.post("/research", json={"topic": "Photosynthesis", "topic_id": "root"})
        stream = asyncio.create_task(client.get("/research/root/stream"))
        await wait_until(lambda: controller.streaming.get_connection_count("root") == 1)

        agent.gate.set()
        response = await asyncio.wait_for(stream, timeout=5)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = [line.removeprefix("event: ") for line in response.text.splitlines() if line.startswith("event: ")]
        data = [json.loads(line.removeprefix("data: ")) for line in response.text.splitlines() if line.startswith("data: ")]
        assert events[0] == "status"
        assert data[0]["data"]["status"] == "connected"
        assert events[-1] == "complete"
        assert "content" in events
        assert data[-1]["data"]["status"] == "completed"
        assert controller.streaming.get_connection_count("root") == 0
