"""Tests for background run admission and cancellation."""

import asyncio

import pytest

from api.task_manager import BackgroundTaskManager
from core.exceptions import ResearchAlreadyRunningError


class Gate:
    """Run factory that blocks until released, recording start order."""

    def __init__(self, started: list[str], name: str):
        self.started = started
        self.name = name
        self.release = asyncio.Event()
        self.cancel_event: asyncio.Event | None = None

    async def __call__(self, cancel_event: asyncio.Event) -> str:
        self.cancel_event = cancel_event
        self.started.append(self.name)
        await self.release.wait()
        return f"{self.name} done"


async def settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


class TestBackgroundTaskManager:
    def test_requires_positive_capacity(self):
        with pytest.raises(ValueError):
            BackgroundTaskManager(0)

    @pytest.mark.asyncio
    async def test_runs_are_admitted_in_fifo_order(self):
        manager = BackgroundTaskManager(max_concurrent=1)
        started: list[str] = []
        gates = {name: Gate(started, name) for name in ("first", "second", "third")}
        for name, gate in gates.items():
            await manager.submit_research(name, gate)
        await settle()

        assert started == ["first"]
        assert manager.queue_position("second") == 1
        assert manager.queue_position("third") == 2
        assert (await manager.get_task_status("second"))["status"] == "queued"

        gates["first"].release.set()
        assert await manager.wait_for("first", timeout=1) == "first done"
        await settle()
        assert started == ["first", "second"]

        gates["second"].release.set()
        gates["third"].release.set()
        await manager.wait_for("third", timeout=1)
        assert started == ["first", "second", "third"]
        assert manager.active_count == 0
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_concurrency_cap(self):
        manager = BackgroundTaskManager(max_concurrent=2)
        started: list[str] = []
        gates = [Gate(started, f"run{i}") for i in range(4)]
        for gate in gates:
            await manager.submit_research(gate.name, gate)
        await settle()

        assert started == ["run0", "run1"]
        assert manager.active_count == 2
        assert set(await manager.list_active_tasks()) == {"run0", "run1", "run2", "run3"}
        await manager.shutdown(timeout=1)

    @pytest.mark.asyncio
    async def test_cancelling_a_queued_run_means_it_never_starts(self):
        manager = BackgroundTaskManager(max_concurrent=1)
        started: list[str] = []
        running, queued, behind = Gate(started, "running"), Gate(started, "queued"), Gate(started, "behind")
        await manager.submit_research("running", running)
        await manager.submit_research("queued", queued)
        await manager.submit_research("behind", behind)
        await settle()

        assert await manager.cancel_task("queued") is True
        await settle()
        assert (await manager.get_task_status("queued"))["status"] == "cancelled"
        assert manager.queue_position("behind") == 1

        running.release.set()
        behind.release.set()
        await manager.wait_for("behind", timeout=1)
        assert started == ["running", "behind"]
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_cancelling_a_running_run_is_cooperative(self):
        manager = BackgroundTaskManager()

        async def run(cancel_event: asyncio.Event) -> str:
            await cancel_event.wait()
            return "stopped early"

        await manager.submit_research("r1", run)
        await settle()

        assert await manager.cancel_task("r1") is True
        assert await manager.wait_for("r1", timeout=1) == "stopped early"
        assert (await manager.get_task_status("r1"))["status"] == "cancelled"
        assert await manager.cancel_task("r1") is False
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_duplicate_active_request_is_rejected(self):
        manager = BackgroundTaskManager()
        gate = Gate([], "r1")
        await manager.submit_research("r1", gate)

        with pytest.raises(ResearchAlreadyRunningError):
            await manager.submit_research("r1", Gate([], "again"))

        gate.release.set()
        await manager.wait_for("r1", timeout=1)
        await manager.submit_research("r1", Gate([], "again"))
        await manager.shutdown(timeout=1)

    @pytest.mark.asyncio
    async def test_failed_run_is_recorded(self):
        manager = BackgroundTaskManager()

        async def run(cancel_event: asyncio.Event) -> None:
            raise RuntimeError("pipeline crashed")

        await manager.submit_research("r1", run, metadata={"topic": "Photosynthesis"})
        with pytest.raises(RuntimeError):
            await manager.wait_for("r1", timeout=1)

        status = await manager.get_task_status("r1")
        assert status["status"] == "failed"
        assert status["error"] == "pipeline crashed"
        assert status["metadata"] == {"topic": "Photosynthesis"}
        assert manager.active_count == 0
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_unknown_runs(self):
        manager = BackgroundTaskManager()

        assert await manager.cancel_task("missing") is False
        assert await manager.get_task_status("missing") is None
        assert await manager.wait_for("missing") is None
        assert manager.queue_position("missing") is None

    @pytest.mark.asyncio
    async def test_shutdown_cancels_everything(self):
        manager = BackgroundTaskManager(max_concurrent=1)
        started: list[str] = []
        running, queued = Gate(started, "a"), Gate(started, "b")
        await manager.submit_research("a", running)
        await manager.submit_research("b", queued)
        await settle()

        await manager.shutdown(timeout=1)

        assert started == ["a"]
        assert running.cancel_event.is_set()
        assert manager.active_count == 0
