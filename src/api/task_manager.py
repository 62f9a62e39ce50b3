"""Background research runs with a global concurrency cap and FIFO admission."""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

import logfire

from core.exceptions import ResearchAlreadyRunningError

RunFactory = Callable[[asyncio.Event], Awaitable[Any]]

ACTIVE_STATES = ("queued", "running")


class BackgroundTaskManager:
    """Runs at most ``max_concurrent`` research runs; later submissions wait in FIFO order.

    Cancellation is cooperative: a queued run is dropped before it starts, a running
    run has its cancel event set and is expected to stop scheduling new work.
    """

    def __init__(self, max_concurrent: int = 3, *, retention_seconds: float = 60.0):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self.retention_seconds = retention_seconds
        self._tasks: dict[str, asyncio.Task[Any]] = {}
        self._task_metadata: dict[str, dict[str, Any]] = {}
        self._cancel_events: dict[str, asyncio.Event] = {}
        self._waiters: deque[tuple[str, asyncio.Future[None]]] = deque()
        self._active = 0
        self._lock = asyncio.Lock()
        self._shutdown_event = asyncio.Event()

    @property
    def active_count(self) -> int:
        return self._active

    async def submit_research(
        self,
        request_id: str,
        run: RunFactory,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Queue a research run.

        Args:
            request_id: Unique run identifier
            run: Called with the run's cancel event once the run is admitted
            metadata: Optional metadata kept with the task status

        Returns:
            The request_id for tracking

        Raises:
            ResearchAlreadyRunningError: If a run with this id is queued or running
        """
        async with self._lock:
            existing = self._task_metadata.get(request_id)
            if existing is not None and existing["status"] in ACTIVE_STATES:
                raise ResearchAlreadyRunningError(request_id)

            cancel_event = asyncio.Event()
            self._cancel_events[request_id] = cancel_event
            self._task_metadata[request_id] = {
                "created_at": datetime.now(),
                "metadata": metadata or {},
                "status": "queued",
            }
            task = asyncio.create_task(
                self._execute_with_cleanup(request_id, run, cancel_event), name=f"research-{request_id}"
            )
            task.add_done_callback(lambda done: self._schedule_forget(request_id, done))
            self._tasks[request_id] = task

        logfire.info("Research run submitted", request_id=request_id, active=self._active)
        return request_id

    async def _execute_with_cleanup(
        self, request_id: str, run: RunFactory, cancel_event: asyncio.Event
    ) -> Any:
        await self._admit(request_id)
        try:
            async with self._lock:
                self._task_metadata[request_id]["status"] = "running"
                self._task_metadata[request_id]["started_at"] = datetime.now()
            logfire.info("Research run admitted", request_id=request_id)

            result = await run(cancel_event)
            async with self._lock:
                meta = self._task_metadata[request_id]
                meta["status"] = "cancelled" if cancel_event.is_set() else "completed"
                meta["completed_at"] = datetime.now()
            logfire.info("Research run finished", request_id=request_id, cancelled=cancel_event.is_set())
            return result

        except asyncio.CancelledError:
            async with self._lock:
                self._task_metadata[request_id]["status"] = "cancelled"
                self._task_metadata[request_id]["cancelled_at"] = datetime.now()
            raise

        except Exception as e:
            async with self._lock:
                meta = self._task_metadata[request_id]
                meta["status"] = "failed"
                meta["error"] = str(e)
                meta["failed_at"] = datetime.now()
            logfire.error("Research run failed", request_id=request_id, error=str(e))
            raise

        finally:
            await self._release()

    async def _admit(self, request_id: str) -> None:
        """Wait for a free slot; on return the caller owns one slot."""
        async with self._lock:
            if self._active < self.max_concurrent and not self._waiters:
                self._active += 1
                return
            waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
            self._waiters.append((request_id, waiter))

        try:
            await waiter
        except asyncio.CancelledError:
            async with self._lock:
                if waiter.done() and not waiter.cancelled():
                    # The slot was handed over just before cancellation; pass it on
                    self._hand_over_slot()
                else:
                    self._waiters = deque(w for w in self._waiters if w[1] is not waiter)
                self._task_metadata[request_id]["status"] = "cancelled"
                self._task_metadata[request_id]["cancelled_at"] = datetime.now()
            raise

    async def _release(self) -> None:
        async with self._lock:
            self._hand_over_slot()

    def _hand_over_slot(self) -> None:
        """Give the caller's slot to the oldest waiter, or free it. Caller holds the lock."""
        while self._waiters:
            _, waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
        self._active -= 1

    def _schedule_forget(self, request_id: str, task: asyncio.Task[Any]) -> None:
        delay = 0.0 if self._shutdown_event.is_set() else self.retention_seconds
        asyncio.get_running_loop().call_later(delay, self._forget, request_id, task)

    def _forget(self, request_id: str, task: asyncio.Task[Any]) -> None:
        if self._tasks.get(request_id) is not task:
            return
        self._tasks.pop(request_id, None)
        self._task_metadata.pop(request_id, None)
        self._cancel_events.pop(request_id, None)

    async def cancel_task(self, request_id: str) -> bool:
        """Cancel a queued or running run.

        Returns:
            True if the run was queued or running, False if unknown or already finished
        """
        async with self._lock:
            meta = self._task_metadata.get(request_id)
            if meta is None or meta["status"] not in ACTIVE_STATES:
                return False
            self._cancel_events[request_id].set()
            if meta["status"] == "queued":
                meta["status"] = "cancelled"
                meta["cancelled_at"] = datetime.now()
                self._tasks[request_id].cancel()
        logfire.info("Research run cancellation requested", request_id=request_id)
        return True

    async def get_task_status(self, request_id: str) -> dict[str, Any] | None:
        async with self._lock:
            meta = self._task_metadata.get(request_id)
            return dict(meta) if meta is not None else None

    def queue_position(self, request_id: str) -> int | None:
        """1-based position among runs waiting for a slot."""
        for position, (waiting_id, _) in enumerate(self._waiters, start=1):
            if waiting_id == request_id:
                return position
        return None

    async def list_active_tasks(self) -> dict[str, dict[str, Any]]:
        async with self._lock:
            return {
                request_id: dict(meta)
                for request_id, meta in self._task_metadata.items()
                if meta["status"] in ACTIVE_STATES
            }

    async def wait_for(self, request_id: str, timeout: float | None = None) -> Any:
        """Wait for a run and return its result; re-raises its failure."""
        task = self._tasks.get(request_id)
        if task is None:
            return None
        return await asyncio.wait_for(asyncio.shield(task), timeout=timeout)

    async def shutdown(self, timeout: float = 30.0) -> None:
        """Cancel every queued and running run and wait for them to stop."""
        logfire.info("Starting task manager shutdown")
        self._shutdown_event.set()

        async with self._lock:
            tasks = list(self._tasks.values())
            for event in self._cancel_events.values():
                event.set()

        if not tasks:
            return
        for task in tasks:
            if not task.done():
                task.cancel()
        try:
            await asyncio.wait_for(asyncio.gather(*tasks, return_exceptions=True), timeout=timeout)
            logfire.info("Task manager shut down", tasks=len(tasks))
        except TimeoutError:
            still_running = sum(1 for t in tasks if not t.done())
            logfire.warning("Tasks still running after shutdown timeout", tasks=still_running)


__all__ = ["BackgroundTaskManager", "RunFactory"]
