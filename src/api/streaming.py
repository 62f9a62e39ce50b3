"""Per-topic streaming of research updates to live connections."""

from __future__ import annotations

import asyncio
import secrets
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Protocol

import logfire

from core.exceptions import StreamingError
from core.sse_models import (
    CompleteData,
    CompleteUpdate,
    ContentData,
    ContentUpdate,
    ErrorData,
    ErrorUpdate,
    HeartbeatData,
    HeartbeatUpdate,
    ProgressData,
    ProgressUpdate,
    StatusData,
    StatusUpdate,
    StreamingResearchUpdate,
)
from models.research import ResearchStatus, utc_now

DEFAULT_HEARTBEAT_SECONDS = 30.0


class ConnectionSink(Protocol):
    """Where a connection's JSON frames are written."""

    async def send(self, payload: str) -> None: ...


class QueueSink:
    """Sink backed by a bounded queue, drained by an SSE response generator."""

    def __init__(self, maxsize: int = 256):
        self.queue: asyncio.Queue[str] = asyncio.Queue(maxsize=maxsize)

    async def send(self, payload: str) -> None:
        try:
            self.queue.put_nowait(payload)
        except asyncio.QueueFull as exc:
            raise StreamingError("connection is not keeping up") from exc


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


@dataclass
class Connection:
    connection_id: str
    topic_id: str
    sink: ConnectionSink
    state: ConnectionState = ConnectionState.CONNECTING
    created_at: datetime = field(default_factory=utc_now)
    heartbeat_task: asyncio.Task[None] | None = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class ConnectionRegistry:
    """Topic to connection set, with connection lookup by id."""

    def __init__(self) -> None:
        self._by_id: dict[str, Connection] = {}
        self._by_topic: dict[str, set[str]] = {}

    def add(self, connection: Connection) -> None:
        if connection.connection_id in self._by_id:
            raise StreamingError("connection id already registered", connection_id=connection.connection_id)
        self._by_id[connection.connection_id] = connection
        self._by_topic.setdefault(connection.topic_id, set()).add(connection.connection_id)

    def remove(self, connection_id: str) -> Connection | None:
        connection = self._by_id.pop(connection_id, None)
        if connection is None:
            return None
        members = self._by_topic.get(connection.topic_id)
        if members is not None:
            members.discard(connection_id)
            if not members:
                del self._by_topic[connection.topic_id]
        return connection

    def get(self, connection_id: str) -> Connection | None:
        return self._by_id.get(connection_id)

    def for_topic(self, topic_id: str) -> list[Connection]:
        return [self._by_id[cid] for cid in sorted(self._by_topic.get(topic_id, ()))]

    def topics(self) -> list[str]:
        return sorted(self._by_topic)

    def all(self) -> list[Connection]:
        return list(self._by_id.values())

    def count(self, topic_id: str | None = None) -> int:
        if topic_id is None:
            return len(self._by_id)
        return len(self._by_topic.get(topic_id, ()))


def generate_connection_id() -> str:
    return f"conn_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


def calculate_estimated_completion(
    status: ResearchStatus, now: datetime | None = None
) -> datetime | None:
    """Linear extrapolation of the finish time from progress so far."""
    if status.progress <= 0 or status.progress >= 100:
        return None
    now = now or utc_now()
    elapsed = (now - status.start_time).total_seconds()
    remaining = elapsed / status.progress * 100 - elapsed
    return now + timedelta(seconds=remaining)


def format_duration(seconds: float) -> str:
    total = int(seconds)
    minutes, secs = divmod(total, 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


class StreamingManager:
    """Fans typed updates out to every connection registered for a topic.

    Each connection moves ``connecting -> open -> closed``. A write failure on one
    connection closes only that connection. Every open connection also gets a
    heartbeat at a fixed interval, independent of pipeline activity.
    """

    def __init__(self, heartbeat_seconds: float = DEFAULT_HEARTBEAT_SECONDS):
        self.heartbeat_seconds = heartbeat_seconds
        self.registry = ConnectionRegistry()
        self.logger = logfire
        self._closed = False

    async def add_connection(self, topic_id: str, connection_id: str, sink: ConnectionSink) -> Connection:
        """Register ``sink`` for ``topic_id`` and confirm with a ``connected`` status event.

        Raises:
            StreamingError: If the manager is closed or the confirmation cannot be written
        """
        if self._closed:
            raise StreamingError("streaming manager is closed", connection_id=connection_id)
        connection = Connection(connection_id=connection_id, topic_id=topic_id, sink=sink)
        self.registry.add(connection)

        confirmation = StatusUpdate(
            topic_id=topic_id,
            data=StatusData(status="connected", message="Connected to research stream", connection_id=connection_id),
        )
        if not await self._send(connection, confirmation.model_dump_json()):
            raise StreamingError("could not confirm connection", connection_id=connection_id)

        connection.state = ConnectionState.OPEN
        connection.heartbeat_task = asyncio.create_task(
            self._heartbeat(connection), name=f"heartbeat:{connection_id}"
        )
        self.logger.info("Stream connection opened", topic_id=topic_id, connection_id=connection_id)
        return connection

    async def remove_connection(self, connection_id: str) -> bool:
        connection = self.registry.remove(connection_id)
        if connection is None:
            return False
        connection.state = ConnectionState.CLOSED
        task = connection.heartbeat_task
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        self.logger.info("Stream connection closed", topic_id=connection.topic_id, connection_id=connection_id)
        return True

    async def broadcast(self, topic_id: str, update: StreamingResearchUpdate) -> int:
        """Send ``update`` to every connection of ``topic_id``.

        Returns:
            Number of connections the update reached
        """
        payload = update.model_dump_json()
        delivered = 0
        for connection in self.registry.for_topic(topic_id):
            if await self._send(connection, payload):
                delivered += 1
        return delivered

    async def _send(self, connection: Connection, payload: str) -> bool:
        async with connection.lock:
            if connection.state == ConnectionState.CLOSED:
                return False
            try:
                await connection.sink.send(payload)
            except Exception as exc:
                failure = exc if isinstance(exc, StreamingError) else StreamingError(str(exc))
                self.logger.warning(
                    "Dropping stream connection",
                    topic_id=connection.topic_id,
                    connection_id=connection.connection_id,
                    error=failure.message,
                )
                failed = True
            else:
                failed = False
        if failed:
            await self.remove_connection(connection.connection_id)
            return False
        return True

    async def _heartbeat(self, connection: Connection) -> None:
        while connection.state == ConnectionState.OPEN:
            await asyncio.sleep(self.heartbeat_seconds)
            beat = HeartbeatUpdate(
                topic_id=connection.topic_id,
                data=HeartbeatData(connection_id=connection.connection_id),
            )
            if not await self._send(connection, beat.model_dump_json()):
                return

    async def broadcast_status(
        self, topic_id: str, status: str, message: str | None = None, depth: int | None = None
    ) -> int:
        return await self.broadcast(
            topic_id, StatusUpdate(topic_id=topic_id, data=StatusData(status=status, message=message, depth=depth))
        )

    async def broadcast_progress(self, topic_id: str, status: ResearchStatus) -> int:
        data = ProgressData(
            progress=status.progress,
            current_depth=status.current_depth,
            completed_agents=status.completed_agents,
            total_agents=status.total_agents,
            active_agents=list(status.active_agents),
            estimated_completion=calculate_estimated_completion(status),
        )
        return await self.broadcast(topic_id, ProgressUpdate(topic_id=topic_id, data=data))

    async def broadcast_content(self, topic_id: str, content: ContentData) -> int:
        return await self.broadcast(topic_id, ContentUpdate(topic_id=topic_id, data=content))

    async def broadcast_error(
        self,
        topic_id: str,
        message: str,
        *,
        recoverable: bool = False,
        cancelled: bool = False,
        code: str | None = None,
    ) -> int:
        data = ErrorData(message=message, recoverable=recoverable, cancelled=cancelled, code=code)
        return await self.broadcast(topic_id, ErrorUpdate(topic_id=topic_id, data=data))

    async def broadcast_complete(self, topic_id: str, data: CompleteData) -> int:
        return await self.broadcast(topic_id, CompleteUpdate(topic_id=topic_id, data=data))

    def get_connection_count(self, topic_id: str | None = None) -> int:
        return self.registry.count(topic_id)

    def get_active_topics(self) -> list[str]:
        return self.registry.topics()

    async def cleanup(self) -> int:
        """Remove connections whose heartbeat task has stopped."""
        stale = [
            c.connection_id
            for c in self.registry.all()
            if c.heartbeat_task is not None and c.heartbeat_task.done()
        ]
        return await self._remove_all(stale)

    async def close(self) -> None:
        self._closed = True
        removed = await self._remove_all([c.connection_id for c in self.registry.all()])
        self.logger.info("Streaming manager closed", connections=removed)

    async def _remove_all(self, connection_ids: Iterable[str]) -> int:
        removed = 0
        for connection_id in connection_ids:
            if await self.remove_connection(connection_id):
                removed += 1
        return removed


__all__ = [
    "Connection",
    "ConnectionRegistry",
    "ConnectionSink",
    "ConnectionState",
    "QueueSink",
    "StreamingManager",
    "calculate_estimated_completion",
    "format_duration",
    "generate_connection_id",
]
