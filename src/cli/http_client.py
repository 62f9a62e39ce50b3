"""HTTP client for the research API with SSE streaming and reconnection."""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from enum import Enum
from types import TracebackType
from typing import Any
from urllib.parse import urlparse

import httpx
import logfire
from httpx_sse import SSEError, aconnect_sse

from core.exceptions import StreamingError
from core.sse_models import CompleteUpdate, StreamingResearchUpdate, is_terminal, parse_update
from models.api_models import (
    CancelResponse,
    HistoryEntry,
    RunStatusResponse,
    StartResearchResponse,
)
from models.coordination import RecursiveResearchResult, ResearchPipelineConfig
from models.research import ResearchContext

UpdateHandler = Callable[[StreamingResearchUpdate], Awaitable[None] | None]

MAX_RECONNECT_ATTEMPTS = 5
RECONNECT_DELAY_MS = 3000


def validate_server_url(url: str) -> str:
    """Normalize a server URL, adding ``http://`` when no scheme is given.

    Raises:
        ValueError: If the scheme is not http/https or the host is missing
    """
    if not url.startswith(("http://", "https://")):
        url = f"http://{url}"
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise ValueError(f"Invalid URL scheme: {parsed.scheme}. Only http/https are supported.")
    if not parsed.netloc:
        raise ValueError("Invalid URL: missing host")
    return url.rstrip("/")


class StreamState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    RECONNECTING = "reconnecting"
    FAILED = "failed"
    CLOSED = "closed"


class ResearchStreamClient:
    """Client for the control routes plus a reconnecting update stream.

    The stream moves ``disconnected -> connecting -> open`` and ends ``closed`` after
    a ``complete`` event. A dropped connection moves to ``reconnecting`` and is retried
    with a doubling delay; once the attempts are used up the state is ``failed``.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        *,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
        max_reconnect_attempts: int = MAX_RECONNECT_ATTEMPTS,
        reconnect_delay_ms: int = RECONNECT_DELAY_MS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.base_url = validate_server_url(base_url)
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout, read=None))
        self._owns_client = client is None
        self.max_reconnect_attempts = max_reconnect_attempts
        self.reconnect_delay_ms = reconnect_delay_ms
        self._sleep = sleep
        self.state = StreamState.DISCONNECTED
        self.reconnect_attempts = 0

    async def __aenter__(self) -> ResearchStreamClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def start_research(
        self,
        topic: str,
        *,
        topic_id: str | None = None,
        context: ResearchContext | None = None,
        config: ResearchPipelineConfig | None = None,
    ) -> StartResearchResponse:
        body: dict[str, Any] = {"topic": topic}
        if topic_id:
            body["topic_id"] = topic_id
        if context is not None:
            body["context"] = context.model_dump(mode="json")
        if config is not None:
            body["config"] = config.model_dump(mode="json")
        resp = await self.client.post(f"{self.base_url}/research", json=body)
        resp.raise_for_status()
        return StartResearchResponse.model_validate(resp.json())

    async def get_status(self, topic_id: str) -> RunStatusResponse:
        resp = await self.client.get(f"{self.base_url}/research/{topic_id}")
        resp.raise_for_status()
        return RunStatusResponse.model_validate(resp.json())

    async def get_result(self, topic_id: str) -> RecursiveResearchResult:
        resp = await self.client.get(f"{self.base_url}/research/{topic_id}/result")
        resp.raise_for_status()
        return RecursiveResearchResult.model_validate(resp.json())

    async def cancel(self, topic_id: str) -> CancelResponse:
        resp = await self.client.delete(f"{self.base_url}/research/{topic_id}")
        resp.raise_for_status()
        return CancelResponse.model_validate(resp.json())

    async def get_history(self, user_id: str) -> list[HistoryEntry]:
        resp = await self.client.get(f"{self.base_url}/users/{user_id}/history")
        resp.raise_for_status()
        return [HistoryEntry.model_validate(entry) for entry in resp.json()]

    async def stream(self, topic_id: str, handler: UpdateHandler | None = None) -> CompleteUpdate:
        """Deliver every update of ``topic_id`` to ``handler`` until the run completes.

        Returns:
            The terminal ``complete`` update

        Raises:
            StreamingError: If the server rejects the stream or reconnection gives up
        """
        url = f"{self.base_url}/research/{topic_id}/stream"
        self.reconnect_attempts = 0
        self.state = StreamState.CONNECTING
        while True:
            try:
                terminal = await self._consume(url, topic_id, handler)
            except (httpx.TransportError, SSEError) as e:
                logfire.warning("Research stream dropped", topic_id=topic_id, error=str(e))
            else:
                if terminal is not None:
                    self.state = StreamState.CLOSED
                    return terminal
                logfire.warning("Research stream ended before completion", topic_id=topic_id)
            await self._backoff(topic_id)

    async def _consume(
        self, url: str, topic_id: str, handler: UpdateHandler | None
    ) -> CompleteUpdate | None:
        async with aconnect_sse(self.client, "GET", url) as event_source:
            status = event_source.response.status_code
            if 400 <= status < 500:
                self.state = StreamState.FAILED
                raise StreamingError(f"Stream rejected with HTTP {status}")
            if status >= 500:
                raise httpx.RemoteProtocolError(f"Stream unavailable: HTTP {status}")

            self.state = StreamState.OPEN
            self.reconnect_attempts = 0
            async for sse in event_source.aiter_sse():
                if not sse.data:
                    continue
                try:
                    update = parse_update(sse.data)
                except ValueError as e:
                    logfire.warning("Skipping malformed stream event", topic_id=topic_id, error=str(e))
                    continue
                if handler is not None:
                    outcome = handler(update)
                    if inspect.isawaitable(outcome):
                        await outcome
                if is_terminal(update):
                    return update
        return None

    async def _backoff(self, topic_id: str) -> None:
        if self.reconnect_attempts >= self.max_reconnect_attempts:
            self.state = StreamState.FAILED
            raise StreamingError("Max reconnection attempts reached")
        delay_ms = self.reconnect_delay_ms * 2**self.reconnect_attempts
        self.reconnect_attempts += 1
        self.state = StreamState.RECONNECTING
        logfire.info(
            "Reconnecting research stream",
            topic_id=topic_id,
            attempt=self.reconnect_attempts,
            delay_ms=delay_ms,
        )
        await self._sleep(delay_ms / 1000)

    async def close(self) -> None:
        if self.state not in (StreamState.FAILED, StreamState.CLOSED):
            self.state = StreamState.CLOSED
        if self._owns_client:
            await self.client.aclose()


__all__ = ["ResearchStreamClient", "StreamState", "UpdateHandler", "validate_server_url"]
