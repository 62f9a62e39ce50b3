"""Server-Sent Events handler using sse-starlette."""

import asyncio
from collections.abc import AsyncGenerator

import logfire
from fastapi import Request
from sse_starlette import EventSourceResponse
from sse_starlette.event import ServerSentEvent

from api.streaming import QueueSink, StreamingManager, generate_connection_id
from core.exceptions import StreamingError
from core.sse_models import ErrorData, ErrorUpdate, UpdateType, is_terminal, parse_update

DISCONNECT_POLL_SECONDS = 1.0
RETRY_MILLISECONDS = 3000


class SSEHandler:
    """Bridges one HTTP client to the streaming manager through a queue-backed sink."""

    def __init__(self, topic_id: str, request: Request, streaming: StreamingManager):
        """Initialize SSE handler.

        Args:
            topic_id: Research topic whose updates are streamed
            request: FastAPI request object for disconnection detection
            streaming: Manager the connection registers with
        """
        self.topic_id = topic_id
        self.request = request
        self.streaming = streaming
        self.connection_id = generate_connection_id()
        self.sink = QueueSink()
        self.event_id = 0

    def _event(self, payload: str, event_type: str) -> ServerSentEvent:
        event = ServerSentEvent(data=payload, event=event_type, id=str(self.event_id))
        self.event_id += 1
        return event

    async def event_generator(self) -> AsyncGenerator[ServerSentEvent, None]:
        """Yield every update for the topic until a ``complete`` event or client disconnect."""
        try:
            await self.streaming.add_connection(self.topic_id, self.connection_id, self.sink)
        except StreamingError as e:
            logfire.warning("Could not open research stream", topic_id=self.topic_id, error=e.message)
            failure = ErrorUpdate(
                topic_id=self.topic_id,
                data=ErrorData(message=e.message, recoverable=True, code=e.error_code),
            )
            yield ServerSentEvent(data=failure.model_dump_json(), event=UpdateType.ERROR.value, retry=RETRY_MILLISECONDS)
            return

        try:
            while True:
                if await self.request.is_disconnected():
                    logfire.info("Client disconnected from research stream", topic_id=self.topic_id)
                    break
                try:
                    payload = await asyncio.wait_for(self.sink.queue.get(), timeout=DISCONNECT_POLL_SECONDS)
                except TimeoutError:
                    continue

                update = parse_update(payload)
                yield self._event(payload, update.type.value)
                if is_terminal(update):
                    logfire.info("Research stream complete", topic_id=self.topic_id)
                    break

        except asyncio.CancelledError:
            logfire.info("Research stream cancelled", topic_id=self.topic_id)
            raise
        finally:
            await self.streaming.remove_connection(self.connection_id)


def create_sse_response(topic_id: str, request: Request, streaming: StreamingManager) -> EventSourceResponse:
    """Create a properly configured SSE response.

    Args:
        topic_id: Research topic to stream
        request: FastAPI request object
        streaming: Streaming manager the run broadcasts to

    Returns:
        EventSourceResponse configured for the request
    """
    handler = SSEHandler(topic_id, request, streaming)

    return EventSourceResponse(
        handler.event_generator(),
        headers={
            "Cache-Control": "no-cache, no-store, must-revalidate",
            "X-Accel-Buffering": "no",  # Disable Nginx buffering
            "Connection": "keep-alive",
        },
        media_type="text/event-stream",
    )


__all__ = ["SSEHandler", "create_sse_response"]
