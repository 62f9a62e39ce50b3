"""Console rendering of streamed research updates."""

from __future__ import annotations

from rich.console import Console

from api.streaming import format_duration
from core.sse_models import (
    CompleteUpdate,
    ContentUpdate,
    ErrorUpdate,
    HeartbeatUpdate,
    ProgressUpdate,
    StatusUpdate,
    StreamingResearchUpdate,
    parse_update,
)

console = Console(force_terminal=True)


class CLIStreamHandler:
    """Prints one line per meaningful update; heartbeats are counted, not shown."""

    def __init__(self, topic: str = "", *, console: Console = console, verbose: bool = False):
        self.topic = topic
        self.console = console
        self.verbose = verbose
        self.nodes_seen = 0
        self.heartbeats = 0
        self.completed: CompleteUpdate | None = None

    async def handle(self, update: StreamingResearchUpdate) -> None:
        if isinstance(update, StatusUpdate):
            data = update.data
            if data.status == "connected":
                self.console.print(f"[dim]Connected ({data.connection_id})[/dim]")
            elif self.verbose or data.status in ("started", "error"):
                depth = f" (depth {data.depth})" if data.depth is not None else ""
                self.console.print(f"[cyan]{data.status}[/cyan]{depth} {data.message or ''}")
        elif isinstance(update, ProgressUpdate):
            if self.verbose:
                data = update.data
                self.console.print(
                    f"[dim]depth {data.current_depth}: {data.progress:.0f}% "
                    f"({data.completed_agents}/{data.total_agents} agents)[/dim]"
                )
        elif isinstance(update, ContentUpdate):
            data = update.data
            self.nodes_seen += 1
            colour = {"success": "green", "partial": "yellow"}.get(data.status, "red")
            indent = "  " * data.depth
            self.console.print(
                f"{indent}[{colour}]●[/{colour}] [bold]{data.node_topic}[/bold] "
                f"[dim]({len(data.top_results)} top results, {len(data.subtopics)} subtopics)[/dim]"
            )
        elif isinstance(update, ErrorUpdate):
            data = update.data
            style = "yellow" if data.recoverable else "red"
            self.console.print(f"[{style}]✗ {data.message}[/{style}]")
        elif isinstance(update, HeartbeatUpdate):
            self.heartbeats += 1
        elif isinstance(update, CompleteUpdate):
            self.completed = update
            data = update.data
            self.console.print(
                f"\n[bold]Research {data.status}[/bold]: {data.completed_nodes}/{data.total_nodes} nodes "
                f"in {format_duration(data.duration_seconds)}"
            )


class HandlerSink:
    """Connection sink that feeds frames straight into a ``CLIStreamHandler``."""

    def __init__(self, handler: CLIStreamHandler):
        self.handler = handler

    async def send(self, payload: str) -> None:
        await self.handler.handle(parse_update(payload))


__all__ = ["CLIStreamHandler", "HandlerSink"]
