"""Click CLI entry points for recursive research."""

from __future__ import annotations

import asyncio
import sys

import click
from rich.console import Console
from rich.table import Table

from models.coordination import ResearchPipelineConfig
from models.research import ResearchContext

from .http_client import ResearchStreamClient
from .runner import run_research

SERVER_URL = "http://localhost:8000"


@click.group()
def cli() -> None:
    """Recursive Research CLI - multi-agent research with live progress."""
    pass


@cli.command()
@click.argument("topic")
@click.option("--depth", "-d", default=2, show_default=True, type=click.IntRange(0, 10))
@click.option("--breadth", "-b", default=3, show_default=True, type=click.IntRange(0, 50))
@click.option("--user-id", default="anonymous", show_default=True)
@click.option(
    "--level",
    type=click.Choice(["beginner", "intermediate", "advanced"], case_sensitive=False),
    help="Audience level used for scoring and subtopic difficulty",
)
@click.option("--recent", is_flag=True, help="Prefer recent content")
@click.option("--exclude", multiple=True, help="Area to exclude from subtopics (repeatable)")
@click.option("--output", "-o", type=click.Path(dir_okay=False), help="Save the result as JSON")
@click.option("--verbose", "-v", is_flag=True, help="Show every status and progress update")
@click.option(
    "--mode",
    "-m",
    type=click.Choice(["direct", "http"], case_sensitive=False),
    default="direct",
    help="Execution mode: direct (in-process) or http (client-server)",
)
@click.option("--server-url", "-s", default=SERVER_URL, help="Server URL for HTTP mode")
def run(
    topic: str,
    depth: int,
    breadth: int,
    user_id: str,
    level: str | None,
    recent: bool,
    exclude: tuple[str, ...],
    output: str | None,
    verbose: bool,
    mode: str,
    server_url: str,
) -> None:
    """Research TOPIC and its subtopics."""
    context = ResearchContext(
        user_id=user_id,
        user_level=level.lower() if level else None,
        time_preference="recent" if recent else "any",
        exclude_areas=list(exclude),
    )
    config = ResearchPipelineConfig(max_depth=depth, max_subtopics_per_level=breadth)
    try:
        asyncio.run(
            run_research(
                topic, context, config, mode=mode.lower(), server_url=server_url, output=output, verbose=verbose
            )
        )
    except KeyboardInterrupt:
        Console().print("\n[yellow]Research interrupted by user[/yellow]")
        sys.exit(0)


@cli.command()
@click.argument("topic_id")
@click.option("--server-url", "-s", default=SERVER_URL)
def status(topic_id: str, server_url: str) -> None:
    """Show the state of a research run on a server."""

    async def fetch() -> None:
        async with ResearchStreamClient(server_url) as client:
            run_status = await client.get_status(topic_id)
        table = Table(title=f"Research {topic_id}", border_style="cyan")
        table.add_column("Node", style="cyan")
        table.add_column("Depth", justify="right")
        table.add_column("Status")
        table.add_column("Progress", justify="right")
        for node in run_status.nodes:
            table.add_row(node.topic, str(node.current_depth), node.status.value, f"{node.progress:.0f}%")
        console = Console(force_terminal=True)
        console.print(f"[bold]{run_status.topic}[/bold]: {run_status.state}")
        console.print(table)

    asyncio.run(fetch())


@cli.command()
@click.argument("topic_id")
@click.option("--server-url", "-s", default=SERVER_URL)
def cancel(topic_id: str, server_url: str) -> None:
    """Cancel a queued or running research run."""

    async def request() -> None:
        async with ResearchStreamClient(server_url) as client:
            response = await client.cancel(topic_id)
        Console(force_terminal=True).print(response.message)

    asyncio.run(request())


@cli.command()
@click.option("--host", default="0.0.0.0", show_default=True)
@click.option("--port", default=8000, show_default=True, type=int)
def serve(host: str, port: int) -> None:
    """Start the research API server."""
    import uvicorn

    uvicorn.run("api.main:app", host=host, port=port, reload=False, log_level="info", access_log=True)


@cli.command()
def version() -> None:
    """Show version information."""
    console = Console(force_terminal=True)
    table = Table(title="Recursive Research Pipeline", border_style="cyan")
    table.add_column("Component", style="cyan")
    table.add_column("Version", style="green")
    table.add_row("Recursive Research", "1.0.0")
    pyver = f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"
    table.add_row("Python", pyver)
    console.print(table)
