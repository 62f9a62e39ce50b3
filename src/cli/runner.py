"""Run coordinators for direct and HTTP modes."""

from __future__ import annotations

import sys
import uuid

import logfire
from rich.console import Console
from rich.panel import Panel

from api.streaming import StreamingManager
from api.task_manager import BackgroundTaskManager
from core.bootstrap import BootstrapError, build_components
from core.exceptions import ResearchPipelineError
from core.logging import configure_logging
from models.coordination import RecursiveResearchResult, ResearchPipelineConfig
from models.research import ResearchContext
from services.research_controller import ResearchController

from .http_client import ResearchStreamClient, validate_server_url
from .report_io import display_result, save_result
from .stream import CLIStreamHandler, HandlerSink

console = Console(force_terminal=True)


async def run_direct(
    topic: str,
    context: ResearchContext,
    config: ResearchPipelineConfig,
    *,
    verbose: bool = False,
) -> RecursiveResearchResult:
    """Run the pipeline in-process, rendering updates through the same stream events."""
    components = build_components()
    if components.synthesizer is not None:
        config = config.model_copy(update={"enable_synthesis": True})
    streaming = StreamingManager()
    controller = ResearchController(
        components.agents,
        streaming=streaming,
        task_manager=BackgroundTaskManager(1),
        default_config=config,
        extractor=components.extractor,
        synthesizer=components.synthesizer,
        embeddings=components.embeddings,
    )
    topic_id = f"cli_{uuid.uuid4().hex[:12]}"
    handler = CLIStreamHandler(topic, verbose=verbose)
    await streaming.add_connection(topic_id, f"cli_{topic_id}", HandlerSink(handler))
    try:
        return await controller.start_research(topic, topic_id, context)
    finally:
        await streaming.close()
        await components.aclose()


async def run_http(
    topic: str,
    context: ResearchContext,
    config: ResearchPipelineConfig,
    server_url: str,
    *,
    verbose: bool = False,
) -> RecursiveResearchResult:
    handler = CLIStreamHandler(topic, verbose=verbose)
    async with ResearchStreamClient(validate_server_url(server_url)) as client:
        started = await client.start_research(topic, context=context, config=config)
        console.print(f"[cyan]Research started with ID: {started.topic_id}[/cyan]")
        if started.queue_position:
            console.print(f"[dim]Queued at position {started.queue_position}[/dim]")
        await client.stream(started.topic_id, handler.handle)
        return await client.get_result(started.topic_id)


async def run_research(
    topic: str,
    context: ResearchContext,
    config: ResearchPipelineConfig,
    *,
    mode: str,
    server_url: str,
    output: str | None,
    verbose: bool,
) -> None:
    configure_logging(enable_console=verbose)
    console.print(
        Panel(
            f"[bold cyan]Topic:[/bold cyan] {topic}\n"
            + f"[bold cyan]Mode:[/bold cyan] {mode.upper()} | "
            + f"depth {config.max_depth}, breadth {config.max_subtopics_per_level}"
            + (f"\n[bold cyan]Server:[/bold cyan] {server_url}" if mode == "http" else ""),
            title="Recursive Research",
            border_style="cyan",
        )
    )
    try:
        if mode == "http":
            result = await run_http(topic, context, config, server_url, verbose=verbose)
        else:
            result = await run_direct(topic, context, config, verbose=verbose)
    except BootstrapError as e:
        console.print(f"[red]Failed to initialize: {e}[/red]")
        sys.exit(1)
    except ResearchPipelineError as e:
        logfire.error("Research failed", error_code=e.error_code, error=e.message)
        console.print(f"[red]Research failed: {e.message}[/red]")
        sys.exit(1)

    display_result(result)
    if output:
        save_result(result, output)
        console.print(f"[green]Result saved to {output}[/green]")
