"""Result display/save helpers for the CLI."""

from __future__ import annotations

from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from models.coordination import RecursiveResearchResult, ResearchNode

console = Console(force_terminal=True)

_STATUS_STYLE = {"completed": "green", "partial": "yellow", "error": "red"}


def build_tree(node: ResearchNode, tree: Tree | None = None) -> Tree:
    style = _STATUS_STYLE.get(node.status.value, "dim")
    label = f"[{style}]{node.topic}[/{style}] [dim]{node.topic_id}[/dim]"
    if node.error:
        label += f" [red]({node.error})[/red]"
    branch = tree.add(label) if tree is not None else Tree(label)
    for child in node.children:
        build_tree(child, branch)
    return branch


def top_results_table(result: RecursiveResearchResult, limit: int = 10) -> Table:
    table = Table(title="Top results", border_style="cyan")
    table.add_column("#", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Tier")
    table.add_column("Title")
    table.add_column("Sources")
    root = result.research_tree.result
    for scored in (root.scored_results if root else [])[:limit]:
        table.add_row(
            str(scored.ranking),
            f"{scored.final_score:.2f}",
            scored.tier.value,
            scored.title,
            ", ".join(scored.sources),
        )
    return table


def display_result(result: RecursiveResearchResult) -> None:
    console.print("\n")
    console.print(
        Panel(
            f"[bold]{result.root_topic}[/bold]\n"
            f"Status: {result.status.value} | Nodes: {result.completed_nodes}/{result.total_nodes} | "
            f"Duration: {result.duration_seconds:.1f}s"
            + (f"\n[red]{result.error}[/red]" if result.error else ""),
            title="Research Summary",
        )
    )
    console.print(build_tree(result.research_tree))
    root = result.research_tree.result
    if root and root.scored_results:
        console.print(top_results_table(result))


def save_result(result: RecursiveResearchResult, filename: str) -> None:
    Path(filename).write_text(result.model_dump_json(indent=2))


__all__ = ["build_tree", "display_result", "save_result", "top_results_table"]
