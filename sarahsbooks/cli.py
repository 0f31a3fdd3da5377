"""
Command-line interface for inspecting routing, shortlists and prompts
without calling the recommendation LLM.
"""

import json
import sys
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.text import Text

from .library import build_shortlist, load_catalog, parse_goodreads_csv
from .prompts import assemble_prompt
from .router import fallback_route, route_query
from .search import build_optimized_library_context, should_prioritize_world_search

app = typer.Typer(
    name="sarahsbooks",
    help="Inspect Sarah's Books recommendation routing and prompts",
    add_completion=False
)

console = Console()


def _load_queue(path: Optional[Path]) -> list:
    if path is None:
        return []
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


@app.command()
def route(
    query: str = typer.Argument(..., help="Recommendation request"),
    theme: List[str] = typer.Option([], "--theme", help="Selected curated-list theme (repeatable)"),
    probe: bool = typer.Option(False, "--probe", help="Run the live catalog probe instead of keyword-only routing"),
) -> None:
    """Show how a query would be routed."""
    decision = route_query(query, theme) if probe else fallback_route(query, theme)
    console.print(Panel(
        f"Path: [bold]{decision.path.value}[/]\n"
        f"Reason: {decision.reason}\n"
        f"Matched: {escape(decision.matched_keyword or '-')}\n"
        f"Confidence: {decision.confidence.value if decision.confidence else '-'}",
        title="Routing Decision",
        border_style="green"
    ))


@app.command()
def shortlist(
    query: str = typer.Argument(..., help="Recommendation request"),
    catalog: Optional[Path] = typer.Option(None, "--catalog", help="Catalog JSON (default: settings.CATALOG_PATH)"),
) -> None:
    """Print the catalog shortlist for a query."""
    books = load_catalog(catalog)
    if not books:
        console.print("[yellow]Warning:[/] catalog is empty")
    console.print(build_shortlist(query, books).text, markup=False)


@app.command()
def search(
    query: str = typer.Argument(..., help="Search terms"),
    catalog: Optional[Path] = typer.Option(None, "--catalog", help="Catalog JSON (default: settings.CATALOG_PATH)"),
    limit: int = typer.Option(10, "--limit", help="Maximum matches to show"),
) -> None:
    """Search the catalog by keyword."""
    if should_prioritize_world_search(query):
        console.print("[yellow]Note:[/] this looks like a request for books outside the catalog")
    console.print(build_optimized_library_context(query, load_catalog(catalog), limit=limit), markup=False)


@app.command()
def prompt(
    query: str = typer.Argument(..., help="Recommendation request"),
    catalog: Optional[Path] = typer.Option(None, "--catalog", help="Catalog JSON (default: settings.CATALOG_PATH)"),
    queue: Optional[Path] = typer.Option(None, "--queue", help="Reading queue JSON"),
    owned: Optional[Path] = typer.Option(None, "--owned", help="Goodreads library export CSV"),
) -> None:
    """Print the system segments and user message that would be sent."""
    try:
        reading_queue = _load_queue(queue)
        owned_books = parse_goodreads_csv(owned.read_text(encoding="utf-8")) if owned else []
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"[red]Error:[/] {escape(str(e))}")
        sys.exit(1)

    books = load_catalog(catalog)
    decision = fallback_route(query)
    shortlist_text = build_shortlist(query, books, reading_queue).text if decision.uses_catalog else ""
    system, user_message = assemble_prompt(query, decision, shortlist_text, reading_queue, owned_books)

    for i, segment in enumerate(system, 1):
        cache = "cached" if segment.cacheable else "uncached"
        console.print(Panel(Text(segment.text), title=f"System segment {i} ({cache})", border_style="blue"))
    console.print(Panel(Text(user_message), title="User message", border_style="green"))


if __name__ == "__main__":
    app()
