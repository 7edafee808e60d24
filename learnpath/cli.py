"""
Typer CLI for the learnpath engine.

Commands:
    learnpath db init              - Initialize database tables
    learnpath db seed FILE         - Load subjects and lessons from JSON
    learnpath graph check          - Report prerequisite cycles and dangling ids
    learnpath next USER_ID         - Show the next suggested lesson
    learnpath due USER_ID          - List reviews due now
    learnpath cognitive decay      - Persist idle decay of focus scores
    learnpath serve                - Run the HTTP API
    learnpath status               - Query a running server's /health

Usage:
    learnpath --help
    learnpath db seed content.json
    learnpath due alice --limit 5
"""
from __future__ import annotations

from pathlib import Path
from typing import Optional

import httpx
import typer
from loguru import logger
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from learnpath.config import get_settings
from learnpath.errors import GraphInconsistency, LearnPathError
from learnpath.logging import configure_logging

app = typer.Typer(
    help="learnpath CLI: prerequisite-ordered learning paths with spaced repetition",
    no_args_is_help=True,
)

db_app = typer.Typer(help="Database management (init, seed)")
graph_app = typer.Typer(help="Subject prerequisite graph")
cognitive_app = typer.Typer(help="Cognitive state maintenance")
app.add_typer(db_app, name="db")
app.add_typer(graph_app, name="graph")
app.add_typer(cognitive_app, name="cognitive")

console = Console()


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    settings = get_settings()
    configure_logging("DEBUG" if verbose else settings.log_level, settings.log_file)


def _services():
    from learnpath.service import build_services

    return build_services()


def _fail(error: LearnPathError) -> None:
    rprint(f"[red]✗[/red] {error.code}: {error.message}")
    raise typer.Exit(code=1)


# ========================================
# Database
# ========================================


@db_app.command("init")
def db_init() -> None:
    """
    Initialize database tables from SQLAlchemy models.

    Safe to run multiple times (idempotent).
    """
    from learnpath.db import get_database

    logger.info("Initializing database tables...")
    get_database().init_db()
    rprint("[green]✓[/green] Database initialized!")


@db_app.command("seed")
def db_seed(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Content JSON file"),
) -> None:
    """Upsert subjects, prerequisites and lessons from a JSON file."""
    from learnpath.db import get_database
    from learnpath.db.seed import ContentSeed, load_content

    try:
        counts = load_content(get_database(), ContentSeed.from_file(path))
    except LearnPathError as e:
        _fail(e)
    rprint(f"[green]✓[/green] Loaded {counts['subjects']} subjects, {counts['lessons']} lessons")


# ========================================
# Graph
# ========================================


@graph_app.command("check")
def graph_check() -> None:
    """
    Validate the prerequisite graph.

    Exits with code 1 when a cycle or a dangling prerequisite id is found.
    """
    services = _services()
    try:
        graph = services.learning.subject_graph()
    except LearnPathError as e:
        _fail(e)

    try:
        graph.validate()
    except GraphInconsistency as e:
        cycle = e.details.get("cycle") or []
        dangling = e.details.get("dangling") or []
        if cycle:
            rprint(f"[red]✗[/red] Cycle: {' -> '.join(cycle)} -> {cycle[0]}")
            members = sorted(graph.cycle_members())
            rprint(f"  Subjects on cycles: {', '.join(members)}")
        if dangling:
            table = Table(title="Dangling prerequisites", show_header=True)
            table.add_column("Subject", style="cyan")
            table.add_column("Missing prerequisite", style="red")
            for subject_id, missing_id in dangling:
                table.add_row(subject_id, missing_id)
            console.print(table)
        raise typer.Exit(code=1)

    rprint(f"[green]✓[/green] {len(graph)} subjects, no cycles, no dangling prerequisites")


# ========================================
# Learner views
# ========================================


@app.command("next")
def next_lesson(user_id: str = typer.Argument(..., help="Learner id")) -> None:
    """Show the next suggested lesson for a learner."""
    try:
        result = _services().learning.next_lesson(user_id)
    except LearnPathError as e:
        _fail(e)

    if result.lesson_id is None:
        rprint(f"[green]{result.rationale}[/green]")
        return

    mode = " [yellow](fallback)[/yellow]" if result.degraded else ""
    rprint(f"\n[bold cyan]{result.subject_title}[/bold cyan] -> [bold]{result.lesson_title}[/bold]{mode}")
    rprint(f"  {result.rationale}")


@app.command("due")
def due_reviews(
    user_id: str = typer.Argument(..., help="Learner id"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Maximum items"),
) -> None:
    """List reviews due now, oldest first."""
    try:
        items = _services().learning.due_reviews(user_id, limit)
    except LearnPathError as e:
        _fail(e)

    if not items:
        rprint("[green]Nothing due.[/green]")
        return

    table = Table(title=f"Due reviews for {user_id}", show_header=True)
    table.add_column("Lesson", style="cyan")
    table.add_column("Subject")
    table.add_column("Due", style="yellow")
    table.add_column("Interval", justify="right")
    table.add_column("EF", justify="right")
    table.add_column("Status", style="dim")
    for item in items:
        table.add_row(
            item.lesson_id,
            item.subject_id,
            item.srs.next_review_date.strftime("%Y-%m-%d") if item.srs.next_review_date else "-",
            f"{item.srs.interval_days}d",
            f"{item.srs.easiness_factor:.2f}",
            item.status.value,
        )
    console.print(table)


# ========================================
# Maintenance
# ========================================


@cognitive_app.command("decay")
def cognitive_decay(
    idle_hours: float = typer.Option(1.0, "--idle-hours", help="Only users idle at least this long"),
) -> None:
    """
    Persist idle decay of focus scores toward neutral.

    Idempotent; meant to be scheduled (cron or similar).
    """
    from datetime import timedelta

    try:
        count = _services().tracker.decay_stale_states(idle_for=timedelta(hours=idle_hours))
    except LearnPathError as e:
        _fail(e)
    rprint(f"[green]✓[/green] Decayed {count} focus score(s)")


@app.command("serve")
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind host"),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port"),
    reload: bool = typer.Option(False, "--reload", help="Auto-reload on code changes"),
) -> None:
    """Run the HTTP API under uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "learnpath.api.main:create_app",
        factory=True,
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


@app.command("status")
def status(
    url: Optional[str] = typer.Option(None, "--url", help="Base URL of a running server"),
    timeout: float = typer.Option(5.0, "--timeout", help="Request timeout in seconds"),
) -> None:
    """Check a running server's health endpoint."""
    settings = get_settings()
    base_url = url or f"http://{settings.api_host}:{settings.api_port}"
    try:
        response = httpx.get(f"{base_url}/health", timeout=timeout)
    except httpx.HTTPError as e:
        rprint(f"[red]✗[/red] {base_url} unreachable: {e}")
        raise typer.Exit(code=1)

    body = response.json()
    healthy = response.status_code == 200 and body.get("status") == "healthy"
    marker = "[green]✓[/green]" if healthy else "[red]✗[/red]"
    rprint(f"{marker} {base_url}: {body.get('status')} (version {body.get('version')})")
    for component, state in body.get("components", {}).items():
        rprint(f"  {component}: {state}")
    if not healthy:
        raise typer.Exit(code=1)


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
