"""
Command-line interface for Clutch Ratings.
Built with Click and Rich for operator-facing output.
"""

import json
import sys
import logging
from datetime import datetime
from typing import Optional

import click
from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich import box

from . import __version__
from .batch import BatchRunner
from .config import get_config
from .database import Database
from .metrics import PlayerMetricsEngine
from .models import BatchReport, ClutchScore, PlayerSource
from .rating import ManagerRatingEngine

console = Console()


def _fmt(value, digits: int = 1) -> str:
    if value is None:
        return "[dim]-[/]"
    return f"{value:.{digits}f}" if isinstance(value, float) else str(value)


def _print_report(report: BatchReport):
    color = "green" if report.skipped == 0 else "yellow"
    console.print(Panel.fit(
        f"[{color}]{report.succeeded}/{report.total} succeeded, {report.skipped} skipped[/]",
        title=report.kind,
    ))
    if report.failures:
        table = Table(title="Failures", box=box.ROUNDED)
        table.add_column("Entity", justify="right", style="cyan")
        table.add_column("Reason", style="red")
        for failure in report.failures:
            table.add_row(str(failure.entity_id), failure.reason)
        console.print(table)


def _print_score(score: ClutchScore, name: str):
    console.print(Panel.fit(f"[bold]{name}[/]", title="Clutch Metrics"))
    table = Table(box=box.ROUNDED)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right", style="green")
    table.add_row("CPI", _fmt(score.cpi, 3))
    table.add_row("Form Score", _fmt(score.form_score))
    table.add_row("Pressure Score", _fmt(score.pressure_score, 3))
    table.add_row("Course Fit", _fmt(score.course_fit_score))
    console.print(table)
    console.print(f"[dim]Formula {score.formula_version}, computed {score.computed_at.isoformat()}[/]")


@click.group()
@click.version_option(version=__version__, prog_name="Clutch Ratings")
@click.option("--as-of", type=click.DateTime(), default=None,
              help="Evaluation time (defaults to now).")
@click.option("--verbose", "-v", is_flag=True, help="Log at DEBUG level.")
@click.pass_context
def cli(ctx, as_of: Optional[datetime], verbose: bool):
    """Clutch Ratings - player metrics and manager ratings."""
    config = get_config()
    level = logging.DEBUG if verbose else getattr(logging, config.log_level, logging.INFO)
    logging.basicConfig(level=level, format="%(message)s")
    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["as_of"] = as_of or datetime.now()


@cli.command("init-db")
@click.pass_context
def init_db(ctx):
    """Create the database schema."""
    config = ctx.obj["config"]
    Database(config.db_path)
    console.print(f"[green]Database initialized at {config.db_path}[/]")


@cli.command()
@click.option("--tournament", "tournament_id", type=int, default=None,
              help="Compute for this tournament's field instead of the weekly sweep.")
@click.pass_context
def players(ctx, tournament_id: Optional[int]):
    """Compute player metrics for a field or every active player."""
    runner = BatchRunner(config=ctx.obj["config"])
    if tournament_id is not None:
        report = runner.run_event_metrics(tournament_id, as_of=ctx.obj["as_of"])
    else:
        report = runner.run_player_sweep(as_of=ctx.obj["as_of"])
    _print_report(report)


@cli.command()
@click.option("--source", type=click.Choice([s.value for s in PlayerSource]), required=True,
              help="Data source that issued the external id.")
@click.option("--id", "external_id", required=True, help="Player id at the source.")
@click.option("--tournament", "tournament_id", type=int, default=None,
              help="Tournament context for course fit.")
@click.pass_context
def player(ctx, source: str, external_id: str, tournament_id: Optional[int]):
    """Compute metrics for one player on demand."""
    config = ctx.obj["config"]
    db = Database(config.db_path)
    found = db.get_player_by_external_id(PlayerSource(source), external_id)
    if not found:
        console.print(f"[red]No player with {source} id {external_id}[/]")
        sys.exit(1)

    engine = PlayerMetricsEngine(db, config)
    score = engine.compute_all_metrics(found.id, tournament_id=tournament_id, as_of=ctx.obj["as_of"])
    _print_score(score, found.name)


@cli.command()
@click.pass_context
def managers(ctx):
    """Recompute ratings for every user with ratable data."""
    report = BatchRunner(config=ctx.obj["config"]).run_manager_sweep(as_of=ctx.obj["as_of"])
    _print_report(report)


@cli.command()
@click.argument("user_id", type=int)
@click.option("--json", "as_json", is_flag=True, help="Print the full rating as JSON.")
@click.pass_context
def rate(ctx, user_id: int, as_json: bool):
    """Compute one user's rating on demand."""
    config = ctx.obj["config"]
    result = ManagerRatingEngine(Database(config.db_path), config).calculate_rating(
        user_id, as_of=ctx.obj["as_of"]
    )
    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2, sort_keys=True, default=str))
        return
    overall = result.overall if result.overall is not None else "-"
    console.print(
        f"Manager {user_id}: [bold]{overall}[/] {result.tier.value} "
        f"(confidence {result.confidence}, trend {result.trend.value})"
    )
    console.print(f"[dim]{result.data_source_summary}[/]")


@cli.command()
@click.argument("user_id", type=int)
@click.pass_context
def rating(ctx, user_id: int):
    """Show a user's stored rating."""
    config = ctx.obj["config"]
    stored = ManagerRatingEngine(Database(config.db_path), config).get_rating(user_id)
    if not stored:
        console.print(f"[yellow]No rating stored for user {user_id}. Run 'clutch-ratings managers' first.[/]")
        sys.exit(1)

    overall = stored["overall"]
    console.print(Panel(
        f"[bold]Overall:[/] {overall if overall is not None else '-'}   "
        f"[bold]Tier:[/] {stored['tier']}   "
        f"[bold]Confidence:[/] {stored['confidence']}   "
        f"[bold]Trend:[/] {stored['trend']}\n"
        f"[dim]{stored['data_source_summary']}[/]",
        title=f"Manager {user_id}",
        border_style="cyan",
    ))

    table = Table(box=box.ROUNDED)
    table.add_column("Component", style="cyan")
    table.add_column("Score", justify="right")
    table.add_column("Confidence", justify="right")
    table.add_column("Active", justify="center")
    for name, comp in stored["components"].items():
        table.add_row(
            name.replace("_", " ").title(),
            _fmt(comp["score"]),
            str(comp["confidence"]),
            "[green]yes[/]" if comp["active"] else "[dim]no[/]",
        )
    console.print(table)


@cli.command()
@click.pass_context
def validate(ctx):
    """Check tuned constants and formula versioning."""
    errors = ctx.obj["config"].validate_config()
    if errors:
        for error in errors:
            console.print(f"[red]✗ {error}[/]")
        sys.exit(1)
    console.print("[green]Configuration OK[/]")


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
