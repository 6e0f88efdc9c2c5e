"""CLI commands: tally run, tally schedule."""

from __future__ import annotations

import logging

import click

from tally.errors import (
    AlreadyRunning,
    CommitError,
    DataIntegrityError,
    InputUnavailableError,
    RunCancelled,
)

logger = logging.getLogger(__name__)


def _open_database(config):
    from tally.config.loader import resolve_path
    from tally.storage.database import Database
    from tally.storage.migrations import ensure_schema

    db = Database(
        resolve_path(config.database.path),
        busy_timeout=config.runner.commit_timeout_seconds,
    )
    ensure_schema(db)
    return db


@click.command("run")
@click.option("--dry-run", is_flag=True, help="Compute and report without committing")
@click.option("--show", "show", type=int, default=10, help="Rows to print (0 for none)")
@click.option("--export", "export_path", type=click.Path(), default=None,
              help="Also write the computed rows to this CSV file")
@click.pass_context
def run_cmd(ctx: click.Context, dry_run: bool, show: int, export_path: str | None) -> None:
    """Aggregate holdings now and replace the stored snapshot."""
    from tally.config.loader import load_config
    from tally.output.report import (
        export_csv,
        format_holdings_table,
        format_stats,
        holdings_frame,
    )
    from tally.runner.coordinator import RunCoordinator

    config = load_config(ctx.obj.get("config_path"))

    with _open_database(config) as db:
        coordinator = RunCoordinator.from_config(config, db)
        try:
            outcome = coordinator.trigger_now(dry_run=dry_run)
        except InputUnavailableError as e:
            click.echo(f"Input unavailable ({e.source}): {e}", err=True)
            raise SystemExit(1) from None
        except DataIntegrityError as e:
            click.echo(f"Data integrity error, nothing written: {e}", err=True)
            raise SystemExit(1) from None
        except CommitError as e:
            click.echo(f"Commit failed, previous snapshot kept: {e}", err=True)
            raise SystemExit(1) from None
        except (AlreadyRunning, RunCancelled) as e:
            click.echo(str(e), err=True)
            raise SystemExit(1) from None

    suffix = " (dry run, nothing written)" if outcome.dry_run else ""
    click.echo(f"\nRun {outcome.run_id} completed in {outcome.duration_seconds:.2f}s{suffix}")
    click.echo(format_stats(outcome.stats, outcome.base_currency))

    df = holdings_frame(outcome.result.holdings)
    if show > 0:
        click.echo("")
        click.echo(format_holdings_table(df, limit=show))
    if export_path:
        out = export_csv(df, export_path)
        click.echo(f"\nExported to {out}")


@click.command("schedule")
@click.option("--interval", type=int, default=None, help="Run every N seconds")
@click.option("--at", "daily_at", default=None, help="Run daily at HH:MM (24h)")
@click.option("--now", "run_now", is_flag=True, help="Also run once immediately")
@click.pass_context
def schedule_cmd(
    ctx: click.Context,
    interval: int | None,
    daily_at: str | None,
    run_now: bool,
) -> None:
    """Run aggregation on a schedule until interrupted."""
    from pydantic import ValidationError

    from tally.config.loader import load_config
    from tally.config.schema import SchedulerConfig
    from tally.runner.coordinator import RunCoordinator
    from tally.runner.scheduler import run_daemon

    config = load_config(ctx.obj.get("config_path"))
    scheduler_config = config.scheduler

    if interval is not None or daily_at is not None:
        overrides: dict = {
            "poll_seconds": scheduler_config.poll_seconds,
            "lock_file": scheduler_config.lock_file,
        }
        if interval is not None:
            overrides["interval_seconds"] = interval
        if daily_at is not None:
            overrides["daily_at"] = daily_at
        try:
            scheduler_config = SchedulerConfig(**overrides)
        except ValidationError as e:
            click.echo(f"Invalid schedule: {e}", err=True)
            raise SystemExit(1) from None

    with _open_database(config) as db:
        coordinator = RunCoordinator.from_config(config, db)
        if not run_daemon(coordinator, scheduler_config, run_immediately=run_now):
            click.echo("Another scheduler is already running.", err=True)
            raise SystemExit(1)
