"""Top-level CLI entry point for Tally."""

from __future__ import annotations

import logging
from pathlib import Path

import click

from tally import __version__


@click.group()
@click.version_option(version=__version__, prog_name="tally")
@click.option(
    "--config",
    type=click.Path(),
    default=None,
    envvar="TALLY_CONFIG",
    help="Path to tally.yaml",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx: click.Context, config: str | None, verbose: bool) -> None:
    """Tally -- holding aggregation engine."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config

    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


# Register sub-commands
from tally.cli.config_cmd import config_group  # noqa: E402
from tally.cli.holdings_cmd import holdings_cmd, runs_cmd  # noqa: E402
from tally.cli.import_cmd import import_group  # noqa: E402
from tally.cli.run_cmd import run_cmd, schedule_cmd  # noqa: E402
from tally.cli.treasury_cmd import treasury_group  # noqa: E402

cli.add_command(config_group, "config")
cli.add_command(holdings_cmd, "holdings")
cli.add_command(import_group, "import")
cli.add_command(run_cmd, "run")
cli.add_command(runs_cmd, "runs")
cli.add_command(schedule_cmd, "schedule")
cli.add_command(treasury_group, "treasury")


@cli.command()
@click.pass_context
def init(ctx: click.Context) -> None:
    """Initialize Tally: create the database and an example config."""
    from tally.config.loader import load_config, resolve_path
    from tally.storage.database import Database
    from tally.storage.migrations import ensure_schema

    config = load_config(ctx.obj.get("config_path"))

    tally_dir = Path("~/.tally").expanduser()
    tally_dir.mkdir(parents=True, exist_ok=True)

    # Create/migrate database
    db_path = resolve_path(config.database.path)
    click.echo(f"  Database: {db_path}")

    with Database(db_path) as db:
        version = ensure_schema(db)
        click.echo(f"  Schema version: {version}")

    # Copy example config if none exists
    user_config = tally_dir / "config.yaml"
    if not user_config.exists():
        example = Path(__file__).parent.parent.parent / "tally.yaml.example"
        if example.exists():
            import shutil
            shutil.copy2(example, user_config)
            click.echo(f"  Copied example config to {user_config}")

    click.echo("\nTally initialized successfully.")
    click.echo("Next steps:")
    click.echo("  1. Run: tally import holdings ledger.csv  (and quotes / rates)")
    click.echo("  2. Run: tally run                         (aggregate once)")
    click.echo("  3. Run: tally schedule                    (daily aggregation)")
