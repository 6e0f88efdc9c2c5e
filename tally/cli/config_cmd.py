"""Config CLI commands: show, validate."""

from __future__ import annotations

import click


@click.group("config")
def config_group() -> None:
    """Manage configuration."""
    pass


@config_group.command("show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Print the resolved configuration."""
    import yaml

    from tally.config.loader import load_config

    config = load_config(ctx.obj.get("config_path"))
    click.echo(yaml.safe_dump(config.model_dump(), sort_keys=False))


@config_group.command("validate")
@click.pass_context
def config_validate(ctx: click.Context) -> None:
    """Validate tally.yaml against the schema."""
    from tally.config.loader import load_config

    try:
        config = load_config(ctx.obj.get("config_path"))
    except Exception as e:
        click.echo(f"Config validation failed: {e}", err=True)
        raise SystemExit(1) from None

    scheduler = config.scheduler
    when = (
        f"every {scheduler.interval_seconds}s"
        if scheduler.interval_seconds is not None
        else f"daily at {scheduler.daily_at}"
    )
    click.echo("Config is valid.")
    click.echo(f"  Version: {config.version}")
    click.echo(f"  Base currency: {config.base_currency}")
    click.echo(f"  Share basis: {config.aggregation.share_basis}")
    click.echo(f"  Treasury merge: {'on' if config.aggregation.treasury.enabled else 'off'}")
    click.echo(f"  Overlap policy: {config.runner.overlap_policy}")
    click.echo(f"  Schedule: {when}")
    click.echo(f"  Database: {config.database.path}")
