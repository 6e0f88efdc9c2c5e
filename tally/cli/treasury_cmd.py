"""CLI commands: tally treasury check, tally treasury summary."""

from __future__ import annotations

import click


@click.group("treasury")
def treasury_group() -> None:
    """Inspect treasury bills merged into one instrument."""


@treasury_group.command("check")
@click.option("--strict", is_flag=True, help="Exit 1 when any row is off par")
@click.pass_context
def check_cmd(ctx: click.Context, strict: bool) -> None:
    """List ledger rows classed as treasury and flag off-par costs."""
    from tally.config.loader import load_config, resolve_path
    from tally.data.sources import DatabaseSources
    from tally.engine.treasury import check_treasury_rows
    from tally.output.report import format_treasury_lines
    from tally.storage.database import Database
    from tally.storage.migrations import ensure_schema

    config = load_config(ctx.obj.get("config_path"))
    treasury = config.aggregation.treasury
    if not treasury.enabled:
        click.echo("Treasury merging is disabled in config.")
        return

    with Database(resolve_path(config.database.path)) as db:
        ensure_schema(db)
        lines = check_treasury_rows(DatabaseSources(db).read_holdings(), treasury)

    click.echo(format_treasury_lines(lines))
    off_par = sum(1 for line in lines if line.off_par)
    if off_par:
        click.echo(
            f"{off_par} row(s) differ from par {treasury.par_price} "
            f"by more than {treasury.par_tolerance}"
        )
        if strict:
            raise SystemExit(1)


@treasury_group.command("summary")
@click.pass_context
def summary_cmd(ctx: click.Context) -> None:
    """Show the merged treasury line of the committed snapshot."""
    from tally.config.loader import load_config, resolve_path
    from tally.output.report import format_treasury_summary
    from tally.storage.database import Database
    from tally.storage.migrations import ensure_schema
    from tally.storage.queries import get_aggregated_holding

    config = load_config(ctx.obj.get("config_path"))

    with Database(resolve_path(config.database.path)) as db:
        ensure_schema(db)
        row = get_aggregated_holding(db, config.aggregation.treasury.instrument_id)

    click.echo(format_treasury_summary(row))
