"""CLI commands: tally holdings, tally runs."""

from __future__ import annotations

import click


@click.command("holdings")
@click.option("--limit", type=int, default=None, help="Show only the top N rows")
@click.option("--export", "export_path", type=click.Path(), default=None,
              help="Write the committed snapshot to this CSV file")
@click.pass_context
def holdings_cmd(ctx: click.Context, limit: int | None, export_path: str | None) -> None:
    """Show the last committed aggregated holdings."""
    from tally.config.loader import load_config, resolve_path
    from tally.output.report import export_csv, format_holdings_table, holdings_frame
    from tally.storage.database import Database
    from tally.storage.migrations import ensure_schema
    from tally.storage.queries import get_latest_aggregation_run, list_aggregated_holdings

    config = load_config(ctx.obj.get("config_path"))

    with Database(resolve_path(config.database.path)) as db:
        ensure_schema(db)
        rows = list_aggregated_holdings(db)
        latest = get_latest_aggregation_run(db)

    df = holdings_frame(rows)
    if rows:
        click.echo(
            f"Snapshot from run {rows[0]['run_id']} at {rows[0]['calculated_at']} "
            f"({len(rows)} instruments, base {rows[0]['base_currency']})"
        )
    if latest and latest["status"] != "success":
        click.echo(
            f"Note: latest run {latest['run_id']} {latest['status']}: {latest['error_message']}"
        )
    click.echo(format_holdings_table(df, limit=limit))

    if export_path:
        out = export_csv(df, export_path)
        click.echo(f"Exported to {out}")


@click.command("runs")
@click.option("--limit", type=int, default=20, help="Number of runs to list")
@click.pass_context
def runs_cmd(ctx: click.Context, limit: int) -> None:
    """List recent aggregation runs."""
    from tally.config.loader import load_config, resolve_path
    from tally.storage.database import Database
    from tally.storage.migrations import ensure_schema
    from tally.storage.queries import list_aggregation_runs

    config = load_config(ctx.obj.get("config_path"))

    with Database(resolve_path(config.database.path)) as db:
        ensure_schema(db)
        runs = list_aggregation_runs(db, limit=limit)

    if not runs:
        click.echo("No runs recorded.")
        return

    for run in runs:
        line = (
            f"{run['run_id']}  {run['started_at'][:19]}  {run['status']:<9}"
            f"  {run['duration_seconds'] or 0:.2f}s"
        )
        if run["dry_run"]:
            line += "  (dry run)"
        if run["status"] == "success":
            line += (
                f"  {run['instrument_count']} instruments"
                f"  value {run['grand_value']:,.2f} {run['base_currency']}"
                f"  missing q/r {run['missing_quote_count']}/{run['missing_rate_count']}"
            )
        else:
            line += f"  {run['error_type']}: {run['error_message']}"
        click.echo(line)
