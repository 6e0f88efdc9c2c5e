"""CLI command: tally import -- Load source tables from CSV files."""

from __future__ import annotations

import logging

import click

logger = logging.getLogger(__name__)


def _run_import(ctx: click.Context, path: str, kind: str, replace: bool = False) -> None:
    from tally.config.loader import load_config, resolve_path
    from tally.data.csv_import import import_csv
    from tally.storage.database import Database
    from tally.storage.migrations import ensure_schema

    config = load_config(ctx.obj.get("config_path"))

    with Database(resolve_path(config.database.path)) as db:
        ensure_schema(db)
        try:
            result = import_csv(db, path, kind, replace=replace)
        except ValueError as e:
            click.echo(f"Import failed: {e}", err=True)
            raise SystemExit(1) from None

    click.echo(f"Imported {result.rows_imported} {kind} row(s) from {path}")
    if result.errors:
        click.echo(f"Skipped {result.rows_skipped} row(s):")
        for err in result.errors:
            click.echo(f"  {err}")


@click.group("import")
@click.pass_context
def import_group(ctx: click.Context) -> None:
    """Import ledger, quotes or exchange rates into the database."""
    pass


@import_group.command("holdings")
@click.argument("path", type=click.Path(exists=True))
@click.option("--replace", is_flag=True, help="Replace the whole ledger with this file")
@click.pass_context
def import_holdings(ctx: click.Context, path: str, replace: bool) -> None:
    """Import ledger rows.

    PATH: CSV with account_id, instrument_id, quantity, cost_per_unit, currency.
    """
    _run_import(ctx, path, "holdings", replace=replace)


@import_group.command("quotes")
@click.argument("path", type=click.Path(exists=True))
@click.pass_context
def import_quotes(ctx: click.Context, path: str) -> None:
    """Import latest quotes.

    PATH: CSV with instrument_id, price, currency.
    """
    _run_import(ctx, path, "quotes")


@import_group.command("rates")
@click.argument("path", type=click.Path(exists=True))
@click.pass_context
def import_rates(ctx: click.Context, path: str) -> None:
    """Import exchange rates.

    PATH: CSV with from_currency, to_currency, rate.
    """
    _run_import(ctx, path, "rates")
