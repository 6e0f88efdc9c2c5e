"""Tabular views of the aggregated snapshot (terminal table, CSV export)."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable, Sequence

import pandas as pd

from tally.engine.records import AggregatedHolding, AggregationStats
from tally.engine.treasury import TreasuryLine

logger = logging.getLogger(__name__)

DISPLAY_COLUMNS = [
    "rank",
    "instrument_id",
    "company",
    "total_quantity",
    "weighted_avg_cost",
    "current_price",
    "original_currency",
    "cost_in_base",
    "value_in_base",
    "pl_ratio_pct",
    "value_share_pct",
    "account_count",
    "flags",
]

_COLUMN_LABELS = {
    "rank": "#",
    "instrument_id": "Instrument",
    "company": "Company",
    "total_quantity": "Qty",
    "weighted_avg_cost": "Avg Cost",
    "current_price": "Price",
    "original_currency": "Ccy",
    "cost_in_base": "Cost",
    "value_in_base": "Value",
    "pl_ratio_pct": "P&L %",
    "value_share_pct": "Weight %",
    "account_count": "Accts",
    "flags": "Flags",
}


def _flags(row: dict[str, Any]) -> str:
    flags = []
    if row.get("quote_missing"):
        flags.append("no-quote")
    if row.get("rate_missing"):
        flags.append("no-rate")
    return ",".join(flags)


def holdings_frame(rows: Iterable[dict[str, Any] | AggregatedHolding]) -> pd.DataFrame:
    """DataFrame of aggregated rows, from store dicts or in-memory holdings.

    In-memory holdings are ranked in the order given.
    """
    records: list[dict[str, Any]] = []
    for position, row in enumerate(rows, start=1):
        data = row.to_dict() if isinstance(row, AggregatedHolding) else dict(row)
        data.setdefault("rank", position)
        data["quote_missing"] = bool(data.get("quote_missing"))
        data["rate_missing"] = bool(data.get("rate_missing"))
        data["flags"] = _flags(data)
        records.append(data)

    df = pd.DataFrame.from_records(records)
    if df.empty:
        return pd.DataFrame(columns=DISPLAY_COLUMNS)
    return df.sort_values("rank").reset_index(drop=True)


def format_holdings_table(df: pd.DataFrame, limit: int | None = None) -> str:
    """Fixed-width table for the terminal."""
    if df.empty:
        return "No aggregated holdings."
    view = df[[c for c in DISPLAY_COLUMNS if c in df.columns]]
    if limit is not None:
        view = view.head(limit)
    view = view.rename(columns=_COLUMN_LABELS)
    return view.to_string(index=False, float_format=lambda v: f"{v:,.2f}")


def format_stats(stats: AggregationStats, base_currency: str) -> str:
    """Multi-line run summary."""
    lines = [
        f"Instruments:     {stats.instrument_count}",
        f"Total cost:      {stats.grand_cost:,.2f} {base_currency}",
        f"Total value:     {stats.grand_value:,.2f} {base_currency}",
        f"Avg P&L:         {stats.avg_pl_ratio_pct:.2f}%",
        f"Missing quotes:  {stats.missing_quote_count}",
        f"Missing rates:   {stats.missing_rate_count}",
    ]
    if stats.missing_quote_instruments:
        lines.append(f"  no quote: {', '.join(stats.missing_quote_instruments)}")
    if stats.missing_rate_currencies:
        lines.append(f"  no rate:  {', '.join(stats.missing_rate_currencies)}")
    return "\n".join(lines)


def export_csv(df: pd.DataFrame, path: str | Path) -> Path:
    """Write the full snapshot (all columns) to CSV."""
    out = Path(path).expanduser()
    out.parent.mkdir(parents=True, exist_ok=True)
    df.drop(columns=["flags"], errors="ignore").to_csv(out, index=False)
    logger.info("Exported %d aggregated holdings to %s", len(df), out)
    return out


def format_treasury_lines(lines: Sequence[TreasuryLine]) -> str:
    """Ledger rows classed as treasury, with off-par costs called out."""
    if not lines:
        return "No treasury rows in the ledger."
    out = [f"{len(lines)} treasury row(s) in the ledger:"]
    for line in lines:
        r = line.record
        out.append(
            f"  {r.account_id} - {r.instrument_id}: {r.quantity} @ {r.cost_per_unit} {r.currency}"
        )
        if line.off_par:
            out.append(
                f"    cost {r.cost_per_unit} is off par by {line.par_deviation:+.4f}"
            )
    return "\n".join(out)


def format_treasury_summary(
    row: dict[str, Any] | None,
    base_currency: str | None = None,
) -> str:
    """The merged treasury line of a snapshot (store row or holdings_frame record)."""
    if row is None:
        return "No treasury line in the committed snapshot."
    base = base_currency or row.get("base_currency", "")
    ccy = row["original_currency"]
    return "\n".join([
        f"{row['instrument_id']} ({row['company'] or ''})",
        f"  Face value:    {row['total_quantity']:,.2f} {ccy}",
        f"  Avg cost:      {row['weighted_avg_cost']:.4f} {ccy}",
        f"  Cost:          {row['cost_in_base']:,.2f} {base}",
        f"  Value:         {row['value_in_base']:,.2f} {base}",
        f"  P&L:           {row['pl_ratio_pct']:.2f}%",
        f"  Accounts:      {row['account_count']}",
        f"  Cost share:    {row['cost_share_pct']:.2f}%",
        f"  Value share:   {row['value_share_pct']:.2f}%",
    ])
