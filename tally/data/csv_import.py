"""CSV import of the source tables (holdings ledger, quotes, exchange rates).

Each file needs a header row. Column names are matched case-insensitively
after stripping whitespace; extra columns are ignored.

  holdings: account_id, instrument_id, quantity, cost_per_unit, currency
            [company, asset_class, description]
  quotes:   instrument_id, price, currency
  rates:    from_currency, to_currency, rate
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pandas as pd

from tally.storage import queries
from tally.storage.database import Database

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS: dict[str, tuple[str, ...]] = {
    "holdings": ("account_id", "instrument_id", "quantity", "cost_per_unit", "currency"),
    "quotes": ("instrument_id", "price", "currency"),
    "rates": ("from_currency", "to_currency", "rate"),
}

OPTIONAL_COLUMNS: dict[str, tuple[str, ...]] = {
    "holdings": ("company", "asset_class", "description"),
    "quotes": (),
    "rates": (),
}

_NUMERIC_COLUMNS = frozenset({"quantity", "cost_per_unit", "price", "rate"})
_CURRENCY_COLUMNS = frozenset({"currency", "from_currency", "to_currency"})

_WRITERS = {
    "holdings": queries.upsert_holdings,
    "quotes": queries.upsert_quotes,
    "rates": queries.upsert_rates,
}


@dataclass
class ImportResult:
    """Result of one CSV import."""

    kind: str
    rows_imported: int = 0
    rows_skipped: int = 0
    errors: list[str] = field(default_factory=list)


def read_source_csv(path: str | Path, kind: str) -> tuple[list[dict[str, Any]], list[str]]:
    """Parse a source CSV into row dicts.

    Returns (rows, errors). Rows with a blank key or a non-numeric value
    are reported in *errors* and left out.

    Raises:
        ValueError: unknown *kind* or a required column is missing.
    """
    if kind not in REQUIRED_COLUMNS:
        raise ValueError(f"Unknown import kind {kind!r}; expected one of {sorted(REQUIRED_COLUMNS)}")

    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    df.columns = [str(c).strip().lower() for c in df.columns]

    required = REQUIRED_COLUMNS[kind]
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise ValueError(f"{Path(path).name}: missing column(s) {', '.join(missing)}")

    columns = required + tuple(c for c in OPTIONAL_COLUMNS[kind] if c in df.columns)
    rows: list[dict[str, Any]] = []
    errors: list[str] = []

    # Header is line 1
    for line_no, (_, raw) in enumerate(df[list(columns)].iterrows(), start=2):
        row: dict[str, Any] = {}
        problem = None
        for col in columns:
            value = str(raw[col]).strip()
            if col in _NUMERIC_COLUMNS:
                number = pd.to_numeric(value, errors="coerce")
                if pd.isna(number):
                    problem = f"line {line_no}: {col} is not numeric ({value!r})"
                    break
                row[col] = float(number)
            elif col in _CURRENCY_COLUMNS:
                row[col] = value.upper()
            else:
                row[col] = value or None
            if col in required and not value:
                problem = f"line {line_no}: {col} is empty"
                break
        if problem:
            errors.append(problem)
            continue
        rows.append(row)

    return rows, errors


def import_csv(
    db: Database,
    path: str | Path,
    kind: str,
    *,
    replace: bool = False,
) -> ImportResult:
    """Load a CSV into the *kind* source table.

    With ``replace`` (holdings only) the existing ledger is swapped for the
    file's rows in one transaction, so positions missing from the file
    disappear from the ledger.
    """
    if replace and kind != "holdings":
        raise ValueError("replace is only supported for holdings")
    rows, errors = read_source_csv(path, kind)
    result = ImportResult(kind=kind, rows_skipped=len(errors), errors=errors)

    for err in errors:
        logger.warning("Skipping %s row: %s", kind, err)

    if replace:
        result.rows_imported = queries.upsert_holdings(db, rows, replace=True)
    else:
        result.rows_imported = _WRITERS[kind](db, rows)
    logger.info(
        "Imported %d %s row(s) from %s (%d skipped)",
        result.rows_imported,
        kind,
        path,
        result.rows_skipped,
    )
    return result
