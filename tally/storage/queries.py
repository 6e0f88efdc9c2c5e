"""Named query functions for database operations."""

from __future__ import annotations

from typing import Any, Iterable

from tally.storage.database import Database

# ---------------------------------------------------------------------------
# Holdings ledger
# ---------------------------------------------------------------------------

def upsert_holdings(
    db: Database,
    rows: Iterable[dict[str, Any]],
    *,
    replace: bool = False,
) -> int:
    """Insert or update ledger rows keyed by (account_id, instrument_id).

    With ``replace`` the existing ledger is deleted in the same transaction.
    Returns the number of rows written.
    """
    params = [
        (
            r["account_id"], r["instrument_id"], r.get("company"),
            r["quantity"], r["cost_per_unit"], r["currency"],
            r.get("asset_class"), r.get("description"),
        )
        for r in rows
    ]
    with db.transaction() as cur:
        if replace:
            cur.execute("DELETE FROM holdings")
        cur.executemany(
            """INSERT INTO holdings (
                account_id, instrument_id, company, quantity, cost_per_unit,
                currency, asset_class, description, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, datetime('now'))
            ON CONFLICT(account_id, instrument_id) DO UPDATE SET
                company=excluded.company, quantity=excluded.quantity,
                cost_per_unit=excluded.cost_per_unit, currency=excluded.currency,
                asset_class=excluded.asset_class, description=excluded.description,
                updated_at=datetime('now')
            """,
            params,
        )
    return len(params)


def list_holdings(db: Database) -> list[dict[str, Any]]:
    rows = db.fetchall(
        "SELECT * FROM holdings ORDER BY instrument_id, account_id"
    )
    return [dict(r) for r in rows]


# ---------------------------------------------------------------------------
# Quotes
# ---------------------------------------------------------------------------

def upsert_quotes(db: Database, rows: Iterable[dict[str, Any]]) -> int:
    """Insert or replace the latest quote per instrument."""
    params = [(r["instrument_id"], r["price"], r["currency"]) for r in rows]
    with db.transaction() as cur:
        cur.executemany(
            """INSERT INTO quotes (instrument_id, price, currency, updated_at)
            VALUES (?, ?, ?, datetime('now'))
            ON CONFLICT(instrument_id) DO UPDATE SET
                price=excluded.price, currency=excluded.currency,
                updated_at=datetime('now')
            """,
            params,
        )
    return len(params)


def list_quotes(db: Database) -> list[dict[str, Any]]:
    rows = db.fetchall("SELECT * FROM quotes ORDER BY instrument_id")
    return [dict(r) for r in rows]


# ---------------------------------------------------------------------------
# Exchange rates
# ---------------------------------------------------------------------------

def upsert_rates(db: Database, rows: Iterable[dict[str, Any]]) -> int:
    """Insert or replace exchange rates keyed by currency pair."""
    params = [(r["from_currency"], r["to_currency"], r["rate"]) for r in rows]
    with db.transaction() as cur:
        cur.executemany(
            """INSERT INTO exchange_rates (from_currency, to_currency, rate, updated_at)
            VALUES (?, ?, ?, datetime('now'))
            ON CONFLICT(from_currency, to_currency) DO UPDATE SET
                rate=excluded.rate, updated_at=datetime('now')
            """,
            params,
        )
    return len(params)


def list_rates(db: Database, to_currency: str | None = None) -> list[dict[str, Any]]:
    """List exchange rates, optionally only those into *to_currency*."""
    if to_currency is None:
        rows = db.fetchall(
            "SELECT * FROM exchange_rates ORDER BY from_currency, to_currency"
        )
    else:
        rows = db.fetchall(
            "SELECT * FROM exchange_rates WHERE UPPER(TRIM(to_currency)) = ? "
            "ORDER BY from_currency",
            (to_currency.strip().upper(),),
        )
    return [dict(r) for r in rows]


# ---------------------------------------------------------------------------
# Aggregated snapshot
# ---------------------------------------------------------------------------

def list_aggregated_holdings(db: Database, limit: int | None = None) -> list[dict[str, Any]]:
    """The committed snapshot, ordered by rank."""
    if limit is None:
        rows = db.fetchall("SELECT * FROM aggregated_holdings ORDER BY rank")
    else:
        rows = db.fetchall(
            "SELECT * FROM aggregated_holdings ORDER BY rank LIMIT ?", (limit,)
        )
    return [dict(r) for r in rows]


def get_aggregated_holding(db: Database, instrument_id: str) -> dict[str, Any] | None:
    row = db.fetchone(
        "SELECT * FROM aggregated_holdings WHERE instrument_id = ?", (instrument_id,)
    )
    return dict(row) if row else None


# ---------------------------------------------------------------------------
# Aggregation Runs
# ---------------------------------------------------------------------------

def insert_aggregation_run(db: Database, run_id: str, **kwargs: Any) -> str:
    """Record a finished run. Returns run_id."""
    cols = ["run_id"] + list(kwargs.keys())
    placeholders = ", ".join(["?"] * len(cols))
    col_names = ", ".join(cols)
    values = [run_id] + list(kwargs.values())
    with db.transaction() as cur:
        cur.execute(
            f"INSERT OR REPLACE INTO aggregation_runs ({col_names}) VALUES ({placeholders})",
            tuple(values),
        )
    return run_id


def get_latest_aggregation_run(db: Database) -> dict[str, Any] | None:
    """Get the most recent run."""
    row = db.fetchone(
        "SELECT * FROM aggregation_runs ORDER BY started_at DESC LIMIT 1"
    )
    return dict(row) if row else None


def list_aggregation_runs(db: Database, limit: int = 20) -> list[dict[str, Any]]:
    """List recent runs, newest first."""
    rows = db.fetchall(
        "SELECT * FROM aggregation_runs ORDER BY started_at DESC LIMIT ?",
        (limit,),
    )
    return [dict(r) for r in rows]
