"""Atomic replace-all sink for the aggregated holdings snapshot."""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Any, Sequence

from tally.engine.records import AggregatedHolding
from tally.errors import CommitError
from tally.storage import queries
from tally.storage.database import Database

logger = logging.getLogger(__name__)

_COLUMNS = (
    "instrument_id", "company", "total_quantity", "weighted_avg_cost",
    "total_cost_original", "current_price", "cost_in_base", "value_in_base",
    "pl_ratio_pct", "cost_share_pct", "value_share_pct", "account_count",
    "original_currency", "exchange_rate", "quote_missing", "rate_missing",
    "base_currency", "rank", "run_id", "calculated_at",
)

_INSERT_SQL = (
    f"INSERT INTO aggregated_holdings ({', '.join(_COLUMNS)}) "
    f"VALUES ({', '.join(['?'] * len(_COLUMNS))})"
)


class AggregationStore:
    """Readers see either the previous snapshot or the new one, never a mix.

    ``commit`` deletes and re-inserts inside one transaction on the
    database's write connection. ``read_all`` uses the read connection, and
    WAL mode keeps it on the last committed snapshot meanwhile, whether the
    reader is another process or another thread of this one.
    """

    def __init__(self, db: Database, base_currency: str):
        self.db = db
        self.base_currency = base_currency

    def commit(self, holdings: Sequence[AggregatedHolding], run_id: str) -> int:
        """Replace the stored snapshot with *holdings* (already ranked).

        Returns the number of rows written. Raises CommitError after a full
        rollback if any step fails.
        """
        calculated_at = datetime.now().isoformat()
        rows = [
            self._to_row(h, rank, run_id, calculated_at)
            for rank, h in enumerate(holdings, start=1)
        ]
        try:
            with self.db.transaction() as cursor:
                deleted = self._delete_all(cursor)
                self._insert_rows(cursor, rows)
        except Exception as e:
            logger.error("Commit of run %s rolled back: %s", run_id, e)
            raise CommitError(f"Aggregation commit failed: {e}") from e

        logger.info(
            "Committed %d aggregated holdings (replaced %d) for run %s",
            len(rows), deleted, run_id,
        )
        return len(rows)

    def read_all(self) -> list[dict[str, Any]]:
        """The last committed snapshot, ordered by rank."""
        return queries.list_aggregated_holdings(self.db)

    def count(self) -> int:
        row = self.db.fetchone("SELECT COUNT(*) AS n FROM aggregated_holdings")
        return row["n"] if row else 0

    def _delete_all(self, cursor: sqlite3.Cursor) -> int:
        cursor.execute("DELETE FROM aggregated_holdings")
        return cursor.rowcount

    def _insert_rows(self, cursor: sqlite3.Cursor, rows: list[tuple]) -> None:
        if rows:
            cursor.executemany(_INSERT_SQL, rows)

    def _to_row(
        self,
        h: AggregatedHolding,
        rank: int,
        run_id: str,
        calculated_at: str,
    ) -> tuple:
        return (
            h.instrument_id, h.company or None, h.total_quantity,
            h.weighted_avg_cost, h.total_cost_original, h.current_price,
            h.cost_in_base, h.value_in_base, h.pl_ratio_pct,
            h.cost_share_pct, h.value_share_pct, h.account_count,
            h.original_currency, h.exchange_rate, int(h.quote_missing),
            int(h.rate_missing), self.base_currency, rank, run_id,
            calculated_at,
        )
