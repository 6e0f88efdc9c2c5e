"""Run outcome record and the reporters that consume it.

A reporter is any callable taking a ``RunOutcome``. The coordinator calls
every reporter after each run, successful or not; a failing reporter is
logged and never affects the run.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from tally.engine.records import AggregationResult, AggregationStats
from tally.storage import queries
from tally.storage.database import Database

logger = logging.getLogger(__name__)

STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"
STATUS_CANCELLED = "cancelled"


@dataclass
class RunOutcome:
    """Summary of one aggregation run."""

    run_id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    started_at: str = field(default_factory=lambda: datetime.now().isoformat())
    completed_at: str | None = None
    duration_seconds: float = 0.0
    status: str = STATUS_FAILED
    base_currency: str = ""
    dry_run: bool = False
    stats: AggregationStats | None = None
    rows_written: int = 0
    error_type: str | None = None
    error_message: str | None = None
    result: AggregationResult | None = field(default=None, repr=False)
    """Full result, kept in memory only (not reported)."""

    @property
    def succeeded(self) -> bool:
        return self.status == STATUS_SUCCESS

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "duration_seconds": self.duration_seconds,
            "status": self.status,
            "base_currency": self.base_currency,
            "dry_run": self.dry_run,
            "stats": self.stats.to_dict() if self.stats else None,
            "rows_written": self.rows_written,
            "error_type": self.error_type,
            "error_message": self.error_message,
        }


Reporter = Callable[[RunOutcome], None]


def log_run_summary(outcome: RunOutcome) -> None:
    """Log a one-line summary of *outcome*."""
    if outcome.succeeded and outcome.stats is not None:
        s = outcome.stats
        logger.info(
            "Run %s %s in %.2fs: %d instruments, cost %.2f %s, value %.2f %s, "
            "avg P&L %.2f%%, missing quotes %d, missing rates %d%s",
            outcome.run_id,
            outcome.status,
            outcome.duration_seconds,
            s.instrument_count,
            s.grand_cost,
            outcome.base_currency,
            s.grand_value,
            outcome.base_currency,
            s.avg_pl_ratio_pct,
            s.missing_quote_count,
            s.missing_rate_count,
            " (dry run)" if outcome.dry_run else "",
        )
    elif outcome.status == STATUS_CANCELLED:
        logger.warning(
            "Run %s cancelled after %.2fs: %s",
            outcome.run_id,
            outcome.duration_seconds,
            outcome.error_message,
        )
    else:
        logger.error(
            "Run %s failed after %.2fs: %s: %s",
            outcome.run_id,
            outcome.duration_seconds,
            outcome.error_type,
            outcome.error_message,
        )


class DatabaseRunRecorder:
    """Persist each outcome to the ``aggregation_runs`` table."""

    def __init__(self, db: Database):
        self.db = db

    def __call__(self, outcome: RunOutcome) -> None:
        stats = outcome.stats.to_dict() if outcome.stats else {}
        queries.insert_aggregation_run(
            self.db,
            outcome.run_id,
            started_at=outcome.started_at,
            completed_at=outcome.completed_at,
            status=outcome.status,
            dry_run=int(outcome.dry_run),
            duration_seconds=outcome.duration_seconds,
            base_currency=outcome.base_currency,
            instrument_count=stats.get("instrument_count"),
            total_quantity_sum=stats.get("total_quantity_sum"),
            grand_cost=stats.get("grand_cost"),
            grand_value=stats.get("grand_value"),
            avg_pl_ratio_pct=stats.get("avg_pl_ratio_pct"),
            missing_quote_count=stats.get("missing_quote_count"),
            missing_rate_count=stats.get("missing_rate_count"),
            error_type=outcome.error_type,
            error_message=outcome.error_message,
        )
