"""Treasury bill detection and normalization.

Brokers report bills under many tickers (CUSIP-like ids, "TF Float ..."
floaters, a synthetic US_TBill line). They are merged into one instrument
whose quantity is face value and whose cost and price are par.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable

from tally.config.schema import TreasuryConfig
from tally.engine.records import HoldingRecord


def is_treasury(record: HoldingRecord, config: TreasuryConfig) -> bool:
    """Whether *record* is a treasury position under *config*'s rules."""
    if not config.enabled:
        return False

    ticker = record.instrument_id or ""
    if ticker in config.ticker_aliases:
        return True
    if any(ticker.startswith(prefix) for prefix in config.ticker_prefixes):
        return True

    asset_class = (record.asset_class or "").lower()
    if asset_class and asset_class in {a.lower() for a in config.asset_classes}:
        return True

    description = (record.description or "").lower()
    return any(p.lower() in description for p in config.description_patterns)


@dataclass(frozen=True)
class TreasuryLine:
    """A ledger row that will be merged into the treasury instrument."""
    record: HoldingRecord
    par_deviation: float
    off_par: bool


def check_treasury_rows(
    holdings: Iterable[HoldingRecord],
    config: TreasuryConfig,
) -> list[TreasuryLine]:
    """Classify ledger rows and flag bills whose cost is far from par.

    The merged line is costed at par, so a broker cost outside
    ``par_tolerance`` means the snapshot's P&L hides that difference.
    Rows whose cost is not numeric are reported as off par.
    """
    lines: list[TreasuryLine] = []
    for record in holdings:
        if not is_treasury(record, config):
            continue
        try:
            deviation = float(record.cost_per_unit) - config.par_price
        except (TypeError, ValueError):
            deviation = math.nan
        off_par = not math.isfinite(deviation) or abs(deviation) > config.par_tolerance
        lines.append(TreasuryLine(record, deviation, off_par))
    return sorted(lines, key=lambda line: (line.record.account_id, line.record.instrument_id))
