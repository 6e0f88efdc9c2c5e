"""Holding aggregation engine.

Public API:
  aggregate          -- Ledger + quotes + rates -> AggregationResult
  AggregationResult  -- Ordered AggregatedHolding rows plus AggregationStats
  HoldingRecord, QuoteRecord, ExchangeRateRecord -- input records
"""

from tally.engine.aggregation import aggregate
from tally.engine.records import (
    AggregatedHolding,
    AggregationResult,
    AggregationStats,
    ExchangeRateRecord,
    HoldingRecord,
    QuoteRecord,
)

__all__ = [
    "AggregatedHolding",
    "AggregationResult",
    "AggregationStats",
    "ExchangeRateRecord",
    "HoldingRecord",
    "QuoteRecord",
    "aggregate",
]
