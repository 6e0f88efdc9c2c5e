"""Input and output record types for holding aggregation."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass(frozen=True)
class HoldingRecord:
    """One ledger row: a position in one instrument inside one account."""
    instrument_id: str
    account_id: str
    quantity: float
    cost_per_unit: float
    currency: str
    company: str = ""
    asset_class: str = ""
    description: str = ""


@dataclass(frozen=True)
class QuoteRecord:
    """Latest known price for an instrument."""
    instrument_id: str
    price: float
    currency: str


@dataclass(frozen=True)
class ExchangeRateRecord:
    """Conversion rate: 1 unit of ``from_currency`` = ``rate`` ``to_currency``."""
    from_currency: str
    to_currency: str
    rate: float


@dataclass(frozen=True)
class AggregatedHolding:
    """Per-instrument aggregate, expressed in original and base currency."""
    instrument_id: str
    total_quantity: float
    weighted_avg_cost: float
    total_cost_original: float
    current_price: float
    cost_in_base: float
    value_in_base: float
    pl_ratio_pct: float
    cost_share_pct: float
    value_share_pct: float
    account_count: int
    original_currency: str
    company: str = ""
    exchange_rate: float = 1.0
    quote_missing: bool = False
    rate_missing: bool = False

    @property
    def is_degraded(self) -> bool:
        """True when the row was computed without a quote or a rate."""
        return self.quote_missing or self.rate_missing

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AggregationStats:
    """Run-level summary of one aggregation result."""
    instrument_count: int = 0
    total_quantity_sum: float = 0.0
    grand_cost: float = 0.0
    grand_value: float = 0.0
    avg_pl_ratio_pct: float = 0.0
    missing_quote_count: int = 0
    missing_rate_count: int = 0
    missing_quote_instruments: tuple[str, ...] = ()
    missing_rate_currencies: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["missing_quote_instruments"] = list(self.missing_quote_instruments)
        data["missing_rate_currencies"] = list(self.missing_rate_currencies)
        return data


@dataclass(frozen=True)
class AggregationResult:
    """Ordered aggregate rows plus their summary stats."""
    holdings: tuple[AggregatedHolding, ...] = ()
    stats: AggregationStats = field(default_factory=AggregationStats)
    base_currency: str = ""

    def __len__(self) -> int:
        return len(self.holdings)

    def get(self, instrument_id: str) -> AggregatedHolding | None:
        for holding in self.holdings:
            if holding.instrument_id == instrument_id:
                return holding
        return None
