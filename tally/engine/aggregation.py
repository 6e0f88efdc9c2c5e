"""Holding aggregation: ledger + quotes + rates -> ranked per-instrument view.

The computation is a chain of pure stages over immutable inputs:

  1. validate   -- reject non-numeric / non-finite / ambiguous records
  2. group      -- one HoldingGroup per (instrument, currency), cash excluded
  3. join quotes
  4. join rates
  5. convert    -- cost and value into the base currency
  6. totals     -- grand cost / value and share denominators
  7. ratios     -- P&L and share percentages
  8. order      -- value descending, instrument id ascending
  9. summarize  -- AggregationStats

``aggregate`` runs the whole chain. Every stage is importable on its own so
it can be tested in isolation.
"""

from __future__ import annotations

import logging
import math
import numbers
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Sequence

from tally.config.schema import AggregationConfig
from tally.engine.records import (
    AggregatedHolding,
    AggregationResult,
    AggregationStats,
    ExchangeRateRecord,
    HoldingRecord,
    QuoteRecord,
)
from tally.engine.treasury import is_treasury
from tally.errors import DataIntegrityError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HoldingGroup:
    """Intermediate per-instrument state carried between stages."""
    instrument_id: str
    currency: str
    total_quantity: float
    total_cost_original: float
    weighted_avg_cost: float
    account_count: int
    company: str = ""
    is_treasury: bool = False
    current_price: float = 0.0
    quote_missing: bool = False
    exchange_rate: float = 1.0
    rate_missing: bool = False
    cost_in_base: float = 0.0
    value_in_base: float = 0.0

    @property
    def is_degraded(self) -> bool:
        return self.quote_missing or self.rate_missing


@dataclass
class _GroupAccumulator:
    quantities: list[float] = field(default_factory=list)
    costs: list[float] = field(default_factory=list)
    accounts: set[str] = field(default_factory=set)
    companies: set[str] = field(default_factory=set)
    is_treasury: bool = False


# ---------------------------------------------------------------------------
# Stage 1: validation
# ---------------------------------------------------------------------------

def _finite(value: Any, field_name: str, record: Any) -> float:
    """Return *value* as a float, or raise if it is not a finite real."""
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise DataIntegrityError(f"{field_name} is not numeric: {value!r}", record)
    result = float(value)
    if not math.isfinite(result):
        raise DataIntegrityError(f"{field_name} is not finite: {value!r}", record)
    return result


def _required_text(value: Any, field_name: str, record: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise DataIntegrityError(f"{field_name} is missing", record)
    return value


def currency_code(value: str) -> str:
    """Canonical form of an ISO currency code: " usd" and "USD" match."""
    return value.strip().upper()


def validate_holdings(holdings: Iterable[HoldingRecord]) -> None:
    """Raise DataIntegrityError on the first malformed ledger row.

    Negative quantities are valid (short positions).
    """
    for record in holdings:
        _required_text(record.instrument_id, "instrument_id", record)
        _required_text(record.account_id, "account_id", record)
        _required_text(record.currency, "currency", record)
        _finite(record.quantity, "quantity", record)
        _finite(record.cost_per_unit, "cost_per_unit", record)


def index_quotes(quotes: Iterable[QuoteRecord]) -> dict[str, QuoteRecord]:
    """Validate quotes and index them by instrument id."""
    index: dict[str, QuoteRecord] = {}
    for quote in quotes:
        _required_text(quote.instrument_id, "instrument_id", quote)
        _finite(quote.price, "price", quote)
        if quote.instrument_id in index:
            raise DataIntegrityError(
                f"Duplicate quote for {quote.instrument_id}", quote
            )
        index[quote.instrument_id] = quote
    return index


def index_rates(
    rates: Iterable[ExchangeRateRecord],
    base_currency: str,
) -> dict[str, float]:
    """Validate rates into *base_currency* and index them by source currency.

    Currency codes compare case-insensitively. Rates into any other
    currency are ignored.
    """
    base_currency = currency_code(base_currency)
    index: dict[str, float] = {}
    for rate in rates:
        to_currency = _required_text(rate.to_currency, "to_currency", rate)
        if currency_code(to_currency) != base_currency:
            continue
        from_currency = currency_code(_required_text(rate.from_currency, "from_currency", rate))
        value = _finite(rate.rate, "rate", rate)
        if value <= 0:
            raise DataIntegrityError(f"rate must be positive: {value!r}", rate)
        if from_currency in index:
            raise DataIntegrityError(
                f"Duplicate rate {from_currency}->{base_currency}", rate
            )
        index[from_currency] = value
    return index


# ---------------------------------------------------------------------------
# Stage 2: grouping
# ---------------------------------------------------------------------------

def is_cash(record: HoldingRecord, cash_prefix: str) -> bool:
    """Cash balances are pseudo-instruments tagged by an id prefix."""
    instrument_id = record.instrument_id
    return isinstance(instrument_id, str) and instrument_id.startswith(cash_prefix)


def group_holdings(
    holdings: Iterable[HoldingRecord],
    settings: AggregationConfig | None = None,
) -> list[HoldingGroup]:
    """Partition ledger rows by (instrument, currency) and total them.

    Returns groups sorted by instrument id. An instrument held in more than
    one currency cannot be represented in the output and is rejected.
    """
    settings = settings or AggregationConfig()
    treasury = settings.treasury
    buckets: dict[tuple[str, str], _GroupAccumulator] = {}

    for record in holdings:
        if is_cash(record, settings.cash_prefix):
            continue
        treasury_row = is_treasury(record, treasury)
        instrument_id = treasury.instrument_id if treasury_row else record.instrument_id
        key = (instrument_id, currency_code(record.currency))

        acc = buckets.setdefault(key, _GroupAccumulator(is_treasury=treasury_row))
        quantity = float(record.quantity)
        acc.quantities.append(quantity)
        acc.costs.append(quantity * float(record.cost_per_unit))
        acc.accounts.add(record.account_id)
        if record.company:
            acc.companies.add(record.company)

    seen: dict[str, str] = {}
    for instrument_id, currency in sorted(buckets):
        if instrument_id in seen:
            raise DataIntegrityError(
                f"{instrument_id} is held in more than one currency "
                f"({seen[instrument_id]}, {currency})"
            )
        seen[instrument_id] = currency

    groups: list[HoldingGroup] = []
    for (instrument_id, currency), acc in sorted(buckets.items()):
        total_quantity = math.fsum(acc.quantities)

        if acc.is_treasury:
            par = treasury.par_price
            total_cost = total_quantity * par
            avg_cost = par
            company = treasury.display_name
        else:
            total_cost = math.fsum(acc.costs)
            avg_cost = total_cost / total_quantity if total_quantity != 0 else 0.0
            company = max(acc.companies) if acc.companies else ""

        groups.append(HoldingGroup(
            instrument_id=instrument_id,
            currency=currency,
            total_quantity=total_quantity,
            total_cost_original=total_cost,
            weighted_avg_cost=avg_cost,
            account_count=len(acc.accounts),
            company=company,
            is_treasury=acc.is_treasury,
        ))

    if settings.drop_flat_positions:
        kept = [g for g in groups if g.total_quantity > 0]
        if len(kept) != len(groups):
            logger.debug("Dropped %d flat/short group(s)", len(groups) - len(kept))
        groups = kept

    return groups


# ---------------------------------------------------------------------------
# Stages 3-5: joins and conversion
# ---------------------------------------------------------------------------

def join_quotes(
    groups: Sequence[HoldingGroup],
    quotes: dict[str, QuoteRecord],
    par_price: float = 1.0,
) -> list[HoldingGroup]:
    """Attach the latest price. Treasury groups are always priced at par."""
    joined: list[HoldingGroup] = []
    for group in groups:
        if group.is_treasury:
            joined.append(replace(group, current_price=par_price, quote_missing=False))
            continue
        quote = quotes.get(group.instrument_id)
        if quote is None:
            joined.append(replace(group, current_price=0.0, quote_missing=True))
            continue
        quote_currency = quote.currency if isinstance(quote.currency, str) else ""
        if quote_currency.strip() and currency_code(quote_currency) != group.currency:
            logger.warning(
                "Quote currency %s differs from holding currency %s for %s",
                quote.currency,
                group.currency,
                group.instrument_id,
            )
        joined.append(replace(group, current_price=float(quote.price), quote_missing=False))
    return joined


def join_rates(
    groups: Sequence[HoldingGroup],
    rates: dict[str, float],
    base_currency: str,
) -> list[HoldingGroup]:
    """Attach the conversion factor into *base_currency*.

    A group already in the base currency converts at 1 without a rate
    record. Otherwise a missing rate falls back to 1 and is flagged.
    """
    joined: list[HoldingGroup] = []
    for group in groups:
        rate = rates.get(group.currency)
        if rate is not None:
            joined.append(replace(group, exchange_rate=rate, rate_missing=False))
        elif group.currency == currency_code(base_currency):
            joined.append(replace(group, exchange_rate=1.0, rate_missing=False))
        else:
            joined.append(replace(group, exchange_rate=1.0, rate_missing=True))
    return joined


def convert(groups: Sequence[HoldingGroup]) -> list[HoldingGroup]:
    """Compute cost and value in the base currency."""
    return [
        replace(
            group,
            cost_in_base=group.total_cost_original * group.exchange_rate,
            value_in_base=group.total_quantity * group.current_price * group.exchange_rate,
        )
        for group in groups
    ]


# ---------------------------------------------------------------------------
# Stages 6-7: totals and ratios
# ---------------------------------------------------------------------------

def grand_totals(groups: Sequence[HoldingGroup]) -> tuple[float, float]:
    """(grand cost, grand value) over every group."""
    return (
        math.fsum(g.cost_in_base for g in groups),
        math.fsum(g.value_in_base for g in groups),
    )


def share_denominators(
    groups: Sequence[HoldingGroup],
    share_basis: str = "all",
) -> tuple[float, float]:
    """(cost, value) denominators for share percentages under *share_basis*."""
    if share_basis == "complete":
        groups = [g for g in groups if not g.is_degraded]
    return grand_totals(groups)


def _pct(part: float, whole: float) -> float:
    return part / whole * 100 if whole > 0 else 0.0


def derive_ratios(
    groups: Sequence[HoldingGroup],
    cost_denominator: float,
    value_denominator: float,
    share_basis: str = "all",
) -> list[AggregatedHolding]:
    """Build output rows with P&L and share percentages."""
    exclude_degraded = share_basis == "complete"
    rows: list[AggregatedHolding] = []
    for g in groups:
        pl_ratio = (
            (g.value_in_base - g.cost_in_base) / g.cost_in_base * 100
            if g.cost_in_base > 0
            else 0.0
        )
        if exclude_degraded and g.is_degraded:
            cost_share = value_share = 0.0
        else:
            cost_share = _pct(g.cost_in_base, cost_denominator)
            value_share = _pct(g.value_in_base, value_denominator)

        rows.append(AggregatedHolding(
            instrument_id=g.instrument_id,
            total_quantity=g.total_quantity,
            weighted_avg_cost=g.weighted_avg_cost,
            total_cost_original=g.total_cost_original,
            current_price=g.current_price,
            cost_in_base=g.cost_in_base,
            value_in_base=g.value_in_base,
            pl_ratio_pct=pl_ratio,
            cost_share_pct=cost_share,
            value_share_pct=value_share,
            account_count=g.account_count,
            original_currency=g.currency,
            company=g.company,
            exchange_rate=g.exchange_rate,
            quote_missing=g.quote_missing,
            rate_missing=g.rate_missing,
        ))
    return rows


# ---------------------------------------------------------------------------
# Stages 8-9: ordering and summary
# ---------------------------------------------------------------------------

def order_holdings(rows: Iterable[AggregatedHolding]) -> tuple[AggregatedHolding, ...]:
    """Value in base descending; ties broken by instrument id ascending."""
    return tuple(sorted(rows, key=lambda r: (-r.value_in_base, r.instrument_id)))


def summarize(rows: Sequence[AggregatedHolding]) -> AggregationStats:
    """Run-level stats for an ordered result."""
    if not rows:
        return AggregationStats()

    grand_cost = math.fsum(r.cost_in_base for r in rows)
    grand_value = math.fsum(r.value_in_base for r in rows)
    missing_quotes = sorted(r.instrument_id for r in rows if r.quote_missing)
    missing_rates = sorted({r.original_currency for r in rows if r.rate_missing})

    return AggregationStats(
        instrument_count=len(rows),
        total_quantity_sum=math.fsum(r.total_quantity for r in rows),
        grand_cost=grand_cost,
        grand_value=grand_value,
        avg_pl_ratio_pct=math.fsum(r.pl_ratio_pct for r in rows) / len(rows),
        missing_quote_count=len(missing_quotes),
        missing_rate_count=sum(1 for r in rows if r.rate_missing),
        missing_quote_instruments=tuple(missing_quotes),
        missing_rate_currencies=tuple(missing_rates),
    )


# ---------------------------------------------------------------------------
# Full pipeline
# ---------------------------------------------------------------------------

def aggregate(
    holdings: Sequence[HoldingRecord],
    quotes: Sequence[QuoteRecord],
    rates: Sequence[ExchangeRateRecord],
    base_currency: str,
    settings: AggregationConfig | None = None,
) -> AggregationResult:
    """Aggregate a ledger snapshot into a ranked per-instrument view.

    Parameters:
        holdings: Ledger rows (cash pseudo-instruments are skipped).
        quotes: Latest quote per instrument.
        rates: Exchange rates; only those into *base_currency* are used.
        base_currency: Currency all converted totals are expressed in.
        settings: Aggregation options (cash prefix, share basis, treasury).

    Returns:
        AggregationResult with rows ordered by value in base currency.

    Raises:
        DataIntegrityError: a record is malformed or ambiguous. No partial
            result is produced.
    """
    settings = settings or AggregationConfig()
    base_currency = currency_code(base_currency)

    ledger = [h for h in holdings if not is_cash(h, settings.cash_prefix)]
    validate_holdings(ledger)
    quote_index = index_quotes(quotes)
    rate_index = index_rates(rates, base_currency)

    groups = group_holdings(ledger, settings)
    groups = join_quotes(groups, quote_index, settings.treasury.par_price)
    groups = join_rates(groups, rate_index, base_currency)
    groups = convert(groups)

    cost_denominator, value_denominator = share_denominators(groups, settings.share_basis)
    rows = derive_ratios(groups, cost_denominator, value_denominator, settings.share_basis)
    ordered = order_holdings(rows)
    stats = summarize(ordered)

    if stats.missing_quote_count:
        logger.warning(
            "%d instrument(s) without a quote: %s",
            stats.missing_quote_count,
            ", ".join(stats.missing_quote_instruments),
        )
    if stats.missing_rate_count:
        logger.warning(
            "%d instrument(s) without a %s rate (currencies: %s)",
            stats.missing_rate_count,
            base_currency,
            ", ".join(stats.missing_rate_currencies),
        )
    logger.debug(
        "Aggregated %d ledger rows into %d instruments",
        len(ledger),
        stats.instrument_count,
    )

    return AggregationResult(holdings=ordered, stats=stats, base_currency=base_currency)
