"""Read side of a run: ledger, quote and rate snapshots.

The coordinator only needs something with ``read_holdings``, ``read_quotes``
and ``read_rates``. ``DatabaseSources`` reads the SQLite source tables;
``MemorySources`` serves fixed lists (tests, dry runs over CSV data).
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol, Sequence

from tally.engine.aggregation import currency_code
from tally.engine.records import ExchangeRateRecord, HoldingRecord, QuoteRecord
from tally.errors import InputUnavailableError, TallyError
from tally.storage import queries
from tally.storage.database import Database

logger = logging.getLogger(__name__)


class InputSources(Protocol):
    def read_holdings(self) -> Sequence[HoldingRecord]: ...

    def read_quotes(self) -> Sequence[QuoteRecord]: ...

    def read_rates(self, base_currency: str) -> Sequence[ExchangeRateRecord]: ...


@dataclass(frozen=True)
class SourceSnapshot:
    """All three inputs captured once for a single run."""
    holdings: tuple[HoldingRecord, ...]
    quotes: tuple[QuoteRecord, ...]
    rates: tuple[ExchangeRateRecord, ...]
    base_currency: str
    captured_at: str = field(default_factory=lambda: datetime.now().isoformat())


class DatabaseSources:
    """Source tables in the tally SQLite database."""

    def __init__(self, db: Database):
        self.db = db

    def read_holdings(self) -> list[HoldingRecord]:
        return [
            HoldingRecord(
                instrument_id=row["instrument_id"],
                account_id=row["account_id"],
                quantity=row["quantity"],
                cost_per_unit=row["cost_per_unit"],
                currency=row["currency"],
                company=row["company"] or "",
                asset_class=row["asset_class"] or "",
                description=row["description"] or "",
            )
            for row in queries.list_holdings(self.db)
        ]

    def read_quotes(self) -> list[QuoteRecord]:
        return [
            QuoteRecord(row["instrument_id"], row["price"], row["currency"])
            for row in queries.list_quotes(self.db)
        ]

    def read_rates(self, base_currency: str) -> list[ExchangeRateRecord]:
        return [
            ExchangeRateRecord(row["from_currency"], row["to_currency"], row["rate"])
            for row in queries.list_rates(self.db, to_currency=base_currency)
        ]


class MemorySources:
    """Fixed in-memory inputs."""

    def __init__(
        self,
        holdings: Sequence[HoldingRecord] = (),
        quotes: Sequence[QuoteRecord] = (),
        rates: Sequence[ExchangeRateRecord] = (),
    ):
        self.holdings = list(holdings)
        self.quotes = list(quotes)
        self.rates = list(rates)

    def read_holdings(self) -> list[HoldingRecord]:
        return list(self.holdings)

    def read_quotes(self) -> list[QuoteRecord]:
        return list(self.quotes)

    def read_rates(self, base_currency: str) -> list[ExchangeRateRecord]:
        # Malformed targets pass through so the engine can reject them.
        base = currency_code(base_currency)
        return [
            r for r in self.rates
            if not isinstance(r.to_currency, str) or currency_code(r.to_currency) == base
        ]


def capture_snapshot(
    sources: InputSources,
    base_currency: str,
    timeout: float | None = None,
) -> SourceSnapshot:
    """Read holdings, quotes and rates once, bounded by *timeout* seconds.

    Any read failure, including the timeout, surfaces as
    InputUnavailableError naming the source being read. A timed-out read is
    abandoned, not retried.
    """
    stage = ["holdings"]

    def _read() -> SourceSnapshot:
        holdings = tuple(sources.read_holdings())
        stage[0] = "quotes"
        quotes = tuple(sources.read_quotes())
        stage[0] = "rates"
        rates = tuple(sources.read_rates(base_currency))
        return SourceSnapshot(holdings, quotes, rates, base_currency)

    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="tally-read")
    future = executor.submit(_read)
    try:
        snapshot = future.result(timeout=timeout)
    except FuturesTimeout as e:
        if future.done():
            # The source itself raised TimeoutError.
            raise InputUnavailableError(stage[0], str(e) or "read timed out") from e
        raise InputUnavailableError(
            stage[0], f"read timed out after {timeout:g}s"
        ) from None
    except TallyError:
        raise
    except Exception as e:
        raise InputUnavailableError(stage[0], str(e)) from e
    finally:
        executor.shutdown(wait=False, cancel_futures=True)

    logger.debug(
        "Captured snapshot: %d holdings, %d quotes, %d rates",
        len(snapshot.holdings),
        len(snapshot.quotes),
        len(snapshot.rates),
    )
    return snapshot
