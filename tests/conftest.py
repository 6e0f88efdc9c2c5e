"""Shared test fixtures for Tally.

Provides reusable fixtures for databases, config and a small multi-currency
ledger with matching quotes and rates.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from tally.config.schema import TallyConfig
from tally.engine.records import ExchangeRateRecord, HoldingRecord, QuoteRecord
from tally.storage.database import Database
from tally.storage.migrations import MIGRATION_DIR, ensure_schema

# ---------------------------------------------------------------------------
# Core infrastructure
# ---------------------------------------------------------------------------

@pytest.fixture
def test_config(tmp_path: Path) -> TallyConfig:
    """Minimal config with temp database and lock paths."""
    return TallyConfig(
        base_currency="CNY",
        database={"path": str(tmp_path / "test.db")},
        scheduler={"lock_file": str(tmp_path / ".scheduler_lock")},
    )


@pytest.fixture
def test_db(tmp_path: Path) -> Database:
    """Database with schema applied, using temp file."""
    db = Database(tmp_path / "test.db")
    ensure_schema(db)
    yield db
    db.close()


@pytest.fixture
def memory_db() -> Database:
    """In-memory database for fast unit tests."""
    db = Database(":memory:")
    db.executescript((MIGRATION_DIR / "001_initial.sql").read_text())
    yield db
    db.close()


# ---------------------------------------------------------------------------
# Sample inputs
# ---------------------------------------------------------------------------

@pytest.fixture
def sample_holdings() -> list[HoldingRecord]:
    """Two accounts, three currencies, one cash line and one treasury bill."""
    return [
        HoldingRecord("AAPL", "IBKR-1", 100, 150.0, "USD", company="Apple Inc."),
        HoldingRecord("AAPL", "IBKR-2", 50, 180.0, "USD", company="Apple Inc."),
        HoldingRecord("00700", "HK-1", 200, 300.0, "HKD", company="Tencent"),
        HoldingRecord("600519", "CN-1", 10, 1500.0, "CNY", company="Kweichow Moutai"),
        HoldingRecord("CASH_USD", "IBKR-1", 5000, 1.0, "USD"),
        HoldingRecord(
            "912797GK", "IBKR-1", 10000, 0.98, "USD",
            asset_class="BOND", description="United States Treasury Bill",
        ),
    ]


@pytest.fixture
def sample_quotes() -> list[QuoteRecord]:
    return [
        QuoteRecord("AAPL", 200.0, "USD"),
        QuoteRecord("00700", 350.0, "HKD"),
        QuoteRecord("600519", 1700.0, "CNY"),
    ]


@pytest.fixture
def sample_rates() -> list[ExchangeRateRecord]:
    return [
        ExchangeRateRecord("USD", "CNY", 7.0),
        ExchangeRateRecord("HKD", "CNY", 0.9),
        ExchangeRateRecord("USD", "EUR", 0.92),
    ]


@pytest.fixture
def seeded_db(test_db, sample_holdings, sample_quotes, sample_rates) -> Database:
    """test_db with the sample ledger, quotes and rates loaded."""
    from tally.storage.queries import upsert_holdings, upsert_quotes, upsert_rates

    upsert_holdings(test_db, [
        {
            "account_id": h.account_id,
            "instrument_id": h.instrument_id,
            "company": h.company or None,
            "quantity": h.quantity,
            "cost_per_unit": h.cost_per_unit,
            "currency": h.currency,
            "asset_class": h.asset_class or None,
            "description": h.description or None,
        }
        for h in sample_holdings
    ])
    upsert_quotes(test_db, [
        {"instrument_id": q.instrument_id, "price": q.price, "currency": q.currency}
        for q in sample_quotes
    ])
    upsert_rates(test_db, [
        {"from_currency": r.from_currency, "to_currency": r.to_currency, "rate": r.rate}
        for r in sample_rates
    ])
    return test_db
