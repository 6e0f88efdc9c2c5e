"""Tests for the holding aggregation engine."""

from __future__ import annotations

import math

import pytest

from tally.config.schema import AggregationConfig, TreasuryConfig
from tally.engine.aggregation import (
    aggregate,
    convert,
    group_holdings,
    index_quotes,
    index_rates,
    join_quotes,
    join_rates,
    order_holdings,
    share_denominators,
    summarize,
    validate_holdings,
)
from tally.engine.records import (
    AggregatedHolding,
    ExchangeRateRecord,
    HoldingRecord,
    QuoteRecord,
)
from tally.engine.treasury import check_treasury_rows, is_treasury
from tally.errors import DataIntegrityError


def _row(instrument_id: str, value: float) -> AggregatedHolding:
    return AggregatedHolding(
        instrument_id=instrument_id, total_quantity=1, weighted_avg_cost=1,
        total_cost_original=1, current_price=1, cost_in_base=1,
        value_in_base=value, pl_ratio_pct=0, cost_share_pct=0,
        value_share_pct=0, account_count=1, original_currency="USD",
    )


# ---------------------------------------------------------------------------
# Reference scenarios
# ---------------------------------------------------------------------------

class TestScenarios:
    """Worked examples with hand-checked numbers."""

    def test_two_accounts_one_instrument(self):
        holdings = [
            HoldingRecord("X", "A", 100, 10, "USD"),
            HoldingRecord("X", "B", 50, 12, "USD"),
        ]
        quotes = [QuoteRecord("X", 15, "USD")]
        rates = [ExchangeRateRecord("USD", "USD", 1)]

        result = aggregate(holdings, quotes, rates, "USD")

        x = result.get("X")
        assert x.total_quantity == 150
        assert x.total_cost_original == 1600
        assert x.weighted_avg_cost == pytest.approx(10.6667, abs=1e-4)
        assert x.value_in_base == 2250
        assert x.pl_ratio_pct == pytest.approx(40.625)
        assert x.account_count == 2
        assert x.cost_share_pct == pytest.approx(100)
        assert x.value_share_pct == pytest.approx(100)

    def test_missing_quote(self):
        holdings = [HoldingRecord("Y", "A", 10, 5, "USD")]
        rates = [ExchangeRateRecord("USD", "USD", 1)]

        result = aggregate(holdings, [], rates, "USD")

        y = result.get("Y")
        assert y.current_price == 0
        assert y.value_in_base == 0
        assert y.pl_ratio_pct == pytest.approx(-100)
        assert y.quote_missing is True
        assert result.stats.missing_quote_count == 1
        assert result.stats.missing_quote_instruments == ("Y",)

    def test_cash_excluded_everywhere(self):
        holdings = [
            HoldingRecord("X", "A", 10, 10, "USD"),
            HoldingRecord("CASH_USD", "A", 1_000_000, 1, "USD"),
        ]
        quotes = [QuoteRecord("X", 10, "USD"), QuoteRecord("CASH_USD", 1, "USD")]

        result = aggregate(holdings, quotes, [], "USD")

        assert [h.instrument_id for h in result.holdings] == ["X"]
        assert result.stats.grand_cost == 100
        assert result.stats.grand_value == 100
        assert result.get("X").value_share_pct == pytest.approx(100)

    def test_sample_portfolio(self, sample_holdings, sample_quotes, sample_rates):
        result = aggregate(sample_holdings, sample_quotes, sample_rates, "CNY")

        assert [h.instrument_id for h in result.holdings] == [
            "AAPL", "US_TBill", "00700", "600519",
        ]
        aapl = result.get("AAPL")
        assert aapl.weighted_avg_cost == pytest.approx(160)
        assert aapl.cost_in_base == pytest.approx(168_000)
        assert aapl.value_in_base == pytest.approx(210_000)
        assert aapl.pl_ratio_pct == pytest.approx(25)
        assert aapl.exchange_rate == 7.0

        assert result.stats.grand_cost == pytest.approx(307_000)
        assert result.stats.grand_value == pytest.approx(360_000)
        assert result.stats.missing_quote_count == 0
        assert result.stats.missing_rate_count == 0
        assert result.base_currency == "CNY"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

class TestValidation:
    """Malformed records abort the run and are named in the error."""

    @pytest.mark.parametrize("bad", [float("nan"), float("inf"), "12", None, True])
    def test_bad_quantity(self, bad):
        record = HoldingRecord("X", "A", bad, 10, "USD")
        with pytest.raises(DataIntegrityError) as exc:
            aggregate([record], [], [], "USD")
        assert exc.value.record == record

    def test_bad_cost(self):
        with pytest.raises(DataIntegrityError, match="cost_per_unit"):
            validate_holdings([HoldingRecord("X", "A", 1, float("nan"), "USD")])

    def test_negative_quantity_allowed(self):
        result = aggregate([HoldingRecord("X", "A", -5, 10, "USD")], [], [], "USD")
        assert result.get("X").total_quantity == -5

    def test_missing_currency(self):
        with pytest.raises(DataIntegrityError, match="currency"):
            validate_holdings([HoldingRecord("X", "A", 1, 1, "")])

    def test_bad_price(self):
        with pytest.raises(DataIntegrityError, match="price"):
            index_quotes([QuoteRecord("X", float("nan"), "USD")])

    def test_duplicate_quote(self):
        quotes = [QuoteRecord("X", 1, "USD"), QuoteRecord("X", 2, "USD")]
        with pytest.raises(DataIntegrityError, match="Duplicate quote"):
            index_quotes(quotes)

    @pytest.mark.parametrize("bad", [0, -1.5, float("nan"), "7.0"])
    def test_bad_rate(self, bad):
        with pytest.raises(DataIntegrityError):
            index_rates([ExchangeRateRecord("USD", "CNY", bad)], "CNY")

    def test_rates_into_other_currencies_ignored(self):
        rates = [
            ExchangeRateRecord("USD", "CNY", 7.0),
            ExchangeRateRecord("USD", "EUR", float("nan")),
        ]
        assert index_rates(rates, "CNY") == {"USD": 7.0}

    def test_duplicate_rate(self):
        rates = [
            ExchangeRateRecord("USD", "CNY", 7.0),
            ExchangeRateRecord("USD", "CNY", 7.1),
        ]
        with pytest.raises(DataIntegrityError, match="Duplicate rate"):
            index_rates(rates, "CNY")

    def test_instrument_in_two_currencies(self):
        holdings = [
            HoldingRecord("X", "A", 1, 1, "USD"),
            HoldingRecord("X", "B", 1, 1, "HKD"),
        ]
        with pytest.raises(DataIntegrityError, match="more than one currency"):
            aggregate(holdings, [], [], "USD")

    def test_invalid_cash_row_is_ignored(self):
        holdings = [
            HoldingRecord("X", "A", 1, 1, "USD"),
            HoldingRecord("CASH_USD", "A", float("nan"), 1, "USD"),
        ]
        result = aggregate(holdings, [], [], "USD")
        assert len(result) == 1

    @pytest.mark.parametrize("bad", [None, 42, "  "])
    def test_missing_instrument_id(self, bad):
        record = HoldingRecord(bad, "A", 1, 1, "USD")
        with pytest.raises(DataIntegrityError, match="instrument_id") as exc:
            aggregate([record], [], [], "USD")
        assert exc.value.record == record

    def test_rate_without_target_currency(self):
        with pytest.raises(DataIntegrityError, match="to_currency"):
            index_rates([ExchangeRateRecord("USD", None, 7.0)], "CNY")


# ---------------------------------------------------------------------------
# Grouping and zero guards
# ---------------------------------------------------------------------------

class TestGrouping:

    def test_zero_quantity_has_zero_avg_cost(self):
        holdings = [
            HoldingRecord("X", "A", 10, 5, "USD"),
            HoldingRecord("X", "B", -10, 6, "USD"),
        ]
        [group] = group_holdings(holdings)
        assert group.total_quantity == 0
        assert group.weighted_avg_cost == 0
        assert not math.isnan(group.weighted_avg_cost)

    def test_zero_cost_has_zero_pl(self):
        result = aggregate(
            [HoldingRecord("GIFT", "A", 10, 0, "USD")],
            [QuoteRecord("GIFT", 3, "USD")],
            [],
            "USD",
        )
        assert result.get("GIFT").pl_ratio_pct == 0
        assert result.get("GIFT").cost_share_pct == 0

    def test_account_count_is_distinct(self):
        holdings = [
            HoldingRecord("X", "A", 1, 1, "USD"),
            HoldingRecord("X", "A", 2, 1, "USD"),
            HoldingRecord("X", "B", 3, 1, "USD"),
        ]
        [group] = group_holdings(holdings)
        assert group.account_count == 2
        assert group.total_quantity == 6

    def test_company_is_max_name(self):
        holdings = [
            HoldingRecord("X", "A", 1, 1, "USD", company="Alpha Corp"),
            HoldingRecord("X", "B", 1, 1, "USD", company="Alpha Corporation"),
            HoldingRecord("X", "C", 1, 1, "USD"),
        ]
        [group] = group_holdings(holdings)
        assert group.company == "Alpha Corporation"

    def test_drop_flat_positions(self):
        holdings = [
            HoldingRecord("X", "A", 10, 1, "USD"),
            HoldingRecord("X", "B", -10, 1, "USD"),
            HoldingRecord("Y", "A", 5, 1, "USD"),
        ]
        kept = group_holdings(holdings, AggregationConfig(drop_flat_positions=True))
        assert [g.instrument_id for g in kept] == ["Y"]
        assert len(group_holdings(holdings)) == 2

    def test_custom_cash_prefix(self):
        holdings = [
            HoldingRecord("MMF:USD", "A", 100, 1, "USD"),
            HoldingRecord("CASH_X", "A", 1, 1, "USD"),
        ]
        groups = group_holdings(holdings, AggregationConfig(cash_prefix="MMF:"))
        assert [g.instrument_id for g in groups] == ["CASH_X"]


# ---------------------------------------------------------------------------
# Joins and conversion
# ---------------------------------------------------------------------------

class TestJoins:

    def test_missing_rate_falls_back_to_one(self):
        holdings = [HoldingRecord("X", "A", 10, 10, "JPY")]
        quotes = [QuoteRecord("X", 12, "JPY")]

        result = aggregate(holdings, quotes, [], "CNY")

        x = result.get("X")
        assert x.exchange_rate == 1.0
        assert x.rate_missing is True
        assert x.cost_in_base == 100
        assert x.value_in_base == 120
        assert result.stats.missing_rate_count == 1
        assert result.stats.missing_rate_currencies == ("JPY",)

    def test_base_currency_needs_no_rate(self):
        groups = group_holdings([HoldingRecord("X", "A", 1, 1, "CNY")])
        [joined] = join_rates(groups, {}, "CNY")
        assert joined.rate_missing is False
        assert joined.exchange_rate == 1.0

    def test_currency_codes_case_insensitive(self):
        holdings = [
            HoldingRecord("X", "A", 10, 1, "usd"),
            HoldingRecord("X", "B", 10, 1, "USD "),
            HoldingRecord("Y", "A", 5, 2, "cny"),
        ]
        quotes = [QuoteRecord("X", 2, "usd"), QuoteRecord("Y", 2, "CNY")]
        rates = [ExchangeRateRecord("usd", "cny", 7.0)]

        result = aggregate(holdings, quotes, rates, "cny")

        assert result.base_currency == "CNY"
        x = result.get("X")
        assert x.original_currency == "USD"
        assert x.account_count == 2
        assert x.exchange_rate == 7.0
        assert x.rate_missing is False
        assert result.get("Y").rate_missing is False
        assert result.stats.missing_rate_count == 0

    def test_convert(self):
        groups = group_holdings([HoldingRecord("X", "A", 10, 2, "USD")])
        groups = join_quotes(groups, {"X": QuoteRecord("X", 3, "USD")})
        groups = join_rates(groups, {"USD": 7.0}, "CNY")
        [g] = convert(groups)
        assert g.cost_in_base == pytest.approx(140)
        assert g.value_in_base == pytest.approx(210)

    def test_stages_do_not_mutate_inputs(self):
        groups = group_holdings([HoldingRecord("X", "A", 10, 2, "USD")])
        join_quotes(groups, {"X": QuoteRecord("X", 3, "USD")})
        assert groups[0].current_price == 0.0


# ---------------------------------------------------------------------------
# Treasury normalization
# ---------------------------------------------------------------------------

class TestTreasury:

    def test_detection_rules(self):
        config = TreasuryConfig()
        assert is_treasury(HoldingRecord("US_TBill", "A", 1, 1, "USD"), config)
        assert is_treasury(HoldingRecord("TF Float 01/31/26", "A", 1, 1, "USD"), config)
        assert is_treasury(HoldingRecord("X", "A", 1, 1, "USD", asset_class="govt"), config)
        assert is_treasury(
            HoldingRecord("X", "A", 1, 1, "USD", description="US T-BILL 0% 03/26"), config
        )
        assert not is_treasury(HoldingRecord("AAPL", "A", 1, 1, "USD", asset_class="STK"), config)

    def test_disabled(self):
        config = TreasuryConfig(enabled=False)
        assert not is_treasury(HoldingRecord("US_TBill", "A", 1, 1, "USD"), config)

    def test_bills_merge_at_par(self):
        holdings = [
            HoldingRecord("912797GK", "A", 10_000, 0.97, "USD", description="Treasury Bill"),
            HoldingRecord("TF Float 2026", "B", 5_000, 0.99, "USD"),
        ]
        result = aggregate(holdings, [], [ExchangeRateRecord("USD", "CNY", 7.0)], "CNY")

        assert len(result) == 1
        bill = result.get("US_TBill")
        assert bill.total_quantity == 15_000
        assert bill.weighted_avg_cost == 1.0
        assert bill.total_cost_original == 15_000
        assert bill.current_price == 1.0
        assert bill.quote_missing is False
        assert bill.value_in_base == pytest.approx(105_000)
        assert bill.pl_ratio_pct == pytest.approx(0)
        assert bill.account_count == 2
        assert bill.company == "US Treasury Bills Aggregate"
        assert result.stats.missing_quote_count == 0

    def test_disabled_keeps_tickers(self):
        holdings = [
            HoldingRecord("912797GK", "A", 10_000, 0.97, "USD", description="Treasury Bill"),
        ]
        settings = AggregationConfig(treasury=TreasuryConfig(enabled=False))
        result = aggregate(holdings, [], [], "USD", settings)
        assert result.get("912797GK") is not None
        assert result.get("912797GK").quote_missing is True

    def test_check_rows_flags_off_par(self):
        holdings = [
            HoldingRecord("AAPL", "A", 10, 150, "USD"),
            HoldingRecord("TF Float 2026", "B", 5_000, 1.004, "USD"),
            HoldingRecord("912797GK", "A", 10_000, 0.97, "USD", asset_class="BOND"),
            HoldingRecord("US_TBill", "C", 1_000, "n/a", "USD"),
        ]
        lines = check_treasury_rows(holdings, TreasuryConfig())

        assert [line.record.instrument_id for line in lines] == [
            "912797GK", "TF Float 2026", "US_TBill",
        ]
        assert [line.off_par for line in lines] == [True, False, True]
        assert lines[0].par_deviation == pytest.approx(-0.03)
        assert math.isnan(lines[2].par_deviation)

    def test_check_rows_tolerance_and_disabled(self):
        holdings = [HoldingRecord("US_TBill", "A", 1, 0.97, "USD")]
        assert not check_treasury_rows(holdings, TreasuryConfig(par_tolerance=0.05))[0].off_par
        assert check_treasury_rows(holdings, TreasuryConfig(enabled=False)) == []


# ---------------------------------------------------------------------------
# Shares, ordering and stats
# ---------------------------------------------------------------------------

class TestShares:

    def _degraded_inputs(self):
        holdings = [
            HoldingRecord("A", "1", 10, 10, "USD"),
            HoldingRecord("B", "1", 10, 30, "USD"),
            HoldingRecord("C", "1", 10, 60, "USD"),
        ]
        quotes = [QuoteRecord("A", 10, "USD"), QuoteRecord("B", 30, "USD")]
        return holdings, quotes

    def test_basis_all_includes_degraded_rows(self):
        holdings, quotes = self._degraded_inputs()
        result = aggregate(holdings, quotes, [], "USD")

        assert result.get("C").cost_share_pct == pytest.approx(60)
        assert result.get("A").cost_share_pct == pytest.approx(10)
        assert result.get("A").value_share_pct == pytest.approx(25)
        assert sum(h.cost_share_pct for h in result.holdings) == pytest.approx(100)

    def test_basis_complete_excludes_degraded_rows(self):
        holdings, quotes = self._degraded_inputs()
        settings = AggregationConfig(share_basis="complete")
        result = aggregate(holdings, quotes, [], "USD", settings)

        assert result.get("C").cost_share_pct == 0
        assert result.get("C").value_share_pct == 0
        assert result.get("A").cost_share_pct == pytest.approx(25)
        assert result.get("B").cost_share_pct == pytest.approx(75)
        # Grand totals still cover every row
        assert result.stats.grand_cost == pytest.approx(1000)

    def test_share_denominators(self):
        holdings, quotes = self._degraded_inputs()
        groups = convert(join_rates(
            join_quotes(group_holdings(holdings), index_quotes(quotes)), {}, "USD"
        ))
        assert share_denominators(groups, "all") == (pytest.approx(1000), pytest.approx(400))
        assert share_denominators(groups, "complete") == (pytest.approx(400), pytest.approx(400))

    def test_empty_input(self):
        result = aggregate([], [], [], "USD")
        assert len(result) == 0
        assert result.stats.instrument_count == 0
        assert result.stats.avg_pl_ratio_pct == 0


class TestOrdering:

    def test_value_descending_then_id(self):
        ordered = order_holdings([_row("B", 5), _row("C", 10), _row("A", 5)])
        assert [r.instrument_id for r in ordered] == ["C", "A", "B"]

    def test_summarize(self):
        rows = order_holdings([_row("A", 3), _row("B", 1)])
        stats = summarize(rows)
        assert stats.instrument_count == 2
        assert stats.grand_value == 4
        assert stats.grand_cost == 2
        assert stats.total_quantity_sum == 2

    def test_stats_to_dict_lists(self):
        result = aggregate([HoldingRecord("Y", "A", 1, 1, "USD")], [], [], "USD")
        data = result.stats.to_dict()
        assert data["missing_quote_instruments"] == ["Y"]
        assert data["missing_rate_currencies"] == []
