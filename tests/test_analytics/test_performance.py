"""Tests for performance analytics over snapshot sequences.

All test cases use exact Decimal values where the arithmetic is exact.
"""

from decimal import Decimal

import pytest

from btcdom.analytics.performance import (
    analyze_performance,
    annualized_return,
    max_drawdown,
    period_returns,
    periods_per_year,
    pnl_breakdown,
    population_stdev,
)

CAPITAL = Decimal("10000")


@pytest.fixture
def swing(make_snapshot) -> list:
    """Up 5%, down 10%, then a recovery to +10% overall."""
    return [
        make_snapshot("10500", period=0, benchmark_price="50000", funding="1"),
        make_snapshot("9450", period=1, benchmark_price="48000", funding="3"),
        make_snapshot("9800", period=2, benchmark_price="52000", funding="3"),
        make_snapshot("11000", period=3, benchmark_price="55000", funding="-2"),
    ]


class TestHelpers:
    """Building blocks of the report."""

    def test_periods_per_year(self) -> None:
        # 8760 / 8 = 1095
        assert periods_per_year(Decimal("8")) == Decimal("1095")
        assert periods_per_year(Decimal("0")) == Decimal("0")

    def test_period_returns_between_snapshots(self, swing) -> None:
        returns = period_returns(swing)
        assert [r.period for r in returns] == [2, 3, 4]
        # (9450 - 10500) / 10500 = -0.1
        assert returns[0].value == Decimal("-0.1")
        assert returns[0].timestamp == swing[1].timestamp

    def test_annualized_single_period_unchanged(self) -> None:
        assert annualized_return(Decimal("0.05"), 1, Decimal("1095")) == Decimal("0.05")

    def test_annualized_compounds(self) -> None:
        # 1.21 ** (1 / 2) - 1 = 0.1
        result = annualized_return(Decimal("0.21"), 2, Decimal("1"))
        assert abs(result - Decimal("0.1")) < Decimal("1e-20")

    def test_annualized_total_loss(self) -> None:
        assert annualized_return(Decimal("-1"), 10, Decimal("1095")) == Decimal("-1")

    def test_population_stdev(self) -> None:
        # mean 2, deviations +-1 -> variance 1
        assert population_stdev([Decimal("1"), Decimal("3")]) == Decimal("1")
        assert population_stdev([Decimal("5")]) == Decimal("0")


class TestMaxDrawdown:
    """Drawdown span and bounds."""

    def test_peak_to_trough(self, swing) -> None:
        info = max_drawdown(swing, CAPITAL)
        # (10500 - 9450) / 10500 = 0.1
        assert info.drawdown == Decimal("0.1")
        assert info.peak_value == Decimal("10500")
        assert info.trough_value == Decimal("9450")
        assert (info.peak_period, info.trough_period) == (1, 2)

    def test_peak_starts_at_initial_capital(self, make_snapshot) -> None:
        info = max_drawdown([make_snapshot("9000"), make_snapshot("9500", period=1)], CAPITAL)
        assert info.drawdown == Decimal("0.1")
        assert info.peak_period == 0
        assert info.trough_period == 1

    def test_bounded(self, make_snapshot) -> None:
        info = max_drawdown([make_snapshot("-500")], CAPITAL)
        assert info.drawdown == Decimal("1")

    def test_monotonic_rise_has_no_drawdown(self, make_snapshot) -> None:
        info = max_drawdown([make_snapshot("10100"), make_snapshot("10200", period=1)], CAPITAL)
        assert info.drawdown == Decimal("0")


class TestAnalyzePerformance:
    """End-to-end report."""

    def test_report(self, swing) -> None:
        report = analyze_performance(swing, CAPITAL, Decimal("8"), short_capital_ratio=Decimal("0.5"))
        assert report.total_return == Decimal("0.1")
        assert report.win_rate == Decimal(2) / Decimal(3)
        assert report.best_period.period == 4
        assert report.worst_period.period == 2
        assert report.worst_period.value == Decimal("-0.1")
        assert report.max_drawdown.drawdown == Decimal("0.1")
        assert report.calmar_ratio == report.annualized_return / Decimal("0.1")
        assert report.volatility > Decimal("0")
        assert report.sharpe_ratio == report.annualized_return / report.volatility
        # (55000 - 50000) / 50000 = 0.1
        assert report.benchmark_return == Decimal("0.1")
        # short PnL 1000 over 10000 * 0.5
        assert report.short_return == Decimal("0.2")

    def test_funding_extremes_first_tie_wins(self, swing) -> None:
        report = analyze_performance(swing, CAPITAL, Decimal("8"))
        assert report.best_funding_period.period == 2
        assert report.best_funding_period.value == Decimal("3")
        assert report.worst_funding_period.period == 4

    def test_return_ties_first_wins(self, make_snapshot) -> None:
        snapshots = [
            make_snapshot("11000", period=0),
            make_snapshot("12100", period=1),
            make_snapshot("13310", period=2),
        ]
        report = analyze_performance(snapshots, CAPITAL, Decimal("8"))
        assert report.best_period.period == 2
        assert report.worst_period.period == 2

    def test_no_drawdown_calmar_zero(self, make_snapshot) -> None:
        snapshots = [make_snapshot("10100"), make_snapshot("10200", period=1)]
        report = analyze_performance(snapshots, CAPITAL, Decimal("8"))
        assert report.max_drawdown.drawdown == Decimal("0")
        assert report.calmar_ratio == Decimal("0")

    def test_single_snapshot(self, make_snapshot) -> None:
        report = analyze_performance([make_snapshot("10500")], CAPITAL, Decimal("8"))
        assert report.total_return == Decimal("0.05")
        assert report.annualized_return == Decimal("0.05")
        assert report.best_period.period == 1
        assert report.best_period.value == Decimal("0.05")
        assert report.volatility == Decimal("0")
        assert report.sharpe_ratio == Decimal("0")
        assert report.win_rate == Decimal("1")

    def test_empty(self) -> None:
        report = analyze_performance([], CAPITAL, Decimal("8"))
        assert report.total_return == Decimal("0")
        assert report.best_period is None
        assert report.max_drawdown.drawdown == Decimal("0")

    def test_to_dict_serializes_decimals(self, swing) -> None:
        data = analyze_performance(swing, CAPITAL, Decimal("8")).to_dict()
        assert data["total_return"] == "0.1"
        assert data["max_drawdown"]["peak_period"] == 1
        assert data["pnl_breakdown"]["total_amount"] == "1000"
        assert data["pnl_breakdown"]["total_rate"] == "0.1"


class TestPnlBreakdown:
    """Breakdown by side and fee type."""

    def test_reconciles(self, swing) -> None:
        breakdown = pnl_breakdown(swing, CAPITAL)
        assert breakdown.total == Decimal("1000")
        assert breakdown.short_total == Decimal("1000")
        assert breakdown.long_total == Decimal("0")
        assert breakdown.reconciliation_gap == Decimal("0")
        assert breakdown.rate(breakdown.total) == Decimal("0.1")

    def test_empty(self) -> None:
        breakdown = pnl_breakdown([], CAPITAL)
        assert breakdown.total == Decimal("0")
