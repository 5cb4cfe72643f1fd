"""Tests for BacktestEngine validation, stepping loop and cancellation budgets."""

from datetime import timedelta
from decimal import Decimal

import pytest

from btcdom.backtest.engine import BacktestEngine, validate_series
from btcdom.config import BacktestSettings
from btcdom.data.source import InMemorySnapshotSource
from btcdom.exceptions import MarketDataError, ParameterValidationError


@pytest.fixture
def series(make_item, make_point) -> list:
    """Four 8h periods; the alt is below the benchmark in periods 0 and 1 only."""
    changes = ["-3", "-2", "4", "5"]
    return [
        make_point(
            [make_item("ETHUSDT", 1, change=change, price=str(10 + period))],
            period=period,
            benchmark_price=str(50000 + 500 * period),
            benchmark_change="0",
        )
        for period, change in enumerate(changes)
    ]


class TestValidateSeries:
    """Structural checks on the fetched series."""

    def test_empty(self) -> None:
        with pytest.raises(MarketDataError, match="empty"):
            validate_series([])

    def test_not_ascending(self, make_point) -> None:
        with pytest.raises(MarketDataError, match="not after the previous point"):
            validate_series([make_point([], period=1), make_point([], period=0)])

    def test_duplicate_timestamp(self, make_point) -> None:
        with pytest.raises(MarketDataError):
            validate_series([make_point([], period=0), make_point([], period=0)])

    def test_non_positive_granularity(self, make_point) -> None:
        with pytest.raises(MarketDataError, match="granularity"):
            validate_series([make_point([], granularity="0")])


class TestRun:
    """Async run(): validate, fetch, simulate."""

    @pytest.mark.asyncio
    async def test_full_run(self, params, series) -> None:
        result = await BacktestEngine(params, InMemorySnapshotSource(series)).run()
        assert result.completed is True
        assert result.stop_reason is None
        assert len(result.snapshots) == 4
        assert len(result.chart) == 4
        assert result.summary.total_periods == 4
        assert result.summary.active_periods == 2
        assert result.summary.inactive_periods == 2
        # (1 + 1 + 0 + 0) / 4
        assert result.summary.avg_short_positions == Decimal("0.5")
        assert result.summary.granularity_hours == Decimal("8")

    @pytest.mark.asyncio
    async def test_invalid_parameters(self, params, series) -> None:
        bad = params.with_overrides(end=params.start, initial_capital=Decimal("0"))
        with pytest.raises(ParameterValidationError) as exc_info:
            await BacktestEngine(bad, InMemorySnapshotSource(series)).run()
        assert "start date must be before end date" in exc_info.value.errors
        assert "initial capital must be greater than 0" in exc_info.value.errors

    @pytest.mark.asyncio
    async def test_no_data_in_range(self, params, series) -> None:
        late = params.with_overrides(
            start=params.end + timedelta(days=1), end=params.end + timedelta(days=2)
        )
        with pytest.raises(MarketDataError):
            await BacktestEngine(late, InMemorySnapshotSource(series)).run()


class TestBudgets:
    """Early stops keep the processed snapshots and flag the result."""

    def test_period_budget(self, params, series) -> None:
        engine = BacktestEngine(
            params, InMemorySnapshotSource(series), BacktestSettings(max_periods=2)
        )
        result = engine.simulate(series)
        assert result.completed is False
        assert result.stop_reason == "period budget of 2 reached"
        assert len(result.snapshots) == 2
        assert result.summary.total_periods == 2

    def test_time_budget(self, params, series) -> None:
        engine = BacktestEngine(
            params, InMemorySnapshotSource(series), BacktestSettings(time_budget_seconds=0)
        )
        result = engine.simulate(series)
        assert result.completed is False
        assert result.stop_reason.startswith("time budget")
        assert result.snapshots == ()
        assert result.performance.total_return == Decimal("0")

    def test_optimize_only_skips_chart(self, params, series) -> None:
        engine = BacktestEngine(
            params, InMemorySnapshotSource(series), BacktestSettings(optimize_only=True)
        )
        result = engine.simulate(series)
        assert result.chart == ()
        assert len(result.snapshots) == 4

    def test_parallel_scoring_matches_sequential(self, params, series) -> None:
        sequential = BacktestEngine(params, InMemorySnapshotSource(series)).simulate(series)
        parallel = BacktestEngine(
            params, InMemorySnapshotSource(series), BacktestSettings(scoring_workers=4)
        ).simulate(series)
        assert parallel.snapshots == sequential.snapshots
