"""Tests for ParameterSweep grid search."""

from datetime import timedelta
from decimal import Decimal

import pytest

from btcdom.backtest.sweep import ParameterSweep
from btcdom.data.source import InMemorySnapshotSource
from btcdom.exceptions import ParameterValidationError
from btcdom.models import AllocationPolicy


@pytest.fixture
def series(make_item, make_point) -> list:
    """Four 8h periods: the benchmark rises 1% per period, the alt rises 10%.

    The alt is below the benchmark in periods 0 and 1 only, so any short
    held there loses while the long leg gains.
    """
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


@pytest.fixture
def sweep(series, mock_settings) -> ParameterSweep:
    return ParameterSweep(
        InMemorySnapshotSource(series), settings=mock_settings, objective="total_return"
    )


class TestGrid:
    """Grid keys and combination counts."""

    @pytest.mark.asyncio
    async def test_every_combination_runs(self, sweep, params) -> None:
        grid = ParameterSweep.generate_default_grid()
        result = await sweep.run(params, grid)
        # 3 basket sizes x 3 policies x 3 long ratios
        assert len(result.entries) == 27
        assert result.skipped == ()
        assert result.metric == "total_return"

    @pytest.mark.asyncio
    async def test_unknown_key_rejected(self, sweep, params) -> None:
        with pytest.raises(ValueError, match="not a StrategyParameters field"):
            await sweep.run(params, {"leverage": [1, 2]})

    @pytest.mark.asyncio
    async def test_date_range_not_sweepable(self, sweep, params) -> None:
        with pytest.raises(ValueError, match="cannot be swept"):
            await sweep.run(params, {"end": [params.end, params.end + timedelta(days=1)]})

    @pytest.mark.asyncio
    async def test_missing_base_dates(self, sweep, params) -> None:
        with pytest.raises(ParameterValidationError):
            await sweep.run(params.with_overrides(start=None), {"max_short_positions": [1]})

    def test_unknown_objective(self, series) -> None:
        with pytest.raises(ValueError, match="Unknown objective"):
            ParameterSweep(InMemorySnapshotSource(series), objective="profit")

    @pytest.mark.asyncio
    async def test_values_coerced_to_field_types(self, sweep, params) -> None:
        result = await sweep.run(
            params, {"long_ratio": ["0.4"], "allocation_policy": ["EQUAL_ALLOCATION"]}
        )
        entry = result.entries[0]
        assert entry.overrides["long_ratio"] == Decimal("0.4")
        assert entry.overrides["allocation_policy"] == AllocationPolicy.EQUAL_ALLOCATION
        assert entry.result.params.long_ratio == Decimal("0.4")


class TestValidation:
    """Combinations that fail validation are skipped, not run."""

    @pytest.mark.asyncio
    async def test_invalid_weights_skipped(self, sweep, params) -> None:
        result = await sweep.run(
            params,
            {"weight_volume": [Decimal("0.35"), Decimal("0.5")], "max_short_positions": [1, 2]},
        )
        assert len(result.entries) == 2
        assert len(result.skipped) == 2
        for overrides, errors in result.skipped:
            assert overrides["weight_volume"] == Decimal("0.5")
            assert errors == ("weights must sum to 1 (got 1.15)",)

    @pytest.mark.asyncio
    async def test_progress_reports_every_combination(self, sweep, params) -> None:
        calls = []
        await sweep.run(
            params,
            {"max_short_positions": [0, 1, 2]},
            progress_callback=lambda i, total, overrides, result: calls.append(
                (i, total, result is None)
            ),
        )
        assert calls == [(1, 3, True), (2, 3, False), (3, 3, False)]


class TestRanking:
    """Entries are ordered best first; only the best keeps its snapshots."""

    @pytest.mark.asyncio
    async def test_best_first(self, sweep, params) -> None:
        # Long gains and short losses both favor the larger long ratio.
        result = await sweep.run(params, {"long_ratio": ["0.2", "0.5", "0.8"]})
        ratios = [entry.overrides["long_ratio"] for entry in result.entries]
        assert ratios == [Decimal("0.8"), Decimal("0.5"), Decimal("0.2")]
        scores = [entry.score for entry in result.entries]
        assert scores == sorted(scores, reverse=True)
        assert result.best is result.entries[0]
        assert result.best.score == result.best.result.performance.total_return

    @pytest.mark.asyncio
    async def test_only_best_keeps_snapshots(self, sweep, params) -> None:
        result = await sweep.run(params, {"long_ratio": ["0.2", "0.5", "0.8"]})
        assert len(result.best.result.snapshots) == 4
        assert all(entry.result.snapshots == () for entry in result.entries[1:])
        assert all(entry.result.chart == () for entry in result.entries)
        assert all(entry.result.summary.total_periods == 4 for entry in result.entries)

    @pytest.mark.asyncio
    async def test_ties_keep_grid_order(self, sweep, params) -> None:
        # A single alt: every basket size selects the same short.
        result = await sweep.run(params, {"max_short_positions": [1, 2, 3]})
        assert [e.overrides["max_short_positions"] for e in result.entries] == [1, 2, 3]
        assert len({e.score for e in result.entries}) == 1
        assert len(result.best.result.snapshots) == 4

    @pytest.mark.asyncio
    async def test_drawdown_objective_prefers_smaller_drawdown(
        self, series, params, mock_settings
    ) -> None:
        sweep = ParameterSweep(
            InMemorySnapshotSource(series), settings=mock_settings, objective="max_drawdown"
        )
        result = await sweep.run(params, {"long_ratio": ["0.2", "0.8"]})
        assert all(entry.score <= 0 for entry in result.entries)
        drawdowns = [e.result.performance.max_drawdown.drawdown for e in result.entries]
        assert drawdowns == sorted(drawdowns)

    @pytest.mark.asyncio
    async def test_to_dict(self, sweep, params) -> None:
        result = await sweep.run(params, {"long_ratio": [Decimal("0.8")]})
        data = result.to_dict()
        assert data["param_grid"] == {"long_ratio": ["0.8"]}
        assert data["entries"][0]["overrides"] == {"long_ratio": "0.8"}
        assert "snapshots" not in data["entries"][0]["result"]
        assert data["skipped"] == []
