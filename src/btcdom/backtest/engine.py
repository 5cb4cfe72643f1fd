"""Backtest engine: validate, fetch once, step every period, summarize.

Market data is fetched from the MarketSnapshotSource up front; stepping is
strictly sequential and does no I/O. A run can be cut short between periods
by a period-count or wall-clock budget; the snapshots produced so far are
still analyzed and the result is flagged incomplete.

CRITICAL: All monetary values use Decimal. Never use float for prices, quantities, or fees.
"""

import time
from collections.abc import Callable, Sequence
from decimal import Decimal

from btcdom.analytics.chart import build_chart_series
from btcdom.analytics.performance import analyze_performance
from btcdom.backtest.models import BacktestResult, BacktestSummary, StrategyParameters
from btcdom.config import BacktestSettings, CacheSettings
from btcdom.data.source import MarketSnapshotSource
from btcdom.exceptions import MarketDataError, ParameterValidationError
from btcdom.logging import get_logger
from btcdom.models import MarketDataPoint
from btcdom.portfolio.models import PortfolioSnapshot
from btcdom.portfolio.stepper import PortfolioStepper
from btcdom.scoring.scorer import CandidateScorer

logger = get_logger(__name__)


def validate_series(points: Sequence[MarketDataPoint]) -> None:
    """Reject series the stepper cannot replay.

    Raises:
        MarketDataError: If the series is empty, not strictly ascending in
            time, or a point has a non-positive granularity.
    """
    if not points:
        raise MarketDataError("market data series is empty")
    for index, point in enumerate(points):
        if point.granularity_hours <= 0:
            raise MarketDataError(
                f"point {index} at {point.timestamp.isoformat()} has non-positive granularity"
            )
        if index and point.timestamp <= points[index - 1].timestamp:
            raise MarketDataError(
                f"point {index} at {point.timestamp.isoformat()} is not after the previous point"
            )


class BacktestEngine:
    """Runs one backtest over a market data source.

    Args:
        params: Strategy parameters; validated before any data is fetched.
        source: Market data source.
        backtest_settings: Workers, fast mode and cancellation budget.
        cache_settings: Score cache bounds.
        clock: Monotonic time source for the wall-clock budget.
    """

    def __init__(
        self,
        params: StrategyParameters,
        source: MarketSnapshotSource,
        backtest_settings: BacktestSettings | None = None,
        cache_settings: CacheSettings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._params = params
        self._source = source
        self._settings = backtest_settings or BacktestSettings()
        self._clock = clock
        scorer = CandidateScorer(
            params,
            cache_settings=cache_settings,
            workers=self._settings.scoring_workers,
            clock=clock,
        )
        self._stepper = PortfolioStepper(params, scorer=scorer)

    async def run(self) -> BacktestResult:
        """Validate parameters, fetch market data and simulate every period.

        Returns:
            BacktestResult for the processed periods.

        Raises:
            ParameterValidationError: If the parameters are invalid.
            MarketDataError: If the fetched series is empty or malformed.
        """
        errors = self._params.validate()
        if errors:
            logger.warning("backtest_parameters_invalid", errors=errors)
            raise ParameterValidationError(errors)

        points = await self._source.fetch(self._params.start, self._params.end)
        return self.simulate(points)

    def simulate(self, points: Sequence[MarketDataPoint]) -> BacktestResult:
        """Step through an in-memory series.

        Raises:
            MarketDataError: If the series is empty or malformed.
        """
        validate_series(points)
        params = self._params
        granularity = points[0].granularity_hours
        max_periods = self._settings.max_periods
        budget = self._settings.time_budget_seconds

        logger.info(
            "backtest_starting",
            periods=len(points),
            start=points[0].timestamp.isoformat(),
            end=points[-1].timestamp.isoformat(),
            granularity_hours=str(granularity),
            initial_capital=str(params.initial_capital),
            allocation_policy=params.allocation_policy.value,
        )

        started = self._clock()
        snapshots: list[PortfolioSnapshot] = []
        previous: PortfolioSnapshot | None = None
        previous_point: MarketDataPoint | None = None
        stop_reason: str | None = None

        for point in points:
            if max_periods is not None and len(snapshots) >= max_periods:
                stop_reason = f"period budget of {max_periods} reached"
                break
            if budget is not None and self._clock() - started >= budget:
                stop_reason = f"time budget of {budget}s exceeded"
                break
            previous = self._stepper.step(previous, point, previous_point)
            previous_point = point
            snapshots.append(previous)

        if stop_reason:
            logger.warning(
                "backtest_stopped_early",
                reason=stop_reason,
                completed_periods=len(snapshots),
                total_periods=len(points),
            )

        result = self._build_result(tuple(snapshots), granularity, stop_reason)

        logger.info(
            "backtest_complete",
            periods=len(snapshots),
            completed=result.completed,
            final_value=str(snapshots[-1].total_value) if snapshots else None,
            total_return=str(result.performance.total_return),
            max_drawdown=str(result.performance.max_drawdown.drawdown),
            elapsed_seconds=round(self._clock() - started, 2),
        )
        return result

    def _build_result(
        self,
        snapshots: tuple[PortfolioSnapshot, ...],
        granularity: Decimal,
        stop_reason: str | None,
    ) -> BacktestResult:
        params = self._params
        short_ratio = Decimal(1) - params.long_ratio if params.long_enabled else Decimal(1)
        performance = analyze_performance(
            snapshots,
            params.initial_capital,
            granularity,
            short_capital_ratio=short_ratio,
        )
        chart = (
            ()
            if self._settings.optimize_only
            else build_chart_series(snapshots, params.initial_capital)
        )
        return BacktestResult(
            params=params,
            snapshots=snapshots,
            performance=performance,
            chart=chart,
            summary=BacktestSummary.from_snapshots(snapshots, granularity),
            completed=stop_reason is None,
            stop_reason=stop_reason,
        )
