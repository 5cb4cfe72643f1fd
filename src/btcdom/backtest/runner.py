"""High-level entry points for running backtests.

Provides run_backtest() for a single run against any MarketSnapshotSource
and run_backtest_cli() for file-based runs with date strings.
"""

import time
from datetime import datetime, timezone
from pathlib import Path

from btcdom.backtest.engine import BacktestEngine
from btcdom.backtest.models import BacktestResult, StrategyParameters
from btcdom.config import AppSettings
from btcdom.data.source import (
    JsonFileResultSink,
    JsonFileSnapshotSource,
    MarketSnapshotSource,
    ResultSink,
    load_indicator_series,
)
from btcdom.logging import get_logger, run_context

logger = get_logger(__name__)


async def run_backtest(
    params: StrategyParameters,
    source: MarketSnapshotSource,
    sink: ResultSink | None = None,
    settings: AppSettings | None = None,
) -> BacktestResult:
    """Run a single backtest and optionally publish the result.

    Args:
        params: Strategy parameters, including the date range.
        source: Market data source.
        sink: Receives the result when given.
        settings: Backtest and cache settings. Defaults to AppSettings().

    Returns:
        BacktestResult for the run.

    Raises:
        ParameterValidationError: If the parameters are invalid.
        MarketDataError: If the source returns an empty or malformed series.
    """
    if settings is None:
        settings = AppSettings()

    start_time = time.monotonic()
    logger.info(
        "run_backtest_starting",
        start=params.start.isoformat() if params.start else None,
        end=params.end.isoformat() if params.end else None,
        long_enabled=params.long_enabled,
        short_enabled=params.short_enabled,
        macro_gate=params.macro_gate.enabled,
    )

    engine = BacktestEngine(
        params=params,
        source=source,
        backtest_settings=settings.backtest,
        cache_settings=settings.cache,
    )
    with run_context(params):
        result = await engine.run()
        if sink is not None:
            await sink.publish(result)

    elapsed = time.monotonic() - start_time
    logger.info(
        "run_backtest_complete",
        periods=result.summary.total_periods,
        active_periods=result.summary.active_periods,
        total_return=str(result.performance.total_return),
        sharpe_ratio=str(result.performance.sharpe_ratio),
        elapsed_seconds=round(elapsed, 2),
    )
    return result


def parse_date_range(start_date: str, end_date: str) -> tuple[datetime, datetime]:
    """Parse "YYYY-MM-DD" strings into a UTC range.

    Raises:
        ValueError: If a date is malformed or end is not after start.
    """
    try:
        start_dt = datetime.strptime(start_date, "%Y-%m-%d").replace(tzinfo=timezone.utc)
        end_dt = datetime.strptime(end_date, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    except ValueError as e:
        raise ValueError(f"Invalid date format. Expected YYYY-MM-DD. Error: {e}") from e

    if end_dt <= start_dt:
        raise ValueError(f"End date ({end_date}) must be after start date ({start_date})")
    return start_dt, end_dt


async def run_backtest_cli(
    data_path: str | Path,
    start_date: str,
    end_date: str,
    output_path: str | Path | None = None,
    indicator_path: str | Path | None = None,
    settings: AppSettings | None = None,
    **overrides: object,
) -> BacktestResult:
    """Convenience entry point for file-based runs with date strings.

    Args:
        data_path: JSON market data file.
        start_date: Start date as "YYYY-MM-DD".
        end_date: End date as "YYYY-MM-DD".
        output_path: Where to write the JSON result, if anywhere.
        indicator_path: JSON macro-gate indicator series, if any.
        settings: Application settings. Defaults to AppSettings().
        **overrides: StrategyParameters fields to override.

    Returns:
        BacktestResult for the run.

    Raises:
        ValueError: If date strings are invalid or the range is empty.
    """
    if settings is None:
        settings = AppSettings()
    start_dt, end_dt = parse_date_range(start_date, end_date)

    indicator_series = load_indicator_series(indicator_path) if indicator_path else ()
    params = StrategyParameters.from_settings(
        settings, start=start_dt, end=end_dt, indicator_series=indicator_series
    )
    known = {k: v for k, v in overrides.items() if hasattr(params, k)}
    for key in overrides.keys() - known.keys():
        logger.warning("unknown_parameter_override", parameter=key)
    if known:
        params = params.with_overrides(**known)

    sink = JsonFileResultSink(output_path) if output_path else None
    result = await run_backtest(
        params, JsonFileSnapshotSource(data_path), sink=sink, settings=settings
    )

    perf = result.performance
    logger.info(
        "backtest_cli_summary",
        date_range=f"{start_date} to {end_date}",
        initial_capital=str(params.initial_capital),
        total_return=str(perf.total_return),
        annualized_return=str(perf.annualized_return),
        max_drawdown=str(perf.max_drawdown.drawdown),
        sharpe_ratio=str(perf.sharpe_ratio),
        calmar_ratio=str(perf.calmar_ratio),
        win_rate=str(perf.win_rate),
        active_periods=result.summary.active_periods,
        inactive_periods=result.summary.inactive_periods,
    )
    return result
