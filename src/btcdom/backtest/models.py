"""Data models for the backtest engine.

Defines the immutable strategy parameters every period step reads, the
macro-gate configuration, and the result containers handed to a ResultSink
(chart series, summary and the full result).

CRITICAL: All monetary values use Decimal. Never use float for prices, quantities, or fees.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from btcdom.models import AllocationPolicy, IndicatorPoint

if TYPE_CHECKING:
    from btcdom.analytics.performance import PerformanceReport
    from btcdom.config import AppSettings
    from btcdom.portfolio.models import PortfolioSnapshot

WEIGHT_SUM_TOLERANCE = Decimal("0.001")
MACRO_GATE_TIMEFRAMES = ("8H", "1D", "1W")


@dataclass(frozen=True)
class MacroGateConfig:
    """Market-temperature gate configuration.

    Attributes:
        enabled: Whether the gate is evaluated at all.
        symbol: Indicator symbol, for reporting (e.g. "OTHERS").
        threshold: Gate triggers when the indicator value is above this.
        timeframe: "1D" reads the previous UTC day; "8H" and "1W" read the
            previous epoch-aligned bucket of that length.
        series: Indicator values ordered ascending by timestamp.
    """

    enabled: bool = False
    symbol: str = "OTHERS"
    threshold: Decimal = Decimal("60")
    timeframe: str = "1D"
    series: tuple[IndicatorPoint, ...] = ()

    def to_dict(self) -> dict:
        return {
            "enabled": self.enabled,
            "symbol": self.symbol,
            "threshold": str(self.threshold),
            "timeframe": self.timeframe,
            "series_points": len(self.series),
        }


@dataclass(frozen=True)
class StrategyParameters:
    """Immutable configuration for one backtest run.

    Read by every component; never mutated by the engine. Use
    with_overrides() to derive variants for parameter searches.
    """

    start: datetime | None = None
    end: datetime | None = None
    initial_capital: Decimal = Decimal("10000")
    benchmark_symbol: str = "BTCUSDT"

    long_enabled: bool = True
    short_enabled: bool = True
    long_ratio: Decimal = Decimal("0.5")

    weight_price_change: Decimal = Decimal("0.15")
    weight_volume: Decimal = Decimal("0.35")
    weight_volatility: Decimal = Decimal("0.15")
    weight_funding_rate: Decimal = Decimal("0.35")

    max_short_positions: int = 5
    allocation_policy: AllocationPolicy = AllocationPolicy.BY_VOLUME
    max_single_position_ratio: Decimal = Decimal("0.25")

    spot_fee_rate: Decimal = Decimal("0.0008")
    futures_fee_rate: Decimal = Decimal("0.0002")
    min_trade_quantity: Decimal = Decimal("0.0001")

    macro_gate: MacroGateConfig = MacroGateConfig()
    verbose: bool = False

    def with_overrides(self, **kwargs: object) -> StrategyParameters:
        """Return a new StrategyParameters with specified fields overridden.

        Args:
            **kwargs: Fields to override.

        Returns:
            New StrategyParameters with overridden values.
        """
        return replace(self, **kwargs)

    @staticmethod
    def from_settings(
        settings: AppSettings,
        start: datetime | None = None,
        end: datetime | None = None,
        indicator_series: tuple[IndicatorPoint, ...] = (),
    ) -> StrategyParameters:
        """Build parameters from application settings and a date range.

        Args:
            settings: Loaded AppSettings.
            start: Inclusive range start (UTC).
            end: Range end (UTC).
            indicator_series: Macro-gate indicator values, ascending.

        Returns:
            StrategyParameters reflecting the settings.
        """
        strategy = settings.strategy
        gate = settings.macro_gate
        return StrategyParameters(
            start=start,
            end=end,
            initial_capital=strategy.initial_capital,
            benchmark_symbol=strategy.benchmark_symbol,
            long_enabled=strategy.long_enabled,
            short_enabled=strategy.short_enabled,
            long_ratio=strategy.long_ratio,
            weight_price_change=strategy.weight_price_change,
            weight_volume=strategy.weight_volume,
            weight_volatility=strategy.weight_volatility,
            weight_funding_rate=strategy.weight_funding_rate,
            max_short_positions=strategy.max_short_positions,
            allocation_policy=strategy.allocation_policy,
            max_single_position_ratio=strategy.max_single_position_ratio,
            spot_fee_rate=settings.fees.spot_fee_rate,
            futures_fee_rate=settings.fees.futures_fee_rate,
            min_trade_quantity=strategy.min_trade_quantity,
            macro_gate=MacroGateConfig(
                enabled=gate.enabled,
                symbol=gate.symbol,
                threshold=gate.threshold,
                timeframe=gate.timeframe,
                series=tuple(indicator_series),
            ),
            verbose=strategy.verbose,
        )

    @property
    def weight_sum(self) -> Decimal:
        return (
            self.weight_price_change
            + self.weight_volume
            + self.weight_volatility
            + self.weight_funding_rate
        )

    def scoring_signature(self) -> tuple:
        """Fields that influence candidate selection, for cache keys."""
        return (
            self.benchmark_symbol,
            self.weight_price_change,
            self.weight_volume,
            self.weight_volatility,
            self.weight_funding_rate,
            self.max_short_positions,
        )

    def validate(self) -> list[str]:
        """Check every parameter rule.

        Returns:
            Human-readable messages for each failed rule; empty when valid.
        """
        errors: list[str] = []
        if self.start is None or self.end is None:
            errors.append("start and end dates are required")
        elif self.start >= self.end:
            errors.append("start date must be before end date")
        if not self.initial_capital.is_finite() or self.initial_capital <= 0:
            errors.append("initial capital must be greater than 0")
        if abs(self.weight_sum - Decimal("1")) > WEIGHT_SUM_TOLERANCE:
            errors.append(f"weights must sum to 1 (got {self.weight_sum})")
        if any(
            w < 0
            for w in (
                self.weight_price_change,
                self.weight_volume,
                self.weight_volatility,
                self.weight_funding_rate,
            )
        ):
            errors.append("weights must not be negative")
        if not self.long_enabled and not self.short_enabled:
            errors.append("at least one of the long or short side must be enabled")
        if not Decimal("0") <= self.long_ratio <= Decimal("1"):
            errors.append("long ratio must be between 0 and 1")
        if self.max_short_positions < 1:
            errors.append("max short positions must be at least 1")
        if not Decimal("0") < self.max_single_position_ratio <= Decimal("1"):
            errors.append("max single position ratio must be in (0, 1]")
        if self.spot_fee_rate < 0 or self.futures_fee_rate < 0:
            errors.append("fee rates must not be negative")
        if self.min_trade_quantity < 0:
            errors.append("min trade quantity must not be negative")
        if self.macro_gate.enabled:
            if not self.macro_gate.threshold.is_finite():
                errors.append("macro gate threshold must be a finite number")
            if self.macro_gate.timeframe not in MACRO_GATE_TIMEFRAMES:
                errors.append(
                    f"macro gate timeframe must be one of {', '.join(MACRO_GATE_TIMEFRAMES)}"
                )
        return errors

    def to_dict(self) -> dict:
        """Serialize to dict for JSON output.

        Converts all Decimal values to str for JSON compatibility.

        Returns:
            Dict with all fields, Decimals as strings.
        """
        return {
            "start": self.start.isoformat() if self.start else None,
            "end": self.end.isoformat() if self.end else None,
            "initial_capital": str(self.initial_capital),
            "benchmark_symbol": self.benchmark_symbol,
            "long_enabled": self.long_enabled,
            "short_enabled": self.short_enabled,
            "long_ratio": str(self.long_ratio),
            "weight_price_change": str(self.weight_price_change),
            "weight_volume": str(self.weight_volume),
            "weight_volatility": str(self.weight_volatility),
            "weight_funding_rate": str(self.weight_funding_rate),
            "max_short_positions": self.max_short_positions,
            "allocation_policy": self.allocation_policy.value,
            "max_single_position_ratio": str(self.max_single_position_ratio),
            "spot_fee_rate": str(self.spot_fee_rate),
            "futures_fee_rate": str(self.futures_fee_rate),
            "min_trade_quantity": str(self.min_trade_quantity),
            "macro_gate": self.macro_gate.to_dict(),
            "verbose": self.verbose,
        }


@dataclass(frozen=True)
class ChartPoint:
    """One chart-ready row derived from a snapshot.

    Returns and drawdown are fractions (0.05 = 5%).
    """

    timestamp: datetime
    total_value: Decimal
    total_return: Decimal
    benchmark_return: Decimal
    long_value: Decimal
    short_value: Decimal
    cash: Decimal
    drawdown: Decimal
    is_active: bool
    benchmark_price: Decimal
    index_price: Decimal | None

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "total_value": str(self.total_value),
            "total_return": str(self.total_return),
            "benchmark_return": str(self.benchmark_return),
            "long_value": str(self.long_value),
            "short_value": str(self.short_value),
            "cash": str(self.cash),
            "drawdown": str(self.drawdown),
            "is_active": self.is_active,
            "benchmark_price": str(self.benchmark_price),
            "index_price": str(self.index_price) if self.index_price is not None else None,
        }


@dataclass(frozen=True)
class BacktestSummary:
    """Period counts for a run."""

    total_periods: int
    active_periods: int
    inactive_periods: int
    avg_short_positions: Decimal
    granularity_hours: Decimal

    @staticmethod
    def from_snapshots(
        snapshots: tuple[PortfolioSnapshot, ...], granularity_hours: Decimal
    ) -> BacktestSummary:
        """Count active/inactive periods and the mean short basket size."""
        total = len(snapshots)
        active = sum(1 for s in snapshots if s.is_active)
        avg_shorts = (
            Decimal(sum(len(s.short_legs) for s in snapshots)) / Decimal(total)
            if total
            else Decimal("0")
        )
        return BacktestSummary(
            total_periods=total,
            active_periods=active,
            inactive_periods=total - active,
            avg_short_positions=avg_shorts,
            granularity_hours=granularity_hours,
        )

    def to_dict(self) -> dict:
        return {
            "total_periods": self.total_periods,
            "active_periods": self.active_periods,
            "inactive_periods": self.inactive_periods,
            "avg_short_positions": str(self.avg_short_positions),
            "granularity_hours": str(self.granularity_hours),
        }


@dataclass(frozen=True)
class BacktestResult:
    """Complete output of a backtest run.

    Attributes:
        params: The parameters the run used.
        snapshots: One snapshot per processed data point, in time order.
        performance: Statistics over the snapshots.
        chart: Derived chart series; empty in optimize-only mode.
        summary: Period counts.
        completed: False when a period or time budget stopped the run early.
        stop_reason: Why the run stopped early, if it did.
    """

    params: StrategyParameters
    snapshots: tuple[PortfolioSnapshot, ...]
    performance: PerformanceReport
    chart: tuple[ChartPoint, ...]
    summary: BacktestSummary
    completed: bool = True
    stop_reason: str | None = None

    def to_dict(self, include_snapshots: bool = True) -> dict:
        """Serialize to dict for JSON output.

        Args:
            include_snapshots: Set False to omit the per-period snapshots.

        Returns:
            Dict with all fields, Decimals as strings.
        """
        result = {
            "params": self.params.to_dict(),
            "performance": self.performance.to_dict(),
            "chart": [point.to_dict() for point in self.chart],
            "summary": self.summary.to_dict(),
            "completed": self.completed,
            "stop_reason": self.stop_reason,
        }
        if include_snapshots:
            result["snapshots"] = [s.to_dict() for s in self.snapshots]
        return result


def _plain(value: object) -> object:
    """JSON-friendly form of a grid value."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, AllocationPolicy):
        return value.value
    return value


@dataclass(frozen=True)
class SweepEntry:
    """One evaluated grid combination.

    Attributes:
        overrides: The parameter values applied to the base parameters.
        result: The run's result. Only the best entry keeps its snapshots.
        score: Value of the ranking metric for this run.
    """

    overrides: dict[str, object]
    result: BacktestResult
    score: Decimal

    def to_dict(self) -> dict:
        return {
            "overrides": {k: _plain(v) for k, v in self.overrides.items()},
            "score": str(self.score),
            "result": self.result.to_dict(include_snapshots=False),
        }


@dataclass(frozen=True)
class SweepResult:
    """Result of a parameter sweep.

    Attributes:
        param_grid: The swept grid (parameter name -> candidate values).
        metric: PerformanceReport field the entries are ranked by.
        entries: Evaluated combinations, best first.
        skipped: Combinations rejected by validation, with their messages.
    """

    param_grid: dict[str, list]
    metric: str
    entries: tuple[SweepEntry, ...]
    skipped: tuple[tuple[dict[str, object], tuple[str, ...]], ...] = ()

    @property
    def best(self) -> SweepEntry | None:
        return self.entries[0] if self.entries else None

    def to_dict(self) -> dict:
        """Serialize to dict for JSON output, Decimals as strings."""
        return {
            "param_grid": {k: [_plain(v) for v in vals] for k, vals in self.param_grid.items()},
            "metric": self.metric,
            "entries": [entry.to_dict() for entry in self.entries],
            "skipped": [
                {"overrides": {k: _plain(v) for k, v in overrides.items()}, "errors": list(errors)}
                for overrides, errors in self.skipped
            ],
        }
