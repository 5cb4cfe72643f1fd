"""Return and risk statistics over a backtest's snapshot sequence.

Pure Decimal analytics: period returns, annualized return, volatility,
Sharpe, max drawdown with its span, Calmar, win rate, best/worst periods and
a PnL breakdown by side. The snapshot sequence is only read.

Period returns are measured between consecutive snapshots, so N snapshots
give N - 1 returns; the return ending at snapshot i (0-based) is period i + 1.
A single snapshot is reported against initial capital as period 1.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation, Overflow

from btcdom.logging import get_logger
from btcdom.portfolio.models import PortfolioSnapshot

logger = get_logger(__name__)

ZERO = Decimal("0")
ONE = Decimal("1")
HOURS_PER_YEAR = Decimal(365 * 24)
RECONCILE_TOLERANCE = Decimal("0.01")


@dataclass(frozen=True)
class PeriodInfo:
    """A period's value annotated with when it happened (period is 1-based)."""

    value: Decimal
    timestamp: datetime
    period: int

    def to_dict(self) -> dict:
        return {
            "value": str(self.value),
            "timestamp": self.timestamp.isoformat(),
            "period": self.period,
        }


@dataclass(frozen=True)
class DrawdownInfo:
    """Largest peak-to-trough decline.

    peak_period is 0 while the running peak is still initial capital;
    otherwise peak_period and trough_period are 1-based snapshot indexes.
    """

    drawdown: Decimal
    peak_value: Decimal
    trough_value: Decimal
    peak_period: int
    trough_period: int

    def to_dict(self) -> dict:
        return {
            "drawdown": str(self.drawdown),
            "peak_value": str(self.peak_value),
            "trough_value": str(self.trough_value),
            "peak_period": self.peak_period,
            "trough_period": self.trough_period,
        }


@dataclass(frozen=True)
class PnlBreakdown:
    """Where the total PnL came from.

    total == long_realized + long_unrealized + short_realized
             + short_unrealized + trading_fees + funding_fees
    Each *_rate field is the amount divided by initial capital.
    """

    total: Decimal
    long_realized: Decimal
    long_unrealized: Decimal
    short_realized: Decimal
    short_unrealized: Decimal
    trading_fees: Decimal
    funding_fees: Decimal
    initial_capital: Decimal

    @property
    def long_total(self) -> Decimal:
        return self.long_realized + self.long_unrealized

    @property
    def short_total(self) -> Decimal:
        return self.short_realized + self.short_unrealized

    @property
    def reconciliation_gap(self) -> Decimal:
        return abs(
            self.total
            - self.long_total
            - self.short_total
            - self.trading_fees
            - self.funding_fees
        )

    def rate(self, amount: Decimal) -> Decimal:
        return amount / self.initial_capital if self.initial_capital > ZERO else ZERO

    def to_dict(self) -> dict:
        amounts = {
            "total": self.total,
            "long_realized": self.long_realized,
            "long_unrealized": self.long_unrealized,
            "short_realized": self.short_realized,
            "short_unrealized": self.short_unrealized,
            "trading_fees": self.trading_fees,
            "funding_fees": self.funding_fees,
        }
        result = {f"{name}_amount": str(value) for name, value in amounts.items()}
        result.update({f"{name}_rate": str(self.rate(value)) for name, value in amounts.items()})
        return result


@dataclass(frozen=True)
class PerformanceReport:
    """Aggregate statistics for a run. Returns and drawdown are fractions."""

    total_return: Decimal
    annualized_return: Decimal
    volatility: Decimal
    sharpe_ratio: Decimal
    max_drawdown: DrawdownInfo
    calmar_ratio: Decimal
    win_rate: Decimal
    avg_return: Decimal
    benchmark_return: Decimal
    short_return: Decimal
    best_period: PeriodInfo | None
    worst_period: PeriodInfo | None
    best_funding_period: PeriodInfo | None
    worst_funding_period: PeriodInfo | None
    pnl_breakdown: PnlBreakdown

    def to_dict(self) -> dict:
        def _info(info: PeriodInfo | None) -> dict | None:
            return info.to_dict() if info else None

        return {
            "total_return": str(self.total_return),
            "annualized_return": str(self.annualized_return),
            "volatility": str(self.volatility),
            "sharpe_ratio": str(self.sharpe_ratio),
            "max_drawdown": self.max_drawdown.to_dict(),
            "calmar_ratio": str(self.calmar_ratio),
            "win_rate": str(self.win_rate),
            "avg_return": str(self.avg_return),
            "benchmark_return": str(self.benchmark_return),
            "short_return": str(self.short_return),
            "best_period": _info(self.best_period),
            "worst_period": _info(self.worst_period),
            "best_funding_period": _info(self.best_funding_period),
            "worst_funding_period": _info(self.worst_funding_period),
            "pnl_breakdown": self.pnl_breakdown.to_dict(),
        }


def periods_per_year(granularity_hours: Decimal) -> Decimal:
    """Number of periods of granularity_hours in a 365-day year."""
    if granularity_hours <= ZERO:
        return ZERO
    return HOURS_PER_YEAR / granularity_hours


def period_returns(snapshots: Sequence[PortfolioSnapshot]) -> list[PeriodInfo]:
    """Return between each pair of consecutive snapshots.

    A non-positive previous value yields a 0 return.
    """
    returns: list[PeriodInfo] = []
    for i in range(1, len(snapshots)):
        prev_value = snapshots[i - 1].total_value
        value = snapshots[i].total_value
        ret = (value - prev_value) / prev_value if prev_value > ZERO else ZERO
        returns.append(PeriodInfo(value=ret, timestamp=snapshots[i].timestamp, period=i + 1))
    return returns


def annualized_return(total_return: Decimal, periods: int, per_year: Decimal) -> Decimal:
    """Compound total_return over periods to a yearly rate.

    Formula: (1 + total_return) ** (per_year / periods) - 1
    A single period returns total_return unchanged; a total loss returns -1.
    """
    if periods <= 1 or per_year <= ZERO:
        return total_return
    growth = ONE + total_return
    if growth <= ZERO:
        return -ONE
    try:
        return growth ** (per_year / Decimal(periods)) - ONE
    except (Overflow, InvalidOperation):
        logger.warning(
            "annualized_return_overflow",
            total_return=str(total_return),
            periods=periods,
        )
        return total_return


def population_stdev(values: Sequence[Decimal]) -> Decimal:
    """Standard deviation with an N denominator; 0 for fewer than two values."""
    if len(values) < 2:
        return ZERO
    n = Decimal(len(values))
    mean = sum(values, ZERO) / n
    variance = sum(((v - mean) ** 2 for v in values), ZERO) / n
    return variance.sqrt()


def max_drawdown(
    snapshots: Sequence[PortfolioSnapshot], initial_capital: Decimal
) -> DrawdownInfo:
    """Largest decline from a running peak that starts at initial capital.

    Returns:
        DrawdownInfo with drawdown in [0, 1] for non-negative values.
    """
    peak = initial_capital
    peak_period = 0
    best = DrawdownInfo(
        drawdown=ZERO,
        peak_value=initial_capital,
        trough_value=initial_capital,
        peak_period=0,
        trough_period=0,
    )
    for index, snapshot in enumerate(snapshots, start=1):
        value = snapshot.total_value
        if value > peak:
            peak = value
            peak_period = index
        if peak <= ZERO:
            continue
        drawdown = min(ONE, (peak - value) / peak)
        if drawdown > best.drawdown:
            best = DrawdownInfo(
                drawdown=drawdown,
                peak_value=peak,
                trough_value=value,
                peak_period=peak_period,
                trough_period=index,
            )
    return best


def _first_extreme(infos: Sequence[PeriodInfo], highest: bool) -> PeriodInfo | None:
    # First match wins on ties.
    chosen: PeriodInfo | None = None
    for info in infos:
        if chosen is None:
            chosen = info
        elif highest and info.value > chosen.value:
            chosen = info
        elif not highest and info.value < chosen.value:
            chosen = info
    return chosen


def pnl_breakdown(
    snapshots: Sequence[PortfolioSnapshot], initial_capital: Decimal
) -> PnlBreakdown:
    """Split the final cumulative PnL by side and by fees."""
    if not snapshots:
        return PnlBreakdown(ZERO, ZERO, ZERO, ZERO, ZERO, ZERO, ZERO, initial_capital)
    final = snapshots[-1]
    breakdown = PnlBreakdown(
        total=final.cumulative_pnl,
        long_realized=final.cumulative_long_realized,
        long_unrealized=final.long_leg.unrealized_pnl if final.long_leg else ZERO,
        short_realized=final.cumulative_short_realized,
        short_unrealized=final.short_unrealized_pnl,
        trading_fees=final.cumulative_trading_fees,
        funding_fees=final.cumulative_funding_fees,
        initial_capital=initial_capital,
    )
    if breakdown.reconciliation_gap > RECONCILE_TOLERANCE:
        logger.warning(
            "pnl_breakdown_mismatch",
            total=str(breakdown.total),
            long_total=str(breakdown.long_total),
            short_total=str(breakdown.short_total),
            trading_fees=str(breakdown.trading_fees),
            funding_fees=str(breakdown.funding_fees),
            gap=str(breakdown.reconciliation_gap),
        )
    return breakdown


def analyze_performance(
    snapshots: Sequence[PortfolioSnapshot],
    initial_capital: Decimal,
    granularity_hours: Decimal,
    short_capital_ratio: Decimal = ONE,
) -> PerformanceReport:
    """Compute the performance report for a run.

    Args:
        snapshots: Snapshots in time order.
        initial_capital: Starting capital.
        granularity_hours: Period length in hours.
        short_capital_ratio: Share of initial capital given to the short side,
            used for short_return.

    Returns:
        PerformanceReport; all-zero statistics for an empty sequence.
    """
    breakdown = pnl_breakdown(snapshots, initial_capital)
    drawdown = max_drawdown(snapshots, initial_capital)

    if not snapshots:
        return PerformanceReport(
            total_return=ZERO,
            annualized_return=ZERO,
            volatility=ZERO,
            sharpe_ratio=ZERO,
            max_drawdown=drawdown,
            calmar_ratio=ZERO,
            win_rate=ZERO,
            avg_return=ZERO,
            benchmark_return=ZERO,
            short_return=ZERO,
            best_period=None,
            worst_period=None,
            best_funding_period=None,
            worst_funding_period=None,
            pnl_breakdown=breakdown,
        )

    first, final = snapshots[0], snapshots[-1]
    total_return = (
        (final.total_value - initial_capital) / initial_capital
        if initial_capital > ZERO
        else ZERO
    )
    per_year = periods_per_year(granularity_hours)

    returns = period_returns(snapshots)
    if not returns:
        # One snapshot: its only return is against initial capital.
        returns = [PeriodInfo(value=total_return, timestamp=first.timestamp, period=1)]
    values = [r.value for r in returns]

    annualized = annualized_return(total_return, len(snapshots), per_year)
    volatility = population_stdev(values) * per_year.sqrt()
    sharpe = annualized / volatility if volatility > ZERO else ZERO
    calmar = annualized / drawdown.drawdown if drawdown.drawdown > ZERO else ZERO
    win_rate = Decimal(sum(1 for v in values if v > ZERO)) / Decimal(len(values))
    avg_return = sum(values, ZERO) / Decimal(len(values))

    funding = [
        PeriodInfo(value=s.period_funding_fee, timestamp=s.timestamp, period=i)
        for i, s in enumerate(snapshots, start=1)
    ]

    benchmark_return = (
        (final.benchmark_price - first.benchmark_price) / first.benchmark_price
        if first.benchmark_price > ZERO
        else ZERO
    )
    short_capital = initial_capital * short_capital_ratio
    short_return = breakdown.short_total / short_capital if short_capital > ZERO else ZERO

    return PerformanceReport(
        total_return=total_return,
        annualized_return=annualized,
        volatility=volatility,
        sharpe_ratio=sharpe,
        max_drawdown=drawdown,
        calmar_ratio=calmar,
        win_rate=win_rate,
        avg_return=avg_return,
        benchmark_return=benchmark_return,
        short_return=short_return,
        best_period=_first_extreme(returns, highest=True),
        worst_period=_first_extreme(returns, highest=False),
        best_funding_period=_first_extreme(funding, highest=True),
        worst_funding_period=_first_extreme(funding, highest=False),
        pnl_breakdown=breakdown,
    )
