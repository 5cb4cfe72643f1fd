"""Chart-ready series derived from snapshots.

One ChartPoint per snapshot with returns measured against initial capital
(strategy) and the first snapshot's benchmark price (buy and hold).
"""

from collections.abc import Sequence
from decimal import Decimal

from btcdom.backtest.models import ChartPoint
from btcdom.portfolio.models import PortfolioSnapshot

ZERO = Decimal("0")


def build_chart_series(
    snapshots: Sequence[PortfolioSnapshot], initial_capital: Decimal
) -> tuple[ChartPoint, ...]:
    """Build the chart series for a run.

    Args:
        snapshots: Snapshots in time order.
        initial_capital: Starting capital; also the initial drawdown peak.

    Returns:
        Tuple of ChartPoint aligned with snapshots.
    """
    if not snapshots:
        return ()

    first_price = snapshots[0].benchmark_price
    peak = initial_capital
    points: list[ChartPoint] = []
    for snapshot in snapshots:
        value = snapshot.total_value
        peak = max(peak, value)
        points.append(
            ChartPoint(
                timestamp=snapshot.timestamp,
                total_value=value,
                total_return=(value - initial_capital) / initial_capital
                if initial_capital > ZERO
                else ZERO,
                benchmark_return=snapshot.benchmark_price / first_price - 1
                if first_price > ZERO
                else ZERO,
                long_value=snapshot.long_market_value,
                short_value=snapshot.short_notional,
                cash=snapshot.cash_balance,
                drawdown=(peak - value) / peak if peak > ZERO else ZERO,
                is_active=snapshot.is_active,
                benchmark_price=snapshot.benchmark_price,
                index_price=snapshot.index_price,
            )
        )
    return tuple(points)
