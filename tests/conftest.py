"""Shared test fixtures for the BTC-dominance backtest."""

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from btcdom.backtest.models import StrategyParameters
from btcdom.config import AppSettings, BacktestSettings, CacheSettings
from btcdom.models import FundingSample, MarketDataPoint, RankingItem
from btcdom.portfolio.models import PortfolioSnapshot

T0 = datetime(2024, 3, 1, tzinfo=timezone.utc)


def build_item(
    symbol: str,
    rank: int,
    change: str = "-5",
    price: str = "10",
    market_share: str = "0.1",
    volatility: str = "0.05",
    futures_price: str | None = None,
    funding_rate: str | None = None,
    funding_mark: str | None = None,
) -> RankingItem:
    """Build a RankingItem with string-typed Decimal fields."""
    history: tuple[FundingSample, ...] = ()
    if funding_rate is not None:
        history = (
            FundingSample(
                funding_time=T0,
                funding_rate=Decimal(funding_rate),
                mark_price=Decimal(funding_mark) if funding_mark is not None else None,
            ),
        )
    return RankingItem(
        symbol=symbol,
        rank=rank,
        price_change_24h=Decimal(change),
        volume_24h=Decimal("1000000"),
        quote_volume_24h=Decimal("10000000"),
        volatility_24h=Decimal(volatility),
        market_share=Decimal(market_share),
        price=Decimal(price),
        futures_price=Decimal(futures_price) if futures_price is not None else None,
        futures_symbol=None,
        funding_history=history,
    )


def build_point(
    rankings: list[RankingItem],
    period: int = 0,
    benchmark_price: str = "50000",
    benchmark_change: str = "0",
    granularity: str = "8",
    removed: list[RankingItem] | None = None,
) -> MarketDataPoint:
    """Build a MarketDataPoint `period` steps of `granularity` hours after T0."""
    return MarketDataPoint(
        timestamp=T0 + timedelta(hours=int(granularity) * period),
        granularity_hours=Decimal(granularity),
        benchmark_price=Decimal(benchmark_price),
        benchmark_change_24h=Decimal(benchmark_change),
        rankings=tuple(rankings),
        removed_symbols=tuple(removed or ()),
    )


def build_snapshot(
    total_value: str,
    period: int = 0,
    benchmark_price: str = "50000",
    funding: str = "0",
    capital: str = "10000",
    active: bool = True,
) -> PortfolioSnapshot:
    """Build a leg-free snapshot holding total_value in cash.

    The cumulative PnL is booked as short realized PnL so the breakdown reconciles.
    """
    value = Decimal(total_value)
    cumulative = value - Decimal(capital)
    return PortfolioSnapshot(
        timestamp=T0 + timedelta(hours=8 * period),
        granularity_hours=Decimal("8"),
        benchmark_price=Decimal(benchmark_price),
        benchmark_change_24h=Decimal("0"),
        long_leg=None,
        short_legs=(),
        closed_legs=(),
        cash_balance=value,
        total_value=value,
        period_pnl=Decimal("0"),
        cumulative_pnl=cumulative,
        period_return=Decimal("0"),
        period_trading_fee=Decimal("0"),
        period_funding_fee=Decimal(funding),
        cumulative_trading_fees=Decimal("0"),
        cumulative_funding_fees=Decimal("0"),
        cumulative_long_realized=Decimal("0"),
        cumulative_short_realized=cumulative,
        is_active=active,
        inactive_reason=None if active else "no candidate meets the price condition",
        selection_reason="selected 1 short candidates",
    )


@pytest.fixture
def make_item() -> Callable[..., RankingItem]:
    return build_item


@pytest.fixture
def make_point() -> Callable[..., MarketDataPoint]:
    return build_point


@pytest.fixture
def make_snapshot() -> Callable[..., PortfolioSnapshot]:
    return build_snapshot


@pytest.fixture
def params() -> StrategyParameters:
    """Default parameters over a valid date range, fee-free for exact accounting tests."""
    return StrategyParameters(
        start=T0,
        end=T0 + timedelta(days=30),
        spot_fee_rate=Decimal("0"),
        futures_fee_rate=Decimal("0"),
    )


@pytest.fixture
def mock_settings() -> AppSettings:
    """AppSettings with test defaults (debug logging, sequential scoring)."""
    return AppSettings(
        log_level="DEBUG",
        backtest=BacktestSettings(scoring_workers=1),
        cache=CacheSettings(),
    )
