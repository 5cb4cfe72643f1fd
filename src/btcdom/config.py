"""Configuration system using pydantic-settings with environment variable loading."""

from decimal import Decimal
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

from btcdom.models import AllocationPolicy


class StrategySettings(BaseSettings):
    """Strategy parameters for the long-benchmark / short-alt rotation.

    All fields configurable via STRATEGY_ environment variable prefix.
    """

    model_config = SettingsConfigDict(env_prefix="STRATEGY_")

    initial_capital: Decimal = Decimal("10000")
    benchmark_symbol: str = "BTCUSDT"
    long_ratio: Decimal = Decimal("0.5")  # share of portfolio value held long
    long_enabled: bool = True
    short_enabled: bool = True

    # Composite weights (must sum to 1 within 0.001)
    weight_price_change: Decimal = Decimal("0.15")
    weight_volume: Decimal = Decimal("0.35")
    weight_volatility: Decimal = Decimal("0.15")
    weight_funding_rate: Decimal = Decimal("0.35")

    max_short_positions: int = 5
    allocation_policy: AllocationPolicy = AllocationPolicy.BY_VOLUME
    max_single_position_ratio: Decimal = Decimal("0.25")  # by-composite-score cap
    min_trade_quantity: Decimal = Decimal("0.0001")  # smaller rebalances are skipped
    verbose: bool = False


class FeeSettings(BaseSettings):
    """Taker fee rates applied to traded notional."""

    model_config = SettingsConfigDict(env_prefix="FEES_")

    spot_fee_rate: Decimal = Decimal("0.0008")  # 0.08%
    futures_fee_rate: Decimal = Decimal("0.0002")  # 0.02%


class MacroGateSettings(BaseSettings):
    """Market-temperature gate that closes the short side when the alt index runs hot."""

    model_config = SettingsConfigDict(env_prefix="MACRO_GATE_")

    enabled: bool = False
    symbol: str = "OTHERS"
    threshold: Decimal = Decimal("60")
    timeframe: Literal["8H", "1D", "1W"] = "1D"


class CacheSettings(BaseSettings):
    """Score memoization bounds."""

    model_config = SettingsConfigDict(env_prefix="CACHE_")

    cleanup_interval_seconds: float = 1800.0  # 30 minutes
    max_entries: int = 10000
    selection_max_entries: int = 2000


class BacktestSettings(BaseSettings):
    """Backtest engine configuration.

    Controls scoring concurrency, fast mode and the cancellation budget.
    All fields configurable via BACKTEST_ environment variable prefix.
    """

    model_config = SettingsConfigDict(env_prefix="BACKTEST_")

    scoring_workers: int = 1  # >1 scores candidates in a thread pool
    optimize_only: bool = False  # skip chart series for parameter searches
    max_periods: int | None = None
    time_budget_seconds: float | None = None


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    strategy: StrategySettings = StrategySettings()
    fees: FeeSettings = FeeSettings()
    macro_gate: MacroGateSettings = MacroGateSettings()
    cache: CacheSettings = CacheSettings()
    backtest: BacktestSettings = BacktestSettings()
