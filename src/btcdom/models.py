"""Shared data models for the BTC-dominance backtest.

Market data points arrive from an upstream source as JSON-like dicts and are
parsed here into frozen dataclasses. Parsing is total: any missing or
non-finite number becomes None (optional fields) or a documented default, so
nothing undefined reaches the stepping loop.

CRITICAL: All monetary values use Decimal. Never use float for prices, quantities, or fees.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

ZERO = Decimal("0")


class AllocationPolicy(str, Enum):
    """How the short capital pool is split across selected candidates."""

    BY_VOLUME = "BY_VOLUME"
    BY_COMPOSITE_SCORE = "BY_COMPOSITE_SCORE"
    EQUAL_ALLOCATION = "EQUAL_ALLOCATION"


class LegSide(str, Enum):
    """Position direction."""

    LONG = "long"
    SHORT = "short"


def to_decimal(value: Any) -> Decimal | None:
    """Convert a raw JSON number or string to a finite Decimal.

    Floats go through str() so 0.1 stays 0.1 instead of its binary expansion.

    Returns:
        The Decimal, or None if the value is missing, unparseable or non-finite.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError):
            return None
    return result if result.is_finite() else None


def finite_or(value: Decimal | None, default: Decimal) -> Decimal:
    """Return value when it is a finite Decimal, otherwise default."""
    if value is None or not value.is_finite():
        return default
    return value


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 string, epoch milliseconds or datetime into an aware UTC datetime.

    Raises:
        ValueError: If the value cannot be interpreted as a point in time.
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        dt = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    elif isinstance(value, str):
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        raise ValueError(f"Unsupported timestamp value: {value!r}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _pick(raw: dict, *keys: str) -> Any:
    """Return the first present key, accepting snake_case and camelCase spellings."""
    for key in keys:
        if key in raw:
            return raw[key]
    return None


@dataclass(frozen=True)
class FundingSample:
    """A single settled funding rate for a perpetual contract."""

    funding_time: datetime
    funding_rate: Decimal | None
    mark_price: Decimal | None = None

    @staticmethod
    def from_dict(raw: dict) -> "FundingSample":
        return FundingSample(
            funding_time=parse_timestamp(_pick(raw, "funding_time", "fundingTime")),
            funding_rate=to_decimal(_pick(raw, "funding_rate", "fundingRate")),
            mark_price=to_decimal(_pick(raw, "mark_price", "markPrice")),
        )

    def to_dict(self) -> dict:
        return {
            "funding_time": self.funding_time.isoformat(),
            "funding_rate": str(self.funding_rate) if self.funding_rate is not None else None,
            "mark_price": str(self.mark_price) if self.mark_price is not None else None,
        }


@dataclass(frozen=True)
class RankingItem:
    """One alt asset in a period's volume ranking (benchmark excluded).

    Attributes:
        rank: 1-based rank by 24h volume, unique within the period.
        price_change_24h: 24h price change in percent (e.g. -3.5 for -3.5%).
        market_share: Share of total ranked volume, used by by-volume allocation.
        futures_price: Perpetual price at the snapshot instant, if listed.
        funding_history: Funding samples ordered ascending by funding time.
    """

    symbol: str
    rank: int
    price_change_24h: Decimal | None
    volume_24h: Decimal | None
    quote_volume_24h: Decimal | None
    volatility_24h: Decimal | None
    market_share: Decimal | None
    price: Decimal | None
    futures_price: Decimal | None = None
    futures_symbol: str | None = None
    funding_history: tuple[FundingSample, ...] = ()

    @property
    def latest_funding(self) -> FundingSample | None:
        """Most recent funding sample, or None when the history is empty."""
        return self.funding_history[-1] if self.funding_history else None

    @property
    def trade_price(self) -> Decimal | None:
        """Futures price when positive, else spot price when positive."""
        for candidate in (self.futures_price, self.price):
            if candidate is not None and candidate > ZERO:
                return candidate
        return None

    @staticmethod
    def from_dict(raw: dict) -> "RankingItem":
        history = _pick(raw, "funding_history", "fundingRateHistory") or []
        samples = sorted(
            (FundingSample.from_dict(s) for s in history),
            key=lambda s: s.funding_time,
        )
        return RankingItem(
            symbol=str(raw["symbol"]),
            rank=int(raw["rank"]),
            price_change_24h=to_decimal(_pick(raw, "price_change_24h", "priceChange24h")),
            volume_24h=to_decimal(_pick(raw, "volume_24h", "volume24h")),
            quote_volume_24h=to_decimal(_pick(raw, "quote_volume_24h", "quoteVolume24h")),
            volatility_24h=to_decimal(_pick(raw, "volatility_24h", "volatility24h")),
            market_share=to_decimal(_pick(raw, "market_share", "marketShare")),
            price=to_decimal(_pick(raw, "price", "priceAtTime")),
            futures_price=to_decimal(_pick(raw, "futures_price", "futurePriceAtTime")),
            futures_symbol=_pick(raw, "futures_symbol", "futureSymbol"),
            funding_history=tuple(samples),
        )

    def to_dict(self) -> dict:
        def _s(value: Decimal | None) -> str | None:
            return str(value) if value is not None else None

        return {
            "symbol": self.symbol,
            "rank": self.rank,
            "price_change_24h": _s(self.price_change_24h),
            "volume_24h": _s(self.volume_24h),
            "quote_volume_24h": _s(self.quote_volume_24h),
            "volatility_24h": _s(self.volatility_24h),
            "market_share": _s(self.market_share),
            "price": _s(self.price),
            "futures_price": _s(self.futures_price),
            "futures_symbol": self.futures_symbol,
            "funding_history": [s.to_dict() for s in self.funding_history],
        }


@dataclass(frozen=True)
class MarketDataPoint:
    """Market state for one backtest period.

    removed_symbols lists items that dropped out of the ranking this period,
    still carrying prices so held shorts on them can be closed.
    """

    timestamp: datetime
    granularity_hours: Decimal
    benchmark_price: Decimal
    benchmark_change_24h: Decimal
    rankings: tuple[RankingItem, ...] = ()
    removed_symbols: tuple[RankingItem, ...] = ()
    index_price: Decimal | None = None
    index_change_24h: Decimal | None = None

    def find_symbol(self, symbol: str) -> RankingItem | None:
        """Look up a symbol in removed_symbols first, then in rankings."""
        for item in self.removed_symbols:
            if item.symbol == symbol:
                return item
        for item in self.rankings:
            if item.symbol == symbol:
                return item
        return None

    @staticmethod
    def from_dict(raw: dict, granularity_hours: Decimal | None = None) -> "MarketDataPoint":
        """Parse an upstream data point.

        Args:
            raw: Upstream dict (snake_case or camelCase keys).
            granularity_hours: Series-level granularity when the point omits it.

        Raises:
            KeyError, ValueError: If timestamp or a ranking symbol/rank is missing.
        """
        granularity = to_decimal(_pick(raw, "granularity_hours", "granularityHours"))
        return MarketDataPoint(
            timestamp=parse_timestamp(raw["timestamp"]),
            granularity_hours=finite_or(
                granularity if granularity is not None else granularity_hours, Decimal("8")
            ),
            benchmark_price=finite_or(
                to_decimal(_pick(raw, "benchmark_price", "btcPrice")), ZERO
            ),
            benchmark_change_24h=finite_or(
                to_decimal(_pick(raw, "benchmark_change_24h", "btcPriceChange24h")), ZERO
            ),
            rankings=tuple(RankingItem.from_dict(r) for r in raw.get("rankings") or []),
            removed_symbols=tuple(
                RankingItem.from_dict(r)
                for r in _pick(raw, "removed_symbols", "removedSymbols") or []
            ),
            index_price=to_decimal(_pick(raw, "index_price", "othersPrice")),
            index_change_24h=to_decimal(_pick(raw, "index_change_24h", "othersPriceChange24h")),
        )


@dataclass(frozen=True)
class IndicatorPoint:
    """A time-indexed value of the macro-gate indicator (e.g. OTHERS temperature)."""

    timestamp: datetime
    value: Decimal

    @staticmethod
    def from_dict(raw: dict) -> "IndicatorPoint":
        value = to_decimal(raw.get("value"))
        if value is None:
            raise ValueError(f"Indicator point without a finite value: {raw!r}")
        return IndicatorPoint(timestamp=parse_timestamp(raw["timestamp"]), value=value)

