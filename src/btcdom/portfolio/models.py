"""Portfolio state models produced by the period stepper.

Every model is a frozen dataclass holding tuples, so a snapshot cannot
change after the stepper returns it.

Sign conventions:
  - trade_quantity: positive = bought, negative = sold.
  - trading_fee: cost, always <= 0.
  - funding_fee: positive = income, negative = expense.

CRITICAL: All monetary values use Decimal. Never use float for prices, quantities, or fees.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum

from btcdom.models import LegSide
from btcdom.scoring.models import Candidate

ZERO = Decimal("0")


class TradeDirection(str, Enum):
    """What the leg traded this period."""

    BUY = "buy"
    SELL = "sell"
    HOLD = "hold"


class QuantityChangeKind(str, Enum):
    """Lifecycle transition of a leg this period."""

    NEW = "new"
    INCREASE = "increase"
    DECREASE = "decrease"
    SAME = "same"
    SOLD = "sold"


@dataclass(frozen=True)
class QuantityChange:
    """Quantity transition versus the previous period.

    change_pct is None for new legs (no previous quantity).
    """

    kind: QuantityChangeKind
    previous_quantity: Decimal
    change_pct: Decimal | None

    @staticmethod
    def between(previous: Decimal, current: Decimal, kind: QuantityChangeKind) -> "QuantityChange":
        pct = (current - previous) / previous * Decimal(100) if previous > ZERO else None
        return QuantityChange(kind=kind, previous_quantity=previous, change_pct=pct)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "previous_quantity": str(self.previous_quantity),
            "change_pct": str(self.change_pct) if self.change_pct is not None else None,
        }


@dataclass(frozen=True)
class PriceChange:
    """Mark price move versus the previous period."""

    previous_price: Decimal
    change_pct: Decimal

    @staticmethod
    def between(previous: Decimal, current: Decimal) -> "PriceChange":
        pct = (current - previous) / previous * Decimal(100) if previous > ZERO else ZERO
        return PriceChange(previous_price=previous, change_pct=pct)

    def to_dict(self) -> dict:
        return {"previous_price": str(self.previous_price), "change_pct": str(self.change_pct)}


@dataclass(frozen=True)
class PositionLeg:
    """One long or short leg at the end of a period.

    Attributes:
        notional: quantity * mark_price.
        entry_price: Weighted-average entry price of the held quantity.
        trade_price: Price this period's trade executed at (mark price when holding).
        period_pnl: Mark-to-market change of the quantity held coming into the period.
        realized_pnl: PnL realized by this period's reduction or close.
        unrealized_pnl: Open PnL of the remaining quantity at mark_price.
        is_closed: The leg was fully closed this period; quantity is 0.
    """

    symbol: str
    side: LegSide
    quantity: Decimal
    entry_price: Decimal
    mark_price: Decimal
    notional: Decimal
    trade_price: Decimal
    trade_direction: TradeDirection
    trade_quantity: Decimal
    period_pnl: Decimal
    realized_pnl: Decimal
    unrealized_pnl: Decimal
    trading_fee: Decimal
    funding_fee: Decimal
    is_new: bool
    is_closed: bool
    quantity_change: QuantityChange
    price_change: PriceChange | None
    reason: str
    display_symbol: str | None = None
    change_24h: Decimal | None = None

    def to_dict(self) -> dict:
        """Serialize to dict for JSON output, Decimals as strings."""
        return {
            "symbol": self.symbol,
            "display_symbol": self.display_symbol or self.symbol,
            "side": self.side.value,
            "quantity": str(self.quantity),
            "entry_price": str(self.entry_price),
            "mark_price": str(self.mark_price),
            "notional": str(self.notional),
            "trade_price": str(self.trade_price),
            "trade_direction": self.trade_direction.value,
            "trade_quantity": str(self.trade_quantity),
            "period_pnl": str(self.period_pnl),
            "realized_pnl": str(self.realized_pnl),
            "unrealized_pnl": str(self.unrealized_pnl),
            "trading_fee": str(self.trading_fee),
            "funding_fee": str(self.funding_fee),
            "is_new": self.is_new,
            "is_closed": self.is_closed,
            "quantity_change": self.quantity_change.to_dict(),
            "price_change": self.price_change.to_dict() if self.price_change else None,
            "change_24h": str(self.change_24h) if self.change_24h is not None else None,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class GateReading:
    """Macro-gate evaluation for one period.

    value is None when no indicator value precedes the reference time.
    """

    reference_time: datetime
    value: Decimal | None
    threshold: Decimal
    triggered: bool

    def to_dict(self) -> dict:
        return {
            "reference_time": self.reference_time.isoformat(),
            "value": str(self.value) if self.value is not None else None,
            "threshold": str(self.threshold),
            "triggered": self.triggered,
        }


@dataclass(frozen=True)
class PortfolioSnapshot:
    """Portfolio state at the end of one period.

    total_value == cash_balance + long market value + sum of short unrealized PnL.
    """

    timestamp: datetime
    granularity_hours: Decimal
    benchmark_price: Decimal
    benchmark_change_24h: Decimal
    long_leg: PositionLeg | None
    short_legs: tuple[PositionLeg, ...]
    closed_legs: tuple[PositionLeg, ...]
    cash_balance: Decimal
    total_value: Decimal
    period_pnl: Decimal
    cumulative_pnl: Decimal
    period_return: Decimal
    period_trading_fee: Decimal
    period_funding_fee: Decimal
    cumulative_trading_fees: Decimal
    cumulative_funding_fees: Decimal
    cumulative_long_realized: Decimal
    cumulative_short_realized: Decimal
    is_active: bool
    inactive_reason: str | None
    selection_reason: str
    candidates: tuple[Candidate, ...] = ()
    gate: GateReading | None = None
    index_price: Decimal | None = None
    index_change_24h: Decimal | None = None

    @property
    def long_market_value(self) -> Decimal:
        if self.long_leg is None:
            return ZERO
        return self.long_leg.quantity * self.long_leg.mark_price

    @property
    def short_unrealized_pnl(self) -> Decimal:
        return sum((leg.unrealized_pnl for leg in self.short_legs), ZERO)

    @property
    def short_notional(self) -> Decimal:
        return sum((leg.notional for leg in self.short_legs), ZERO)

    @property
    def cumulative_fees(self) -> Decimal:
        """Trading fees (negative) plus signed funding, cumulative."""
        return self.cumulative_trading_fees + self.cumulative_funding_fees

    def to_dict(self) -> dict:
        """Serialize to dict for JSON output, Decimals as strings."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "granularity_hours": str(self.granularity_hours),
            "benchmark_price": str(self.benchmark_price),
            "benchmark_change_24h": str(self.benchmark_change_24h),
            "index_price": str(self.index_price) if self.index_price is not None else None,
            "index_change_24h": str(self.index_change_24h)
            if self.index_change_24h is not None
            else None,
            "long_leg": self.long_leg.to_dict() if self.long_leg else None,
            "short_legs": [leg.to_dict() for leg in self.short_legs],
            "closed_legs": [leg.to_dict() for leg in self.closed_legs],
            "cash_balance": str(self.cash_balance),
            "total_value": str(self.total_value),
            "period_pnl": str(self.period_pnl),
            "cumulative_pnl": str(self.cumulative_pnl),
            "period_return": str(self.period_return),
            "period_trading_fee": str(self.period_trading_fee),
            "period_funding_fee": str(self.period_funding_fee),
            "cumulative_trading_fees": str(self.cumulative_trading_fees),
            "cumulative_funding_fees": str(self.cumulative_funding_fees),
            "cumulative_fees": str(self.cumulative_fees),
            "is_active": self.is_active,
            "inactive_reason": self.inactive_reason,
            "selection_reason": self.selection_reason,
            "gate": self.gate.to_dict() if self.gate else None,
            "candidates": [c.to_dict() for c in self.candidates],
        }
