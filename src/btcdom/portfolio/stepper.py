"""Per-period portfolio state machine.

PortfolioStepper.step() folds the previous snapshot and one period's market
data into the next snapshot. It reads nothing else: the previous data point
is only consulted for funding samples of legs held through it.

Per period:
1. Score the ranking and pick the short basket (unless the short side is
   disabled or the macro gate triggered).
2. Rebalance the benchmark long leg to total_value * long_ratio.
3. Close shorts that left the basket, resize held ones, open new ones.
4. Settle trading fees and funding into cash.

Cash identity after every step:
    total_value = cash + long quantity * long mark + sum(short unrealized PnL)

Sizing uses the previous period's total value (initial capital first).

CRITICAL: All monetary values use Decimal. Never use float for prices, quantities, or fees.
"""

from dataclasses import dataclass, field
from decimal import Decimal

from btcdom.backtest.models import StrategyParameters
from btcdom.logging import get_logger
from btcdom.models import ZERO, LegSide, MarketDataPoint, RankingItem, finite_or
from btcdom.pnl.fee_calculator import FeeCalculator
from btcdom.portfolio.macro_gate import MacroGate
from btcdom.portfolio.models import (
    GateReading,
    PortfolioSnapshot,
    PositionLeg,
    PriceChange,
    QuantityChange,
    QuantityChangeKind,
    TradeDirection,
)
from btcdom.position.allocator import PositionAllocator
from btcdom.scoring.models import Candidate, SelectionResult
from btcdom.scoring.scorer import CandidateScorer

logger = get_logger(__name__)

LONG_REASON = "benchmark long leg"
SHORT_DISABLED_REASON = "short side disabled"
LONG_DISABLED_REASON = "long side disabled"
DESELECTED_REASON = "deselected"
GATE_EXIT_REASON = "macro gate forced exit"


@dataclass
class _Ledger:
    """Cash movements accumulated while stepping one period."""

    cash: Decimal
    trading_fees: Decimal = ZERO
    funding: Decimal = ZERO
    long_realized: Decimal = ZERO
    short_realized: Decimal = ZERO
    closed: list[PositionLeg] = field(default_factory=list)

    def pay_fee(self, fee: Decimal) -> None:
        self.trading_fees += fee
        self.cash -= abs(fee)

    def receive_funding(self, amount: Decimal) -> None:
        self.funding += amount
        self.cash += amount


class PortfolioStepper:
    """Advances portfolio state one period at a time.

    Holds no portfolio state of its own; step() is a function of its
    arguments and the immutable parameters. The scorer's caches only
    affect speed.

    Args:
        params: Validated strategy parameters.
        scorer: Candidate scorer. Built from params when omitted.
        allocator: Short-pool allocator. Built from params when omitted.
    """

    def __init__(
        self,
        params: StrategyParameters,
        scorer: CandidateScorer | None = None,
        allocator: PositionAllocator | None = None,
    ) -> None:
        self._params = params
        self._scorer = scorer or CandidateScorer(params)
        self._allocator = allocator or PositionAllocator(
            params.allocation_policy, params.max_single_position_ratio
        )
        self._fees = FeeCalculator(params.spot_fee_rate, params.futures_fee_rate)
        self._gate = MacroGate(params.macro_gate)

    def step(
        self,
        previous: PortfolioSnapshot | None,
        data: MarketDataPoint,
        previous_data: MarketDataPoint | None = None,
    ) -> PortfolioSnapshot:
        """Produce the snapshot for data given the previous period's state.

        Args:
            previous: Previous snapshot, or None for the first period.
            data: This period's market data.
            previous_data: Previous period's market data, for funding samples.

        Returns:
            The new immutable snapshot.
        """
        params = self._params
        capital = params.initial_capital
        base_value = previous.total_value if previous else capital
        ledger = _Ledger(cash=previous.cash_balance if previous else capital)

        gate = self._gate.evaluate(data.timestamp)
        gate_triggered = gate is not None and gate.triggered

        if params.short_enabled:
            selection = self._scorer.select(data.rankings, data.benchmark_change_24h)
        else:
            selection = SelectionResult(
                selected=(), rejected=(), total_candidates=0, reason=SHORT_DISABLED_REASON
            )

        long_leg = self._step_long(previous.long_leg if previous else None, data, base_value, ledger)

        targets: dict[str, tuple[Candidate, Decimal, Decimal]] = {}
        if params.short_enabled and not gate_triggered and selection.selected:
            targets = self._short_targets(selection.selected, base_value)

        short_legs = self._step_shorts(
            previous.short_legs if previous else (),
            targets,
            data,
            previous_data,
            ledger,
            gate_triggered,
        )

        long_value = long_leg.quantity * long_leg.mark_price if long_leg else ZERO
        short_unrealized = sum((leg.unrealized_pnl for leg in short_legs), ZERO)
        total_value = ledger.cash + long_value + short_unrealized
        period_pnl = total_value - base_value
        period_return = period_pnl / base_value if base_value > ZERO else ZERO

        is_active = bool(short_legs)
        inactive_reason = None if is_active else self._inactive_reason(
            selection, gate, targets
        )

        if params.verbose:
            logger.debug(
                "period_stepped",
                timestamp=data.timestamp.isoformat(),
                total_value=str(total_value),
                cash=str(ledger.cash),
                short_legs=len(short_legs),
                closed_legs=len(ledger.closed),
                active=is_active,
            )

        return PortfolioSnapshot(
            timestamp=data.timestamp,
            granularity_hours=data.granularity_hours,
            benchmark_price=data.benchmark_price,
            benchmark_change_24h=data.benchmark_change_24h,
            index_price=data.index_price,
            index_change_24h=data.index_change_24h,
            long_leg=long_leg,
            short_legs=tuple(short_legs),
            closed_legs=tuple(ledger.closed),
            cash_balance=ledger.cash,
            total_value=total_value,
            period_pnl=period_pnl,
            cumulative_pnl=total_value - capital,
            period_return=period_return,
            period_trading_fee=ledger.trading_fees,
            period_funding_fee=ledger.funding,
            cumulative_trading_fees=(previous.cumulative_trading_fees if previous else ZERO)
            + ledger.trading_fees,
            cumulative_funding_fees=(previous.cumulative_funding_fees if previous else ZERO)
            + ledger.funding,
            cumulative_long_realized=(previous.cumulative_long_realized if previous else ZERO)
            + ledger.long_realized,
            cumulative_short_realized=(previous.cumulative_short_realized if previous else ZERO)
            + ledger.short_realized,
            is_active=is_active,
            inactive_reason=inactive_reason,
            selection_reason=selection.reason,
            candidates=selection.candidates,
            gate=gate,
        )

    # ------------------------------------------------------------------
    # Long leg
    # ------------------------------------------------------------------

    def _step_long(
        self,
        prev: PositionLeg | None,
        data: MarketDataPoint,
        base_value: Decimal,
        ledger: _Ledger,
    ) -> PositionLeg | None:
        params = self._params
        price = finite_or(data.benchmark_price, ZERO)
        if price <= ZERO:
            if prev is None:
                return None
            price = prev.mark_price

        if not params.long_enabled:
            if prev is not None:
                self._close_long(prev, price, LONG_DISABLED_REASON, ledger)
            return None

        target_qty = base_value * params.long_ratio / price

        if prev is None:
            if target_qty <= ZERO:
                return None
            fee = self._fees.spot_trade_fee(target_qty, price)
            ledger.cash -= target_qty * price
            ledger.pay_fee(fee)
            return PositionLeg(
                symbol=params.benchmark_symbol,
                side=LegSide.LONG,
                quantity=target_qty,
                entry_price=price,
                mark_price=price,
                notional=target_qty * price,
                trade_price=price,
                trade_direction=TradeDirection.BUY,
                trade_quantity=target_qty,
                period_pnl=ZERO,
                realized_pnl=ZERO,
                unrealized_pnl=ZERO,
                trading_fee=fee,
                funding_fee=ZERO,
                is_new=True,
                is_closed=False,
                quantity_change=QuantityChange.between(ZERO, target_qty, QuantityChangeKind.NEW),
                price_change=None,
                reason=LONG_REASON,
                change_24h=data.benchmark_change_24h,
            )

        if target_qty <= ZERO:
            self._close_long(prev, price, LONG_REASON, ledger)
            return None

        prev_qty = prev.quantity
        entry = prev.entry_price
        period_pnl = prev_qty * (price - prev.mark_price)
        delta = target_qty - prev_qty
        realized = ZERO
        fee = ZERO

        if abs(delta) < params.min_trade_quantity:
            quantity = prev_qty
            direction = TradeDirection.HOLD
            traded = ZERO
            kind = QuantityChangeKind.SAME
        elif delta > ZERO:
            quantity = target_qty
            entry = (prev_qty * entry + delta * price) / quantity
            fee = self._fees.spot_trade_fee(delta, price)
            ledger.cash -= delta * price
            direction = TradeDirection.BUY
            traded = delta
            kind = QuantityChangeKind.INCREASE
        else:
            quantity = target_qty
            sold = -delta
            realized = sold * (price - entry)
            fee = self._fees.spot_trade_fee(sold, price)
            ledger.cash += sold * price
            ledger.long_realized += realized
            direction = TradeDirection.SELL
            traded = delta
            kind = QuantityChangeKind.DECREASE

        ledger.pay_fee(fee)
        return PositionLeg(
            symbol=params.benchmark_symbol,
            side=LegSide.LONG,
            quantity=quantity,
            entry_price=entry,
            mark_price=price,
            notional=quantity * price,
            trade_price=price,
            trade_direction=direction,
            trade_quantity=traded,
            period_pnl=period_pnl,
            realized_pnl=realized,
            unrealized_pnl=quantity * (price - entry),
            trading_fee=fee,
            funding_fee=ZERO,
            is_new=False,
            is_closed=False,
            quantity_change=QuantityChange.between(prev_qty, quantity, kind),
            price_change=PriceChange.between(prev.mark_price, price),
            reason=LONG_REASON,
            change_24h=data.benchmark_change_24h,
        )

    def _close_long(
        self, prev: PositionLeg, price: Decimal, reason: str, ledger: _Ledger
    ) -> None:
        qty = prev.quantity
        realized = qty * (price - prev.entry_price)
        fee = self._fees.spot_trade_fee(qty, price)
        ledger.cash += qty * price
        ledger.long_realized += realized
        ledger.pay_fee(fee)
        ledger.closed.append(
            PositionLeg(
                symbol=prev.symbol,
                side=LegSide.LONG,
                quantity=ZERO,
                entry_price=prev.entry_price,
                mark_price=price,
                notional=ZERO,
                trade_price=price,
                trade_direction=TradeDirection.SELL,
                trade_quantity=-qty,
                period_pnl=qty * (price - prev.mark_price),
                realized_pnl=realized,
                unrealized_pnl=ZERO,
                trading_fee=fee,
                funding_fee=ZERO,
                is_new=False,
                is_closed=True,
                quantity_change=QuantityChange.between(qty, ZERO, QuantityChangeKind.SOLD),
                price_change=PriceChange.between(prev.mark_price, price),
                reason=reason,
            )
        )

    # ------------------------------------------------------------------
    # Short legs
    # ------------------------------------------------------------------

    def _short_targets(
        self, selected: tuple[Candidate, ...], base_value: Decimal
    ) -> dict[str, tuple[Candidate, Decimal, Decimal]]:
        """Map symbol -> (candidate, price, target quantity) for the short basket.

        Candidates without a positive price or allocation are left out.
        """
        params = self._params
        pool = base_value * (Decimal(1) - params.long_ratio) if params.long_enabled else base_value
        allocations = self._allocator.allocate(selected, pool)

        targets: dict[str, tuple[Candidate, Decimal, Decimal]] = {}
        for candidate, allocation in zip(selected, allocations):
            price = candidate.item.trade_price
            if price is None or allocation <= ZERO:
                logger.warning(
                    "short_target_skipped",
                    symbol=candidate.symbol,
                    allocation=str(allocation),
                    price=str(price) if price is not None else None,
                )
                continue
            targets[candidate.symbol] = (candidate, price, allocation / price)
        return targets

    def _step_shorts(
        self,
        held: tuple[PositionLeg, ...],
        targets: dict[str, tuple[Candidate, Decimal, Decimal]],
        data: MarketDataPoint,
        previous_data: MarketDataPoint | None,
        ledger: _Ledger,
        gate_triggered: bool,
    ) -> list[PositionLeg]:
        held_by_symbol = {leg.symbol: leg for leg in held}

        if not self._params.short_enabled:
            close_reason = SHORT_DISABLED_REASON
        elif gate_triggered:
            close_reason = GATE_EXIT_REASON
        else:
            close_reason = DESELECTED_REASON

        for leg in held:
            if leg.symbol not in targets:
                self._close_short(leg, data, previous_data, close_reason, ledger)

        legs: list[PositionLeg] = []
        for symbol, (candidate, price, target_qty) in targets.items():
            prev = held_by_symbol.get(symbol)
            if prev is None:
                legs.append(self._open_short(candidate, price, target_qty, ledger))
            else:
                legs.append(
                    self._resize_short(prev, candidate, price, target_qty, previous_data, ledger)
                )
        return legs

    def _open_short(
        self, candidate: Candidate, price: Decimal, quantity: Decimal, ledger: _Ledger
    ) -> PositionLeg:
        fee = self._fees.futures_trade_fee(quantity, price)
        ledger.pay_fee(fee)
        return PositionLeg(
            symbol=candidate.symbol,
            side=LegSide.SHORT,
            quantity=quantity,
            entry_price=price,
            mark_price=price,
            notional=quantity * price,
            trade_price=price,
            trade_direction=TradeDirection.SELL,
            trade_quantity=-quantity,
            period_pnl=ZERO,
            realized_pnl=ZERO,
            unrealized_pnl=ZERO,
            trading_fee=fee,
            funding_fee=ZERO,
            is_new=True,
            is_closed=False,
            quantity_change=QuantityChange.between(ZERO, quantity, QuantityChangeKind.NEW),
            price_change=None,
            reason=candidate.reason,
            display_symbol=candidate.item.futures_symbol,
            change_24h=candidate.item.price_change_24h,
        )

    def _resize_short(
        self,
        prev: PositionLeg,
        candidate: Candidate,
        price: Decimal,
        target_qty: Decimal,
        previous_data: MarketDataPoint | None,
        ledger: _Ledger,
    ) -> PositionLeg:
        prev_qty = prev.quantity
        entry = prev.entry_price
        funding = self._funding(prev.symbol, prev_qty, price, previous_data)
        ledger.receive_funding(funding)

        delta = target_qty - prev_qty
        realized = ZERO
        fee = ZERO
        if abs(delta) < self._params.min_trade_quantity:
            quantity = prev_qty
            direction = TradeDirection.HOLD
            traded = ZERO
            kind = QuantityChangeKind.SAME
        elif delta > ZERO:
            quantity = target_qty
            entry = (prev_qty * entry + delta * price) / quantity
            fee = self._fees.futures_trade_fee(delta, price)
            direction = TradeDirection.SELL
            traded = -delta
            kind = QuantityChangeKind.INCREASE
        else:
            quantity = target_qty
            covered = -delta
            realized = covered * (entry - price)
            fee = self._fees.futures_trade_fee(covered, price)
            ledger.cash += realized
            ledger.short_realized += realized
            direction = TradeDirection.BUY
            traded = covered
            kind = QuantityChangeKind.DECREASE

        ledger.pay_fee(fee)
        return PositionLeg(
            symbol=prev.symbol,
            side=LegSide.SHORT,
            quantity=quantity,
            entry_price=entry,
            mark_price=price,
            notional=quantity * price,
            trade_price=price,
            trade_direction=direction,
            trade_quantity=traded,
            period_pnl=prev_qty * (prev.mark_price - price),
            realized_pnl=realized,
            unrealized_pnl=quantity * (entry - price),
            trading_fee=fee,
            funding_fee=funding,
            is_new=False,
            is_closed=False,
            quantity_change=QuantityChange.between(prev_qty, quantity, kind),
            price_change=PriceChange.between(prev.mark_price, price),
            reason=candidate.reason,
            display_symbol=candidate.item.futures_symbol or prev.display_symbol,
            change_24h=candidate.item.price_change_24h,
        )

    def _close_short(
        self,
        prev: PositionLeg,
        data: MarketDataPoint,
        previous_data: MarketDataPoint | None,
        reason: str,
        ledger: _Ledger,
    ) -> None:
        item = data.find_symbol(prev.symbol)
        exit_price = item.trade_price if item is not None else None
        if exit_price is None:
            exit_price = prev.mark_price
            logger.debug("short_exit_price_fallback", symbol=prev.symbol, price=str(exit_price))

        qty = prev.quantity
        realized = qty * (prev.entry_price - exit_price)
        fee = self._fees.futures_trade_fee(qty, exit_price)
        funding = self._funding(prev.symbol, qty, exit_price, previous_data)
        ledger.cash += realized
        ledger.short_realized += realized
        ledger.pay_fee(fee)
        ledger.receive_funding(funding)
        ledger.closed.append(
            PositionLeg(
                symbol=prev.symbol,
                side=LegSide.SHORT,
                quantity=ZERO,
                entry_price=prev.entry_price,
                mark_price=exit_price,
                notional=ZERO,
                trade_price=exit_price,
                trade_direction=TradeDirection.BUY,
                trade_quantity=qty,
                period_pnl=qty * (prev.mark_price - exit_price),
                realized_pnl=realized,
                unrealized_pnl=ZERO,
                trading_fee=fee,
                funding_fee=funding,
                is_new=False,
                is_closed=True,
                quantity_change=QuantityChange.between(qty, ZERO, QuantityChangeKind.SOLD),
                price_change=PriceChange.between(prev.mark_price, exit_price),
                reason=reason,
                display_symbol=prev.display_symbol,
                change_24h=item.price_change_24h if item is not None else None,
            )
        )

    def _funding(
        self,
        symbol: str,
        quantity: Decimal,
        current_mark: Decimal,
        previous_data: MarketDataPoint | None,
    ) -> Decimal:
        """Funding for a short held through the previous period."""
        if previous_data is None:
            return ZERO
        item: RankingItem | None = previous_data.find_symbol(symbol)
        if item is None:
            return ZERO
        return self._fees.settle_short_funding(item.latest_funding, quantity, current_mark)

    def _inactive_reason(
        self,
        selection: SelectionResult,
        gate: GateReading | None,
        targets: dict,
    ) -> str:
        if not self._params.short_enabled:
            return SHORT_DISABLED_REASON
        if gate is not None and gate.triggered:
            return f"macro gate triggered: {self._params.macro_gate.symbol} {gate.value} > {gate.threshold}"
        if selection.selected and not targets:
            return "no tradable price for selected candidates"
        return selection.reason
