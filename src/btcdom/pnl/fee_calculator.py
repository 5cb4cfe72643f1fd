"""Trading fee and funding settlement for the backtest portfolio.

All calculations use Decimal arithmetic exclusively -- no float conversions anywhere.

Fee rates come from StrategyParameters (defaults from FeeSettings):
  - Spot (benchmark long leg): 0.08% (0.0008)
  - Futures (alt short legs): 0.02% (0.0002)

Trading fees are returned as negative amounts (costs).

Perpetual funding convention:
  - Positive funding rate = longs pay shorts
  - Our alt legs are short, so they COLLECT when rate > 0
"""

from decimal import Decimal

from btcdom.models import ZERO, FundingSample, finite_or


class FeeCalculator:
    """Computes per-trade fees and per-period funding payments.

    Args:
        spot_fee_rate: Fee rate on spot notional.
        futures_fee_rate: Fee rate on futures notional.
    """

    def __init__(self, spot_fee_rate: Decimal, futures_fee_rate: Decimal) -> None:
        self._spot_rate = spot_fee_rate
        self._futures_rate = futures_fee_rate

    def spot_trade_fee(self, quantity: Decimal, price: Decimal) -> Decimal:
        """Fee for buying or selling quantity on spot at price (negative)."""
        return -(abs(quantity) * price * self._spot_rate)

    def futures_trade_fee(self, quantity: Decimal, price: Decimal) -> Decimal:
        """Fee for opening or closing quantity on futures at price (negative)."""
        return -(abs(quantity) * price * self._futures_rate)

    def calculate_funding_payment(
        self,
        position_qty: Decimal,
        mark_price: Decimal,
        funding_rate: Decimal,
        is_short: bool,
    ) -> Decimal:
        """Calculate funding payment for a single funding period.

        Positive funding rate = longs pay shorts.
        - Short + positive rate = RECEIVE payment (positive return)
        - Short + negative rate = PAY payment (negative return)
        - Long + positive rate = PAY payment (negative return)

        Args:
            position_qty: Absolute position quantity.
            mark_price: Mark price the payment is computed on.
            funding_rate: Funding rate (signed).
            is_short: True if this is a short perp position.

        Returns:
            Funding payment amount. Positive = income, negative = expense.
        """
        raw_payment = position_qty * mark_price * funding_rate
        return raw_payment if is_short else -raw_payment

    def settle_short_funding(
        self,
        sample: FundingSample | None,
        position_qty: Decimal,
        current_mark: Decimal,
    ) -> Decimal:
        """Funding for a short leg held through the previous period's sample.

        The sample's mark price is used when finite and positive, otherwise
        the leg's current mark price. A missing sample or rate settles 0.

        Args:
            sample: Latest funding sample from the previous period, if any.
            position_qty: Quantity held coming into this period.
            current_mark: The leg's current mark price.

        Returns:
            Signed funding payment, positive = income.
        """
        if sample is None or sample.funding_rate is None or position_qty <= ZERO:
            return ZERO
        mark = finite_or(sample.mark_price, ZERO)
        if mark <= ZERO:
            mark = current_mark
        return self.calculate_funding_payment(
            position_qty=position_qty,
            mark_price=mark,
            funding_rate=sample.funding_rate,
            is_short=True,
        )
