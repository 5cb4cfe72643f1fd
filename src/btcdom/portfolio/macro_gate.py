"""Macro gate: suspend the short side while the alt-market indicator runs hot.

The gate reads the most recent indicator value strictly before the start of
the current reference window:

- "1D": the current UTC calendar day, so the previous day's value is used.
- "8H" / "1W": the current fixed-length bucket aligned to the Unix epoch,
  so the previous bucket's value is used.

The gate triggers when that value is above the threshold. No preceding value
means the gate does not trigger.
"""

from bisect import bisect_left
from datetime import datetime, timezone

from btcdom.backtest.models import MacroGateConfig
from btcdom.logging import get_logger
from btcdom.models import parse_timestamp
from btcdom.portfolio.models import GateReading

logger = get_logger(__name__)

BUCKET_SECONDS = {
    "8H": 8 * 3600,
    "1W": 7 * 24 * 3600,
}


class MacroGate:
    """Resolves the gate state for each period timestamp.

    Args:
        config: Gate configuration including the indicator series.
    """

    def __init__(self, config: MacroGateConfig) -> None:
        self._config = config
        # Naive timestamps are read as UTC.
        points = sorted(
            ((parse_timestamp(p.timestamp), p.value) for p in config.series),
            key=lambda pair: pair[0],
        )
        self._times = [ts for ts, _ in points]
        self._values = [value for _, value in points]

    def reference_time(self, timestamp: datetime) -> datetime:
        """Start of the window containing timestamp (UTC; naive input is read as UTC)."""
        ts = parse_timestamp(timestamp)
        if self._config.timeframe == "1D":
            return ts.replace(hour=0, minute=0, second=0, microsecond=0)
        bucket = BUCKET_SECONDS[self._config.timeframe]
        epoch = int(ts.timestamp())
        return datetime.fromtimestamp(epoch - epoch % bucket, tz=timezone.utc)

    def evaluate(self, timestamp: datetime) -> GateReading | None:
        """Evaluate the gate for a period.

        Returns:
            GateReading, or None when the gate is disabled.
        """
        if not self._config.enabled:
            return None
        cutoff = self.reference_time(timestamp)
        index = bisect_left(self._times, cutoff)
        value = self._values[index - 1] if index > 0 else None
        triggered = value is not None and value > self._config.threshold
        if triggered:
            logger.debug(
                "macro_gate_triggered",
                symbol=self._config.symbol,
                value=str(value),
                threshold=str(self._config.threshold),
                period=timestamp.isoformat(),
            )
        return GateReading(
            reference_time=cutoff,
            value=value,
            threshold=self._config.threshold,
            triggered=triggered,
        )
