"""Exceptions raised by the backtest engine.

Only problems detected before the first period is stepped are raised.
Numeric degeneracies inside the stepping loop are normalised to safe
defaults and logged instead.
"""


class BacktestError(Exception):
    """Base exception for all backtest errors."""


class ParameterValidationError(BacktestError):
    """Raised when strategy parameters fail validation.

    Carries every failed rule so callers can report them together.
    """

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "invalid strategy parameters")


class MarketDataError(BacktestError):
    """Raised when the market data series is empty, unordered or malformed."""
