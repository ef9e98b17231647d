"""Backtest error types.

Only data-availability and configuration problems are modelled here.
Indicator, signal, and order logic errors are bugs and propagate as-is.
"""

from datetime import date
from typing import Optional


class BacktestError(Exception):
    """Base class for recoverable backtest failures."""


class InsufficientData(BacktestError):
    """An instrument (or the whole run, when *symbol* is ``None``) has no
    usable price history."""

    def __init__(self, symbol: Optional[str] = None, detail: str = "") -> None:
        self.symbol = symbol
        if symbol is None:
            message = "No instrument has usable price history"
        else:
            message = f"No usable price history for {symbol}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class InvalidConfiguration(BacktestError, ValueError):
    """Malformed or missing strategy parameters."""


class DataGapError(BacktestError):
    """A trading day has no bar for an instrument that was expected to trade."""

    def __init__(self, symbol: str, day: date) -> None:
        self.symbol = symbol
        self.day = day
        super().__init__(f"{symbol} has no bar on {day.isoformat()}")
