"""Stop levels — trailing and ATR stop maintenance for open positions.

Rules:
  - The trailing stop arms once the high since entry is at least
    ``trailing_activate_percent`` above the entry price, and then sits
    ``trailing_stop_percent`` below that high.
  - The ATR stop sits ``atr_multiplier × ATR`` below the entry price and
    follows the latest ATR value.
"""

from typing import Optional

from stockreplay.backtest.models import Position
from stockreplay.models.strategy_config import StrategyConfig


def trailing_stop_price(
    entry_price: float,
    high_since_entry: float,
    config: StrategyConfig,
) -> Optional[float]:
    """Return the trailing-stop price, or ``None`` while it is not armed."""
    if not config.enable_trailing_stop:
        return None
    gain = (high_since_entry - entry_price) / entry_price
    if gain < config.trailing_activate_percent:
        return None
    return high_since_entry * (1 - config.trailing_stop_percent)


def atr_stop_price(
    entry_price: float,
    atr: Optional[float],
    config: StrategyConfig,
) -> Optional[float]:
    """Return the ATR stop price, or ``None`` if disabled or ATR is missing."""
    if not config.enable_atr_stop or atr is None:
        return None
    return entry_price - atr * config.atr_multiplier


def refresh_stops(
    position: Position,
    high: float,
    atr: Optional[float],
    config: StrategyConfig,
) -> None:
    """Update *position* in place with today's *high* and *atr*.

    The trailing stop is only recomputed once armed and the ATR stop only
    when a fresh ATR value exists; otherwise the previous level is kept.
    """
    if high > position.high_since_entry:
        position.high_since_entry = high

    trailing = trailing_stop_price(
        position.entry_price, position.high_since_entry, config,
    )
    if trailing is not None:
        position.trailing_stop_price = trailing

    atr_stop = atr_stop_price(position.entry_price, atr, config)
    if atr_stop is not None:
        position.atr_stop_price = atr_stop
