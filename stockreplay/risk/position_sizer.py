"""Position sizing — pure math, no I/O.

Picks the fraction of cash to commit to a buy from the signal confidence
and current exposure, then converts the invest amount into whole lots.
"""

import math
from typing import Optional

from stockreplay.models.strategy_config import StrategyConfig
from stockreplay.strategy.models import BUY_FEE_MULTIPLIER, LOT_SIZE


DYNAMIC_BASE_FRACTION = 0.15
HIGH_EXPOSURE_LEVEL = 0.60


def calculate_position_fraction(
    confidence: Optional[float],
    config: StrategyConfig,
    exposure: float = 0.0,
) -> float:
    """Fraction of available cash to invest.

    Fixed tiers (dynamic sizing off)::

        confidence > 0.80  → 22.5 %
        confidence > 0.65  → 15 %
        otherwise          → 10.5 %

    Dynamic sizing::

        fraction  = 15 % × (1.5 | 1.0 | 0.7 by the same confidence tiers)
        fraction ×= 0.5   if exposure > max_total_exposure
                  0.75  elif exposure > 60 %
        fraction  = min(fraction, max_position_size)

    Args:
        confidence: Signal confidence in ``[0, 1]`` (``None`` counts as 0).
        config: Strategy configuration.
        exposure: Share of equity already deployed, in ``[0, 1]``.
    """
    conf = confidence or 0.0

    if not config.dynamic_position_size:
        if conf > 0.8:
            return 0.225
        if conf > 0.65:
            return 0.15
        return 0.105

    if conf > 0.8:
        multiplier = 1.5
    elif conf > 0.65:
        multiplier = 1.0
    else:
        multiplier = 0.7
    fraction = DYNAMIC_BASE_FRACTION * multiplier

    if exposure > config.max_total_exposure:
        fraction *= 0.5
    elif exposure > HIGH_EXPOSURE_LEVEL:
        fraction *= 0.75

    return min(fraction, config.max_position_size)


def calculate_lot_quantity(invest_amount: float, price: float) -> int:
    """Shares affordable with *invest_amount* at *price*, in whole lots.

    Formula::

        shares   = floor(invest_amount / (price × 1.001425))
        quantity = floor(shares / 1000) × 1000

    Raises:
        ValueError: If *price* is non-positive.
    """
    if price <= 0:
        raise ValueError(f"price must be positive, got {price}")
    if invest_amount <= 0:
        return 0
    shares = math.floor(invest_amount / (price * BUY_FEE_MULTIPLIER))
    return (shares // LOT_SIZE) * LOT_SIZE
