"""Strategy protocol.

Defines the interface that all strategies must implement so the
backtest engine doesn't need to know which indicators a strategy reads.
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from stockreplay.backtest.models import Position
from stockreplay.strategy.models import BuySignal, IndicatorBar, SellSignal


@runtime_checkable
class StrategyProtocol(Protocol):
    """Interface that all backtest strategies must satisfy."""

    def evaluate_buy(
        self,
        symbol: str,
        current: IndicatorBar,
        previous: Optional[IndicatorBar],
    ) -> BuySignal:
        """Decide whether a flat instrument should be bought."""
        ...

    def evaluate_sell(
        self,
        current: IndicatorBar,
        previous: Optional[IndicatorBar],
        position: Position,
    ) -> SellSignal:
        """Decide whether an open position should be closed."""
        ...


class IdleStrategy:
    """Strategy that never trades.

    Registered for the ``w`` kind, which has no trading rules yet.
    """

    def evaluate_buy(self, symbol, current, previous) -> BuySignal:
        return BuySignal(False, "w strategy has no entry rules")

    def evaluate_sell(self, current, previous, position) -> SellSignal:
        return SellSignal(False, "w strategy has no exit rules")
