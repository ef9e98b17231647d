"""Order simulator — pending orders, T+1 execution, and cash accounting.

Signals never execute on the bar that produced them.  An order is
scheduled for the first trading day after the signal date (searching up
to 10 calendar days ahead) and fills at that day's *open*.

All instruments draw from one cash balance, so the order in which the
engine calls into the simulator within a day matters.
"""

import logging
from dataclasses import replace
from datetime import date, timedelta
from typing import Iterable, Optional

from stockreplay.backtest.models import (
    EquityPoint,
    PendingOrder,
    Position,
    Trade,
    holding_days,
)
from stockreplay.models.strategy_config import StrategyConfig
from stockreplay.risk.position_sizer import (
    calculate_lot_quantity,
    calculate_position_fraction,
)
from stockreplay.risk.trailing_stop import atr_stop_price, refresh_stops
from stockreplay.strategy.models import (
    BUY_FEE_MULTIPLIER,
    MIN_ORDER_NOTIONAL,
    SELL_NET_MULTIPLIER,
    IndicatorBar,
)

logger = logging.getLogger("stockreplay")

MAX_EXECUTION_SEARCH_DAYS = 10


class OrderSimulator:
    """Books orders, fills them, and tracks positions and cash.

    Args:
        config: Strategy configuration (sizing and stop options).
        initial_cash: Starting cash balance.
        trading_days: Every date on which at least one instrument has a bar.
    """

    def __init__(
        self,
        config: StrategyConfig,
        initial_cash: float,
        trading_days: Iterable[date],
    ) -> None:
        if initial_cash <= 0:
            raise ValueError(f"initial_cash must be positive, got {initial_cash}")
        self._config = config
        self._trading_days = frozenset(trading_days)
        self.cash: float = initial_cash
        self.positions: dict[str, Position] = {}
        self.pending_buys: dict[str, PendingOrder] = {}
        self.pending_sells: dict[str, PendingOrder] = {}
        self.trades: list[Trade] = []
        self._marks: dict[str, float] = {}

    # ── Scheduling ───────────────────────────────────────────────────────

    def find_execution_date(self, signal_date: date) -> Optional[date]:
        """First trading day after *signal_date*, or ``None`` within the horizon."""
        for offset in range(1, MAX_EXECUTION_SEARCH_DAYS + 1):
            candidate = signal_date + timedelta(days=offset)
            if candidate in self._trading_days:
                return candidate
        return None

    def is_flat(self, symbol: str) -> bool:
        """No open position and no pending buy."""
        return symbol not in self.positions and symbol not in self.pending_buys

    def submit_buy(
        self,
        symbol: str,
        signal_date: date,
        confidence: Optional[float],
        reason: str,
    ) -> PendingOrder:
        if not self.is_flat(symbol):
            raise RuntimeError(f"{symbol} already has a position or pending buy")
        order = PendingOrder(
            symbol=symbol,
            direction="buy",
            signal_date=signal_date,
            target_date=self.find_execution_date(signal_date),
            reason=reason,
            confidence=confidence,
        )
        self.pending_buys[symbol] = order
        return order

    def submit_sell(self, symbol: str, signal_date: date, reason: str) -> PendingOrder:
        position = self.positions.get(symbol)
        if position is None:
            raise RuntimeError(f"{symbol} has no open position to sell")
        if symbol in self.pending_sells:
            raise RuntimeError(f"{symbol} already has a pending sell")
        order = PendingOrder(
            symbol=symbol,
            direction="sell",
            signal_date=signal_date,
            target_date=self.find_execution_date(signal_date),
            reason=reason,
            confidence=position.confidence,
            position_snapshot=replace(position),
        )
        self.pending_sells[symbol] = order
        return order

    @staticmethod
    def _is_due(order: Optional[PendingOrder], day: date) -> bool:
        return (
            order is not None
            and order.target_date is not None
            and order.target_date <= day
        )

    # ── Marks & exposure ─────────────────────────────────────────────────

    def mark(self, symbol: str, close: float) -> None:
        """Record the latest close used for valuation."""
        self._marks[symbol] = close

    def positions_value(self) -> float:
        return sum(
            p.quantity * self._marks.get(sym, p.entry_price)
            for sym, p in self.positions.items()
        )

    def exposure(self) -> float:
        """Deployed capital as a fraction of total equity."""
        invested = self.positions_value()
        total = self.cash + invested
        if total <= 0:
            return 0.0
        return invested / total

    # ── Execution ────────────────────────────────────────────────────────

    def execute_due_sell(self, symbol: str, current: IndicatorBar) -> Optional[Trade]:
        """Fill a pending sell whose target day has arrived."""
        order = self.pending_sells.get(symbol)
        if not self._is_due(order, current.date):
            return None

        bar = current.bar
        position = self.positions.pop(symbol)
        del self.pending_sells[symbol]

        proceeds = bar.open * position.quantity * SELL_NET_MULTIPLIER
        profit = proceeds - position.invest_amount
        self.cash += proceeds

        trade = Trade(
            symbol=symbol,
            action="sell",
            date=bar.date,
            price=bar.open,
            quantity=position.quantity,
            amount=proceeds,
            signal_date=order.signal_date,
            execution_date=bar.date,
            reason=order.reason,
            confidence=position.confidence,
            entry_price=position.entry_price,
            entry_date=position.entry_date,
            holding_days=holding_days(position.entry_date, bar.date),
            profit=profit,
            profit_rate=profit / position.invest_amount,
        )
        self.trades.append(trade)
        logger.info(
            "SELL %s %d @ %.2f on %s, profit %.0f (%.2f%%): %s",
            symbol, position.quantity, bar.open, bar.date,
            profit, trade.profit_rate * 100, order.reason,
        )
        return trade

    def execute_due_buy(self, symbol: str, current: IndicatorBar) -> Optional[Trade]:
        """Fill a pending buy whose target day has arrived.

        The order is dropped without a fill when the lot-rounded notional
        is at or below the minimum order size or exceeds available cash.
        """
        order = self.pending_buys.get(symbol)
        if not self._is_due(order, current.date):
            return None

        bar = current.bar
        cfg = self._config
        del self.pending_buys[symbol]

        fraction = calculate_position_fraction(
            order.confidence, cfg, self.exposure(),
        )
        invest_amount = min(self.cash * fraction, self.cash * cfg.max_position_size)
        quantity = calculate_lot_quantity(invest_amount, bar.open)
        notional = quantity * bar.open
        cost = notional * BUY_FEE_MULTIPLIER

        if notional <= MIN_ORDER_NOTIONAL or cost > self.cash:
            logger.warning(
                "Skipped buy %s on %s: notional %.0f, cash %.0f",
                symbol, bar.date, notional, self.cash,
            )
            return None

        self.cash -= cost
        atr = current.indicators.atr
        self.positions[symbol] = Position(
            symbol=symbol,
            entry_date=bar.date,
            entry_price=bar.open,
            quantity=quantity,
            invest_amount=cost,
            confidence=order.confidence,
            signal_date=order.signal_date,
            high_since_entry=bar.open,
            atr_stop_price=atr_stop_price(bar.open, atr, cfg),
            entry_atr=atr,
        )

        trade = Trade(
            symbol=symbol,
            action="buy",
            date=bar.date,
            price=bar.open,
            quantity=quantity,
            amount=cost,
            signal_date=order.signal_date,
            execution_date=bar.date,
            reason=order.reason,
            confidence=order.confidence,
        )
        self.trades.append(trade)
        logger.info(
            "BUY %s %d @ %.2f on %s (signal %s, confidence %.2f)",
            symbol, quantity, bar.open, bar.date, order.signal_date,
            order.confidence or 0.0,
        )
        return trade

    def refresh_stops(self, symbol: str, current: IndicatorBar) -> None:
        """Roll the position's high, trailing stop, and ATR stop forward."""
        position = self.positions.get(symbol)
        if position is None:
            return
        refresh_stops(
            position, current.bar.high, current.indicators.atr, self._config,
        )

    # ── Reporting ────────────────────────────────────────────────────────

    def snapshot(self, day: date) -> EquityPoint:
        """Equity point valuing positions at the latest marks."""
        positions = self.positions_value()
        return EquityPoint(
            date=day,
            value=self.cash + positions,
            cash=self.cash,
            positions=positions,
        )

    def unresolved_orders(self) -> list[PendingOrder]:
        """Orders still pending, buys first, each group in symbol order."""
        return (
            [self.pending_buys[s] for s in sorted(self.pending_buys)]
            + [self.pending_sells[s] for s in sorted(self.pending_sells)]
        )
