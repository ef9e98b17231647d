"""Backtest engine — replays daily bars through a strategy and the order simulator.

Days are processed in ascending order.  Within a day, instruments are
processed in the caller's order, and for each instrument the steps are:

    1. fill a due sell
    2. fill a due buy
    3. evaluate a sell for the open position
    4. evaluate a buy if flat
    5. refresh stop levels

Cash is shared, so a later instrument's buy on the same day is sized
from whatever cash earlier instruments left behind.  No real orders are
placed.
"""

import logging
from datetime import date
from typing import Optional

from stockreplay.backtest.models import BacktestReport
from stockreplay.backtest.orders import OrderSimulator
from stockreplay.backtest.stats import build_report
from stockreplay.errors import DataGapError, InsufficientData
from stockreplay.models.strategy_config import StrategyConfig
from stockreplay.strategy.base import StrategyProtocol
from stockreplay.strategy.indicators import annotate_bars
from stockreplay.strategy.models import IndicatorBar, PriceBar
from stockreplay.strategy.registry import get_strategy

logger = logging.getLogger("stockreplay")


class BacktestEngine:
    """Simulates a strategy over several instruments sharing one cash pool.

    Args:
        config: Strategy configuration.
        strategy: Strategy to evaluate; defaults to the one registered for
            ``config.strategy``.
    """

    def __init__(
        self,
        config: StrategyConfig,
        strategy: Optional[StrategyProtocol] = None,
    ) -> None:
        self._config = config
        self._strategy = strategy if strategy is not None else get_strategy(config)

    # ── Public API ───────────────────────────────────────────────────────

    def run(
        self,
        histories: dict[str, list[PriceBar]],
        start: date,
        end: date,
        initial_cash: float,
        symbols: Optional[list[str]] = None,
    ) -> BacktestReport:
        """Execute a full backtest.

        Args:
            histories: Price bars per symbol.  Bars before *start* are used
                only to warm up indicators.
            start: First simulated day (inclusive).
            end: Last simulated day (inclusive).
            initial_cash: Starting cash.
            symbols: Processing order; defaults to the order of *histories*.

        Raises:
            InsufficientData: If no instrument has a bar inside the range.
        """
        order = symbols if symbols is not None else list(histories)
        annotated: dict[str, list[IndicatorBar]] = {}
        excluded: list[str] = []

        for symbol in order:
            bars = sorted(histories.get(symbol) or [], key=lambda b: b.date)
            if not any(start <= b.date <= end for b in bars):
                logger.warning(
                    "Excluding %s: %s", symbol,
                    InsufficientData(symbol, "no bars inside the backtest range"),
                )
                excluded.append(symbol)
                continue
            annotated[symbol] = annotate_bars(bars, self._config)

        if not annotated:
            raise InsufficientData()

        report = self.simulate(annotated, start, end, initial_cash)
        report.excluded_symbols = excluded
        return report

    def simulate(
        self,
        annotated: dict[str, list[IndicatorBar]],
        start: date,
        end: date,
        initial_cash: float,
    ) -> BacktestReport:
        """Run the day loop over pre-annotated bars.

        *annotated* is processed in its iteration order.
        """
        symbols = list(annotated)
        index_by_date = {
            symbol: {ib.date: i for i, ib in enumerate(bars)}
            for symbol, bars in annotated.items()
        }
        trading_days = sorted({ib.date for bars in annotated.values() for ib in bars})
        sim = OrderSimulator(self._config, initial_cash, trading_days)
        equity_curve = []

        for day in trading_days:
            if day < start or day > end:
                continue

            for symbol in symbols:
                i = index_by_date[symbol].get(day)
                if i is not None:
                    sim.mark(symbol, annotated[symbol][i].bar.close)

            for symbol in symbols:
                i = index_by_date[symbol].get(day)
                if i is None:
                    logger.debug("Skipping: %s", DataGapError(symbol, day))
                    continue
                current = annotated[symbol][i]
                previous = annotated[symbol][i - 1] if i > 0 else None
                self._process_instrument(sim, symbol, current, previous)

            equity_curve.append(sim.snapshot(day))

        unresolved = sim.unresolved_orders()
        for pending in unresolved:
            logger.warning(
                "Unresolved %s order for %s (signal %s, target %s)",
                pending.direction, pending.symbol,
                pending.signal_date, pending.target_date,
            )

        return build_report(
            trades=sim.trades,
            equity_curve=equity_curve,
            initial_capital=initial_cash,
            symbols=symbols,
            unresolved_orders=unresolved,
            open_positions=list(sim.positions.values()),
        )

    # ── Helpers ──────────────────────────────────────────────────────────

    def _process_instrument(
        self,
        sim: OrderSimulator,
        symbol: str,
        current: IndicatorBar,
        previous: Optional[IndicatorBar],
    ) -> None:
        sim.execute_due_sell(symbol, current)
        sim.execute_due_buy(symbol, current)

        position = sim.positions.get(symbol)
        if position is not None:
            if symbol not in sim.pending_sells:
                sell = self._strategy.evaluate_sell(current, previous, position)
                if sell.signal:
                    sim.submit_sell(symbol, current.date, sell.reason)
        elif sim.is_flat(symbol):
            buy = self._strategy.evaluate_buy(symbol, current, previous)
            if buy.signal:
                sim.submit_buy(symbol, current.date, buy.confidence, buy.reason)

        sim.refresh_stops(symbol, current)
