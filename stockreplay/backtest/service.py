"""Backtest service — fetches price histories and runs the engine.

Histories are fetched concurrently because instruments are independent
until the day loop starts.  A failed or empty fetch drops only that
instrument; the run fails only when nothing is left.
"""

import asyncio
import logging
from dataclasses import asdict
from datetime import date, timedelta
from typing import Optional, Protocol

from stockreplay.backtest.engine import BacktestEngine
from stockreplay.backtest.models import BacktestReport
from stockreplay.errors import InsufficientData
from stockreplay.models.strategy_config import StrategyConfig
from stockreplay.strategy.models import PriceBar

logger = logging.getLogger("stockreplay")

DEFAULT_WARMUP_DAYS = 120


class HistorySource(Protocol):
    """Anything that can supply daily bars for a symbol."""

    async def fetch_history(
        self, symbol: str, start: date, end: date,
    ) -> list[PriceBar]:
        ...


class BacktestService:
    """Runs backtests against a price-history source.

    Args:
        source: Where price histories come from (``PriceRepo`` or
            ``MarketDataClient``).
        backtest_repo: Optional ``BacktestRepo`` to persist run summaries.
        warmup_days: Calendar days fetched before *start* so indicators are
            warmed up on the first simulated day.
    """

    def __init__(
        self,
        source: HistorySource,
        backtest_repo=None,
        warmup_days: int = DEFAULT_WARMUP_DAYS,
    ) -> None:
        self._source = source
        self._backtest_repo = backtest_repo
        self._warmup_days = warmup_days

    async def run(
        self,
        symbols: list[str],
        start: date,
        end: date,
        initial_capital: float,
        config: Optional[StrategyConfig] = None,
    ) -> BacktestReport:
        """Fetch histories for *symbols* and run a backtest over ``[start, end]``.

        Raises:
            InsufficientData: If no symbol has usable history.
            ValueError: If the date range or capital is invalid.
        """
        if end < start:
            raise ValueError(f"end date {end} is before start date {start}")
        if initial_capital <= 0:
            raise ValueError(f"initial_capital must be positive, got {initial_capital}")
        config = config or StrategyConfig()
        symbols = list(dict.fromkeys(symbols))

        histories, excluded = await self._fetch_all(symbols, start, end)
        if not histories:
            raise InsufficientData()

        engine = BacktestEngine(config)
        report = engine.run(
            histories, start, end, initial_capital,
            symbols=[s for s in symbols if s in histories],
        )
        report.excluded_symbols = excluded + report.excluded_symbols

        logger.info(
            "Backtest %s..%s on %d/%d symbols: %d closed trades, return %.2f%%",
            start, end, len(symbols) - len(report.excluded_symbols), len(symbols),
            report.trades["total_trades"],
            report.performance["total_return"] * 100,
        )

        if self._backtest_repo is not None:
            self._backtest_repo.insert_run(
                strategy=config.strategy.value,
                symbols=symbols,
                start_date=start.isoformat(),
                end_date=end.isoformat(),
                report=report,
                params=asdict(config),
            )
        return report

    async def _fetch_all(
        self, symbols: list[str], start: date, end: date,
    ) -> tuple[dict[str, list[PriceBar]], list[str]]:
        fetch_start = start - timedelta(days=self._warmup_days)
        results = await asyncio.gather(
            *(self._source.fetch_history(s, fetch_start, end) for s in symbols),
            return_exceptions=True,
        )

        histories: dict[str, list[PriceBar]] = {}
        excluded: list[str] = []
        for symbol, result in zip(symbols, results):
            if isinstance(result, Exception):
                logger.warning("Excluding %s: history fetch failed: %s", symbol, result)
                excluded.append(symbol)
            elif isinstance(result, BaseException):
                raise result
            elif not result:
                logger.warning("Excluding %s: %s", symbol, InsufficientData(symbol))
                excluded.append(symbol)
            else:
                histories[symbol] = result
        return histories, excluded
