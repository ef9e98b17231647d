"""Price repository — SQLite storage for daily OHLCV bars."""

import asyncio
from datetime import date
from typing import Iterable, Optional

from stockreplay.repos.db import get_connection
from stockreplay.strategy.models import PriceBar


class PriceRepo:
    """Data access layer for the ``daily_prices`` table.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    # ── Write ────────────────────────────────────────────────────────────

    def upsert_bars(self, bars: Iterable[PriceBar]) -> int:
        """Insert or replace bars keyed by (symbol, date).  Returns the count."""
        rows = [
            (
                b.symbol, b.date.isoformat(),
                b.open, b.high, b.low, b.close, int(b.volume),
            )
            for b in bars
        ]
        if not rows:
            return 0
        conn = get_connection(self._db_path)
        try:
            conn.executemany(
                """
                INSERT OR REPLACE INTO daily_prices
                    (symbol, trade_date, open, high, low, close, volume)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                rows,
            )
            conn.commit()
            return len(rows)
        finally:
            conn.close()

    # ── Read ─────────────────────────────────────────────────────────────

    def get_history(
        self,
        symbol: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list[PriceBar]:
        """Return *symbol*'s bars in ascending date order.

        Rows with a non-positive price are skipped.
        """
        clauses = ["symbol = ?"]
        params: list = [symbol]
        if start is not None:
            clauses.append("trade_date >= ?")
            params.append(start.isoformat())
        if end is not None:
            clauses.append("trade_date <= ?")
            params.append(end.isoformat())

        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                f"SELECT * FROM daily_prices WHERE {' AND '.join(clauses)} "
                "ORDER BY trade_date ASC",
                params,
            ).fetchall()
        finally:
            conn.close()

        return [
            PriceBar(
                symbol=r["symbol"],
                date=date.fromisoformat(r["trade_date"]),
                open=r["open"],
                high=r["high"],
                low=r["low"],
                close=r["close"],
                volume=r["volume"],
            )
            for r in rows
            if min(r["open"], r["high"], r["low"], r["close"]) > 0
        ]

    async def fetch_history(
        self, symbol: str, start: date, end: date,
    ) -> list[PriceBar]:
        """``HistorySource`` adapter over :meth:`get_history`.

        The SQLite read runs in a worker thread so the event loop stays free.
        """
        return await asyncio.to_thread(self.get_history, symbol, start, end)

    def list_symbols(self) -> list[str]:
        """Symbols with at least one stored bar."""
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                "SELECT DISTINCT symbol FROM daily_prices ORDER BY symbol"
            ).fetchall()
            return [r["symbol"] for r in rows]
        finally:
            conn.close()
