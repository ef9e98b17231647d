"""Market-data REST client — historical daily candles.

Talks to the historical-candles endpoint of the market-data provider.
The provider caps each request at one calendar year, so longer ranges are
split into per-year requests and merged.
"""

import asyncio
import logging
from datetime import date
from typing import Optional

import httpx

from stockreplay.config import Config
from stockreplay.strategy.models import PriceBar

logger = logging.getLogger("stockreplay")

# Retry settings
_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 2.0  # seconds; doubles each attempt
_RETRYABLE_STATUS_CODES = {502, 503, 504, 429}

_CANDLE_FIELDS = "open,high,low,close,volume,change"


class MarketDataClient:
    """Async client for the historical-candles REST API.

    Args:
        config: Application configuration (base URL and API key).
    """

    def __init__(self, config: Config) -> None:
        self._base_url = config.market_data_base_url.rstrip("/")
        self._headers = {"X-API-KEY": config.market_data_api_key}
        self._retry_base_delay = _RETRY_BASE_DELAY

    # ── Retry helper ─────────────────────────────────────────────────────

    async def _request_with_retry(self, url: str, **kwargs) -> httpx.Response:
        """GET with exponential-backoff retry.

        Retries on transient server errors (502, 503, 504) and rate-limits
        (429).  Non-retryable errors are raised immediately.
        """
        last_exc: Optional[Exception] = None

        for attempt in range(_MAX_RETRIES):
            try:
                async with httpx.AsyncClient() as client:
                    resp = await client.get(
                        url, headers=self._headers, timeout=30.0, **kwargs,
                    )

                if resp.status_code in _RETRYABLE_STATUS_CODES:
                    delay = self._retry_base_delay * (2 ** attempt)
                    logger.warning(
                        "GET %s returned %d, retry %d/%d in %.1fs",
                        url, resp.status_code, attempt + 1, _MAX_RETRIES, delay,
                    )
                    await asyncio.sleep(delay)
                    last_exc = httpx.HTTPStatusError(
                        f"Server error '{resp.status_code}'",
                        request=resp.request,
                        response=resp,
                    )
                    continue

                resp.raise_for_status()
                return resp

            except httpx.TransportError as exc:
                delay = self._retry_base_delay * (2 ** attempt)
                logger.warning(
                    "GET %s transport error (%s), retry %d/%d in %.1fs",
                    url, exc, attempt + 1, _MAX_RETRIES, delay,
                )
                last_exc = exc
                await asyncio.sleep(delay)

        # All retries exhausted
        raise last_exc  # type: ignore[misc]

    # ── Candle data ──────────────────────────────────────────────────────

    async def fetch_history(
        self, symbol: str, start: date, end: date,
    ) -> list[PriceBar]:
        """Fetch daily bars for *symbol* between *start* and *end* inclusive.

        Returns:
            List of ``PriceBar`` objects ordered oldest-first, one per date.
        """
        by_date: dict[date, PriceBar] = {}
        for year_start, year_end in _year_ranges(start, end):
            url = f"{self._base_url}/stock/historical/candles/{symbol}"
            params = {
                "from": year_start.isoformat(),
                "to": year_end.isoformat(),
                "fields": _CANDLE_FIELDS,
            }
            resp = await self._request_with_retry(url, params=params)
            rows = resp.json().get("data", [])
            logger.debug(
                "%s %s..%s: %d candles", symbol, year_start, year_end, len(rows),
            )
            for row in rows:
                bar = _parse_candle(symbol, row)
                if bar is not None:
                    by_date[bar.date] = bar

        return [by_date[d] for d in sorted(by_date)]


def _year_ranges(start: date, end: date) -> list[tuple[date, date]]:
    """Split ``[start, end]`` at calendar-year boundaries."""
    ranges = []
    for year in range(start.year, end.year + 1):
        lo = start if year == start.year else date(year, 1, 1)
        hi = end if year == end.year else date(year, 12, 31)
        ranges.append((lo, hi))
    return ranges


def _parse_candle(symbol: str, row: dict) -> Optional[PriceBar]:
    """Convert one API row into a ``PriceBar``; ``None`` for unusable rows."""
    try:
        bar = PriceBar(
            symbol=symbol,
            date=date.fromisoformat(str(row["date"])[:10]),
            open=float(row["open"]),
            high=float(row["high"]),
            low=float(row["low"]),
            close=float(row["close"]),
            volume=int(row.get("volume") or 0),
        )
    except (KeyError, TypeError, ValueError):
        logger.debug("Dropping malformed candle for %s: %r", symbol, row)
        return None
    if min(bar.open, bar.high, bar.low, bar.close) <= 0:
        return None
    return bar
