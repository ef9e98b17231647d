"""Strategy data models — typed representations for strategy inputs and outputs."""

from dataclasses import dataclass
from datetime import date
from typing import Optional


@dataclass(frozen=True)
class PriceBar:
    """One trading day's OHLCV record for an instrument."""

    symbol: str
    date: date
    open: float
    high: float
    low: float
    close: float
    volume: int  # shares


@dataclass(frozen=True)
class IndicatorSet:
    """Derived indicator values for one bar.  ``None`` until warmed up."""

    rsi: Optional[float] = None
    avg_gain: Optional[float] = None
    avg_loss: Optional[float] = None
    ema_fast: Optional[float] = None
    ema_slow: Optional[float] = None
    macd: Optional[float] = None
    macd_signal: Optional[float] = None
    macd_histogram: Optional[float] = None
    ma5: Optional[float] = None
    ma20: Optional[float] = None
    ma60: Optional[float] = None
    volume_ma20: Optional[float] = None
    volume_ratio: Optional[float] = None
    atr: Optional[float] = None
    price_momentum: Optional[float] = None


@dataclass(frozen=True)
class IndicatorBar:
    """A price bar paired with its indicators."""

    bar: PriceBar
    indicators: IndicatorSet

    @property
    def date(self) -> date:
        return self.bar.date


@dataclass
class RecoveryTracker:
    """Oversold-episode state for a single instrument.

    Lives for the whole run and is reset whenever a buy fires or the
    recovery window is missed.
    """

    in_oversold: bool = False
    oversold_date: Optional[date] = None
    min_rsi: Optional[float] = None
    waiting_for_recovery: bool = False

    def mark_oversold(self, day: date, rsi: float) -> None:
        if not self.in_oversold:
            self.in_oversold = True
            self.oversold_date = day
            self.min_rsi = rsi
        elif self.min_rsi is None or rsi < self.min_rsi:
            self.min_rsi = rsi
        self.waiting_for_recovery = True

    def reset(self) -> None:
        self.in_oversold = False
        self.oversold_date = None
        self.min_rsi = None
        self.waiting_for_recovery = False


@dataclass(frozen=True)
class BuySignal:
    """Outcome of a buy evaluation."""

    signal: bool
    reason: str
    confidence: Optional[float] = None


@dataclass(frozen=True)
class SellSignal:
    """Outcome of a sell evaluation."""

    signal: bool
    reason: str


# ── Market constants ─────────────────────────────────────────────────────

LOT_SIZE = 1000  # shares per board lot
BUY_FEE_MULTIPLIER = 1.001425  # price × (1 + 0.1425 % commission)
SELL_NET_MULTIPLIER = 0.995575  # price × (1 − 0.1425 % commission − 0.3 % tax)
MIN_ORDER_NOTIONAL = 10_000.0  # NT$
