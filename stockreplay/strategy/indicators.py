"""Technical indicators — RSI, EMA, MACD, SMA, ATR, price momentum. Pure functions, no I/O.

Every ``calculate_*`` helper returns a list the same length as its input,
with ``None`` for bars before the indicator is warmed up.
"""

import math
from typing import Optional

from stockreplay.models.strategy_config import StrategyConfig
from stockreplay.strategy.models import IndicatorBar, IndicatorSet, PriceBar


# ── RSI ──────────────────────────────────────────────────────────────────


def calculate_rsi(
    closes: list[float], period: int = 14,
) -> tuple[list[Optional[float]], list[Optional[float]], list[Optional[float]]]:
    """Calculate Wilder's Relative Strength Index.

    Algorithm (Wilder-smoothed):
        1. delta = close[i] - close[i-1]
        2. Separate gains (positive) and losses (|negative|).
        3. At index *period*, seed average gain/loss = SMA of the first
           *period* deltas.
        4. Subsequent: avg = prev_avg × (1 - 1/period) + current × 1/period
        5. RSI = 100 if avg_loss is 0, else 100 - 100 / (1 + gain/loss)

    A NaN or out-of-range value is replaced by the previous bar's RSI
    (or 50 when there is none).

    Returns ``(rsi, avg_gain, avg_loss)``.
    """
    n = len(closes)
    rsi: list[Optional[float]] = [None] * n
    avg_gains: list[Optional[float]] = [None] * n
    avg_losses: list[Optional[float]] = [None] * n
    if n <= period:
        return rsi, avg_gains, avg_losses

    gains = [0.0] * n
    losses = [0.0] * n
    for i in range(1, n):
        delta = closes[i] - closes[i - 1]
        gains[i] = max(delta, 0.0)
        losses[i] = max(-delta, 0.0)

    avg_gain = sum(gains[1 : period + 1]) / period
    avg_loss = sum(losses[1 : period + 1]) / period
    alpha = 1.0 / period
    previous: Optional[float] = None

    for i in range(period, n):
        if i > period:
            avg_gain = avg_gain * (1 - alpha) + gains[i] * alpha
            avg_loss = avg_loss * (1 - alpha) + losses[i] * alpha

        if avg_loss == 0:
            value = 100.0
        else:
            value = 100.0 - 100.0 / (1.0 + avg_gain / avg_loss)
        if math.isnan(value) or not 0.0 <= value <= 100.0:
            value = previous if previous is not None else 50.0

        rsi[i] = value
        avg_gains[i] = avg_gain
        avg_losses[i] = avg_loss
        previous = value

    return rsi, avg_gains, avg_losses


# ── Moving averages ──────────────────────────────────────────────────────


def calculate_ema(values: list[float], period: int) -> list[float]:
    """Exponential Moving Average seeded with the first value.

    ``EMA_today = value × k + EMA_yesterday × (1 - k)``, ``k = 2 / (period + 1)``.
    """
    if not values:
        return []
    k = 2.0 / (period + 1)
    ema = [values[0]]
    for value in values[1:]:
        ema.append(value * k + ema[-1] * (1 - k))
    return ema


def calculate_sma(values: list[float], period: int) -> list[Optional[float]]:
    """Simple rolling mean, valid once the window is full."""
    sma: list[Optional[float]] = [None] * len(values)
    for i in range(period - 1, len(values)):
        window = values[i - period + 1 : i + 1]
        sma[i] = sum(window) / period
    return sma


def calculate_macd(
    closes: list[float],
    fast: int = 12,
    slow: int = 26,
    signal: int = 9,
) -> tuple[
    list[float], list[float],
    list[Optional[float]], list[Optional[float]], list[Optional[float]],
]:
    """MACD line, signal line, and histogram.

    Fast and slow EMAs are seeded with the first close.  The MACD line
    becomes valid at index ``slow - 1``; its signal line is seeded there
    with the MACD value itself and smoothed with ``k = 2 / (signal + 1)``.

    Returns ``(ema_fast, ema_slow, macd, macd_signal, histogram)``.
    """
    n = len(closes)
    ema_fast = calculate_ema(closes, fast)
    ema_slow = calculate_ema(closes, slow)
    macd: list[Optional[float]] = [None] * n
    macd_signal: list[Optional[float]] = [None] * n
    histogram: list[Optional[float]] = [None] * n

    start = slow - 1
    k = 2.0 / (signal + 1)
    for i in range(start, n):
        line = ema_fast[i] - ema_slow[i]
        if i == start:
            sig = line
        else:
            sig = line * k + macd_signal[i - 1] * (1 - k)
        macd[i] = line
        macd_signal[i] = sig
        histogram[i] = line - sig

    return ema_fast, ema_slow, macd, macd_signal, histogram


# ── ATR ──────────────────────────────────────────────────────────────────


def calculate_atr(bars: list[PriceBar], period: int = 14) -> list[Optional[float]]:
    """Average True Range series.

    Uses the standard True Range definition:
        TR = max(high - low, |high - prev_close|, |low - prev_close|)

    Seeded at index *period* with the mean of the first *period* true
    ranges, then smoothed as ``atr_prev × (period - 1) / period + tr / period``.
    """
    n = len(bars)
    atr: list[Optional[float]] = [None] * n
    if n <= period:
        return atr

    true_ranges = [0.0] * n
    for i in range(1, n):
        prev_close = bars[i - 1].close
        true_ranges[i] = max(
            bars[i].high - bars[i].low,
            abs(bars[i].high - prev_close),
            abs(bars[i].low - prev_close),
        )

    value = sum(true_ranges[1 : period + 1]) / period
    atr[period] = value
    for i in range(period + 1, n):
        value = value * (period - 1) / period + true_ranges[i] / period
        atr[i] = value
    return atr


# ── Price momentum ───────────────────────────────────────────────────────


def calculate_price_momentum(
    closes: list[float], period: int = 5,
) -> list[Optional[float]]:
    """Rate of change ``(close - close[i - period]) / close[i - period]``."""
    momentum: list[Optional[float]] = [None] * len(closes)
    for i in range(period, len(closes)):
        base = closes[i - period]
        if base:
            momentum[i] = (closes[i] - base) / base
    return momentum


# ── Annotation ───────────────────────────────────────────────────────────


def annotate_bars(bars: list[PriceBar], config: StrategyConfig) -> list[IndicatorBar]:
    """Attach an :class:`IndicatorSet` to every bar of one instrument.

    *bars* must be in ascending date order.  The result is computed once
    per run and never recomputed.
    """
    closes = [b.close for b in bars]
    volumes = [float(b.volume) for b in bars]
    n = len(bars)

    rsi, avg_gain, avg_loss = calculate_rsi(closes, config.rsi_period)
    ema_fast, ema_slow, macd, macd_signal, histogram = calculate_macd(
        closes, config.macd_fast, config.macd_slow, config.macd_signal,
    )
    ma5 = calculate_sma(closes, 5)
    ma20 = calculate_sma(closes, 20)
    ma60 = calculate_sma(closes, 60) if config.enable_ma60 else [None] * n
    volume_ma20 = calculate_sma(volumes, 20)
    atr = calculate_atr(bars, config.atr_period)
    if config.enable_price_momentum:
        momentum = calculate_price_momentum(closes, config.price_momentum_period)
    else:
        momentum = [None] * n

    annotated: list[IndicatorBar] = []
    for i, bar in enumerate(bars):
        vol_ma = volume_ma20[i]
        volume_ratio = bar.volume / vol_ma if vol_ma else None
        annotated.append(
            IndicatorBar(
                bar=bar,
                indicators=IndicatorSet(
                    rsi=rsi[i],
                    avg_gain=avg_gain[i],
                    avg_loss=avg_loss[i],
                    ema_fast=ema_fast[i],
                    ema_slow=ema_slow[i],
                    macd=macd[i],
                    macd_signal=macd_signal[i],
                    macd_histogram=histogram[i],
                    ma5=ma5[i],
                    ma20=ma20[i],
                    ma60=ma60[i],
                    volume_ma20=vol_ma,
                    volume_ratio=volume_ratio,
                    atr=atr[i],
                    price_momentum=momentum[i],
                ),
            )
        )
    return annotated
