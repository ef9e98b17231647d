"""RSI/MACD signal state machine — buy and sell intents per instrument.

Buys only fire on the *recovery* from an oversold episode: RSI must first
dip below 30, then climb back above 30 while staying under an upper limit
(40 in hierarchical mode, the configured oversold line otherwise), with a
bullish MACD, strong volume and a bullish candle confirming the turn.

Each instrument keeps one :class:`RecoveryTracker` for the whole run.
Trackers are owned by the :class:`SignalStateMachine` instance, so two
runs never share state.

Sells are evaluated against an open position.  During the minimum
holding period only catastrophic losses close a position; afterwards the
trailing stop, ATR stop, fixed stop-profit/stop-loss, overbought RSI,
bearish MACD crossover and the holding-day cap apply, in that order.
"""

from typing import Optional

from stockreplay.backtest.models import Position, holding_days
from stockreplay.models.strategy_config import StrategyConfig
from stockreplay.risk.trailing_stop import atr_stop_price, trailing_stop_price
from stockreplay.strategy.models import (
    LOT_SIZE,
    BuySignal,
    IndicatorBar,
    RecoveryTracker,
    SellSignal,
)


OVERSOLD_LEVEL = 30.0
OVERBOUGHT_LEVEL = 70.0
HIERARCHICAL_RECOVERY_CEILING = 40.0
LIMIT_DOWN_RISK = -0.095
MAX_HOLDING_DAYS = 30
MAX_CONFIDENCE = 0.95


class SignalStateMachine:
    """Evaluates RSI/MACD buy and sell intents.

    Args:
        config: Strategy configuration for the run.
        trackers: Optional pre-existing tracker map (symbol → tracker).
    """

    def __init__(
        self,
        config: StrategyConfig,
        trackers: Optional[dict[str, RecoveryTracker]] = None,
    ) -> None:
        self._config = config
        self._trackers: dict[str, RecoveryTracker] = (
            trackers if trackers is not None else {}
        )

    @property
    def trackers(self) -> dict[str, RecoveryTracker]:
        """Recovery trackers keyed by symbol."""
        return self._trackers

    def tracker_for(self, symbol: str) -> RecoveryTracker:
        return self._trackers.setdefault(symbol, RecoveryTracker())

    # ── Buy ──────────────────────────────────────────────────────────────

    def evaluate_buy(
        self,
        symbol: str,
        current: IndicatorBar,
        previous: Optional[IndicatorBar],
    ) -> BuySignal:
        """Evaluate a buy for a flat instrument.

        Mutates the instrument's tracker: oversold bars open or extend an
        episode, a missed recovery window or a fired buy resets it.
        """
        cfg = self._config
        bar = current.bar
        ind = current.indicators

        if ind.rsi is None or ind.macd is None or ind.macd_signal is None:
            return BuySignal(False, "indicators not ready")

        volume_lots = bar.volume / LOT_SIZE
        if volume_lots < cfg.volume_limit:
            return BuySignal(
                False,
                f"volume {volume_lots:.0f} lots below minimum {cfg.volume_limit:.0f}",
            )

        tracker = self.tracker_for(symbol)
        rsi = ind.rsi

        if rsi < OVERSOLD_LEVEL:
            tracker.mark_oversold(bar.date, rsi)
            return BuySignal(False, f"RSI {rsi:.1f} oversold, waiting for recovery")

        if not tracker.in_oversold:
            return BuySignal(False, f"RSI {rsi:.1f} without prior oversold episode")

        upper = (
            HIERARCHICAL_RECOVERY_CEILING
            if cfg.hierarchical_decision else cfg.rsi_oversold
        )
        if rsi > upper:
            tracker.reset()
            return BuySignal(
                False, f"RSI {rsi:.1f} above {upper:.0f}, recovery window missed",
            )

        prev_rsi = previous.indicators.rsi if previous is not None else None
        if prev_rsi is None or rsi <= prev_rsi:
            return BuySignal(False, f"RSI {rsi:.1f} not rising")

        if ind.macd <= ind.macd_signal:
            return BuySignal(False, "MACD below signal line")
        if cfg.hierarchical_decision and (
            ind.macd_histogram is None or ind.macd_histogram <= 0
        ):
            return BuySignal(False, "MACD histogram not positive")

        if ind.volume_ratio is None or ind.volume_ratio < cfg.volume_threshold:
            return BuySignal(False, "volume ratio below threshold")

        if bar.close <= bar.open:
            return BuySignal(False, "not a bullish candle")

        if (
            cfg.enable_price_momentum
            and cfg.hierarchical_decision
            and ind.price_momentum is not None
            and ind.price_momentum < 0
        ):
            return BuySignal(
                False, f"negative price momentum {ind.price_momentum:.2%}",
            )

        if cfg.enable_ma60:
            if cfg.hierarchical_decision:
                trend_ma, label = ind.ma60, "MA60"
            else:
                trend_ma, label = ind.ma20, "MA20"
            if trend_ma is None or bar.close <= trend_ma:
                return BuySignal(False, f"close not above {label}")

        confidence = calculate_confidence(current, previous, cfg)
        if confidence < cfg.confidence_threshold:
            return BuySignal(
                False,
                f"confidence {confidence:.2f} below threshold "
                f"{cfg.confidence_threshold:.2f}",
                confidence,
            )

        reason = _buy_reason(tracker, current, confidence)
        tracker.reset()
        return BuySignal(True, reason, confidence)

    # ── Sell ─────────────────────────────────────────────────────────────

    def evaluate_sell(
        self,
        current: IndicatorBar,
        previous: Optional[IndicatorBar],
        position: Position,
    ) -> SellSignal:
        """Evaluate a sell for an open *position*.  Does not mutate it."""
        cfg = self._config
        bar = current.bar
        ind = current.indicators
        entry = position.entry_price

        days = holding_days(position.entry_date, bar.date)
        profit_rate = (bar.close - entry) / entry

        if days <= cfg.min_holding_days:
            if profit_rate <= -2 * cfg.stop_loss:
                return SellSignal(
                    True,
                    f"catastrophic loss {profit_rate:.2%} inside holding period",
                )
            if profit_rate <= LIMIT_DOWN_RISK:
                return SellSignal(
                    True, f"limit-down risk {profit_rate:.2%} inside holding period",
                )
            return SellSignal(
                False, f"holding period {days}/{cfg.min_holding_days} days",
            )

        high = max(position.high_since_entry, bar.high)
        trailing_price = trailing_stop_price(entry, high, cfg)
        if trailing_price is not None and bar.close <= trailing_price:
            return SellSignal(
                True,
                f"trailing stop {trailing_price:.2f} hit (high {high:.2f})",
            )

        # Today's ATR sets the level; without one the stored level stands
        atr_level = atr_stop_price(entry, ind.atr, cfg)
        if atr_level is None and cfg.enable_atr_stop:
            atr_level = position.atr_stop_price
        if atr_level is not None and bar.close <= atr_level:
            return SellSignal(True, f"ATR stop {atr_level:.2f} hit")

        if profit_rate >= cfg.stop_profit:
            return SellSignal(True, f"take profit {profit_rate:.2%}")
        if profit_rate <= -cfg.stop_loss:
            return SellSignal(True, f"stop loss {profit_rate:.2%}")

        if ind.rsi is not None and ind.rsi > OVERBOUGHT_LEVEL:
            return SellSignal(True, f"RSI {ind.rsi:.1f} overbought")

        if _bearish_crossover(current, previous):
            return SellSignal(True, "MACD bearish crossover")

        if days > MAX_HOLDING_DAYS:
            return SellSignal(True, f"held {days} days, over {MAX_HOLDING_DAYS}")

        return SellSignal(False, "hold")


# ── Confidence ───────────────────────────────────────────────────────────


def calculate_confidence(
    current: IndicatorBar,
    previous: Optional[IndicatorBar],
    config: StrategyConfig,
) -> float:
    """Score a buy setup in ``[0, 0.95]``."""
    bar = current.bar
    ind = current.indicators
    hierarchical = config.hierarchical_decision
    score = 0.30 if hierarchical else 0.45

    rsi = ind.rsi
    if rsi is not None:
        if rsi < 20:
            score += 0.25
        elif rsi < 25:
            score += 0.20
        elif rsi < 30:
            score += 0.15
        elif rsi < 35:
            score += 0.10
        elif hierarchical and rsi > 35:
            score -= 0.05

        prev_rsi = previous.indicators.rsi if previous is not None else None
        if prev_rsi is not None:
            improvement = rsi - prev_rsi
            if improvement > 5:
                score += 0.10
            elif improvement > 2:
                score += 0.05

    if ind.macd is not None and ind.macd_signal is not None and ind.macd > ind.macd_signal:
        if _bullish_crossover(current, previous):
            if ind.macd_histogram is not None and ind.macd_histogram > 0:
                score += 0.20
            else:
                score += 0.15
        else:
            score += 0.10

    if ind.volume_ratio is not None:
        if ind.volume_ratio >= 2 * config.volume_threshold:
            score += 0.10
        elif ind.volume_ratio >= config.volume_threshold:
            score += 0.05
        elif hierarchical:
            score -= 0.05

    aligned = 0
    if ind.ma5 is not None and bar.close > ind.ma5:
        aligned += 1
    if ind.ma5 is not None and ind.ma20 is not None and ind.ma5 > ind.ma20:
        aligned += 1
    if ind.ma20 is not None and ind.ma60 is not None and ind.ma20 > ind.ma60:
        aligned += 1
    score += 0.05 * aligned

    if config.enable_price_momentum and ind.price_momentum is not None:
        if ind.price_momentum >= config.price_momentum_threshold:
            score += 0.10
        elif ind.price_momentum > 0:
            score += 0.05
        elif hierarchical and ind.price_momentum < 0:
            score -= 0.05

    return min(max(score, 0.0), MAX_CONFIDENCE)


# ── Helpers ──────────────────────────────────────────────────────────────


def _bullish_crossover(current: IndicatorBar, previous: Optional[IndicatorBar]) -> bool:
    """MACD crossed above its signal line on *current*."""
    if previous is None:
        return False
    prev = previous.indicators
    cur = current.indicators
    if None in (prev.macd, prev.macd_signal, cur.macd, cur.macd_signal):
        return False
    return prev.macd <= prev.macd_signal and cur.macd > cur.macd_signal


def _bearish_crossover(current: IndicatorBar, previous: Optional[IndicatorBar]) -> bool:
    """MACD crossed below its signal line with a negative histogram."""
    if previous is None:
        return False
    prev = previous.indicators
    cur = current.indicators
    if None in (prev.macd, prev.macd_signal, cur.macd, cur.macd_signal, cur.macd_histogram):
        return False
    return (
        prev.macd >= prev.macd_signal
        and cur.macd < cur.macd_signal
        and cur.macd_histogram < 0
    )


def _buy_reason(tracker: RecoveryTracker, current: IndicatorBar, confidence: float) -> str:
    ind = current.indicators
    parts = []
    if tracker.min_rsi is not None:
        parts.append(f"RSI recovered from {tracker.min_rsi:.1f} to {ind.rsi:.1f}")
    else:
        parts.append(f"RSI recovered to {ind.rsi:.1f}")
    parts.append("MACD bullish")
    if ind.volume_ratio is not None:
        parts.append(f"volume {ind.volume_ratio:.1f}x average")
    parts.append(f"confidence {confidence:.2f}")
    return ", ".join(parts)
