"""Tests for the backtest engine — day loop, T+1 fills, shared cash, exclusions."""

from datetime import date, timedelta

import pytest

from stockreplay.backtest.engine import BacktestEngine
from stockreplay.errors import InsufficientData
from stockreplay.models.strategy_config import StrategyConfig
from stockreplay.strategy.models import (
    BuySignal,
    IndicatorBar,
    IndicatorSet,
    PriceBar,
    SellSignal,
)


D0 = date(2024, 3, 1)


# ── Helpers ──────────────────────────────────────────────────────────────


def _make_bar(symbol, day, open_, close=None, volume=2_000_000):
    close = close if close is not None else open_
    return PriceBar(
        symbol=symbol,
        date=day,
        open=open_,
        high=max(open_, close),
        low=min(open_, close),
        close=close,
        volume=volume,
    )


def _plain(bars):
    return [IndicatorBar(bar=b, indicators=IndicatorSet()) for b in bars]


def _days(n, start=D0):
    return [start + timedelta(days=i) for i in range(n)]


class ScriptedStrategy:
    """Fires buys and sells on fixed dates, ignoring indicators."""

    def __init__(self, buys=None, sells=None, confidence=0.85):
        self.buys = buys or {}
        self.sells = sells or {}
        self.confidence = confidence

    def evaluate_buy(self, symbol, current, previous):
        if current.date in self.buys.get(symbol, ()):
            return BuySignal(True, "scripted buy", self.confidence)
        return BuySignal(False, "no signal")

    def evaluate_sell(self, current, previous, position):
        if current.date in self.sells.get(position.symbol, ()):
            return SellSignal(True, "scripted sell")
        return SellSignal(False, "hold")


def _engine(strategy, **overrides):
    params = dict(dynamic_position_size=False)
    params.update(overrides)
    return BacktestEngine(StrategyConfig(**params), strategy=strategy)


def _scenario_a_annotated():
    """Oversold dip to 18, recovery to 33 with a fresh MACD crossover on day 5."""
    rsis = [45.0, 25.0, 18.0, 28.0, 29.0, 33.0, 40.0]
    bars = []
    for i, rsi in enumerate(rsis):
        crossed = i >= 5
        indicators = IndicatorSet(
            rsi=rsi,
            macd=0.2 if crossed else -0.1,
            macd_signal=0.05 if crossed else 0.0,
            macd_histogram=0.15 if crossed else -0.1,
            volume_ratio=2.0,
        )
        price = _make_bar("2330", D0 + timedelta(days=i), 100.0, 102.0)
        if i == 6:
            price = _make_bar("2330", D0 + timedelta(days=i), 103.0, 104.0)
        bars.append(IndicatorBar(bar=price, indicators=indicators))
    return {"2330": bars}


# ── Signal state machine end-to-end ──────────────────────────────────────


class TestRecoveryBuyEndToEnd:

    def test_buy_fills_next_day_at_open(self):
        config = StrategyConfig(
            hierarchical_decision=False,
            volume_limit=100,
            enable_price_momentum=False,
            enable_ma60=False,
        )
        engine = BacktestEngine(config)
        days = _days(7)
        report = engine.simulate(_scenario_a_annotated(), days[0], days[-1], 1_000_000.0)

        assert len(report.detailed_trades) == 1
        buy = report.detailed_trades[0]
        assert buy.action == "buy"
        assert buy.signal_date == days[5]
        assert buy.date == days[6]
        assert buy.price == 103.0
        assert buy.confidence == pytest.approx(0.85)
        assert buy.quantity == 2000

        assert len(report.open_positions) == 1
        last = report.equity_curve[-1]
        assert last.value == pytest.approx(1_000_000 - buy.amount + 2000 * 104.0)
        assert report.trades["total_trades"] == 0


# ── Day loop ─────────────────────────────────────────────────────────────


class TestDayLoop:

    def test_round_trip_and_equity_identity(self):
        days = _days(6)
        bars = [
            _make_bar("2330", days[0], 100.0),
            _make_bar("2330", days[1], 100.0),
            _make_bar("2330", days[2], 101.0, 104.0),
            _make_bar("2330", days[3], 105.0),
            _make_bar("2330", days[4], 110.0),
            _make_bar("2330", days[5], 108.0),
        ]
        strategy = ScriptedStrategy(buys={"2330": {days[1]}}, sells={"2330": {days[3]}})
        report = _engine(strategy).simulate({"2330": _plain(bars)}, days[0], days[-1], 1_000_000.0)

        buy, sell = report.detailed_trades
        assert (buy.date, buy.price) == (days[2], 101.0)
        assert (sell.date, sell.price) == (days[4], 110.0)
        assert sell.profit == pytest.approx(sell.amount - buy.amount)
        assert report.trades["total_trades"] == 1
        assert report.trades["winning_trades"] == 1

        assert len(report.equity_curve) == 6
        for point in report.equity_curve:
            assert point.value == pytest.approx(point.cash + point.positions)
        assert report.equity_curve[-1].positions == 0
        assert report.performance["final_capital"] == pytest.approx(
            round(1_000_000 - buy.amount + sell.amount, 2)
        )

    def test_no_rebuy_while_sell_pending(self):
        days = _days(5)
        bars = [_make_bar("2330", d, 100.0) for d in days]
        strategy = ScriptedStrategy(
            buys={"2330": set(days)}, sells={"2330": {days[2]}},
        )
        report = _engine(strategy).simulate({"2330": _plain(bars)}, days[0], days[-1], 1_000_000.0)
        actions = [(t.action, t.date) for t in report.detailed_trades]
        # Buy on day 1, sell on day 3, re-buy signalled on day 3 fills on day 4
        assert actions == [
            ("buy", days[1]),
            ("sell", days[3]),
            ("buy", days[4]),
        ]

    def test_signal_on_last_day_is_unresolved(self):
        days = _days(3)
        bars = [_make_bar("2330", d, 100.0) for d in days]
        strategy = ScriptedStrategy(buys={"2330": {days[2]}})
        report = _engine(strategy).simulate({"2330": _plain(bars)}, days[0], days[-1], 1_000_000.0)
        assert report.detailed_trades == []
        assert len(report.unresolved_orders) == 1
        assert report.unresolved_orders[0].target_date is None

    def test_warmup_bars_not_simulated(self):
        days = _days(6)
        bars = [_make_bar("2330", d, 100.0) for d in days]
        strategy = ScriptedStrategy(buys={"2330": {days[0]}})
        report = _engine(strategy).simulate({"2330": _plain(bars)}, days[3], days[-1], 1_000_000.0)
        assert [p.date for p in report.equity_curve] == days[3:]
        assert report.detailed_trades == []

    def test_shared_cash_across_instruments(self):
        days = _days(3)
        annotated = {
            "1101": _plain([_make_bar("1101", d, 10.0) for d in days]),
            "1102": _plain([_make_bar("1102", d, 10.0) for d in days]),
        }
        strategy = ScriptedStrategy(
            buys={"1101": {days[0]}, "1102": {days[0]}}, confidence=0.75,
        )
        report = _engine(strategy).simulate(annotated, days[0], days[-1], 1_000_000.0)

        first, second = report.detailed_trades
        assert first.symbol == "1101"
        assert first.quantity == 14_000
        assert second.symbol == "1102"
        assert second.quantity == 12_000
        assert report.equity_curve[1].cash == pytest.approx(
            1_000_000 - 140_199.5 - 120_171.0
        )

    def test_instrument_gap_defers_fill_to_next_bar(self):
        days = _days(4)
        annotated = {
            "1101": _plain([_make_bar("1101", d, 50.0) for d in days]),
            "1102": _plain([
                _make_bar("1102", days[0], 20.0),
                _make_bar("1102", days[2], 21.0),
                _make_bar("1102", days[3], 22.0),
            ]),
        }
        strategy = ScriptedStrategy(buys={"1102": {days[0]}})
        report = _engine(strategy).simulate(annotated, days[0], days[-1], 1_000_000.0)
        (buy,) = report.detailed_trades
        assert buy.date == days[2]
        assert buy.price == 21.0
        assert len(report.equity_curve) == 4


# ── run() ────────────────────────────────────────────────────────────────


class TestRun:

    def test_excludes_instruments_without_bars_in_range(self):
        days = _days(5)
        histories = {
            "2330": [_make_bar("2330", d, 100.0) for d in days],
            "9999": [_make_bar("9999", D0 - timedelta(days=30), 10.0)],
            "0000": [],
        }
        report = _engine(ScriptedStrategy()).run(histories, days[0], days[-1], 1_000_000.0)
        assert report.excluded_symbols == ["9999", "0000"]
        assert [row["stock"] for row in report.stock_performance] == ["2330"]

    def test_no_usable_history_raises(self):
        with pytest.raises(InsufficientData):
            _engine(ScriptedStrategy()).run(
                {"2330": []}, D0, D0 + timedelta(days=10), 1_000_000.0,
            )

    def test_processing_order_follows_symbols(self):
        days = _days(3)
        histories = {
            "1101": [_make_bar("1101", d, 10.0) for d in days],
            "1102": [_make_bar("1102", d, 10.0) for d in days],
        }
        strategy = ScriptedStrategy(
            buys={"1101": {days[0]}, "1102": {days[0]}}, confidence=0.75,
        )
        report = _engine(strategy).run(
            histories, days[0], days[-1], 1_000_000.0, symbols=["1102", "1101"],
        )
        assert [t.symbol for t in report.detailed_trades] == ["1102", "1101"]
        assert report.detailed_trades[0].quantity == 14_000

    def test_unsorted_history_is_sorted(self):
        days = _days(4)
        bars = [_make_bar("2330", d, 100.0 + i) for i, d in enumerate(days)]
        strategy = ScriptedStrategy(buys={"2330": {days[0]}})
        report = _engine(strategy).run(
            {"2330": list(reversed(bars))}, days[0], days[-1], 1_000_000.0,
        )
        assert report.detailed_trades[0].price == 101.0

    def test_idle_strategy_never_trades(self):
        days = _days(40)
        histories = {"2330": [_make_bar("2330", d, 100.0 - i * 0.5) for i, d in enumerate(days)]}
        engine = BacktestEngine(StrategyConfig(strategy="w"))
        report = engine.run(histories, days[0], days[-1], 1_000_000.0)
        assert report.detailed_trades == []
        assert report.performance["total_return"] == 0.0
