"""Tests for stockreplay.backtest.stats and the report payload."""

from datetime import date, timedelta

import pytest

from stockreplay.backtest.models import BacktestReport, EquityPoint, PendingOrder, Trade
from stockreplay.backtest.stats import (
    PROFIT_FACTOR_CAP,
    _sharpe,
    build_report,
    calculate_performance,
    calculate_stock_performance,
    calculate_trade_stats,
    profit_factor,
)


D0 = date(2024, 1, 2)


# ── Helpers ──────────────────────────────────────────────────────────────


def _make_curve(values, start=D0, step=1):
    return [
        EquityPoint(date=start + timedelta(days=i * step), value=v, cash=v, positions=0.0)
        for i, v in enumerate(values)
    ]


def _make_sell(symbol, profit, invest=100_000.0, held=5):
    return Trade(
        symbol=symbol,
        action="sell",
        date=D0 + timedelta(days=held),
        price=100.0,
        quantity=1000,
        amount=invest + profit,
        signal_date=D0 + timedelta(days=held - 1),
        execution_date=D0 + timedelta(days=held),
        reason="test",
        entry_price=100.0,
        entry_date=D0,
        holding_days=held,
        profit=profit,
        profit_rate=profit / invest,
    )


def _make_buy(symbol):
    return Trade(
        symbol=symbol,
        action="buy",
        date=D0,
        price=100.0,
        quantity=1000,
        amount=100_142.5,
        signal_date=D0 - timedelta(days=1),
        execution_date=D0,
        reason="test",
        confidence=0.8,
    )


# ── Performance ──────────────────────────────────────────────────────────


class TestPerformance:

    def test_max_drawdown_from_peak(self):
        perf = calculate_performance(_make_curve([100.0, 120.0, 90.0, 110.0]), 100.0)
        assert perf["max_drawdown"] == pytest.approx(0.25)
        assert perf["total_return"] == pytest.approx(0.10)
        assert perf["total_profit"] == pytest.approx(10.0)
        assert perf["final_capital"] == 110.0
        assert perf["trading_days"] == 4

    def test_annualised_return(self):
        curve = _make_curve([1_000_000.0, 1_100_000.0], step=366)
        perf = calculate_performance(curve, 1_000_000.0)
        expected = 1.1 ** (365.25 / 366) - 1
        assert perf["annual_return"] == pytest.approx(round(expected, 4))

    def test_single_day_curve_has_no_annual_return(self):
        perf = calculate_performance(_make_curve([1_050_000.0]), 1_000_000.0)
        assert perf["annual_return"] == 0.0
        assert perf["total_return"] == pytest.approx(0.05)

    def test_empty_curve(self):
        perf = calculate_performance([], 1_000_000.0)
        assert perf["final_capital"] == 1_000_000.0
        assert perf["total_return"] == 0.0
        assert perf["max_drawdown"] == 0.0
        assert perf["trading_days"] == 0


class TestSharpe:

    def test_zero_variance(self):
        assert _sharpe([0.01, 0.01, 0.01]) == 0.0

    def test_too_few_returns(self):
        assert _sharpe([0.01]) == 0.0

    def test_positive_mean_positive_ratio(self):
        assert _sharpe([0.01, 0.02, -0.005, 0.015]) > 0


# ── Trade statistics ─────────────────────────────────────────────────────


class TestTradeStats:

    def test_no_closed_trades(self):
        stats = calculate_trade_stats([_make_buy("2330")])
        assert stats["total_trades"] == 0
        assert stats["win_rate"] == 0.0
        assert stats["profit_factor"] == 0.0

    def test_wins_and_losses(self):
        trades = [
            _make_buy("2330"),
            _make_sell("2330", 10_000.0, held=4),
            _make_sell("2330", -5_000.0, held=6),
            _make_sell("2317", 0.0, held=8),
        ]
        stats = calculate_trade_stats(trades)
        assert stats["total_trades"] == 3
        assert stats["winning_trades"] == 1
        # Break-even counts as neither a win nor a loss
        assert stats["losing_trades"] == 1
        assert stats["win_rate"] == pytest.approx(round(1 / 3, 4))
        assert stats["avg_win"] == pytest.approx(0.10)
        assert stats["avg_loss"] == pytest.approx(-0.05)
        assert stats["max_win"] == pytest.approx(0.10)
        assert stats["max_loss"] == pytest.approx(-0.05)
        assert stats["avg_holding_days"] == pytest.approx(6.0)
        assert stats["profit_factor"] == pytest.approx(2.0)


class TestProfitFactor:

    def test_only_winners_reports_cap(self):
        trades = [_make_sell("2330", 1_000.0), _make_sell("2330", 2_000.0)]
        assert profit_factor(trades) == PROFIT_FACTOR_CAP

    def test_no_profit_no_loss(self):
        assert profit_factor([_make_sell("2330", 0.0)]) == 0.0
        assert profit_factor([]) == 0.0

    def test_ratio(self):
        trades = [_make_sell("2330", 3_000.0), _make_sell("2330", -1_000.0)]
        assert profit_factor(trades) == pytest.approx(3.0)

    def test_break_even_trade_is_not_a_loss(self):
        trades = [_make_sell("2330", 2_000.0), _make_sell("2317", 0.0)]
        assert profit_factor(trades) == PROFIT_FACTOR_CAP
        stats = calculate_trade_stats(trades)
        assert stats["losing_trades"] == 0
        assert stats["profit_factor"] == PROFIT_FACTOR_CAP
        assert stats["max_loss"] == 0.0


class TestStockPerformance:

    def test_every_symbol_gets_a_row(self):
        trades = [
            _make_buy("2330"),
            _make_sell("2330", 4_000.0),
            _make_sell("2330", -1_000.0),
        ]
        rows = calculate_stock_performance(trades, ["2330", "2317"])
        assert rows == [
            {"stock": "2330", "trades": 2, "win_rate": 0.5, "total_profit": 3_000.0},
            {"stock": "2317", "trades": 0, "win_rate": 0.0, "total_profit": 0.0},
        ]


# ── Report payload ───────────────────────────────────────────────────────


class TestReportPayload:

    def _report(self):
        report = build_report(
            trades=[_make_buy("2330"), _make_sell("2330", 1_000.0)],
            equity_curve=_make_curve([1_000_000.0, 1_001_000.0]),
            initial_capital=1_000_000.0,
            symbols=["2330"],
            unresolved_orders=[
                PendingOrder("2317", "buy", D0, None, "late signal", 0.7),
            ],
        )
        report.excluded_symbols = ["9999"]
        return report

    def test_build_report(self):
        report = self._report()
        assert isinstance(report, BacktestReport)
        assert len(report.detailed_trades) == 2
        assert report.trades["total_trades"] == 1
        assert report.performance["total_profit"] == pytest.approx(1_000.0)

    def test_to_dict_uses_camel_case(self):
        payload = self._report().to_dict()
        assert set(payload) == {
            "performance", "trades", "detailedTrades", "equityCurve",
            "stockPerformance", "excludedSymbols", "unresolvedOrders",
            "openPositions",
        }
        assert "totalReturn" in payload["performance"]
        assert "maxDrawdown" in payload["performance"]
        assert "winRate" in payload["trades"]
        assert "profitFactor" in payload["trades"]
        assert payload["stockPerformance"][0]["totalProfit"] == 1_000.0

        sell = payload["detailedTrades"][1]
        assert sell["signalDate"] == (D0 + timedelta(days=4)).isoformat()
        assert sell["profitRate"] == pytest.approx(0.01)

        assert payload["equityCurve"][0] == {
            "date": D0.isoformat(), "value": 1_000_000.0,
            "cash": 1_000_000.0, "positions": 0.0,
        }
        assert payload["excludedSymbols"] == ["9999"]
        assert payload["unresolvedOrders"] == [{
            "symbol": "2317", "direction": "buy", "signalDate": D0.isoformat(),
            "targetDate": None, "reason": "late signal",
        }]
