"""Backtest statistics — pure functions over the trade ledger and equity curve."""

import math
from typing import Iterable, Optional

from stockreplay.backtest.models import (
    BacktestReport,
    EquityPoint,
    PendingOrder,
    Position,
    Trade,
)
from stockreplay.risk.drawdown import DrawdownTracker


# Reported when there are winning trades but no losing ones.
PROFIT_FACTOR_CAP = 999.0


def calculate_performance(
    equity_curve: list[EquityPoint],
    initial_capital: float,
) -> dict:
    """Capital figures, returns, drawdown, and Sharpe ratio.

    Returns:
        Dict with ``initial_capital``, ``final_capital``, ``total_return``,
        ``annual_return``, ``total_profit``, ``max_drawdown``,
        ``sharpe_ratio``, and ``trading_days``.
    """
    final = equity_curve[-1].value if equity_curve else initial_capital
    total_return = (final - initial_capital) / initial_capital

    annual_return = 0.0
    if len(equity_curve) >= 2:
        days = (equity_curve[-1].date - equity_curve[0].date).days
        if days > 0 and final > 0:
            annual_return = (final / initial_capital) ** (365.25 / days) - 1

    values = [p.value for p in equity_curve]

    return {
        "initial_capital": round(initial_capital, 2),
        "final_capital": round(final, 2),
        "total_return": round(total_return, 4),
        "annual_return": round(annual_return, 4),
        "total_profit": round(final - initial_capital, 2),
        "max_drawdown": round(_max_drawdown(initial_capital, values), 4),
        "sharpe_ratio": round(_sharpe(_daily_returns(initial_capital, values)), 4),
        "trading_days": len(equity_curve),
    }


def calculate_trade_stats(trades: list[Trade]) -> dict:
    """Summary statistics over closed (``"sell"``) trades.

    Wins and losses are averaged by profit rate.  A trade with zero or
    negative profit counts as a loss.
    """
    closed = [t for t in trades if t.action == "sell"]
    if not closed:
        return {
            "total_trades": 0,
            "winning_trades": 0,
            "losing_trades": 0,
            "win_rate": 0.0,
            "avg_win": 0.0,
            "avg_loss": 0.0,
            "max_win": 0.0,
            "max_loss": 0.0,
            "avg_holding_days": 0.0,
            "profit_factor": 0.0,
        }

    winners = [t for t in closed if t.profit > 0]
    losers = [t for t in closed if t.profit < 0]
    win_rates = [t.profit_rate for t in winners]
    loss_rates = [t.profit_rate for t in losers]

    return {
        "total_trades": len(closed),
        "winning_trades": len(winners),
        "losing_trades": len(losers),
        "win_rate": round(len(winners) / len(closed), 4),
        "avg_win": round(_mean(win_rates), 4),
        "avg_loss": round(_mean(loss_rates), 4),
        "max_win": round(max(win_rates), 4) if win_rates else 0.0,
        "max_loss": round(min(loss_rates), 4) if loss_rates else 0.0,
        "avg_holding_days": round(_mean([t.holding_days or 0 for t in closed]), 2),
        "profit_factor": round(profit_factor(closed), 4),
    }


def profit_factor(closed: list[Trade]) -> float:
    """Gross profit over gross loss.

    ``PROFIT_FACTOR_CAP`` when there is profit but no losing trade, ``0.0``
    when there is neither.  Break-even trades count on neither side.
    """
    gross_profit = sum(t.profit for t in closed if t.profit > 0)
    gross_loss = -sum(t.profit for t in closed if t.profit < 0)
    if gross_loss > 0:
        return gross_profit / gross_loss
    if gross_profit > 0:
        return PROFIT_FACTOR_CAP
    return 0.0


def calculate_stock_performance(
    trades: list[Trade],
    symbols: Iterable[str],
) -> list[dict]:
    """Per-instrument closed-trade count, win rate, and total profit.

    Every simulated symbol gets a row, including ones that never traded.
    """
    rows = []
    for symbol in symbols:
        closed = [t for t in trades if t.symbol == symbol and t.action == "sell"]
        wins = sum(1 for t in closed if t.profit > 0)
        rows.append({
            "stock": symbol,
            "trades": len(closed),
            "win_rate": round(wins / len(closed), 4) if closed else 0.0,
            "total_profit": round(sum(t.profit for t in closed), 2),
        })
    return rows


def build_report(
    trades: list[Trade],
    equity_curve: list[EquityPoint],
    initial_capital: float,
    symbols: Iterable[str],
    excluded_symbols: Optional[list[str]] = None,
    unresolved_orders: Optional[list[PendingOrder]] = None,
    open_positions: Optional[list[Position]] = None,
) -> BacktestReport:
    """Assemble the final :class:`BacktestReport`."""
    return BacktestReport(
        performance=calculate_performance(equity_curve, initial_capital),
        trades=calculate_trade_stats(trades),
        detailed_trades=list(trades),
        equity_curve=list(equity_curve),
        stock_performance=calculate_stock_performance(trades, symbols),
        excluded_symbols=list(excluded_symbols or []),
        unresolved_orders=list(unresolved_orders or []),
        open_positions=list(open_positions or []),
    )


# ── Helpers ──────────────────────────────────────────────────────────────


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _daily_returns(initial_capital: float, values: list[float]) -> list[float]:
    returns = []
    previous = initial_capital
    for value in values:
        if previous > 0:
            returns.append(value / previous - 1)
        previous = value
    return returns


def _sharpe(returns: list[float]) -> float:
    """Annualised Sharpe ratio from a daily return series.

    Uses sample standard deviation (n − 1).  Returns 0.0 when the series
    has fewer than 2 observations or zero variance.
    """
    n = len(returns)
    if n < 2:
        return 0.0
    mean = sum(returns) / n
    variance = sum((r - mean) ** 2 for r in returns) / (n - 1)
    std = math.sqrt(variance)
    if std == 0:
        return 0.0
    return (mean / std) * math.sqrt(252)


def _max_drawdown(initial_capital: float, values: list[float]) -> float:
    """Largest peak-to-trough fraction walking the equity curve forward."""
    tracker = DrawdownTracker(initial_capital)
    for value in values:
        tracker.update(value)
    return tracker.max_drawdown
