"""Backtest data models — positions, orders, trades, and the final report."""

from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Optional


def holding_days(entry_date: date, current_date: date) -> int:
    """Calendar days between entry and *current_date*."""
    return (current_date - entry_date).days


@dataclass
class Position:
    """An open long position in one instrument."""

    symbol: str
    entry_date: date
    entry_price: float
    quantity: int  # shares, multiple of LOT_SIZE
    invest_amount: float  # cash debited, fees included
    confidence: Optional[float]
    signal_date: date
    high_since_entry: float
    trailing_stop_price: Optional[float] = None
    atr_stop_price: Optional[float] = None
    entry_atr: Optional[float] = None


@dataclass(frozen=True)
class PendingOrder:
    """A buy or sell intent waiting for its execution day.

    ``target_date`` is ``None`` when no trading day was found within the
    search horizon.  Sell orders carry a snapshot of the position they close.
    """

    symbol: str
    direction: str  # "buy" or "sell"
    signal_date: date
    target_date: Optional[date]
    reason: str
    confidence: Optional[float] = None
    position_snapshot: Optional[Position] = None


@dataclass(frozen=True)
class Trade:
    """An executed buy or sell."""

    symbol: str
    action: str  # "buy" or "sell"
    date: date
    price: float
    quantity: int
    amount: float
    signal_date: date
    execution_date: date
    reason: str
    confidence: Optional[float] = None
    entry_price: Optional[float] = None
    entry_date: Optional[date] = None
    holding_days: Optional[int] = None
    profit: Optional[float] = None
    profit_rate: Optional[float] = None


@dataclass(frozen=True)
class EquityPoint:
    """Mark-to-market account snapshot at the end of a trading day."""

    date: date
    value: float
    cash: float
    positions: float


@dataclass
class BacktestReport:
    """Everything a finished run reports back to its caller."""

    performance: dict
    trades: dict
    detailed_trades: list[Trade] = field(default_factory=list)
    equity_curve: list[EquityPoint] = field(default_factory=list)
    stock_performance: list[dict] = field(default_factory=list)
    excluded_symbols: list[str] = field(default_factory=list)
    unresolved_orders: list[PendingOrder] = field(default_factory=list)
    open_positions: list[Position] = field(default_factory=list)

    def to_dict(self) -> dict:
        """JSON-ready camelCase representation used by the HTTP API."""
        return {
            "performance": {_camel(k): v for k, v in self.performance.items()},
            "trades": {_camel(k): v for k, v in self.trades.items()},
            "detailedTrades": [_jsonable(asdict(t)) for t in self.detailed_trades],
            "equityCurve": [
                {
                    "date": p.date.isoformat(),
                    "value": round(p.value, 2),
                    "cash": round(p.cash, 2),
                    "positions": round(p.positions, 2),
                }
                for p in self.equity_curve
            ],
            "stockPerformance": [
                {_camel(k): v for k, v in s.items()} for s in self.stock_performance
            ],
            "excludedSymbols": list(self.excluded_symbols),
            "unresolvedOrders": [
                _jsonable(
                    {
                        "symbol": o.symbol,
                        "direction": o.direction,
                        "signal_date": o.signal_date,
                        "target_date": o.target_date,
                        "reason": o.reason,
                    }
                )
                for o in self.unresolved_orders
            ],
            "openPositions": [_jsonable(asdict(p)) for p in self.open_positions],
        }


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _jsonable(record: dict) -> dict:
    out = {}
    for key, value in record.items():
        if isinstance(value, date):
            value = value.isoformat()
        out[_camel(key)] = value
    return out
