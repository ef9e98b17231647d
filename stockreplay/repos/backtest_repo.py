"""Backtest run repository — persists backtest summaries to SQLite."""

import json

from stockreplay.backtest.models import BacktestReport
from stockreplay.repos.db import get_connection


class BacktestRepo:
    """Data access layer for the ``backtest_runs`` table.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def insert_run(
        self,
        strategy: str,
        symbols: list[str],
        start_date: str,
        end_date: str,
        report: BacktestReport,
        params: dict,
    ) -> int:
        """Persist a backtest run summary.  Returns the row id."""
        perf = report.performance
        stats = report.trades
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(
                """
                INSERT INTO backtest_runs
                    (strategy, symbols, start_date, end_date,
                     initial_capital, final_capital, total_return,
                     annual_return, max_drawdown, total_trades, win_rate,
                     profit_factor, params_json)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    strategy,
                    ",".join(symbols),
                    start_date,
                    end_date,
                    perf["initial_capital"],
                    perf["final_capital"],
                    perf["total_return"],
                    perf["annual_return"],
                    perf["max_drawdown"],
                    stats["total_trades"],
                    stats["win_rate"],
                    stats["profit_factor"],
                    json.dumps(params, default=str, sort_keys=True),
                ),
            )
            conn.commit()
            return cur.lastrowid
        finally:
            conn.close()

    def get_runs(self, limit: int = 10) -> list[dict]:
        """Return recent backtest run summaries."""
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM backtest_runs ORDER BY id DESC LIMIT ?",
                (limit,),
            ).fetchall()
            runs = []
            for r in rows:
                run = dict(r)
                run["symbols"] = run["symbols"].split(",") if run["symbols"] else []
                run["params"] = json.loads(run.pop("params_json"))
                runs.append(run)
            return runs
        finally:
            conn.close()
