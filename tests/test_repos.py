"""Tests for stockreplay.repos — SQLite price storage and run history."""

import asyncio
import threading
from datetime import date, timedelta

import pytest

from stockreplay.backtest.stats import build_report
from stockreplay.backtest.models import EquityPoint
from stockreplay.repos.backtest_repo import BacktestRepo
from stockreplay.repos.db import get_connection, init_db
from stockreplay.repos.price_repo import PriceRepo
from stockreplay.strategy.models import PriceBar


D0 = date(2024, 1, 2)


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "nested" / "test.db")
    init_db(path)
    return path


def _make_bar(symbol, day, close, volume=1_000_000):
    return PriceBar(symbol, day, close, close + 1, close - 1, close, volume)


# ── Schema ───────────────────────────────────────────────────────────────


class TestInitDb:

    def test_creates_tables(self, db_path):
        conn = get_connection(db_path)
        try:
            names = {
                r["name"]
                for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
            }
        finally:
            conn.close()
        assert {"daily_prices", "backtest_runs"} <= names

    def test_idempotent(self, db_path):
        PriceRepo(db_path).upsert_bars([_make_bar("2330", D0, 100.0)])
        init_db(db_path)
        assert len(PriceRepo(db_path).get_history("2330")) == 1


# ── Prices ───────────────────────────────────────────────────────────────


class TestPriceRepo:

    def test_upsert_and_read_ascending(self, db_path):
        repo = PriceRepo(db_path)
        bars = [_make_bar("2330", D0 + timedelta(days=i), 100.0 + i) for i in (2, 0, 1)]
        assert repo.upsert_bars(bars) == 3

        history = repo.get_history("2330")
        assert [b.date for b in history] == [D0, D0 + timedelta(days=1), D0 + timedelta(days=2)]
        assert history[0] == _make_bar("2330", D0, 100.0)

    def test_upsert_replaces_same_day(self, db_path):
        repo = PriceRepo(db_path)
        repo.upsert_bars([_make_bar("2330", D0, 100.0)])
        repo.upsert_bars([_make_bar("2330", D0, 105.0)])
        (bar,) = repo.get_history("2330")
        assert bar.close == 105.0

    def test_date_filter(self, db_path):
        repo = PriceRepo(db_path)
        repo.upsert_bars([_make_bar("2330", D0 + timedelta(days=i), 100.0) for i in range(10)])
        history = repo.get_history("2330", D0 + timedelta(days=3), D0 + timedelta(days=5))
        assert len(history) == 3

    def test_non_positive_rows_skipped(self, db_path):
        repo = PriceRepo(db_path)
        repo.upsert_bars([
            _make_bar("2330", D0, 100.0),
            PriceBar("2330", D0 + timedelta(days=1), 0.0, 0.0, 0.0, 0.0, 0),
        ])
        assert len(repo.get_history("2330")) == 1

    def test_fetch_history_adapter(self, db_path):
        repo = PriceRepo(db_path)
        repo.upsert_bars([_make_bar("2317", D0, 100.0)])
        bars = asyncio.run(repo.fetch_history("2317", D0, D0))
        assert len(bars) == 1

    @pytest.mark.asyncio
    async def test_fetch_history_reads_off_the_event_loop(self, db_path, monkeypatch):
        repo = PriceRepo(db_path)
        repo.upsert_bars([_make_bar("2317", D0, 100.0)])
        read_threads = []
        original = PriceRepo.get_history

        def _recording_get_history(self, *args, **kwargs):
            read_threads.append(threading.get_ident())
            return original(self, *args, **kwargs)

        monkeypatch.setattr(PriceRepo, "get_history", _recording_get_history)
        bars = await repo.fetch_history("2317", D0, D0)

        assert len(bars) == 1
        assert read_threads and read_threads[0] != threading.get_ident()

    def test_list_symbols(self, db_path):
        repo = PriceRepo(db_path)
        repo.upsert_bars([_make_bar("2330", D0, 100.0), _make_bar("1101", D0, 40.0)])
        assert repo.list_symbols() == ["1101", "2330"]

    def test_empty_upsert(self, db_path):
        assert PriceRepo(db_path).upsert_bars([]) == 0


# ── Run history ──────────────────────────────────────────────────────────


class TestBacktestRepo:

    def _report(self):
        curve = [
            EquityPoint(D0, 1_000_000.0, 1_000_000.0, 0.0),
            EquityPoint(D0 + timedelta(days=1), 1_010_000.0, 1_010_000.0, 0.0),
        ]
        return build_report([], curve, 1_000_000.0, ["2330"])

    def test_insert_and_get_runs(self, db_path):
        repo = BacktestRepo(db_path)
        run_id = repo.insert_run(
            strategy="rsi_macd",
            symbols=["2330", "2317"],
            start_date="2024-01-02",
            end_date="2024-01-03",
            report=self._report(),
            params={"rsi_period": 14, "strategy": "rsi_macd"},
        )
        assert run_id == 1

        (run,) = repo.get_runs()
        assert run["strategy"] == "rsi_macd"
        assert run["symbols"] == ["2330", "2317"]
        assert run["final_capital"] == pytest.approx(1_010_000.0)
        assert run["total_return"] == pytest.approx(0.01)
        assert run["params"] == {"rsi_period": 14, "strategy": "rsi_macd"}
        assert run["created_at"]

    def test_get_runs_newest_first_with_limit(self, db_path):
        repo = BacktestRepo(db_path)
        for strategy in ("rsi_macd", "w", "rsi_macd"):
            repo.insert_run(strategy, ["2330"], "2024-01-02", "2024-01-03", self._report(), {})
        runs = repo.get_runs(limit=2)
        assert [r["id"] for r in runs] == [3, 2]
