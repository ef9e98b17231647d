"""StockReplay — application entry point.

Boots the FastAPI internal server and provides the CLI entry point for
serving the API or running a one-off backtest.
"""

import logging

from fastapi import FastAPI

from stockreplay.api.routers import router

app = FastAPI(title="StockReplay Internal API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("stockreplay")


@app.get("/health")
async def health():
    """Liveness probe."""
    return {"status": "ok"}


# ── CLI ──────────────────────────────────────────────────────────────────


def _build_source(config, source: str):
    """Return the price-history source selected on the command line."""
    if source == "api":
        from stockreplay.data.market_client import MarketDataClient

        return MarketDataClient(config)

    from stockreplay.repos.price_repo import PriceRepo

    return PriceRepo(config.db_path)


def _run_cli() -> None:
    """Parse CLI arguments and dispatch to the appropriate mode."""
    import argparse
    import asyncio
    from datetime import date

    from stockreplay.backtest.service import BacktestService
    from stockreplay.config import load_config
    from stockreplay.models.strategy_config import StrategyConfig
    from stockreplay.repos.backtest_repo import BacktestRepo
    from stockreplay.repos.db import init_db

    parser = argparse.ArgumentParser(description="StockReplay backtester")
    parser.add_argument(
        "--mode",
        choices=["serve", "backtest"],
        default="serve",
        help="Run the API server or a single backtest (default: serve)",
    )
    parser.add_argument(
        "--source",
        choices=["db", "api"],
        default="db",
        help="Price history source (default: db)",
    )
    parser.add_argument("--stocks", nargs="+", help="Symbols to backtest, in processing order")
    parser.add_argument("--start", help="Backtest start date (YYYY-MM-DD)")
    parser.add_argument("--end", help="Backtest end date (YYYY-MM-DD)")
    parser.add_argument("--capital", type=float, help="Initial capital")
    parser.add_argument(
        "--strategy",
        choices=["rsi_macd", "w"],
        default="rsi_macd",
        help="Strategy kind (default: rsi_macd)",
    )
    args = parser.parse_args()

    config = load_config(require_market_data=args.source == "api")
    logging.basicConfig(
        level=config.log_level_value,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    init_db(config.db_path)

    backtest_repo = BacktestRepo(config.db_path)
    service = BacktestService(
        _build_source(config, args.source),
        backtest_repo=backtest_repo,
        warmup_days=config.warmup_days,
    )

    if args.mode == "backtest":
        if not args.stocks or not args.start or not args.end:
            parser.error("--stocks, --start and --end are required in backtest mode")
        report = asyncio.run(
            service.run(
                args.stocks,
                date.fromisoformat(args.start),
                date.fromisoformat(args.end),
                args.capital or config.default_initial_capital,
                StrategyConfig(strategy=args.strategy),
            )
        )
        perf = report.performance
        stats = report.trades
        logger.info(
            "Backtest complete: %d closed trades, profit %.0f, return %.2f%%, "
            "max drawdown %.2f%%, win rate %.1f%%",
            stats["total_trades"],
            perf["total_profit"],
            perf["total_return"] * 100,
            perf["max_drawdown"] * 100,
            stats["win_rate"] * 100,
        )
        for row in report.stock_performance:
            logger.info(
                "  %s: %d trades, win rate %.1f%%, profit %.0f",
                row["stock"], row["trades"], row["win_rate"] * 100, row["total_profit"],
            )
        if report.excluded_symbols:
            logger.warning("Excluded symbols: %s", ", ".join(report.excluded_symbols))
        return

    import uvicorn

    from stockreplay.api.routers import configure_routers

    configure_routers(service=service, backtest_repo=backtest_repo)
    logger.info("Starting StockReplay API on port %d", config.api_port)
    uvicorn.run(app, host="0.0.0.0", port=config.api_port, log_level="info")


if __name__ == "__main__":
    _run_cli()
