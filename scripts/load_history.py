"""One-shot script to load daily price history into the local database.

Usage (from the project root):
    python -m scripts.load_history --symbol 2330 --start 2022-01-01 --end 2024-12-31
    python -m scripts.load_history --symbol 2330 --csv exports/2330.csv
"""

import argparse
import asyncio
import logging
import sys
from datetime import date
from pathlib import Path

# Ensure project root is on path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from stockreplay.config import load_config
from stockreplay.data.csv_loader import load_csv
from stockreplay.data.market_client import MarketDataClient
from stockreplay.repos.db import init_db
from stockreplay.repos.price_repo import PriceRepo


async def _download(symbol: str, start: str, end: str) -> list:
    config = load_config(require_market_data=True)
    client = MarketDataClient(config)
    return await client.fetch_history(
        symbol, date.fromisoformat(start), date.fromisoformat(end),
    )


def _main(args: argparse.Namespace) -> None:
    config = load_config()
    init_db(config.db_path)
    if args.csv:
        bars = load_csv(args.csv, args.symbol)
    else:
        if not args.start or not args.end:
            raise SystemExit("--start and --end are required without --csv")
        bars = asyncio.run(_download(args.symbol, args.start, args.end))
    count = PriceRepo(config.db_path).upsert_bars(bars)
    logging.getLogger("stockreplay").info(
        "Stored %d bars for %s in %s", count, args.symbol, config.db_path,
    )


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Load daily price history")
    parser.add_argument("--symbol", required=True)
    parser.add_argument("--start")
    parser.add_argument("--end")
    parser.add_argument("--csv", help="Import from a CSV export instead of the API")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    _main(args)
