"""CSV import — load daily OHLCV exports into ``PriceBar`` lists."""

import logging
from pathlib import Path

import pandas as pd

from stockreplay.strategy.models import PriceBar

logger = logging.getLogger("stockreplay")

_REQUIRED_COLUMNS = ["date", "open", "high", "low", "close", "volume"]

_COLUMN_ALIASES = {
    "trade_date": "date",
    "tradedate": "date",
    "time": "date",
    "vol": "volume",
}


def clean_bars(df: pd.DataFrame) -> pd.DataFrame:
    """Normalise an OHLCV frame.

    Lower-cases column names, parses dates, drops rows with missing or
    non-positive prices, keeps the last row per date, and sorts ascending.
    """
    df = df.rename(columns=lambda c: str(c).strip().lower())
    df = df.rename(columns=_COLUMN_ALIASES)
    missing = [c for c in _REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"CSV is missing column(s): {', '.join(missing)}")

    df = df[_REQUIRED_COLUMNS].copy()
    df["date"] = pd.to_datetime(df["date"], errors="coerce").dt.date
    for col in ("open", "high", "low", "close", "volume"):
        df[col] = pd.to_numeric(df[col], errors="coerce")

    before = len(df)
    df = df.dropna(subset=["date", "open", "high", "low", "close"])
    df = df[(df[["open", "high", "low", "close"]] > 0).all(axis=1)].copy()
    df["volume"] = df["volume"].fillna(0).clip(lower=0).astype("int64")
    df = df.drop_duplicates(subset="date", keep="last").sort_values("date")
    dropped = before - len(df)
    if dropped:
        logger.info("Dropped %d invalid or duplicate rows", dropped)
    return df.reset_index(drop=True)


def load_csv(path: str | Path, symbol: str) -> list[PriceBar]:
    """Read a CSV export of *symbol*'s daily bars."""
    df = clean_bars(pd.read_csv(path))
    return [
        PriceBar(
            symbol=symbol,
            date=row.date,
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=int(row.volume),
        )
        for row in df.itertuples(index=False)
    ]
