"""StockReplay — application configuration.

Loads .env variables into a typed config object.
Validates malformed values on startup.
"""

import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv


_MARKET_DATA_VARS = [
    "MARKET_DATA_API_KEY",
]

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    db_path: str
    log_level: str
    api_port: int
    market_data_base_url: str
    market_data_api_key: str
    default_initial_capital: float
    warmup_days: int

    @property
    def log_level_value(self) -> int:
        """Numeric ``logging`` level for :attr:`log_level`."""
        return getattr(logging, self.log_level)


def _read_number(name: str, default: str, cast):
    raw = os.environ.get(name, default)
    try:
        return cast(raw)
    except ValueError:
        raise ValueError(
            f"Environment variable {name} must be a number, got {raw!r}"
        ) from None


def load_config(
    env_path: str | None = None,
    require_market_data: bool = False,
) -> Config:
    """Load configuration from environment variables.

    Raises ``ValueError`` naming the variable when a required variable is
    absent or a numeric variable cannot be parsed.  The market-data API key
    is only required when *require_market_data* is set.
    """
    load_dotenv(dotenv_path=env_path)

    if require_market_data:
        missing = [v for v in _MARKET_DATA_VARS if not os.environ.get(v)]
        if missing:
            raise ValueError(
                f"Missing required environment variable(s): {', '.join(missing)}"
            )

    log_level = os.environ.get("LOG_LEVEL", "INFO").upper()
    if log_level not in _LOG_LEVELS:
        raise ValueError(f"Environment variable LOG_LEVEL is invalid: {log_level!r}")

    return Config(
        db_path=os.environ.get("DB_PATH", "data/stockreplay.db"),
        log_level=log_level,
        api_port=_read_number("API_PORT", "8080", int),
        market_data_base_url=os.environ.get(
            "MARKET_DATA_BASE_URL", "https://api.fugle.tw/marketdata/v1.0",
        ),
        market_data_api_key=os.environ.get("MARKET_DATA_API_KEY", ""),
        default_initial_capital=_read_number(
            "DEFAULT_INITIAL_CAPITAL", "1000000", float,
        ),
        warmup_days=_read_number("WARMUP_DAYS", "120", int),
    )
