"""Internal API routers — /backtest endpoints.

No business logic, no DB access. Delegates to the backtest service and repo.
"""

import logging
import math
from dataclasses import asdict
from datetime import date
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from stockreplay.errors import InsufficientData, InvalidConfiguration
from stockreplay.models.strategy_config import StrategyConfig

logger = logging.getLogger("stockreplay")
router = APIRouter()

# ── Shared state (set during app startup) ────────────────────────────────

_service = None  # Set via configure_routers()
_backtest_repo = None  # Set via configure_routers()


def configure_routers(service=None, backtest_repo=None) -> None:
    """Inject dependencies from the application startup.

    Args:
        service: A ``BacktestService`` instance (or duck-type for tests).
        backtest_repo: A ``BacktestRepo`` instance for run history.
    """
    global _service, _backtest_repo  # noqa: PLW0603
    _service = service
    _backtest_repo = backtest_repo


def _parse_request(body: dict) -> tuple[list[str], date, date, float, StrategyConfig]:
    """Validate a run request.  Raises ``InvalidConfiguration``."""
    stocks = body.get("stocks")
    if (
        not isinstance(stocks, list)
        or not stocks
        or not all(isinstance(s, str) and s.strip() for s in stocks)
    ):
        raise InvalidConfiguration("stocks must be a non-empty list of symbols")

    try:
        start = date.fromisoformat(str(body.get("startDate"))[:10])
        end = date.fromisoformat(str(body.get("endDate"))[:10])
    except ValueError:
        raise InvalidConfiguration(
            "startDate and endDate must be ISO dates (YYYY-MM-DD)"
        ) from None
    if end < start:
        raise InvalidConfiguration("endDate must not be before startDate")

    capital = body.get("initialCapital")
    if (
        isinstance(capital, bool)
        or not isinstance(capital, (int, float))
        or not math.isfinite(capital)
        or capital <= 0
    ):
        raise InvalidConfiguration("initialCapital must be a positive number")

    config = StrategyConfig.from_dict(body.get("strategyParams"))
    return [s.strip() for s in stocks], start, end, float(capital), config


@router.post("/backtest/run")
async def run_backtest(body: dict):
    """Run a backtest and return the full report."""
    if _service is None:
        raise HTTPException(status_code=503, detail="Backtest service not configured")

    try:
        stocks, start, end, capital, config = _parse_request(body)
    except InvalidConfiguration as exc:
        raise HTTPException(
            status_code=400,
            detail={"statusCode": 400, "message": "Invalid backtest request", "error": str(exc)},
        ) from None

    try:
        report = await _service.run(stocks, start, end, capital, config)
    except InsufficientData as exc:
        logger.warning("Backtest rejected: %s", exc)
        raise HTTPException(
            status_code=422,
            detail={"statusCode": 422, "message": "Insufficient price data", "error": str(exc)},
        ) from None

    return {
        "statusCode": 200,
        "message": "Backtest completed",
        "data": report.to_dict(),
    }


@router.get("/backtest/runs")
async def get_runs(limit: int = Query(default=10, ge=1, le=100)):
    """Return recent backtest run summaries."""
    if _backtest_repo is None:
        return {"runs": []}
    return {"runs": _backtest_repo.get_runs(limit=limit)}


@router.get("/backtest/defaults")
async def get_defaults(strategy: Optional[str] = None):
    """Return the default strategy parameters."""
    try:
        config = StrategyConfig.from_dict({"strategy": strategy} if strategy else None)
    except InvalidConfiguration as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from None
    params = asdict(config)
    params["strategy"] = config.strategy.value
    return params
