"""Strategy configuration dataclass.

Holds every tunable option of a backtest strategy run.  Built from
request payloads with :meth:`StrategyConfig.from_dict`.
"""

import math
from dataclasses import dataclass, fields
from enum import Enum

from stockreplay.errors import InvalidConfiguration


class StrategyKind(str, Enum):
    """Closed set of strategy variants a run can select."""

    RSI_MACD = "rsi_macd"
    W = "w"


@dataclass(frozen=True)
class StrategyConfig:
    """Immutable configuration for one backtest run.

    Fractions are expressed as decimals (``0.06`` = 6 %).  ``volume_limit``
    is the minimum daily volume in lots (1 lot = 1000 shares).
    """

    strategy: StrategyKind = StrategyKind.RSI_MACD
    rsi_period: int = 14
    rsi_oversold: float = 35.0
    macd_fast: int = 12
    macd_slow: int = 26
    macd_signal: int = 9
    volume_threshold: float = 1.5
    volume_limit: float = 1000.0
    max_position_size: float = 0.25
    stop_loss: float = 0.06
    stop_profit: float = 0.12
    confidence_threshold: float = 0.6
    enable_trailing_stop: bool = True
    trailing_stop_percent: float = 0.05
    trailing_activate_percent: float = 0.03
    enable_atr_stop: bool = True
    atr_period: int = 14
    atr_multiplier: float = 2.0
    min_holding_days: int = 5
    enable_price_momentum: bool = True
    price_momentum_period: int = 5
    price_momentum_threshold: float = 0.03
    enable_ma60: bool = False
    max_total_exposure: float = 0.75
    use_python_logic: bool = True  # accepted for compatibility, no effect
    hierarchical_decision: bool = True
    dynamic_position_size: bool = True

    def __post_init__(self) -> None:
        if not isinstance(self.strategy, StrategyKind):
            try:
                object.__setattr__(self, "strategy", StrategyKind(self.strategy))
            except ValueError:
                raise InvalidConfiguration(
                    f"Unknown strategy '{self.strategy}'. "
                    f"Available: {', '.join(k.value for k in StrategyKind)}"
                ) from None

        for name in _PERIOD_FIELDS:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise InvalidConfiguration(
                    f"{name} must be a positive integer, got {value!r}"
                )
        if self.min_holding_days < 0:
            raise InvalidConfiguration(
                f"min_holding_days must be >= 0, got {self.min_holding_days}"
            )
        if self.macd_fast >= self.macd_slow:
            raise InvalidConfiguration(
                f"macd_fast ({self.macd_fast}) must be smaller than "
                f"macd_slow ({self.macd_slow})"
            )
        for name in _FRACTION_FIELDS:
            value = getattr(self, name)
            if not 0 < value <= 1:
                raise InvalidConfiguration(f"{name} must be in (0, 1], got {value}")
        if not 0 < self.rsi_oversold < 100:
            raise InvalidConfiguration(
                f"rsi_oversold must be in (0, 100), got {self.rsi_oversold}"
            )
        for name in _NUMERIC_FIELDS:
            value = getattr(self, name)
            if not math.isfinite(value):
                raise InvalidConfiguration(f"{name} must be a finite number, got {value}")
        if self.volume_threshold <= 0 or self.atr_multiplier <= 0:
            raise InvalidConfiguration(
                "volume_threshold and atr_multiplier must be positive"
            )
        if self.price_momentum_threshold < 0:
            raise InvalidConfiguration(
                f"price_momentum_threshold must be >= 0, got {self.price_momentum_threshold}"
            )
        if self.volume_limit < 0:
            raise InvalidConfiguration(
                f"volume_limit must be >= 0, got {self.volume_limit}"
            )
        if not 0 <= self.confidence_threshold <= 1:
            raise InvalidConfiguration(
                f"confidence_threshold must be in [0, 1], got {self.confidence_threshold}"
            )

    @classmethod
    def from_dict(cls, data: dict | None) -> "StrategyConfig":
        """Build a config from a request payload.

        Accepts snake_case or camelCase keys (``rsiPeriod``,
        ``enableATRStop`` ...).  Omitted options take their defaults.

        Raises ``InvalidConfiguration`` on unknown keys, wrong value types,
        or out-of-range values.
        """
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise InvalidConfiguration("strategy parameters must be an object")

        known = {f.name: f for f in fields(cls)}
        kwargs: dict = {}
        unknown: list[str] = []
        for key, value in data.items():
            name = _CAMEL_ALIASES.get(key, key)
            if name not in known:
                unknown.append(key)
                continue
            kwargs[name] = _coerce(name, known[name].type, value)
        if unknown:
            raise InvalidConfiguration(
                f"Unknown strategy parameter(s): {', '.join(sorted(unknown))}"
            )
        return cls(**kwargs)


_PERIOD_FIELDS = (
    "rsi_period", "macd_fast", "macd_slow", "macd_signal",
    "atr_period", "price_momentum_period",
)

_FRACTION_FIELDS = (
    "max_position_size", "stop_loss", "stop_profit",
    "trailing_stop_percent", "trailing_activate_percent",
    "max_total_exposure",
)

_NUMERIC_FIELDS = (
    "rsi_oversold", "volume_threshold", "volume_limit", "max_position_size",
    "stop_loss", "stop_profit", "confidence_threshold",
    "trailing_stop_percent", "trailing_activate_percent", "atr_multiplier",
    "price_momentum_threshold", "max_total_exposure",
)

_CAMEL_ALIASES: dict[str, str] = {
    "rsiPeriod": "rsi_period",
    "rsiOversold": "rsi_oversold",
    "macdFast": "macd_fast",
    "macdSlow": "macd_slow",
    "macdSignal": "macd_signal",
    "volumeThreshold": "volume_threshold",
    "volumeLimit": "volume_limit",
    "maxPositionSize": "max_position_size",
    "stopLoss": "stop_loss",
    "stopProfit": "stop_profit",
    "confidenceThreshold": "confidence_threshold",
    "enableTrailingStop": "enable_trailing_stop",
    "trailingStopPercent": "trailing_stop_percent",
    "trailingActivatePercent": "trailing_activate_percent",
    "enableATRStop": "enable_atr_stop",
    "atrPeriod": "atr_period",
    "atrMultiplier": "atr_multiplier",
    "minHoldingDays": "min_holding_days",
    "enablePriceMomentum": "enable_price_momentum",
    "priceMomentumPeriod": "price_momentum_period",
    "priceMomentumThreshold": "price_momentum_threshold",
    "enableMA60": "enable_ma60",
    "maxTotalExposure": "max_total_exposure",
    "usePythonLogic": "use_python_logic",
    "hierarchicalDecision": "hierarchical_decision",
    "dynamicPositionSize": "dynamic_position_size",
}


def _coerce(name: str, annotation, value):
    """Check a payload value against the field's declared type."""
    if annotation in (bool, "bool"):
        if not isinstance(value, bool):
            raise InvalidConfiguration(f"{name} must be a boolean, got {value!r}")
        return value
    if annotation in (int, "int"):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidConfiguration(f"{name} must be a number, got {value!r}")
        if not math.isfinite(value):
            raise InvalidConfiguration(f"{name} must be a finite number, got {value!r}")
        if float(value) != int(value):
            raise InvalidConfiguration(f"{name} must be a whole number, got {value!r}")
        return int(value)
    if annotation in (float, "float"):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidConfiguration(f"{name} must be a number, got {value!r}")
        if not math.isfinite(value):
            raise InvalidConfiguration(f"{name} must be a finite number, got {value!r}")
        return float(value)
    return value
