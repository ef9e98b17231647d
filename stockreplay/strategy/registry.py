"""Strategy registry — maps strategy kinds to factories.

Used by the backtest engine to instantiate the strategy selected in
``StrategyConfig.strategy``.
"""

from typing import Callable

from stockreplay.errors import InvalidConfiguration
from stockreplay.models.strategy_config import StrategyConfig, StrategyKind
from stockreplay.strategy.base import IdleStrategy, StrategyProtocol
from stockreplay.strategy.signals import SignalStateMachine


STRATEGY_REGISTRY: dict[StrategyKind, Callable[[StrategyConfig], StrategyProtocol]] = {
    StrategyKind.RSI_MACD: SignalStateMachine,
    StrategyKind.W: lambda config: IdleStrategy(),
}


def get_strategy(config: StrategyConfig) -> StrategyProtocol:
    """Instantiate the strategy for ``config.strategy``.

    Raises ``InvalidConfiguration`` if the kind is not registered.
    """
    factory = STRATEGY_REGISTRY.get(config.strategy)
    if factory is None:
        raise InvalidConfiguration(
            f"Unknown strategy '{config.strategy}'. "
            f"Available: {', '.join(k.value for k in STRATEGY_REGISTRY)}"
        )
    return factory(config)
