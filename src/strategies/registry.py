"""
Strategy Registry

Keyed collection of strategy instances. There is no global registry: callers
build one, populate it (``register_default_strategies`` adds the built-ins)
and inject it into the simulation engine.
"""
from typing import Dict, List, Optional

import structlog

from src.core.exceptions import StrategyRegistrationError
from src.strategies.adaptive_rule_based import AdaptiveRuleBasedStrategy
from src.strategies.base import BaseStrategy
from src.strategies.llm_strategy import LLMResponseGenerator, LLMStrategy
from src.strategies.mean_reversion import MeanReversionStrategy
from src.strategies.momentum_breakout import MomentumBreakoutStrategy
from src.strategies.multi_timeframe import MultiTimeframeStrategy
from src.strategies.optimized_momentum import OptimizedMomentumStrategy
from src.strategies.random_strategy import RandomStrategy
from src.strategies.rule_based import RuleBasedStrategy

logger = structlog.get_logger(__name__)


class StrategyRegistry:
    """Strategies by id, in registration order."""

    def __init__(self):
        self._strategies: Dict[str, BaseStrategy] = {}

    def register_strategy(self, strategy: Optional[BaseStrategy]) -> None:
        """
        Add a strategy.

        Raises:
            StrategyRegistrationError: If the strategy is missing, has no id,
                or its id is already registered
        """
        if strategy is None:
            raise StrategyRegistrationError("Cannot register a missing strategy")
        strategy_id = getattr(strategy, "id", None)
        if not strategy_id:
            raise StrategyRegistrationError("Strategy must have a non-empty id")
        if strategy_id in self._strategies:
            raise StrategyRegistrationError(
                f"Strategy with ID '{strategy_id}' is already registered"
            )

        self._strategies[strategy_id] = strategy
        logger.info("registry.registered", strategy_id=strategy_id, name=strategy.name)

    def get_strategy(self, strategy_id: Optional[str]) -> Optional[BaseStrategy]:
        if not strategy_id:
            return None
        return self._strategies.get(strategy_id)

    def list_strategies(self) -> List[BaseStrategy]:
        return list(self._strategies.values())

    def clear_strategies(self) -> None:
        count = len(self._strategies)
        self._strategies.clear()
        logger.info("registry.cleared", count=count)

    def __contains__(self, strategy_id: str) -> bool:
        return strategy_id in self._strategies

    def __len__(self) -> int:
        return len(self._strategies)


def register_default_strategies(
    registry: StrategyRegistry,
    llm_generator: Optional[LLMResponseGenerator] = None,
) -> StrategyRegistry:
    """
    Register one instance of every built-in strategy.

    Args:
        registry: Registry to populate
        llm_generator: Response generator for the LLM strategy; it can also be
            supplied later through the engine context

    Returns:
        The same registry, for chaining
    """
    for strategy in (
        RandomStrategy(),
        RuleBasedStrategy(),
        AdaptiveRuleBasedStrategy(),
        MultiTimeframeStrategy(),
        MomentumBreakoutStrategy(),
        OptimizedMomentumStrategy(),
        MeanReversionStrategy(),
        LLMStrategy(generator=llm_generator),
    ):
        registry.register_strategy(strategy)
    return registry
