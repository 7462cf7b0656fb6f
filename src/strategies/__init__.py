"""
Trading Strategies for the Strategy Backtester.

Every strategy implements BaseStrategy: ``decide`` receives the market data
up to the current candle, the agent state and a portfolio snapshot, and
returns a TradeOrder or None.

Built-in strategies:
- RandomStrategy: random trades, a baseline
- RuleBasedStrategy: configurable indicator rules
- AdaptiveRuleBasedStrategy: regime-aware signal scoring
- MultiTimeframeStrategy: aligned timeframes and key levels
- MomentumBreakoutStrategy: volume-confirmed momentum entries
- OptimizedMomentumStrategy: momentum with a regime filter and staged exits
- MeanReversionStrategy: Bollinger Band and RSI reversion
- LLMStrategy: decisions from a language model

New strategies are registered with a StrategyRegistry; the engine needs no
changes.
"""

from src.strategies.adaptive_rule_based import AdaptiveRuleBasedStrategy
from src.strategies.base import BaseStrategy
from src.strategies.llm_strategy import LLMStrategy
from src.strategies.mean_reversion import MeanReversionStrategy
from src.strategies.momentum_breakout import MomentumBreakoutStrategy
from src.strategies.multi_timeframe import MultiTimeframeStrategy
from src.strategies.optimized_momentum import OptimizedMomentumStrategy
from src.strategies.random_strategy import RandomStrategy
from src.strategies.registry import StrategyRegistry, register_default_strategies
from src.strategies.rule_based import RuleBasedStrategy

__all__ = [
    "BaseStrategy",
    "StrategyRegistry",
    "register_default_strategies",
    "RandomStrategy",
    "RuleBasedStrategy",
    "AdaptiveRuleBasedStrategy",
    "MultiTimeframeStrategy",
    "MomentumBreakoutStrategy",
    "OptimizedMomentumStrategy",
    "MeanReversionStrategy",
    "LLMStrategy",
]
