"""
Unit tests for the StrategyRegistry.
"""

import pytest

from src.core.exceptions import StrategyRegistrationError
from src.strategies.llm_strategy import LLMStrategy
from src.strategies.random_strategy import RandomStrategy
from src.strategies.registry import StrategyRegistry, register_default_strategies

DEFAULT_IDS = [
    "random-v1",
    "rule-based-v1",
    "adaptive-rule-based-v1",
    "multi-timeframe-v1",
    "momentum-breakout-v1",
    "optimized-momentum-v1",
    "mean-reversion-strategy",
    "llm-v1",
]


class TestStrategyRegistry:
    """Test registration and lookup."""

    def test_register_and_get(self, registry):
        strategy = RandomStrategy()

        registry.register_strategy(strategy)

        assert registry.get_strategy("random-v1") is strategy
        assert "random-v1" in registry
        assert len(registry) == 1

    def test_unknown_id_returns_none(self, registry):
        assert registry.get_strategy("unknown") is None
        assert registry.get_strategy("") is None
        assert registry.get_strategy(None) is None

    def test_duplicate_id_rejected(self, registry):
        """Test a second strategy with the same id is refused."""
        registry.register_strategy(RandomStrategy())

        with pytest.raises(StrategyRegistrationError, match="already registered"):
            registry.register_strategy(RandomStrategy())

        assert len(registry) == 1

    def test_missing_strategy_rejected(self, registry):
        with pytest.raises(StrategyRegistrationError):
            registry.register_strategy(None)

    def test_empty_id_rejected(self, registry):
        with pytest.raises(StrategyRegistrationError, match="non-empty id"):
            registry.register_strategy(RandomStrategy(strategy_id=""))

    def test_custom_id_allows_second_instance(self, registry):
        """Test differently configured instances can coexist under new ids."""
        registry.register_strategy(RandomStrategy())
        registry.register_strategy(RandomStrategy(strategy_id="random-aggressive"))

        assert [s.id for s in registry.list_strategies()] == ["random-v1", "random-aggressive"]

    def test_list_preserves_order(self, registry, scripted_strategy_factory):
        scripted = scripted_strategy_factory({})
        registry.register_strategy(scripted)
        registry.register_strategy(RandomStrategy())

        assert registry.list_strategies() == [scripted, registry.get_strategy("random-v1")]

    def test_clear(self, registry):
        registry.register_strategy(RandomStrategy())

        registry.clear_strategies()

        assert len(registry) == 0
        assert registry.get_strategy("random-v1") is None

    def test_registries_are_independent(self):
        """Test there is no shared global state."""
        first = StrategyRegistry()
        second = StrategyRegistry()

        first.register_strategy(RandomStrategy())

        assert "random-v1" not in second


class TestDefaultStrategies:
    """Test register_default_strategies."""

    def test_registers_all_builtins(self, registry):
        result = register_default_strategies(registry)

        assert result is registry
        assert [s.id for s in registry.list_strategies()] == DEFAULT_IDS

    def test_every_builtin_has_metadata(self, registry):
        register_default_strategies(registry)

        for strategy in registry.list_strategies():
            assert strategy.name
            assert strategy.description

    def test_llm_generator_passed_through(self, registry):
        async def generator(prompt, options):
            return '{"action": "HOLD"}'

        register_default_strategies(registry, llm_generator=generator)

        llm = registry.get_strategy("llm-v1")
        assert isinstance(llm, LLMStrategy)
        assert llm.generator is generator
        assert llm.is_ready()

    def test_registering_twice_fails(self, registry):
        register_default_strategies(registry)

        with pytest.raises(StrategyRegistrationError):
            register_default_strategies(registry)
