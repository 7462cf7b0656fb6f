"""
Unit tests for the LLM strategy.

The response generator is always an AsyncMock returning scripted responses,
so no inference service is contacted.
"""

import json
from unittest.mock import AsyncMock

import pytest

from src.core.exceptions import ValidationError
from src.core.models import OrderType, TradeAction
from src.strategies.llm_strategy import (FALLBACK_QUANTITY, LLMStrategy,
                                         LLMStrategyConfig, parse_llm_response)

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def decision_inputs(candle_factory, market_data_factory, agent_state_factory, snapshot_factory):
    """Market data at 100 and a portfolio of 10000 cash plus 5 SOL."""
    market_data = market_data_factory(candle_factory([96, 97, 98, 99, 100, 100]))
    return (
        market_data,
        agent_state_factory(portfolio_value=10500.0),
        snapshot_factory(cash=10000.0, base_quantity=5.0, price=100.0),
    )


def make_strategy(response, **config):
    generator = AsyncMock(
        return_value=json.dumps(response) if isinstance(response, dict) else response
    )
    return LLMStrategy(LLMStrategyConfig(**config), generator=generator), generator


# =============================================================================
# Response parsing
# =============================================================================


class TestParseLLMResponse:
    """Test parse_llm_response."""

    def test_buy_with_quantity(self):
        decision = parse_llm_response(
            '{"action": "buy", "symbol": "SOL/USDC", "quantity": 2, "reason": "dip"}'
        )

        assert decision.action == "BUY"
        assert decision.symbol == "SOL/USDC"
        assert decision.quantity == 2.0
        assert decision.order_type == OrderType.MARKET
        assert decision.reason == "dip"

    def test_dict_response(self):
        decision = parse_llm_response({"action": "SELL", "quantity": 1.5})

        assert decision.action == "SELL"
        assert decision.quantity == 1.5

    def test_hold(self):
        decision = parse_llm_response('{"action": "HOLD", "reason": "unclear"}')

        assert decision.action == "HOLD"
        assert decision.reason == "unclear"

    def test_code_fence_stripped(self):
        """Test responses wrapped in a markdown fence still parse."""
        decision = parse_llm_response('```json\n{"action": "BUY", "quantity": 1}\n```')

        assert decision.action == "BUY"

    def test_limit_order(self):
        decision = parse_llm_response(
            {"action": "BUY", "quantity": 1, "orderType": "LIMIT", "price": 95.5}
        )

        assert decision.order_type == OrderType.LIMIT
        assert decision.price == 95.5

    @pytest.mark.parametrize(
        "response",
        [
            "not json",
            "[]",
            '{"reason": "no action"}',
            '{"action": "SHORT"}',
            '{"action": "BUY", "symbol": ""}',
            '{"action": "BUY", "quantity": "lots"}',
            '{"action": "BUY", "quantity": true}',
            '{"action": "BUY", "quantity": -1}',
            '{"action": "BUY", "orderType": "LIMIT"}',
            '{"action": "BUY", "order_type": "LIMIT", "price": 0}',
            '{"action": "BUY", "symbol": 42}',
            '{"action": "BUY", "quantity": Infinity}',
            '{"action": "BUY", "orderType": "LIMIT", "price": NaN}',
        ],
    )
    def test_malformed_responses(self, response):
        """Test invalid responses parse to None."""
        assert parse_llm_response(response) is None

    @pytest.mark.parametrize(
        "reason,expected",
        [(123, "123"), ({"why": "dip"}, '{"why": "dip"}'), (["a", "b"], '["a", "b"]'), ("", None)],
    )
    def test_non_string_reason_coerced(self, reason, expected):
        decision = parse_llm_response({"action": "BUY", "quantity": 1, "reason": reason})

        assert decision.reason == expected


# =============================================================================
# Configuration
# =============================================================================


class TestLLMStrategyConfig:
    """Test configuration and validation."""

    def test_defaults_from_settings(self):
        strategy = LLMStrategy()

        assert strategy.config.temperature == 0.7
        assert strategy.config.default_trade_size_percentage == 0.01
        assert not strategy.is_ready()

    @pytest.mark.parametrize(
        "params",
        [
            {"temperature": 3.0},
            {"max_tokens": 0},
            {"default_trade_size_percentage": 0},
            {"default_fixed_trade_quantity": -1},
            {"unknown_option": 1},
        ],
    )
    def test_invalid_params_rejected(self, params):
        """Test invalid values are refused and the old config is kept."""
        strategy = LLMStrategy()
        before = strategy.config

        with pytest.raises(ValidationError):
            strategy.configure(params)

        assert strategy.config == before

    @pytest.mark.asyncio
    async def test_generator_from_context(self):
        """Test the generator can be supplied at initialize."""
        generator = AsyncMock(return_value='{"action": "HOLD"}')
        strategy = LLMStrategy()

        await strategy.initialize({"llm_generator": generator})

        assert strategy.is_ready()
        assert strategy.generator is generator


# =============================================================================
# Prompt
# =============================================================================


class TestPrompt:
    """Test prompt construction."""

    def test_prompt_contains_market_and_portfolio(self, decision_inputs):
        market_data, _, snapshot = decision_inputs
        strategy = LLMStrategy(
            LLMStrategyConfig(
                custom_prompt_prefix="PREFIX",
                custom_prompt_suffix="SUFFIX",
                structured_output_schema={"type": "object"},
            )
        )

        prompt = strategy.build_prompt(market_data, snapshot)

        assert prompt.startswith("PREFIX")
        assert prompt.endswith("SUFFIX")
        assert "- Pair: SOL/USDC" in prompt
        assert "- Current Price: 100.0" in prompt
        assert "- Recent Price Trend (last 5 closes): 97.0, 98.0, 99.0, 100.0, 100.0" in prompt
        assert "- Total Value: 10500.00" in prompt
        assert "- SOL: 5.0" in prompt
        assert "Decision Instructions:" in prompt
        assert '{"type": "object"}' in prompt

    @pytest.mark.asyncio
    async def test_generation_options(self, decision_inputs):
        """Test model settings are passed to the generator."""
        strategy, generator = make_strategy(
            {"action": "HOLD"}, inference_model="test-model", temperature=0.2, max_tokens=64
        )

        await strategy.decide(*decision_inputs)

        prompt, options = generator.await_args.args
        assert "Market Data:" in prompt
        assert options["model"] == "test-model"
        assert options["temperature"] == 0.2
        assert options["max_tokens"] == 64
        assert options["system_prompt"] == strategy.config.system_prompt


# =============================================================================
# Decisions
# =============================================================================


class TestDecide:
    """Test the decide loop."""

    @pytest.mark.asyncio
    async def test_buy_with_explicit_quantity(self, decision_inputs):
        strategy, _ = make_strategy({"action": "BUY", "quantity": 3, "reason": "breakout"})

        order = await strategy.decide(*decision_inputs)

        assert order.action == TradeAction.BUY
        assert order.quantity == 3.0
        assert order.reason == "breakout"
        assert order.pair == "SOL/USDC"
        assert order.timestamp == decision_inputs[0].timestamp

    @pytest.mark.asyncio
    async def test_numeric_reason_does_not_break_order(self, decision_inputs):
        """Test a model reply with a numeric reason still produces a valid order."""
        strategy, _ = make_strategy({"action": "BUY", "quantity": 1, "reason": 123})

        order = await strategy.decide(*decision_inputs)

        assert order.action == TradeAction.BUY
        assert order.reason == "123"

    @pytest.mark.asyncio
    async def test_default_quantity_from_percentage(self, decision_inputs):
        """Test a missing quantity uses a share of portfolio value."""
        strategy, _ = make_strategy({"action": "BUY", "quantity": 0})

        order = await strategy.decide(*decision_inputs)

        assert order.quantity == pytest.approx(10500 * 0.01 / 100)
        assert order.reason == "LLM decision"

    @pytest.mark.asyncio
    async def test_default_quantity_fixed(self, decision_inputs):
        strategy, _ = make_strategy(
            {"action": "BUY"}, default_trade_size_percentage=None, default_fixed_trade_quantity=2.5
        )

        order = await strategy.decide(*decision_inputs)

        assert order.quantity == 2.5

    @pytest.mark.asyncio
    async def test_default_quantity_fallback(self, decision_inputs):
        strategy, _ = make_strategy({"action": "BUY"}, default_trade_size_percentage=None)

        order = await strategy.decide(*decision_inputs)

        assert order.quantity == FALLBACK_QUANTITY

    @pytest.mark.asyncio
    async def test_limit_order(self, decision_inputs):
        strategy, _ = make_strategy(
            {"action": "BUY", "quantity": 1, "orderType": "LIMIT", "price": 98}
        )

        order = await strategy.decide(*decision_inputs)

        assert order.order_type == OrderType.LIMIT
        assert order.price == 98.0

    @pytest.mark.asyncio
    async def test_hold_returns_none(self, decision_inputs):
        strategy, _ = make_strategy({"action": "HOLD"})

        assert await strategy.decide(*decision_inputs) is None

    @pytest.mark.asyncio
    async def test_malformed_response_returns_none(self, decision_inputs):
        strategy, _ = make_strategy("I think you should buy")

        assert await strategy.decide(*decision_inputs) is None

    @pytest.mark.asyncio
    async def test_symbol_mismatch_returns_none(self, decision_inputs):
        """Test suggestions for another market are ignored."""
        strategy, _ = make_strategy({"action": "BUY", "symbol": "BTC/USDC", "quantity": 1})

        assert await strategy.decide(*decision_inputs) is None

    @pytest.mark.asyncio
    async def test_base_asset_symbol_accepted(self, decision_inputs):
        strategy, _ = make_strategy({"action": "BUY", "symbol": "sol", "quantity": 1})

        assert await strategy.decide(*decision_inputs) is not None

    @pytest.mark.asyncio
    async def test_sell_more_than_held_returns_none(self, decision_inputs):
        strategy, _ = make_strategy({"action": "SELL", "quantity": 10})

        assert await strategy.decide(*decision_inputs) is None

    @pytest.mark.asyncio
    async def test_sell_within_holdings(self, decision_inputs):
        strategy, _ = make_strategy({"action": "SELL", "quantity": 5})

        order = await strategy.decide(*decision_inputs)

        assert order.action == TradeAction.SELL
        assert order.quantity == 5.0

    @pytest.mark.asyncio
    async def test_no_generator_returns_none(self, decision_inputs):
        strategy = LLMStrategy()

        assert await strategy.decide(*decision_inputs) is None

    @pytest.mark.asyncio
    async def test_generator_errors_propagate(self, decision_inputs):
        """Test inference failures are not swallowed."""
        generator = AsyncMock(side_effect=ConnectionError("inference unavailable"))
        strategy = LLMStrategy(generator=generator)

        with pytest.raises(ConnectionError):
            await strategy.decide(*decision_inputs)
