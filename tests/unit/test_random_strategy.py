"""
Unit tests for the random baseline strategy.
"""

import pytest

from src.core.exceptions import ValidationError
from src.core.models import TradeAction
from src.strategies.random_strategy import RandomStrategy, RandomStrategyConfig


@pytest.fixture
def market_data(candle_factory, market_data_factory):
    return market_data_factory(candle_factory([100.0, 100.0, 100.0]))


@pytest.fixture
def agent_state(agent_state_factory):
    return agent_state_factory()


class TestRandomStrategyConfig:
    """Test configuration handling."""

    def test_defaults(self):
        strategy = RandomStrategy()

        assert strategy.id == "random-v1"
        assert strategy.config.trade_attempt_probability == 0.1
        assert strategy.config.buy_probability == 0.5
        assert not strategy.use_fixed_quantity
        assert strategy.is_ready()

    @pytest.mark.parametrize(
        "params",
        [
            {"trade_attempt_probability": 1.5},
            {"buy_probability": -0.1},
            {"max_trade_size_percentage": 2.0},
            {"fixed_trade_quantity": 0},
            {"max_trade_size_percentage": None, "fixed_trade_quantity": None},
            {"seed": -1},
            {"seed": 1.5},
            {"seed": "7"},
        ],
    )
    def test_invalid_params(self, params):
        strategy = RandomStrategy()

        with pytest.raises(ValidationError):
            strategy.configure(params)

        assert strategy.config == RandomStrategyConfig()

    def test_fixed_quantity_switches_sizing(self):
        """Test configuring only a fixed quantity drops percentage sizing."""
        strategy = RandomStrategy()

        strategy.configure({"fixed_trade_quantity": 2.0})

        assert strategy.use_fixed_quantity
        assert strategy.config.max_trade_size_percentage is None
        assert strategy.config.fixed_trade_quantity == 2.0


class TestRandomDecisions:
    """Test decide."""

    @pytest.mark.asyncio
    async def test_never_trades_with_zero_probability(self, market_data, agent_state, snapshot_factory):
        strategy = RandomStrategy(RandomStrategyConfig(trade_attempt_probability=0.0))

        assert await strategy.decide(market_data, agent_state, snapshot_factory()) is None
        assert strategy.decisions_made == 1

    @pytest.mark.asyncio
    async def test_buy_sized_by_portfolio(self, market_data, agent_state, snapshot_factory):
        """Test percentage sizing against total portfolio value."""
        strategy = RandomStrategy(
            RandomStrategyConfig(trade_attempt_probability=1.0, buy_probability=1.0)
        )

        order = await strategy.decide(market_data, agent_state, snapshot_factory(cash=10000.0))

        assert order.action == TradeAction.BUY
        assert order.quantity == pytest.approx(1.0)
        assert order.reason == "Random buy decision"
        assert strategy.orders_proposed == 1

    @pytest.mark.asyncio
    async def test_sell_skipped_without_holdings(self, market_data, agent_state, snapshot_factory):
        strategy = RandomStrategy(
            RandomStrategyConfig(trade_attempt_probability=1.0, buy_probability=0.0)
        )

        assert await strategy.decide(market_data, agent_state, snapshot_factory()) is None

    @pytest.mark.asyncio
    async def test_sell_with_holdings(self, market_data, agent_state, snapshot_factory):
        strategy = RandomStrategy(
            RandomStrategyConfig(
                trade_attempt_probability=1.0,
                buy_probability=0.0,
                max_trade_size_percentage=None,
                fixed_trade_quantity=2.0,
            )
        )

        order = await strategy.decide(
            market_data, agent_state, snapshot_factory(cash=1000.0, base_quantity=5.0)
        )

        assert order.action == TradeAction.SELL
        assert order.quantity == 2.0

    @pytest.mark.asyncio
    async def test_same_inputs_same_decision(self, candle_factory, market_data_factory, agent_state, snapshot_factory):
        """Test decisions depend only on seed and candle time."""
        strategy = RandomStrategy(RandomStrategyConfig(trade_attempt_probability=0.5, seed=3))
        snapshot = snapshot_factory(cash=10000.0, base_quantity=100.0)
        candles = candle_factory([100.0] * 40)

        first = []
        second = []
        for i in range(1, 41):
            market_data = market_data_factory(candles[:i])
            first.append(await strategy.decide(market_data, agent_state, snapshot))
        for i in range(1, 41):
            market_data = market_data_factory(candles[:i])
            second.append(await strategy.decide(market_data, agent_state, snapshot))

        assert first == second
        assert any(order is not None for order in first)
        assert any(order is None for order in first)
