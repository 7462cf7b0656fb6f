"""
Random Strategy

Baseline strategy that trades at random. Useful as a control when comparing
other strategies: anything that cannot beat it is noise.

Randomness comes from a numpy generator seeded with (seed, candle timestamp),
so a replay of the same candles produces the same orders.
"""
from dataclasses import dataclass
from typing import Optional

import numpy as np

from src.core.exceptions import ValidationError
from src.core.models import (AgentState, PortfolioSnapshot, StrategyMarketData,
                             TradeAction, TradeOrder)
from src.strategies.base import BaseStrategy, require_positive, require_range


@dataclass
class RandomStrategyConfig:
    """
    Configuration for the random strategy.

    Attributes:
        trade_attempt_probability: Chance of trading at each candle
        buy_probability: Chance that a trade is a BUY (otherwise SELL)
        max_trade_size_percentage: Fraction of portfolio value per trade
        fixed_trade_quantity: Quantity used when no percentage is set
        seed: Base seed combined with the candle timestamp
    """
    trade_attempt_probability: float = 0.1
    buy_probability: float = 0.5
    max_trade_size_percentage: Optional[float] = 0.01
    fixed_trade_quantity: Optional[float] = 1.0
    seed: int = 0


class RandomStrategy(BaseStrategy):
    """Places random BUY/SELL orders."""

    id = "random-v1"
    name = "Random Trader"
    description = "Makes random buy or sell decisions based on configured probabilities."
    config_class = RandomStrategyConfig

    def validate_config(self, config: RandomStrategyConfig) -> None:
        require_range("trade_attempt_probability", config.trade_attempt_probability, 0, 1)
        require_range("buy_probability", config.buy_probability, 0, 1)
        if config.max_trade_size_percentage is not None:
            require_range("max_trade_size_percentage", config.max_trade_size_percentage, 0, 1)
        if config.fixed_trade_quantity is not None:
            require_positive("fixed_trade_quantity", config.fixed_trade_quantity)
        if config.max_trade_size_percentage is None and config.fixed_trade_quantity is None:
            raise ValidationError(
                "Either max_trade_size_percentage or fixed_trade_quantity is required"
            )
        if isinstance(config.seed, bool) or not isinstance(config.seed, int) or config.seed < 0:
            raise ValidationError(f"seed must be a non-negative integer, got {config.seed!r}")

    def configure(self, params) -> None:
        """Configuring only a fixed quantity switches sizing to that quantity."""
        params = dict(params)
        if "fixed_trade_quantity" in params and "max_trade_size_percentage" not in params:
            params["max_trade_size_percentage"] = None
        super().configure(params)

    @property
    def use_fixed_quantity(self) -> bool:
        return self.config.max_trade_size_percentage is None

    def _trade_quantity(self, price: float, portfolio_value: float) -> float:
        if self.use_fixed_quantity:
            return self.config.fixed_trade_quantity
        if price <= 0:
            return 0.0
        return portfolio_value * self.config.max_trade_size_percentage / price

    async def decide(
        self,
        market_data: StrategyMarketData,
        agent_state: AgentState,
        portfolio_snapshot: PortfolioSnapshot,
    ) -> Optional[TradeOrder]:
        self.decisions_made += 1
        rng = np.random.default_rng([self.config.seed, market_data.timestamp])

        if rng.random() >= self.config.trade_attempt_probability:
            return None

        action = (
            TradeAction.BUY if rng.random() < self.config.buy_probability else TradeAction.SELL
        )
        quantity = self._trade_quantity(
            market_data.current_price, portfolio_snapshot.total_value
        )

        if action == TradeAction.SELL:
            held = self._position(portfolio_snapshot, market_data)
            if held < quantity:
                self.logger.debug("random.sell_skipped", held=held, quantity=quantity)
                return None

        return self._create_order(
            market_data,
            action,
            quantity,
            reason=f"Random {action.value.lower()} decision",
        )
