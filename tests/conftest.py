"""Pytest fixtures and utilities for the strategy backtester test suite."""
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import pytest

from src.backtest.data_loader import InMemoryDataProvider
from src.backtest.engine import SimulationEngine
from src.core.models import (AgentState, BacktestParams, Candle, OrderType,
                             PortfolioSnapshot, StrategyMarketData, TradeAction,
                             TradeOrder)
from src.strategies.base import BaseStrategy
from src.strategies.registry import StrategyRegistry

# 2024-01-01T00:00:00Z
START_MS = 1_704_067_200_000
HOUR_MS = 60 * 60 * 1000
PAIR = "SOL/USDC"


# =============================================================================
# Helper Functions
# =============================================================================

def create_test_candles(
    closes: Sequence[float],
    start: int = START_MS,
    step: int = HOUR_MS,
    volumes: Optional[Sequence[float]] = None,
    wick: float = 0.01,
) -> List[Candle]:
    """Candles with the given closes. Each opens at the previous close."""
    candles = []
    previous = closes[0]
    for i, close in enumerate(closes):
        open_price = previous
        candles.append(
            Candle(
                timestamp=start + i * step,
                open=open_price,
                high=max(open_price, close) * (1 + wick),
                low=min(open_price, close) * (1 - wick),
                close=close,
                volume=volumes[i] if volumes is not None else 1000.0,
            )
        )
        previous = close
    return candles


def wave_closes(count: int, base: float = 100.0, amplitude: float = 10.0, period: int = 40) -> List[float]:
    """Deterministic oscillating price series."""
    return [base + amplitude * math.sin(2 * math.pi * i / period) for i in range(count)]


def create_market_data(candles: Sequence[Candle], pair: str = PAIR) -> StrategyMarketData:
    candles = tuple(candles)
    return StrategyMarketData(
        pair=pair,
        current_price=candles[-1].close,
        price_data=candles,
        last_prices=tuple(c.close for c in candles[-51:]),
    )


def create_agent_state(portfolio_value: float = 10000.0, volatility: float = 0.02, **kwargs) -> AgentState:
    return AgentState(
        portfolio_value=portfolio_value,
        volatility=volatility,
        confidence_level=kwargs.pop("confidence_level", 0.5),
        recent_trades=kwargs.pop("recent_trades", 0),
        **kwargs,
    )


def create_snapshot(
    cash: float = 10000.0,
    base_quantity: float = 0.0,
    price: float = 100.0,
    pair: str = PAIR,
    timestamp: int = START_MS,
) -> PortfolioSnapshot:
    base, quote = pair.split("/")
    holdings = {quote: cash}
    if base_quantity:
        holdings[base] = base_quantity
    return PortfolioSnapshot(
        timestamp=timestamp,
        total_value=cash + base_quantity * price,
        holdings=holdings,
    )


@dataclass
class ScriptedConfig:
    """Orders keyed by candle index."""
    script: Dict[int, Dict[str, Any]] = field(default_factory=dict)


class ScriptedStrategy(BaseStrategy):
    """Emits pre-programmed orders and records every call it receives."""

    id = "scripted-v1"
    name = "Scripted Strategy"
    description = "Replays a fixed order script"
    config_class = ScriptedConfig

    def __init__(self, script: Optional[Dict[int, Dict[str, Any]]] = None, **kwargs):
        super().__init__(ScriptedConfig(script=dict(script or {})), **kwargs)
        self.calls: List[tuple] = []
        self.contexts: List[Any] = []

    async def initialize(self, context=None) -> None:
        await super().initialize(context)
        self.contexts.append(context)

    def reset(self) -> None:
        self.calls = []

    async def decide(self, market_data, agent_state, portfolio_snapshot):
        index = len(market_data.price_data) - 1
        self.calls.append((index, market_data, agent_state, portfolio_snapshot))
        step = self.config.script.get(index)
        if step is None:
            return None
        if step.get("raise"):
            raise step["raise"]
        return TradeOrder(
            pair=step.get("pair", market_data.pair),
            action=TradeAction(step["action"]),
            quantity=step["quantity"],
            order_type=OrderType(step.get("order_type", "MARKET")),
            price=step.get("price"),
            timestamp=market_data.timestamp,
            reason="scripted",
        )


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def candle_factory():
    """Build candles from a list of closes."""
    return create_test_candles


@pytest.fixture
def wave_factory():
    """Oscillating closes for indicator-driven strategies."""
    return wave_closes


@pytest.fixture
def market_data_factory():
    return create_market_data


@pytest.fixture
def agent_state_factory():
    return create_agent_state


@pytest.fixture
def snapshot_factory():
    return create_snapshot


@pytest.fixture
def scripted_strategy_factory():
    """Create a ScriptedStrategy from {candle_index: order fields}."""
    return ScriptedStrategy


@pytest.fixture
def registry():
    return StrategyRegistry()


@pytest.fixture
def simulation_factory(registry):
    """
    Build an engine around one strategy and a list of candles.

    Returns (engine, params) where params span exactly the candles.
    """
    def _build(strategy: BaseStrategy, candles: List[Candle], **param_overrides):
        registry.register_strategy(strategy)
        provider = InMemoryDataProvider({PAIR: candles})
        engine = SimulationEngine(registry, provider, context=param_overrides.pop("context", None))
        params = BacktestParams(
            strategy_id=strategy.id,
            pair=param_overrides.pop("pair", PAIR),
            interval="1h",
            start_date=candles[0].timestamp if candles else START_MS,
            end_date=(candles[-1].timestamp + HOUR_MS) if candles else START_MS + HOUR_MS,
            initial_capital=param_overrides.pop("initial_capital", 10000.0),
            data_source="memory",
            **param_overrides,
        )
        return engine, params

    return _build


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow tests")
    config.addinivalue_line("markers", "async_test: Async tests")


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers."""
    for item in items:
        # Add unit marker by default
        if not any(marker.name in ["unit", "integration"] for marker in item.own_markers):
            item.add_marker(pytest.mark.unit)
