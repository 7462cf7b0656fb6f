"""Base class for all trading strategies."""
import copy
from abc import ABC, abstractmethod
from dataclasses import asdict, fields, replace
from typing import Any, Dict, Optional

import structlog

from src.core.exceptions import ValidationError
from src.core.models import (QUANTITY_PRECISION, AgentState, OrderType,
                             PortfolioSnapshot, StrategyMarketData, TradeAction,
                             TradeOrder)

logger = structlog.get_logger(__name__)

MIN_TRADE_QUANTITY = 1e-8


def require_range(
    name: str,
    value: float,
    low: float,
    high: float,
    low_inclusive: bool = True,
    high_inclusive: bool = True,
) -> None:
    """Raise ValidationError unless ``value`` lies within the given bounds."""
    above_low = value >= low if low_inclusive else value > low
    below_high = value <= high if high_inclusive else value < high
    if not (above_low and below_high):
        left = "[" if low_inclusive else "("
        right = "]" if high_inclusive else ")"
        raise ValidationError(f"{name} must be in {left}{low}, {high}{right}, got {value}")


def require_positive(name: str, value: float) -> None:
    """Raise ValidationError unless ``value`` is strictly positive."""
    if value is None or value <= 0:
        raise ValidationError(f"{name} must be positive, got {value}")


class BaseStrategy(ABC):
    """
    Abstract base class for trading strategies.

    A strategy is handed one decision step at a time and answers with a
    TradeOrder or None. Parameters live in a dataclass (``config_class``) and
    can be changed with ``configure``, which validates before applying.
    """

    id: str = ""
    name: str = ""
    description: str = ""
    config_class: Any = None

    def __init__(self, config: Optional[Any] = None, strategy_id: Optional[str] = None):
        if strategy_id is not None:
            self.id = strategy_id
        self.logger = logger.bind(strategy=self.id)
        self.config = config if config is not None else self.config_class()
        self.validate_config(self.config)

        # Track strategy activity
        self.decisions_made = 0
        self.orders_proposed = 0

    # -------------------------------------------------------------------------
    # Protocol
    # -------------------------------------------------------------------------

    def is_ready(self) -> bool:
        """Whether the strategy can be used for decisions."""
        return True

    def configure(self, params: Dict[str, Any]) -> None:
        """
        Apply parameter overrides.

        Args:
            params: Mapping of config field name to new value

        Raises:
            ValidationError: On unknown names or out-of-range values. The
                previous configuration is kept in that case.
        """
        known = {f.name for f in fields(self.config)}
        unknown = sorted(set(params) - known)
        if unknown:
            raise ValidationError(
                f"Unknown parameters for {self.id}: {', '.join(unknown)}"
            )

        candidate = replace(self.config, **params)
        self.validate_config(candidate)
        self.config = candidate
        self.logger.info("strategy.configured", params=sorted(params))

    def validate_config(self, config: Any) -> None:
        """Override to validate parameter ranges. Raise ValidationError on failure."""

    async def initialize(self, context: Optional[Dict[str, Any]] = None) -> None:
        """
        Prepare for a new run.

        Called by the simulation engine before the first candle. ``context``
        carries optional host services. Per-run state is reset here so that
        replays of the same data are identical.
        """
        self.reset()

    def reset(self) -> None:
        """Clear per-run state. Stateless strategies need not override."""

    def clone(self) -> "BaseStrategy":
        """Fresh instance with a copy of the current configuration and no run state."""
        return type(self)(config=copy.deepcopy(self.config), strategy_id=self.id)

    @abstractmethod
    async def decide(
        self,
        market_data: StrategyMarketData,
        agent_state: AgentState,
        portfolio_snapshot: PortfolioSnapshot,
    ) -> Optional[TradeOrder]:
        """
        Decide what to do at the current candle.

        Args:
            market_data: Candles up to and including the current one
            agent_state: Summary of the simulated agent
            portfolio_snapshot: Ledger valued at the current close

        Returns:
            TradeOrder to submit, or None to hold
        """
        pass

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def get_stats(self) -> Dict[str, Any]:
        """Get strategy statistics."""
        return {
            "id": self.id,
            "name": self.name,
            "is_ready": self.is_ready(),
            "decisions_made": self.decisions_made,
            "orders_proposed": self.orders_proposed,
            "config": asdict(self.config),
        }

    def _price_unusable(self, market_data: StrategyMarketData) -> bool:
        """Whether the current close is not a tradable price."""
        if market_data.current_price > 0:
            return False
        self.logger.debug(
            "strategy.non_positive_price",
            price=market_data.current_price,
            timestamp=market_data.timestamp,
        )
        return True

    @staticmethod
    def _cash(snapshot: PortfolioSnapshot, market_data: StrategyMarketData) -> float:
        """Quote-currency balance."""
        return snapshot.holding(market_data.quote_asset)

    @staticmethod
    def _position(snapshot: PortfolioSnapshot, market_data: StrategyMarketData) -> float:
        """Base-asset quantity held."""
        return snapshot.holding(market_data.base_asset)

    def _create_order(
        self,
        market_data: StrategyMarketData,
        action: TradeAction,
        quantity: float,
        reason: str,
        order_type: OrderType = OrderType.MARKET,
        price: Optional[float] = None,
    ) -> Optional[TradeOrder]:
        """Build an order for the current candle, or None if the quantity is negligible."""
        quantity = round(quantity, QUANTITY_PRECISION)
        if quantity <= MIN_TRADE_QUANTITY:
            return None

        self.orders_proposed += 1
        order = TradeOrder(
            pair=market_data.pair,
            action=action,
            quantity=quantity,
            order_type=order_type,
            price=price,
            timestamp=market_data.timestamp,
            reason=reason,
        )
        self.logger.debug(
            "strategy.order_proposed",
            action=action.value,
            quantity=quantity,
            order_type=order_type.value,
            reason=reason,
        )
        return order
