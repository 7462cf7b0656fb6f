"""
Optimized Momentum Strategy

Momentum entries filtered by market regime, with staged position management:
partial exit at a first target, then take profit, stop loss, trailing stop,
momentum reversal or a regime change to ranging closes the rest.

Entry needs ``required_conditions`` of 5:
1. Momentum over 5, 15 and 30 candles
2. Volume confirmation
3. Bullish EMA 9/21/50 stack with ADX above the trend threshold
4. Room below resistance
5. Accelerating momentum without fading volume
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, NamedTuple, Optional

from src.core.models import (AgentState, PortfolioSnapshot, StrategyMarketData,
                             TradeAction, TradeOrder)
from src.strategies import indicators
from src.strategies.base import BaseStrategy, require_positive, require_range
from src.strategies.market_regime import MarketRegime, MarketRegimeAnalyzer
from src.strategies.momentum_breakout import ActivePosition


class PositionState(str, Enum):
    NONE = "none"
    PARTIAL = "partial"
    FULL = "full"


@dataclass
class OptimizedMomentumConfig:
    """
    Configuration for the optimized momentum strategy.

    Attributes:
        min_volume_ratio: Current volume over the 20 candle average
        min_price_change: Minimum 5 candle change for momentum
        min_trend_strength: ADX threshold for trend alignment
        required_conditions: Entry conditions that must hold (of 5)
        stop_loss: Stop distance from entry
        take_profit: Final target distance from entry
        trailing_stop_activation: Profit that arms the trailing stop
        trailing_stop_distance: Allowed pullback from the high once armed
        partial_exit_percent: Share of the position sold at the first target
        partial_exit_target: Profit that triggers the partial exit
        max_risk_per_trade: Fraction of portfolio lost if the stop is hit
        max_position_size: Cap on position value as a fraction of portfolio
        min_volatility_for_entry: ATR / support below which nothing is traded
        max_volatility_for_entry: ATR / support cap in high-volatility regimes
        trend_filter_period: Closes used for regime classification
        regime_filter_enabled: Skip ranging markets and exit on regime change
    """
    min_volume_ratio: float = 1.5
    min_price_change: float = 0.008
    min_trend_strength: float = 25.0
    required_conditions: int = 3

    stop_loss: float = 0.015
    take_profit: float = 0.03
    trailing_stop_activation: float = 0.02
    trailing_stop_distance: float = 0.01
    partial_exit_percent: float = 0.5
    partial_exit_target: float = 0.015

    max_risk_per_trade: float = 0.02
    max_position_size: float = 0.2

    min_volatility_for_entry: float = 0.001
    max_volatility_for_entry: float = 0.05
    trend_filter_period: int = 50
    regime_filter_enabled: bool = True


class OptimizedIndicators(NamedTuple):
    price_change_5: float
    price_change_15: float
    price_change_30: float
    price_change_60: float
    volume_ratio: float
    volume_trend: str
    volume_momentum: float
    atr: float
    volatility_regime: str
    adx: float
    trend_direction: str
    ema9: float
    ema21: float
    ema50: float
    resistance: float
    support: float
    near_resistance: bool
    price_position: float
    regime: MarketRegime


@dataclass
class ManagedPosition(ActivePosition):
    state: PositionState = PositionState.FULL
    remaining_quantity: float = 0.0
    partial_exit_done: bool = False


class OptimizedMomentumStrategy(BaseStrategy):
    """Regime-filtered momentum with partial exits and trailing stops."""

    id = "optimized-momentum-v1"
    name = "Optimized Momentum Strategy"
    description = "Advanced momentum strategy with market regime detection and position management"
    config_class = OptimizedMomentumConfig

    MIN_POSITION_SIZE = 0.001
    REGIME_EXIT_MIN_PROFIT = 0.005

    def __init__(self, config: Optional[OptimizedMomentumConfig] = None, **kwargs):
        super().__init__(config, **kwargs)
        self.regime_analyzer = MarketRegimeAnalyzer()
        self.reset()

    def validate_config(self, config: OptimizedMomentumConfig) -> None:
        require_positive("min_volume_ratio", config.min_volume_ratio)
        require_range("min_price_change", config.min_price_change, 0, 1)
        require_range("min_trend_strength", config.min_trend_strength, 0, 100)
        require_range("required_conditions", config.required_conditions, 1, 5)
        for name in (
            "stop_loss",
            "take_profit",
            "trailing_stop_activation",
            "trailing_stop_distance",
            "partial_exit_percent",
            "partial_exit_target",
            "max_risk_per_trade",
            "max_position_size",
        ):
            require_range(name, getattr(config, name), 0, 1, low_inclusive=False)
        require_range("min_volatility_for_entry", config.min_volatility_for_entry, 0, 1)
        require_range("max_volatility_for_entry", config.max_volatility_for_entry, 0, 1)
        require_positive("trend_filter_period", config.trend_filter_period)

    def reset(self) -> None:
        self.active_position: Optional[ManagedPosition] = None
        self.trade_count = 0
        self.win_count = 0
        self.total_pnl = 0.0

    @property
    def min_candles(self) -> int:
        return max(100, self.config.trend_filter_period * 2)

    def get_performance_stats(self) -> Dict[str, Any]:
        """Round-trip statistics as seen by the strategy (P&L in fractions of entry)."""
        return {
            "trade_count": self.trade_count,
            "win_count": self.win_count,
            "win_rate": self.win_count / self.trade_count if self.trade_count else 0.0,
            "total_pnl": self.total_pnl,
            "avg_pnl": self.total_pnl / self.trade_count if self.trade_count else 0.0,
        }

    def get_stats(self) -> Dict[str, Any]:
        stats = super().get_stats()
        stats["performance"] = self.get_performance_stats()
        return stats

    # -------------------------------------------------------------------------
    # Indicators
    # -------------------------------------------------------------------------

    def calculate_indicators(self, market_data: StrategyMarketData) -> OptimizedIndicators:
        candles = market_data.price_data
        closes = [c.close for c in candles]
        volumes = [c.volume for c in candles]
        price = closes[-1]

        recent_volumes = volumes[-20:]
        short_avg = sum(recent_volumes[-5:]) / 5
        long_avg = sum(recent_volumes[-10:]) / 10
        volume_momentum = (short_avg - long_avg) / long_avg if long_avg > 0 else 0.0
        average_volume = sum(recent_volumes) / len(recent_volumes)

        window = candles[-14:]
        atr = indicators.atr(
            [c.high for c in window], [c.low for c in window], [c.close for c in window]
        )
        atr_pct = atr / price if price > 0 else 0.0
        volatility_regime = "high" if atr_pct > 0.03 else "normal" if atr_pct > 0.01 else "low"

        change_15 = indicators.price_change(closes, 15)
        ema9 = indicators.ema(closes[-20:], 9)
        ema21 = indicators.ema(closes[-30:], 21)
        ema50 = indicators.ema(closes[-60:], 50)
        if ema9 > ema21 > ema50 and change_15 > 0:
            trend = "bullish"
        elif ema9 < ema21 < ema50 and change_15 < 0:
            trend = "bearish"
        else:
            trend = "neutral"

        structure = candles[-50:]
        resistance = max(c.high for c in structure)
        support = min(c.low for c in structure)
        price_range = resistance - support

        return OptimizedIndicators(
            price_change_5=indicators.price_change(closes, 5),
            price_change_15=change_15,
            price_change_30=indicators.price_change(closes, 30),
            price_change_60=indicators.price_change(closes, 60),
            volume_ratio=volumes[-1] / average_volume if average_volume > 0 else 1.0,
            volume_trend=indicators.volume_trend(recent_volumes, 5, 10),
            volume_momentum=volume_momentum,
            atr=atr,
            volatility_regime=volatility_regime,
            adx=indicators.adx(candles[-20:]),
            trend_direction=trend,
            ema9=ema9,
            ema21=ema21,
            ema50=ema50,
            resistance=resistance,
            support=support,
            near_resistance=(resistance - price) / price < 0.005,
            price_position=(price - support) / price_range if price_range > 0 else 0.5,
            regime=self.regime_analyzer.classify_trend(closes, self.config.trend_filter_period),
        )

    def is_regime_favorable(self, ind: OptimizedIndicators) -> bool:
        if ind.regime == MarketRegime.RANGING:
            return False
        atr_to_support = ind.atr / ind.support if ind.support > 0 else 0.0
        if ind.volatility_regime == "high" and atr_to_support > self.config.max_volatility_for_entry:
            return False
        return atr_to_support >= self.config.min_volatility_for_entry

    def count_entry_conditions(self, ind: OptimizedIndicators, price: float) -> int:
        cfg = self.config
        conditions = [
            ind.price_change_5 > cfg.min_price_change
            and ind.price_change_15 > -cfg.min_price_change * 0.5
            and ind.price_change_30 > 0,
            ind.volume_ratio > cfg.min_volume_ratio
            or (ind.volume_ratio > 1.3 and ind.volume_momentum > 0.2),
            ind.trend_direction == "bullish"
            and ind.adx > cfg.min_trend_strength
            and price > ind.ema21,
            not ind.near_resistance and ind.price_position < 0.8,
            ind.price_change_5 > ind.price_change_15 and ind.volume_trend != "decreasing",
        ]
        return sum(conditions)

    def _entry_reason(self, ind: OptimizedIndicators) -> str:
        parts = []
        if ind.price_change_5 > self.config.min_price_change:
            parts.append(f"{ind.price_change_5 * 100:.1f}% momentum")
        if ind.volume_ratio > self.config.min_volume_ratio:
            parts.append(f"{ind.volume_ratio:.1f}x volume")
        if ind.trend_direction == "bullish":
            parts.append("bullish trend")
        parts.append(f"regime: {ind.regime.value}")
        return "Entry: " + ", ".join(parts)

    # -------------------------------------------------------------------------
    # Position management
    # -------------------------------------------------------------------------

    def manage_position(
        self, market_data: StrategyMarketData, ind: OptimizedIndicators, holding: float
    ) -> Optional[TradeOrder]:
        position = self.active_position
        price = market_data.current_price
        cfg = self.config

        profit = (price - position.entry_price) / position.entry_price
        drawdown = (position.highest_price - price) / position.highest_price
        position.highest_price = max(position.highest_price, price)

        if not position.partial_exit_done and profit >= cfg.partial_exit_target:
            quantity = min(position.remaining_quantity * cfg.partial_exit_percent, holding)
            position.partial_exit_done = True
            position.remaining_quantity -= quantity
            position.state = PositionState.PARTIAL
            return self._create_order(
                market_data,
                TradeAction.SELL,
                quantity,
                reason=(
                    f"Partial exit ({cfg.partial_exit_percent * 100:.0f}%) at target: "
                    f"+{profit * 100:.1f}%"
                ),
            )

        if profit >= cfg.take_profit:
            reason = f"Take profit reached: +{profit * 100:.1f}%"
        elif profit <= -cfg.stop_loss:
            reason = f"Stop loss triggered: {profit * 100:.1f}%"
        elif profit > cfg.trailing_stop_activation and drawdown > cfg.trailing_stop_distance:
            reason = f"Trailing stop: -{drawdown * 100:.1f}% from high"
        elif (
            ind.price_change_5 < -cfg.min_price_change
            and ind.volume_ratio > 2
            and ind.trend_direction == "bearish"
        ):
            reason = "Strong momentum reversal detected"
        elif (
            cfg.regime_filter_enabled
            and ind.regime == MarketRegime.RANGING
            and profit > self.REGIME_EXIT_MIN_PROFIT
        ):
            reason = "Market regime changed to ranging"
        else:
            return None

        self.trade_count += 1
        if profit > 0:
            self.win_count += 1
        self.total_pnl += profit
        self.active_position = None

        return self._create_order(market_data, TradeAction.SELL, holding, reason)

    async def decide(
        self,
        market_data: StrategyMarketData,
        agent_state: AgentState,
        portfolio_snapshot: PortfolioSnapshot,
    ) -> Optional[TradeOrder]:
        self.decisions_made += 1
        if len(market_data.price_data) < self.min_candles:
            return None
        if self._price_unusable(market_data):
            return None

        ind = self.calculate_indicators(market_data)
        holding = self._position(portfolio_snapshot, market_data)

        # Open positions are still managed when the regime turns unfavorable
        if holding > 0 and self.active_position is not None:
            return self.manage_position(market_data, ind, holding)

        if self.config.regime_filter_enabled and not self.is_regime_favorable(ind):
            return None

        if holding > 0:
            return None

        price = market_data.current_price
        if self.count_entry_conditions(ind, price) < self.config.required_conditions:
            return None

        value = portfolio_snapshot.total_value
        position_value = min(
            value * self.config.max_risk_per_trade / self.config.stop_loss,
            value * self.config.max_position_size,
        )
        size = position_value / price if price > 0 else 0.0
        if size <= self.MIN_POSITION_SIZE:
            return None

        self.active_position = ManagedPosition(
            entry_price=price,
            entry_time=market_data.timestamp,
            highest_price=price,
            quantity=size,
            remaining_quantity=size,
        )
        return self._create_order(market_data, TradeAction.BUY, size, self._entry_reason(ind))
