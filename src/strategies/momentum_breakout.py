"""
Momentum Breakout Strategy

Enters on short-term momentum confirmed by volume and trend, then manages the
open position with a fixed profit target, a tight stop, a trailing stop and a
momentum-reversal exit.

Entry needs at least 2 of 4 conditions:
- Momentum: 5 candle change above the minimum, 15 candle change not collapsing
- Volume: above-average volume, or rising volume
- Trend: EMA 9 above EMA 21 with ADX confirmation, or a strong 5 candle move
- Entry quality: not pressed against resistance (unless momentum is strong)
"""
from dataclasses import dataclass
from typing import NamedTuple, Optional

from src.core.models import (AgentState, PortfolioSnapshot, StrategyMarketData,
                             TradeAction, TradeOrder)
from src.strategies import indicators
from src.strategies.base import BaseStrategy, require_positive, require_range


@dataclass
class MomentumBreakoutConfig:
    """
    Configuration for the momentum breakout strategy.

    Attributes:
        min_candles: History required before any decision
        min_volume_ratio: Current volume over the 20 candle average
        min_price_change: Minimum 5 candle change for momentum
        max_risk_per_trade: Fraction of portfolio lost if the stop is hit
        profit_target: Take-profit distance from entry
        stop_loss: Stop distance from entry
        max_position_pct: Cap on position value as a fraction of portfolio
        required_conditions: Entry conditions that must hold (of 4)
    """
    min_candles: int = 100
    min_volume_ratio: float = 1.1
    min_price_change: float = 0.002
    max_risk_per_trade: float = 0.02
    profit_target: float = 0.01
    stop_loss: float = 0.005
    max_position_pct: float = 0.25
    required_conditions: int = 2


@dataclass
class ActivePosition:
    """Position opened by a strategy, tracked for exit management."""
    entry_price: float
    entry_time: int
    highest_price: float
    quantity: float = 0.0


class MomentumIndicators(NamedTuple):
    price_change_5: float
    price_change_15: float
    price_change_60: float
    volume_ratio: float
    volume_trend: str
    atr: float
    adx: float
    trend_direction: str
    resistance: float
    support: float
    near_resistance: bool
    near_support: bool


class EntryConditions(NamedTuple):
    has_momentum: bool
    has_volume: bool
    trend_aligned: bool
    good_entry: bool

    @property
    def met(self) -> int:
        return sum(self)


class MomentumBreakoutStrategy(BaseStrategy):
    """Short-term momentum breakout with tight risk management."""

    id = "momentum-breakout-v1"
    name = "Momentum Breakout Strategy"
    description = "Captures momentum moves in volatile markets with volume confirmation"
    config_class = MomentumBreakoutConfig

    TRAILING_ACTIVATION = 0.015
    TRAILING_DISTANCE = 0.01
    REVERSAL_DROP = 0.01
    REVERSAL_VOLUME = 2.0
    MIN_POSITION_SIZE = 0.001

    def __init__(self, config: Optional[MomentumBreakoutConfig] = None, **kwargs):
        super().__init__(config, **kwargs)
        self.active_position: Optional[ActivePosition] = None

    def validate_config(self, config: MomentumBreakoutConfig) -> None:
        require_positive("min_candles", config.min_candles)
        require_positive("min_volume_ratio", config.min_volume_ratio)
        require_range("min_price_change", config.min_price_change, 0, 1)
        require_range("max_risk_per_trade", config.max_risk_per_trade, 0, 1, low_inclusive=False)
        require_range("profit_target", config.profit_target, 0, 1, low_inclusive=False)
        require_range("stop_loss", config.stop_loss, 0, 1, low_inclusive=False)
        require_range("max_position_pct", config.max_position_pct, 0, 1, low_inclusive=False)
        require_range("required_conditions", config.required_conditions, 1, 4)

    def reset(self) -> None:
        self.active_position = None

    def calculate_indicators(self, market_data: StrategyMarketData) -> MomentumIndicators:
        candles = market_data.price_data
        closes = [c.close for c in candles]
        volumes = [c.volume for c in candles]
        price = closes[-1]

        change_15 = indicators.price_change(closes, 15)
        recent = candles[-20:]
        resistance = max(c.high for c in recent)
        support = min(c.low for c in recent)

        ema9 = indicators.ema(closes[-20:], 9)
        ema21 = indicators.ema(closes[-30:], 21)
        if ema9 > ema21 * 1.01 and change_15 > 0:
            trend = "bullish"
        elif ema9 < ema21 * 0.99 and change_15 < 0:
            trend = "bearish"
        else:
            trend = "neutral"

        window = candles[-14:]
        return MomentumIndicators(
            price_change_5=indicators.price_change(closes, 5),
            price_change_15=change_15,
            price_change_60=indicators.price_change(closes, 60),
            volume_ratio=indicators.volume_ratio(volumes, recent=1, window=20),
            volume_trend=indicators.volume_trend(volumes[-20:], 5, 10),
            atr=indicators.atr(
                [c.high for c in window], [c.low for c in window], [c.close for c in window]
            ),
            adx=indicators.adx(candles[-20:]),
            trend_direction=trend,
            resistance=resistance,
            support=support,
            near_resistance=(resistance - price) / price < 0.01,
            near_support=(price - support) / price < 0.01,
        )

    def evaluate_entry(self, ind: MomentumIndicators) -> EntryConditions:
        cfg = self.config
        return EntryConditions(
            has_momentum=ind.price_change_5 > cfg.min_price_change and ind.price_change_15 > -0.01,
            has_volume=(
                ind.volume_ratio > cfg.min_volume_ratio
                or (ind.volume_ratio > 1.0 and ind.volume_trend == "increasing")
            ),
            trend_aligned=(
                (ind.trend_direction == "bullish" and ind.adx > 15)
                or ind.price_change_5 > cfg.min_price_change * 1.5
            ),
            good_entry=not ind.near_resistance or ind.price_change_5 > 0.005,
        )

    def position_size(self, portfolio_value: float, price: float) -> float:
        if price <= 0:
            return 0.0
        risk_amount = portfolio_value * self.config.max_risk_per_trade
        position_value = min(
            risk_amount / self.config.stop_loss,
            portfolio_value * self.config.max_position_pct,
        )
        return position_value / price

    def exit_reason(self, price: float, ind: MomentumIndicators) -> Optional[str]:
        position = self.active_position
        profit = (price - position.entry_price) / position.entry_price
        drawdown = (position.highest_price - price) / position.highest_price
        position.highest_price = max(position.highest_price, price)

        if profit >= self.config.profit_target:
            return f"Profit target reached: +{profit * 100:.1f}%"
        if profit <= -self.config.stop_loss:
            return f"Stop loss triggered: {profit * 100:.1f}%"
        if profit > self.TRAILING_ACTIVATION and drawdown > self.TRAILING_DISTANCE:
            return f"Trailing stop: -{drawdown * 100:.1f}% from high"
        if ind.price_change_5 < -self.REVERSAL_DROP and ind.volume_ratio > self.REVERSAL_VOLUME:
            return "Momentum reversal detected"
        return None

    async def decide(
        self,
        market_data: StrategyMarketData,
        agent_state: AgentState,
        portfolio_snapshot: PortfolioSnapshot,
    ) -> Optional[TradeOrder]:
        self.decisions_made += 1
        if len(market_data.price_data) < self.config.min_candles:
            return None
        if self._price_unusable(market_data):
            return None

        price = market_data.current_price
        ind = self.calculate_indicators(market_data)
        holding = self._position(portfolio_snapshot, market_data)

        if holding > 0:
            if self.active_position is None:
                return None
            reason = self.exit_reason(price, ind)
            if reason is None:
                return None
            self.active_position = None
            return self._create_order(market_data, TradeAction.SELL, holding, reason)

        conditions = self.evaluate_entry(ind)
        if conditions.met < self.config.required_conditions:
            return None

        size = self.position_size(portfolio_snapshot.total_value, price)
        if size <= self.MIN_POSITION_SIZE:
            return None

        self.active_position = ActivePosition(
            entry_price=price,
            entry_time=market_data.timestamp,
            highest_price=price,
            quantity=size,
        )
        self.logger.debug(
            "momentum.entry",
            price=price,
            size=size,
            conditions_met=conditions.met,
            volume_ratio=ind.volume_ratio,
        )
        return self._create_order(
            market_data,
            TradeAction.BUY,
            size,
            reason=(
                f"Momentum breakout: {ind.price_change_5 * 100:.1f}% move on "
                f"{ind.volume_ratio:.1f}x volume"
            ),
        )
