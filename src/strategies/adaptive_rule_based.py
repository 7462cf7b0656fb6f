"""
Adaptive Rule-Based Strategy

Scores buy and sell signals according to the detected market regime:
- TRENDING: follows the EMA 10/30/100 stack
- RANGING: fades RSI extremes at support and resistance
- HIGH_VOLATILITY: trades with half the usual risk

MACD, volume surges and Bollinger squeezes add confirmation points. Position
size is risk-based with a 2 ATR stop, scaled by regime and by the win rate of
the strategy's own recent round trips, and capped at 25% of the portfolio.
"""
from collections import deque
from dataclasses import dataclass
from typing import List, NamedTuple, Optional

import numpy as np

from src.core.models import (AgentState, PortfolioSnapshot, StrategyMarketData,
                             TradeAction, TradeOrder)
from src.strategies import indicators
from src.strategies.base import BaseStrategy, require_positive, require_range
from src.strategies.indicators import BollingerBands, MACDResult
from src.strategies.market_regime import MarketRegime, MarketRegimeAnalyzer


@dataclass
class AdaptiveRuleBasedConfig:
    """
    Configuration for the adaptive rule-based strategy.

    Attributes:
        min_candles: History required before any decision
        base_risk_per_trade: Fraction of portfolio risked per entry
        max_position_size: Cap on position value as a fraction of portfolio
        min_win_rate: Trading pauses below this recent win rate
        adaptive_period: Number of round trips remembered
        max_volatility_ratio: ATR / price above which trading pauses
        min_ranging_volatility: Quiet ranging markets below this are skipped
    """
    min_candles: int = 200
    base_risk_per_trade: float = 0.01
    max_position_size: float = 0.25
    min_win_rate: float = 0.45
    adaptive_period: int = 50
    max_volatility_ratio: float = 0.05
    min_ranging_volatility: float = 0.01


class AdaptiveIndicators(NamedTuple):
    ema10: float
    ema30: float
    ema100: float
    trend_strength: float
    regime: MarketRegime
    rsi: float
    rsi_zone: str
    macd: MACDResult
    momentum: float
    atr: float
    volatility_ratio: float
    bands: BollingerBands
    volume_ratio: float
    volume_trend: str
    price_level: str
    support: float
    resistance: float

    @property
    def band_width_ratio(self) -> float:
        return self.bands.width / self.bands.middle if self.bands.middle else 0.0


class AdaptiveRuleBasedStrategy(BaseStrategy):
    """Regime-aware signal scoring strategy."""

    id = "adaptive-rule-based-v1"
    name = "Adaptive Rule-Based Trading Strategy"
    description = "An adaptive strategy that adjusts parameters based on market conditions"
    config_class = AdaptiveRuleBasedConfig

    # Minimum trades before win rate is trusted
    MIN_TRADES_FOR_WIN_RATE = 10
    MIN_TRADES_TO_PAUSE = 20
    MIN_POSITION_SIZE = 0.001

    def __init__(self, config: Optional[AdaptiveRuleBasedConfig] = None, **kwargs):
        super().__init__(config, **kwargs)
        self.regime_analyzer = MarketRegimeAnalyzer()
        self.recent_trades: deque = deque(maxlen=self.config.adaptive_period)
        self._entry_price: Optional[float] = None

    def validate_config(self, config: AdaptiveRuleBasedConfig) -> None:
        require_positive("min_candles", config.min_candles)
        require_range("base_risk_per_trade", config.base_risk_per_trade, 0, 1, low_inclusive=False)
        require_range("max_position_size", config.max_position_size, 0, 1, low_inclusive=False)
        require_range("min_win_rate", config.min_win_rate, 0, 1)
        require_positive("adaptive_period", config.adaptive_period)

    def reset(self) -> None:
        self.recent_trades = deque(maxlen=self.config.adaptive_period)
        self._entry_price = None

    def record_trade_result(self, profit: bool) -> None:
        """Remember whether a round trip was profitable."""
        self.recent_trades.append(profit)

    @property
    def recent_win_rate(self) -> float:
        if len(self.recent_trades) < self.MIN_TRADES_FOR_WIN_RATE:
            return 0.5
        return sum(self.recent_trades) / len(self.recent_trades)

    # -------------------------------------------------------------------------
    # Indicator calculation
    # -------------------------------------------------------------------------

    def calculate_indicators(self, market_data: StrategyMarketData) -> AdaptiveIndicators:
        candles = market_data.price_data
        closes = [c.close for c in candles]
        highs = [c.high for c in candles]
        lows = [c.low for c in candles]
        volumes = [c.volume for c in candles]
        price = closes[-1]

        ema10 = indicators.ema(closes, 10)
        ema30 = indicators.ema(closes, 30)
        ema100 = indicators.ema(closes, 100)

        rsi = indicators.rsi(closes, 14)
        if rsi is None:
            rsi = 50.0
        rsi_zone = "oversold" if rsi < 35 else "overbought" if rsi > 65 else "neutral"

        macd = indicators.macd(closes) or MACDResult(0.0, 0.0, 0.0)
        atr = indicators.atr(highs, lows, closes, 14)
        bands = indicators.bollinger_bands(closes, 20, 2)

        average_volume = float(np.mean(volumes[-20:]))
        volume_ratio = volumes[-1] / average_volume if average_volume > 0 else 0.0

        band_ratio = bands.width / bands.middle if bands.middle else 0.0
        regime = self.regime_analyzer.classify_structure(closes, atr, band_ratio)

        support = min(lows[-20:])
        resistance = max(highs[-20:])

        return AdaptiveIndicators(
            ema10=ema10,
            ema30=ema30,
            ema100=ema100,
            trend_strength=self._trend_strength(price, ema10, ema30, ema100),
            regime=regime,
            rsi=rsi,
            rsi_zone=rsi_zone,
            macd=macd,
            momentum=indicators.price_change(closes, 11),
            atr=atr,
            volatility_ratio=atr / price if price > 0 else 0.0,
            bands=bands,
            volume_ratio=volume_ratio,
            volume_trend=self._volume_trend(volumes),
            price_level=self._price_level(price, support, resistance),
            support=support,
            resistance=resistance,
        )

    @staticmethod
    def _trend_strength(price: float, ema10: float, ema30: float, ema100: float) -> float:
        """0-1 score, strongest when price and all three EMAs line up."""
        if min(ema10, ema30, ema100) <= 0:
            return 0.0
        short_trend = (price - ema10) / ema10
        medium_trend = (ema10 - ema30) / ema30
        long_trend = (ema30 - ema100) / ema100
        total = short_trend + medium_trend + long_trend

        if np.sign(short_trend) == np.sign(medium_trend) == np.sign(long_trend):
            return min(abs(total) * 10, 1.0)
        return abs(total) * 3

    @staticmethod
    def _volume_trend(volumes: List[float]) -> str:
        """Last 5 candles against the 5 before them."""
        if len(volumes) < 10:
            return "stable"
        recent = float(np.mean(volumes[-5:]))
        previous = float(np.mean(volumes[-10:-5]))
        if previous <= 0:
            return "stable"
        change = (recent - previous) / previous
        if change > 0.2:
            return "increasing"
        if change < -0.2:
            return "decreasing"
        return "stable"

    @staticmethod
    def _price_level(price: float, support: float, resistance: float) -> str:
        price_range = resistance - support
        if price_range <= 0:
            return "neutral"
        position = (price - support) / price_range
        if position < 0.2:
            return "support"
        if position > 0.8:
            return "resistance"
        return "neutral"

    # -------------------------------------------------------------------------
    # Decision logic
    # -------------------------------------------------------------------------

    def should_trade(self, ind: AdaptiveIndicators) -> bool:
        if ind.volatility_ratio > self.config.max_volatility_ratio:
            return False
        if ind.regime == MarketRegime.RANGING and ind.volatility_ratio < self.config.min_ranging_volatility:
            return False
        if (
            self.recent_win_rate < self.config.min_win_rate
            and len(self.recent_trades) >= self.MIN_TRADES_TO_PAUSE
        ):
            return False
        return True

    def generate_signal(self, ind: AdaptiveIndicators, holding: float) -> Optional[tuple]:
        """Score the indicators and return (action, reason) or None."""
        buy = 0
        sell = 0
        reasons = []

        if ind.regime.is_trending:
            if ind.ema10 > ind.ema30 > ind.ema100:
                buy += 2
                reasons.append("Strong uptrend")
            elif ind.ema10 < ind.ema30 < ind.ema100:
                sell += 2
                reasons.append("Strong downtrend")

        if ind.regime == MarketRegime.RANGING:
            if ind.rsi_zone == "oversold" and ind.price_level == "support":
                buy += 2
                reasons.append("Oversold at support")
            elif ind.rsi_zone == "overbought" and ind.price_level == "resistance":
                sell += 2
                reasons.append("Overbought at resistance")

        if ind.macd.histogram > 0 and ind.macd.macd > ind.macd.signal:
            buy += 1
            reasons.append("MACD bullish")
        elif ind.macd.histogram < 0 and ind.macd.macd < ind.macd.signal:
            sell += 1
            reasons.append("MACD bearish")

        if ind.volume_trend == "increasing" and ind.volume_ratio > 1.5:
            if ind.momentum > 0:
                buy += 1
                reasons.append("Volume surge on upward momentum")
            else:
                sell += 1
                reasons.append("Volume surge on downward momentum")

        # Bollinger squeeze
        if ind.band_width_ratio < 0.02:
            if ind.momentum > 0 and ind.macd.histogram > 0:
                buy += 1
                reasons.append("Bollinger squeeze breakout bullish")
            elif ind.momentum < 0 and ind.macd.histogram < 0:
                sell += 1
                reasons.append("Bollinger squeeze breakout bearish")

        if holding > 0:
            if sell >= 3 or ind.trend_strength < 0.2:
                return TradeAction.SELL, "Exit long: " + ", ".join(reasons)
            return None

        required = 3 if ind.regime.is_trending else 4
        if buy >= required:
            return TradeAction.BUY, "Enter long: " + ", ".join(reasons)
        return None

    def position_size(self, ind: AdaptiveIndicators, portfolio_value: float, price: float) -> float:
        if price <= 0 or ind.atr <= 0:
            return 0.0

        risk_amount = portfolio_value * self.config.base_risk_per_trade
        if ind.regime == MarketRegime.HIGH_VOLATILITY:
            risk_amount *= 0.5
        elif ind.regime.is_trending and ind.trend_strength > 0.7:
            risk_amount *= 1.5

        win_rate = self.recent_win_rate
        if win_rate > 0.6:
            risk_amount *= 1.2
        elif win_rate < 0.4:
            risk_amount *= 0.8

        stop_distance = ind.atr * 2
        position_value = risk_amount / (stop_distance / price)
        max_position = portfolio_value * self.config.max_position_size / price
        return min(position_value / price, max_position)

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

        ind = self.calculate_indicators(market_data)
        if not self.should_trade(ind):
            return None

        holding = self._position(portfolio_snapshot, market_data)
        signal = self.generate_signal(ind, holding)
        if signal is None:
            return None

        action, reason = signal
        price = market_data.current_price

        if action == TradeAction.SELL:
            if self._entry_price is not None:
                self.record_trade_result(price > self._entry_price)
                self._entry_price = None
            return self._create_order(market_data, TradeAction.SELL, holding, reason)

        size = self.position_size(ind, portfolio_snapshot.total_value, price)
        if size < self.MIN_POSITION_SIZE:
            return None

        self._entry_price = price
        return self._create_order(market_data, TradeAction.BUY, size, reason)
