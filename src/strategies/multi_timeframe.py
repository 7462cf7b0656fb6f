"""
Multi-Timeframe Strategy

Aggregates the base candles into 5, 15 and 60 candle bars and reads the trend
on each. A trade is only considered when the timeframes agree (trend) or when
the short term turns up against a falling long term (accumulation).

Setups:
1. Trend continuation: price within 2% above a clustered key level
2. Accumulation breakout: price at the medium-term resistance
3. Volume node retest: price within 1% of the highest-volume price bucket

The best setup must reach 0.7 confidence. Orders are LIMIT BUYs at the setup
entry, sized by risk to the stop and scaled by a Kelly fraction.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from src.core.exceptions import ValidationError
from src.core.models import (AgentState, OrderType, PortfolioSnapshot,
                             StrategyMarketData, TradeAction, TradeOrder)
from src.strategies import indicators
from src.strategies.base import BaseStrategy, require_positive, require_range


@dataclass
class MultiTimeframeConfig:
    """
    Configuration for the multi-timeframe strategy.

    Attributes:
        min_candles: History required before any decision
        timeframes: Bar sizes (in base candles) for short, medium and long term
        max_risk_per_trade: Fraction of portfolio risked to the stop
        min_confidence: Lowest setup confidence that is traded
        max_open_positions: Skip new setups at this many open positions
        min_position_units: Cash must cover this many units at the entry
    """
    min_candles: int = 300
    timeframes: Dict[str, int] = field(
        default_factory=lambda: {"short": 5, "medium": 15, "long": 60}
    )
    max_risk_per_trade: float = 0.02
    min_confidence: float = 0.7
    max_open_positions: int = 3
    min_position_units: float = 100.0


@dataclass
class TimeframeAnalysis:
    trend: str = "neutral"  # bullish, bearish or neutral
    strength: float = 0.0
    support: float = 0.0
    resistance: float = 0.0
    volatility: float = 0.0
    volume: str = "normal"


@dataclass
class MarketContext:
    short_term: TimeframeAnalysis
    medium_term: TimeframeAnalysis
    long_term: TimeframeAnalysis
    structure: str
    key_levels: List[float]
    volume_profile: List[tuple]


@dataclass
class TradeSetup:
    entry: float
    stop_loss: float
    targets: List[float]
    confidence: float
    reasoning: str
    risk_reward_ratio: float


class MultiTimeframeStrategy(BaseStrategy):
    """Aligns three aggregated timeframes before buying at key levels."""

    id = "multi-timeframe-v1"
    name = "Multi-Timeframe Trading Strategy"
    description = "Analyzes multiple timeframes for high-probability setups"
    config_class = MultiTimeframeConfig

    MIN_BARS = 20
    CLUSTER_GAP = 0.005       # 0.5% between sorted price points
    MIN_CLUSTER_SIZE = 3
    MAX_KEY_LEVELS = 10
    VOLUME_BUCKET = 0.001
    MAX_VOLUME_NODES = 20
    MIN_POSITION_SIZE = 0.001
    CASH_BUFFER = 0.99

    def validate_config(self, config: MultiTimeframeConfig) -> None:
        require_positive("min_candles", config.min_candles)
        for key in ("short", "medium", "long"):
            if key not in config.timeframes:
                raise ValidationError(f"timeframes must define '{key}'")
            require_positive(f"timeframes.{key}", config.timeframes[key])
        require_range("max_risk_per_trade", config.max_risk_per_trade, 0, 1, low_inclusive=False)
        require_range("min_confidence", config.min_confidence, 0, 1)
        require_positive("max_open_positions", config.max_open_positions)

    # -------------------------------------------------------------------------
    # Analysis
    # -------------------------------------------------------------------------

    def analyze_timeframe(self, bars: pd.DataFrame) -> TimeframeAnalysis:
        if len(bars) < self.MIN_BARS:
            return TimeframeAnalysis()

        closes = bars["close"].to_numpy()
        highs = bars["high"].to_numpy()
        lows = bars["low"].to_numpy()
        volumes = bars["volume"].to_numpy()
        price = float(closes[-1])

        ema9 = indicators.ema(closes, 9)
        ema21 = indicators.ema(closes, 21)
        ema50 = indicators.ema(closes, min(50, len(closes) - 1))

        if ema9 > ema21 > ema50 and price > ema9:
            trend = "bullish"
            strength = min((price - ema50) / ema50 * 10, 1.0)
        elif ema9 < ema21 < ema50 and price < ema9:
            trend = "bearish"
            strength = min((ema50 - price) / ema50 * 10, 1.0)
        else:
            trend = "neutral"
            strength = 0.3

        atr = indicators.atr(highs, lows, closes, 14)
        ratio = indicators.volume_ratio(volumes, recent=5, window=20)
        volume = "high" if ratio > 1.5 else "low" if ratio < 0.7 else "normal"

        return TimeframeAnalysis(
            trend=trend,
            strength=strength,
            support=float(lows[-20:].min()),
            resistance=float(highs[-20:].max()),
            volatility=atr / price if price > 0 else 0.0,
            volume=volume,
        )

    @staticmethod
    def market_structure(
        short: TimeframeAnalysis, medium: TimeframeAnalysis, long: TimeframeAnalysis
    ) -> str:
        if short.trend == medium.trend == long.trend and short.trend != "neutral":
            return "trend"
        if short.trend == "bullish" and long.trend == "bearish":
            return "accumulation"
        if short.trend == "bearish" and long.trend == "bullish":
            return "distribution"
        return "range"

    def find_key_levels(self, frames: List[pd.DataFrame]) -> List[float]:
        """Centers of dense clusters among all bar highs and lows."""
        points = np.sort(
            np.concatenate(
                [np.concatenate([f["high"].to_numpy(), f["low"].to_numpy()]) for f in frames]
            )
        )
        if len(points) == 0:
            return []

        levels = []
        cluster = [points[0]]
        for previous, price in zip(points[:-1], points[1:]):
            if previous > 0 and (price - previous) / previous < self.CLUSTER_GAP:
                cluster.append(price)
                continue
            if len(cluster) >= self.MIN_CLUSTER_SIZE:
                levels.append(float(np.mean(cluster)))
            cluster = [price]
        if len(cluster) >= self.MIN_CLUSTER_SIZE:
            levels.append(float(np.mean(cluster)))

        return levels[-self.MAX_KEY_LEVELS:]

    def volume_profile(self, bars: pd.DataFrame) -> List[tuple]:
        """(price, volume) of the busiest price buckets, busiest first."""
        if bars.empty:
            return []
        mid = (bars["high"] + bars["low"]) / 2
        buckets = (mid / self.VOLUME_BUCKET).round() * self.VOLUME_BUCKET
        profile = bars["volume"].groupby(buckets).sum().sort_values(ascending=False, kind="stable")
        return [(float(p), float(v)) for p, v in profile.head(self.MAX_VOLUME_NODES).items()]

    def analyze_market(self, market_data: StrategyMarketData) -> MarketContext:
        tf = self.config.timeframes
        short_bars = indicators.aggregate_candles(market_data.price_data, tf["short"])
        medium_bars = indicators.aggregate_candles(market_data.price_data, tf["medium"])
        long_bars = indicators.aggregate_candles(market_data.price_data, tf["long"])

        short = self.analyze_timeframe(short_bars)
        medium = self.analyze_timeframe(medium_bars)
        long = self.analyze_timeframe(long_bars)

        return MarketContext(
            short_term=short,
            medium_term=medium,
            long_term=long,
            structure=self.market_structure(short, medium, long),
            key_levels=self.find_key_levels([short_bars, medium_bars, long_bars]),
            volume_profile=self.volume_profile(short_bars),
        )

    @staticmethod
    def is_favorable(context: MarketContext) -> bool:
        if context.structure == "range" and context.short_term.volatility < 0.01:
            return False
        if context.long_term.trend == "bearish" and context.long_term.strength > 0.7:
            return False
        return context.structure in ("trend", "accumulation")

    # -------------------------------------------------------------------------
    # Setups and sizing
    # -------------------------------------------------------------------------

    def find_setup(self, context: MarketContext, price: float) -> Optional[TradeSetup]:
        setups = []

        if context.structure == "trend" and context.short_term.trend == context.long_term.trend:
            below = [level for level in context.key_levels if level < price]
            if below:
                support = max(below)
                if (price - support) / price < 0.02:
                    entry = support * 1.001
                    stop = support * 0.98
                    risk = entry - stop
                    setups.append(
                        TradeSetup(
                            entry=entry,
                            stop_loss=stop,
                            targets=[entry + risk * m for m in (1.5, 2.5, 4.0)],
                            confidence=0.8,
                            reasoning=f"Trend continuation buy at key support {support:.4f}",
                            risk_reward_ratio=2.5,
                        )
                    )

        if context.structure == "accumulation":
            resistance = context.medium_term.resistance
            if resistance * 0.995 < price < resistance * 1.005:
                entry = resistance * 1.002
                stop = resistance * 0.99
                risk = entry - stop
                setups.append(
                    TradeSetup(
                        entry=entry,
                        stop_loss=stop,
                        targets=[entry + risk * m for m in (2.0, 3.0, 5.0)],
                        confidence=0.85,
                        reasoning=f"Accumulation breakout above {resistance:.4f}",
                        risk_reward_ratio=3.0,
                    )
                )

        if context.volume_profile:
            node_price = context.volume_profile[0][0]
            if node_price > 0 and abs(price - node_price) / price < 0.01:
                entry = node_price
                stop = entry * 0.985
                risk = entry - stop
                setups.append(
                    TradeSetup(
                        entry=entry,
                        stop_loss=stop,
                        targets=[entry + risk * m for m in (1.5, 2.0, 3.0)],
                        confidence=0.75,
                        reasoning=f"High volume node support at {node_price:.4f}",
                        risk_reward_ratio=2.0,
                    )
                )

        if not setups:
            return None
        return max(setups, key=lambda s: s.confidence)

    def portfolio_allows(
        self, snapshot: PortfolioSnapshot, market_data: StrategyMarketData, setup: TradeSetup
    ) -> bool:
        quote = market_data.quote_asset
        if snapshot.holding(quote) < setup.entry * self.config.min_position_units:
            return False
        open_positions = sum(1 for k, v in snapshot.holdings.items() if k != quote and v > 0)
        return open_positions < self.config.max_open_positions

    def position_size(self, setup: TradeSetup, portfolio_value: float) -> float:
        stop_distance = abs(setup.entry - setup.stop_loss)
        if stop_distance <= 0 or setup.entry <= 0:
            return 0.0

        risk_amount = portfolio_value * self.config.max_risk_per_trade
        position_value = risk_amount / (stop_distance / setup.entry)

        kelly = (
            setup.confidence * setup.risk_reward_ratio - (1 - setup.confidence)
        ) / setup.risk_reward_ratio
        return position_value / setup.entry * max(0.25, min(1.0, kelly))

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

        context = self.analyze_market(market_data)
        if not self.is_favorable(context):
            return None

        setup = self.find_setup(context, market_data.current_price)
        if setup is None or setup.confidence < self.config.min_confidence:
            return None

        if not self.portfolio_allows(portfolio_snapshot, market_data, setup):
            return None

        size = self.position_size(setup, portfolio_snapshot.total_value)
        # The limit fill plus fees must be affordable
        size = min(size, self._cash(portfolio_snapshot, market_data) * self.CASH_BUFFER / setup.entry)
        if size < self.MIN_POSITION_SIZE:
            return None

        self.logger.debug(
            "multi_timeframe.setup",
            structure=context.structure,
            entry=setup.entry,
            stop_loss=setup.stop_loss,
            confidence=setup.confidence,
        )
        return self._create_order(
            market_data,
            TradeAction.BUY,
            size,
            reason=(
                f"{setup.reasoning} | SL: {setup.stop_loss:.4f} | "
                f"RR: {setup.risk_reward_ratio:.1f}"
            ),
            order_type=OrderType.LIMIT,
            price=setup.entry,
        )
