"""
Market Regime Classification.

Classifies the recent price history as trending, ranging or highly volatile.
Used by the adaptive rule-based and optimized momentum strategies to decide
whether, and how aggressively, to trade.
"""

from enum import Enum
from typing import Sequence

import numpy as np
import pandas as pd


class MarketRegime(str, Enum):
    """Market regime classification."""

    TRENDING_UP = "trending_up"
    TRENDING_DOWN = "trending_down"
    RANGING = "ranging"
    HIGH_VOLATILITY = "high_volatility"

    @property
    def is_trending(self) -> bool:
        return self in (MarketRegime.TRENDING_UP, MarketRegime.TRENDING_DOWN)


class MarketRegimeAnalyzer:
    """Classify market regimes from closing prices."""

    def __init__(
        self,
        high_volatility_threshold: float = 0.02,  # Std of step returns
        trend_change_threshold: float = 0.05,  # 5% move over the lookback
        trend_volatility_ceiling: float = 0.015,
        atr_volatility_threshold: float = 0.03,  # ATR / price
        squeeze_width_threshold: float = 0.02,  # Bollinger width / middle
        directional_share: float = 0.65,
        direction_lookback: int = 20,
    ):
        self.high_volatility_threshold = high_volatility_threshold
        self.trend_change_threshold = trend_change_threshold
        self.trend_volatility_ceiling = trend_volatility_ceiling
        self.atr_volatility_threshold = atr_volatility_threshold
        self.squeeze_width_threshold = squeeze_width_threshold
        self.directional_share = directional_share
        self.direction_lookback = direction_lookback

    def classify_trend(self, closes: Sequence[float], lookback: int) -> MarketRegime:
        """
        Classify by net move and return volatility over the last ``lookback`` closes.

        Args:
            closes: Closing prices, oldest first
            lookback: Number of closes to consider

        Returns:
            HIGH_VOLATILITY when step returns are noisy, a trending regime for a
            large and smooth move, RANGING otherwise
        """
        prices = pd.Series(list(closes[-lookback:]), dtype=float)
        if len(prices) < 2 or prices.iloc[0] <= 0:
            return MarketRegime.RANGING

        net_change = (prices.iloc[-1] - prices.iloc[0]) / prices.iloc[0]
        volatility = float(prices.pct_change().dropna().std(ddof=0))

        if volatility > self.high_volatility_threshold:
            return MarketRegime.HIGH_VOLATILITY
        if (
            abs(net_change) > self.trend_change_threshold
            and volatility < self.trend_volatility_ceiling
        ):
            return (
                MarketRegime.TRENDING_UP if net_change > 0 else MarketRegime.TRENDING_DOWN
            )
        return MarketRegime.RANGING

    def classify_structure(
        self, closes: Sequence[float], atr_value: float, band_width_ratio: float
    ) -> MarketRegime:
        """
        Classify from ATR, Bollinger width and the share of up-moves.

        Args:
            closes: Closing prices, oldest first
            atr_value: Average true range at the last close
            band_width_ratio: Bollinger band width divided by its middle band

        Returns:
            The detected MarketRegime
        """
        if len(closes) < 2 or closes[-1] <= 0:
            return MarketRegime.RANGING

        if atr_value / closes[-1] > self.atr_volatility_threshold:
            return MarketRegime.HIGH_VOLATILITY

        if band_width_ratio < self.squeeze_width_threshold:
            return MarketRegime.RANGING

        window = np.asarray(closes[-self.direction_lookback:], dtype=float)
        returns = np.diff(window) / window[:-1]
        if len(returns) == 0:
            return MarketRegime.RANGING

        up_share = float((returns > 0).mean())
        if up_share > self.directional_share:
            return MarketRegime.TRENDING_UP
        if up_share < 1 - self.directional_share:
            return MarketRegime.TRENDING_DOWN
        return MarketRegime.RANGING
