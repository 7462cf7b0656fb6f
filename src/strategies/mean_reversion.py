"""
Mean Reversion Strategy

Buys when price stretches to the lower Bollinger Band with an oversold RSI and
sells at the upper band with an overbought RSI. An open position is also
closed when price returns to the middle band, or when the stop loss or take
profit measured from the last entry is hit.

Entries are skipped outside the configured volatility range or when recent
volume is thin.
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional

from src.core.exceptions import ValidationError
from src.core.models import (AgentState, PortfolioSnapshot, StrategyMarketData,
                             TradeAction, TradeOrder)
from src.strategies import indicators
from src.strategies.base import BaseStrategy, require_positive, require_range


@dataclass
class MeanReversionConfig:
    """
    Configuration for the mean reversion strategy.

    Attributes:
        bb_period: Bollinger Band lookback
        bb_std_dev: Band width in standard deviations
        rsi_period: RSI lookback
        rsi_oversold: RSI below this confirms a BUY
        rsi_overbought: RSI above this confirms a SELL
        position_size_percent: Fraction of portfolio value per BUY
        stop_loss_percent: Exit when price falls this far below entry
        take_profit_percent: Exit when price rises this far above entry
        min_volatility: Skip entries below this agent volatility
        max_volatility: Skip entries above this agent volatility
        min_volume_ratio: Last 5 candle volume over the 20 candle average
        bb_entry_threshold: 1.0 requires a band touch, lower values enter earlier
        rsi_confirmation: Require the RSI condition for band signals
        mean_exit_distance: Close when within this distance of the middle band
    """
    bb_period: int = 20
    bb_std_dev: float = 2.0
    rsi_period: int = 14
    rsi_oversold: float = 30.0
    rsi_overbought: float = 70.0
    position_size_percent: float = 0.02
    stop_loss_percent: float = 0.03
    take_profit_percent: float = 0.02
    min_volatility: float = 0.01
    max_volatility: float = 0.05
    min_volume_ratio: float = 1.2
    bb_entry_threshold: float = 0.95
    rsi_confirmation: bool = True
    mean_exit_distance: float = 0.01


class MeanReversionStrategy(BaseStrategy):
    """Bollinger Band and RSI mean reversion."""

    id = "mean-reversion-strategy"
    name = "MeanReversionStrategy"
    description = "A strategy that trades on mean reversion patterns using Bollinger Bands and RSI"
    config_class = MeanReversionConfig

    def __init__(self, config: Optional[MeanReversionConfig] = None, **kwargs):
        super().__init__(config, **kwargs)
        self._initialized = False
        self._entry_price: Optional[float] = None

    def validate_config(self, config: MeanReversionConfig) -> None:
        require_positive("bb_period", config.bb_period)
        require_positive("bb_std_dev", config.bb_std_dev)
        require_positive("rsi_period", config.rsi_period)
        require_range("rsi_oversold", config.rsi_oversold, 0, 100, low_inclusive=False)
        require_range("rsi_overbought", config.rsi_overbought, 0, 100, low_inclusive=False)
        if config.rsi_oversold >= config.rsi_overbought:
            raise ValidationError("rsi_oversold must be less than rsi_overbought")
        require_range("position_size_percent", config.position_size_percent, 0, 1, low_inclusive=False)
        require_range("stop_loss_percent", config.stop_loss_percent, 0, 1)
        require_range("take_profit_percent", config.take_profit_percent, 0, 1)
        require_range("min_volatility", config.min_volatility, 0, 1)
        require_range("max_volatility", config.max_volatility, 0, 1)
        if config.min_volatility > config.max_volatility:
            raise ValidationError("min_volatility must not exceed max_volatility")
        require_range("bb_entry_threshold", config.bb_entry_threshold, 0, 1, low_inclusive=False)
        require_range("mean_exit_distance", config.mean_exit_distance, 0, 1)

    async def initialize(self, context: Optional[Dict[str, Any]] = None) -> None:
        await super().initialize(context)
        self._initialized = True

    def is_ready(self) -> bool:
        return self._initialized

    def reset(self) -> None:
        self._entry_price = None

    @property
    def min_candles(self) -> int:
        return max(self.config.bb_period, self.config.rsi_period) + 10

    def _exit_reason(self, price: float, middle: float) -> Optional[str]:
        distance = abs(price - middle) / middle if middle else 0.0
        if distance < self.config.mean_exit_distance:
            return f"Price returned to mean ({distance * 100:.2f}% from middle BB)"

        if self._entry_price:
            change = (price - self._entry_price) / self._entry_price
            if self.config.stop_loss_percent and change <= -self.config.stop_loss_percent:
                return f"Stop loss: {change * 100:.2f}% from entry"
            if self.config.take_profit_percent and change >= self.config.take_profit_percent:
                return f"Take profit: +{change * 100:.2f}% from entry"
        return None

    async def decide(
        self,
        market_data: StrategyMarketData,
        agent_state: AgentState,
        portfolio_snapshot: PortfolioSnapshot,
    ) -> Optional[TradeOrder]:
        self.decisions_made += 1
        cfg = self.config
        if len(market_data.price_data) < self.min_candles:
            return None
        if self._price_unusable(market_data):
            return None

        closes = [c.close for c in market_data.price_data]
        volumes = [c.volume for c in market_data.price_data]
        bands = indicators.bollinger_bands(closes, cfg.bb_period, cfg.bb_std_dev)
        rsi = indicators.rsi(closes, cfg.rsi_period)
        if bands is None or rsi is None:
            return None

        price = market_data.current_price
        holding = self._position(portfolio_snapshot, market_data)
        slack = 1 - cfg.bb_entry_threshold

        # Upper band: take the other side of the stretch
        if holding > 0 and price >= bands.upper * (1 - slack):
            if not cfg.rsi_confirmation or rsi > cfg.rsi_overbought:
                self._entry_price = None
                return self._create_order(
                    market_data,
                    TradeAction.SELL,
                    holding,
                    reason=f"Mean reversion sell: price at upper BB {bands.upper:.4f}, RSI: {rsi:.2f}",
                )

        if holding > 0:
            reason = self._exit_reason(price, bands.middle)
            if reason:
                self._entry_price = None
                return self._create_order(market_data, TradeAction.SELL, holding, reason)

        volatility = agent_state.volatility
        if not cfg.min_volatility <= volatility <= cfg.max_volatility:
            self.logger.debug("mean_reversion.volatility_filtered", volatility=volatility)
            return None

        ratio = indicators.volume_ratio(volumes, recent=5, window=20)
        if ratio < cfg.min_volume_ratio:
            self.logger.debug("mean_reversion.volume_filtered", volume_ratio=ratio)
            return None

        if price <= bands.lower * (1 + slack):
            if not cfg.rsi_confirmation or rsi < cfg.rsi_oversold:
                quantity = portfolio_snapshot.total_value * cfg.position_size_percent / price
                order = self._create_order(
                    market_data,
                    TradeAction.BUY,
                    quantity,
                    reason=f"Mean reversion buy: price at lower BB {bands.lower:.4f}, RSI: {rsi:.2f}",
                )
                if order is not None:
                    self._entry_price = price
                return order

        return None
