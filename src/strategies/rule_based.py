"""
Rule-Based Strategy

Evaluates a list of technical-indicator rules at every candle. Each rule names
the action it votes for; any BUY rule that fires opens a position sized as a
fraction of cash, any SELL rule that fires liquidates the held asset.

Supported rule types:
- RSI: oversold threshold for BUY rules, overbought threshold for SELL rules
- SMA_CROSSOVER / EMA_CROSSOVER: short average crossing the long average
- MACD_CROSS: MACD line crossing its signal line
- PRICE_ACTION: close breaking the N-candle high (BUY) or low (SELL)
- VOLUME: traded volume over the last 24 candles above a floor
"""
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from src.core.exceptions import ValidationError
from src.core.models import (AgentState, PortfolioSnapshot, StrategyMarketData,
                             TradeAction, TradeOrder)
from src.strategies import indicators
from src.strategies.base import BaseStrategy, require_positive, require_range

DEFAULT_MIN_INDICATOR_DATA_POINTS = 20
MIN_CASH_TO_BUY = 10.0
VOLUME_WINDOW = 24


class RuleType(str, Enum):
    """Kinds of rule a RuleBasedStrategy understands."""
    RSI = "RSI"
    SMA_CROSSOVER = "SMA_CROSSOVER"
    EMA_CROSSOVER = "EMA_CROSSOVER"
    VOLUME = "VOLUME"
    PRICE_ACTION = "PRICE_ACTION"
    MACD_CROSS = "MACD_CROSS"


@dataclass
class RuleCondition:
    """
    A single trading rule.

    Only the fields relevant to ``type`` are used.
    """
    type: RuleType
    action: TradeAction

    # RSI
    rsi_period: int = 14
    rsi_oversold: Optional[float] = None
    rsi_overbought: Optional[float] = None

    # SMA/EMA crossover
    short_ma_period: Optional[int] = None
    long_ma_period: Optional[int] = None
    ma_type: Optional[str] = None  # "SMA" or "EMA"

    # VOLUME
    min_volume_24h: Optional[float] = None

    # PRICE_ACTION
    price_breaks_n_high: Optional[int] = None
    price_breaks_n_low: Optional[int] = None

    # MACD
    macd_fast_period: int = 12
    macd_slow_period: int = 26
    macd_signal_period: int = 9

    def __post_init__(self):
        if self.ma_type is None and self.type in (RuleType.SMA_CROSSOVER, RuleType.EMA_CROSSOVER):
            self.ma_type = "EMA" if self.type == RuleType.EMA_CROSSOVER else "SMA"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RuleCondition":
        values = dict(data)
        try:
            values["type"] = RuleType(str(values["type"]).upper())
            values["action"] = TradeAction(str(values["action"]).upper())
            return cls(**values)
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Invalid rule definition {data!r}: {e}") from e

    @property
    def longest_period(self) -> int:
        if self.type == RuleType.RSI:
            return self.rsi_period
        if self.type in (RuleType.SMA_CROSSOVER, RuleType.EMA_CROSSOVER):
            return self.long_ma_period or 0
        if self.type == RuleType.MACD_CROSS:
            return self.macd_slow_period + self.macd_signal_period
        if self.type == RuleType.PRICE_ACTION:
            return max(self.price_breaks_n_high or 0, self.price_breaks_n_low or 0)
        return 0


def _default_rules() -> List[RuleCondition]:
    return [
        RuleCondition(type=RuleType.RSI, action=TradeAction.BUY, rsi_oversold=30),
        RuleCondition(type=RuleType.RSI, action=TradeAction.SELL, rsi_overbought=70),
    ]


@dataclass
class RuleBasedStrategyConfig:
    """
    Configuration for the rule-based strategy.

    Attributes:
        rules: Rules evaluated at every candle
        trade_size_percentage: Fraction of cash spent per BUY
        fixed_trade_quantity: Quantity used when no percentage is set
        min_indicator_data_points: Candles required before evaluating rules
    """
    rules: List[RuleCondition] = field(default_factory=_default_rules)
    trade_size_percentage: Optional[float] = 0.01
    fixed_trade_quantity: Optional[float] = 1.0
    min_indicator_data_points: int = DEFAULT_MIN_INDICATOR_DATA_POINTS

    @property
    def points_needed_by_rules(self) -> int:
        longest = max((rule.longest_period for rule in self.rules), default=0)
        return longest + 1 if longest > 0 else 1


class RuleBasedStrategy(BaseStrategy):
    """Trades on configurable technical-indicator rules."""

    id = "rule-based-v1"
    name = "Rule-Based Trading Strategy"
    description = "Makes trading decisions based on technical indicators and thresholds."
    config_class = RuleBasedStrategyConfig

    def __init__(self, config: Optional[RuleBasedStrategyConfig] = None, **kwargs):
        super().__init__(config, **kwargs)
        self.config = self._adjust_min_points(self.config, explicit=False)

    def configure(self, params: Dict[str, Any]) -> None:
        params = dict(params)
        if "rules" in params:
            rules = params["rules"] or []
            params["rules"] = [
                rule if isinstance(rule, RuleCondition) else RuleCondition.from_dict(rule)
                for rule in rules
            ]
        if "fixed_trade_quantity" in params and "trade_size_percentage" not in params:
            params["trade_size_percentage"] = None

        explicit = "min_indicator_data_points" in params
        if explicit and params["min_indicator_data_points"] < 1:
            raise ValidationError("min_indicator_data_points must be at least 1")

        super().configure(params)
        self.config = self._adjust_min_points(self.config, explicit=explicit)

    def _adjust_min_points(
        self, config: RuleBasedStrategyConfig, explicit: bool
    ) -> RuleBasedStrategyConfig:
        """Make sure enough candles are required for the longest rule period."""
        needed = config.points_needed_by_rules
        if explicit:
            if config.min_indicator_data_points < needed:
                self.logger.warning(
                    "rule_based.min_points_adjusted",
                    requested=config.min_indicator_data_points,
                    adjusted=needed,
                )
                return replace(config, min_indicator_data_points=needed)
            return config
        return replace(
            config,
            min_indicator_data_points=max(config.min_indicator_data_points, needed),
        )

    def validate_config(self, config: RuleBasedStrategyConfig) -> None:
        if not config.rules:
            raise ValidationError("At least one rule must be configured")

        for rule in config.rules:
            self._validate_rule(rule)

        if config.trade_size_percentage is not None:
            require_range(
                "trade_size_percentage", config.trade_size_percentage, 0, 1, low_inclusive=False
            )
        if config.fixed_trade_quantity is not None:
            require_positive("fixed_trade_quantity", config.fixed_trade_quantity)
        if config.min_indicator_data_points < 1:
            raise ValidationError("min_indicator_data_points must be at least 1")

    @staticmethod
    def _validate_rule(rule: RuleCondition) -> None:
        if not isinstance(rule, RuleCondition):
            raise ValidationError(f"Rules must be RuleCondition instances, got {type(rule)}")

        require_positive("rsi_period", rule.rsi_period)
        for name in ("short_ma_period", "long_ma_period", "price_breaks_n_high", "price_breaks_n_low"):
            value = getattr(rule, name)
            if value is not None:
                require_positive(name, value)

        if rule.type in (RuleType.SMA_CROSSOVER, RuleType.EMA_CROSSOVER):
            if not rule.short_ma_period or not rule.long_ma_period:
                raise ValidationError("Short and long MA periods are required for crossover rules")
            if rule.short_ma_period >= rule.long_ma_period:
                raise ValidationError("Short MA period must be less than long MA period")

        if rule.type == RuleType.MACD_CROSS:
            require_positive("macd_fast_period", rule.macd_fast_period)
            require_positive("macd_slow_period", rule.macd_slow_period)
            require_positive("macd_signal_period", rule.macd_signal_period)
            if rule.macd_fast_period >= rule.macd_slow_period:
                raise ValidationError("MACD fast period must be less than slow period")

        if rule.rsi_overbought is not None:
            require_range("rsi_overbought", rule.rsi_overbought, 0, 100, low_inclusive=False)
        if rule.rsi_oversold is not None:
            require_range("rsi_oversold", rule.rsi_oversold, 0, 100, low_inclusive=False)
        if (
            rule.rsi_oversold is not None
            and rule.rsi_overbought is not None
            and rule.rsi_oversold >= rule.rsi_overbought
        ):
            raise ValidationError("RSI oversold must be less than RSI overbought")

    # -------------------------------------------------------------------------
    # Rule evaluation
    # -------------------------------------------------------------------------

    def _evaluate(self, rule: RuleCondition, market_data: StrategyMarketData) -> Optional[str]:
        """Return a reason string if the rule fires for its action, else None."""
        candles = market_data.price_data
        closes = [c.close for c in candles]
        buying = rule.action == TradeAction.BUY

        if rule.type == RuleType.RSI:
            value = indicators.rsi(closes, rule.rsi_period)
            if value is None:
                return None
            if buying and rule.rsi_oversold is not None and value < rule.rsi_oversold:
                return f"RSI oversold ({value:.2f} < {rule.rsi_oversold})"
            if not buying and rule.rsi_overbought is not None and value > rule.rsi_overbought:
                return f"RSI overbought ({value:.2f} > {rule.rsi_overbought})"
            return None

        if rule.type in (RuleType.SMA_CROSSOVER, RuleType.EMA_CROSSOVER):
            if len(closes) < rule.long_ma_period + 1:
                return None
            current, previous = self._ma_pair(closes, rule)
            short_now, long_now = current
            short_prev, long_prev = previous
            label = rule.ma_type or "SMA"
            if buying and short_prev <= long_prev and short_now > long_now:
                return f"{label} {rule.short_ma_period}/{rule.long_ma_period} bullish crossover"
            if not buying and short_prev >= long_prev and short_now < long_now:
                return f"{label} {rule.short_ma_period}/{rule.long_ma_period} bearish crossover"
            return None

        if rule.type == RuleType.MACD_CROSS:
            history = indicators.macd_history(
                closes, rule.macd_fast_period, rule.macd_slow_period, rule.macd_signal_period
            )
            if len(history) < 2:
                return None
            prev, curr = history[-2], history[-1]
            if buying and prev.macd <= prev.signal and curr.macd > curr.signal:
                return "MACD crossed above signal"
            if not buying and prev.macd >= prev.signal and curr.macd < curr.signal:
                return "MACD crossed below signal"
            return None

        if rule.type == RuleType.PRICE_ACTION:
            window = rule.price_breaks_n_high if buying else rule.price_breaks_n_low
            if not window or len(candles) < window + 1:
                return None
            previous = candles[-window - 1:-1]
            price = market_data.current_price
            if buying and price > max(c.high for c in previous):
                return f"Price broke {window}-candle high"
            if not buying and price < min(c.low for c in previous):
                return f"Price broke {window}-candle low"
            return None

        if rule.type == RuleType.VOLUME:
            if rule.min_volume_24h is None:
                return None
            traded = sum(c.volume for c in candles[-VOLUME_WINDOW:])
            if traded >= rule.min_volume_24h:
                return f"Volume {traded:.2f} above {rule.min_volume_24h}"
            return None

        return None

    @staticmethod
    def _ma_pair(
        closes: List[float], rule: RuleCondition
    ) -> Tuple[Tuple[float, float], Tuple[float, float]]:
        """(short, long) averages at the current and previous candle."""
        if rule.ma_type == "EMA":
            short = indicators.ema_series(closes, rule.short_ma_period)
            long = indicators.ema_series(closes, rule.long_ma_period)
            return (float(short[-1]), float(long[-1])), (float(short[-2]), float(long[-2]))

        previous = closes[:-1]
        return (
            (indicators.sma(closes, rule.short_ma_period), indicators.sma(closes, rule.long_ma_period)),
            (indicators.sma(previous, rule.short_ma_period), indicators.sma(previous, rule.long_ma_period)),
        )

    def _buy_quantity(self, cash: float, price: float) -> float:
        if self.config.trade_size_percentage and cash > 0 and price > 0:
            return cash * self.config.trade_size_percentage / price
        if self.config.fixed_trade_quantity:
            return self.config.fixed_trade_quantity
        return 0.0

    async def decide(
        self,
        market_data: StrategyMarketData,
        agent_state: AgentState,
        portfolio_snapshot: PortfolioSnapshot,
    ) -> Optional[TradeOrder]:
        self.decisions_made += 1
        if len(market_data.price_data) < self.config.min_indicator_data_points:
            return None
        if self._price_unusable(market_data):
            return None

        buy_reason = None
        sell_reason = None
        for rule in self.config.rules:
            reason = self._evaluate(rule, market_data)
            if reason is None:
                continue
            if rule.action == TradeAction.BUY:
                buy_reason = reason
            else:
                sell_reason = reason

        if buy_reason:
            cash = self._cash(portfolio_snapshot, market_data)
            if cash > MIN_CASH_TO_BUY and market_data.current_price > 0:
                quantity = self._buy_quantity(cash, market_data.current_price)
                order = self._create_order(market_data, TradeAction.BUY, quantity, buy_reason)
                if order is not None:
                    return order

        if sell_reason:
            held = self._position(portfolio_snapshot, market_data)
            if held > 0:
                return self._create_order(market_data, TradeAction.SELL, held, sell_reason)

        return None
