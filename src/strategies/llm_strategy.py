"""
LLM Strategy

Asks a language model for a BUY, SELL or HOLD decision. The model is reached
through an injected async response generator:

    async def generate(prompt: str, options: dict) -> Union[str, dict]

``options`` carries the system prompt, model name, temperature and token
limit. The generator is passed to the constructor or handed over at
``initialize`` under the ``"llm_generator"`` context key. Tests inject a
scripted generator instead of a live inference service.

Unparseable responses are logged and treated as HOLD. Errors raised by the
generator propagate to the caller.
"""
import json
import math
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import structlog

from src.core.config import llm_config
from src.core.models import (AgentState, OrderType, PortfolioSnapshot,
                             StrategyMarketData, TradeAction, TradeOrder)
from src.strategies.base import BaseStrategy, require_positive, require_range

logger = structlog.get_logger(__name__)

LLMResponseGenerator = Callable[[str, Dict[str, Any]], Awaitable[Union[str, Dict[str, Any]]]]

DEFAULT_SYSTEM_PROMPT = (
    "You are a cryptocurrency trading analyst. Your goal is to make a decision to "
    "BUY, SELL, or HOLD based on the data provided. Respond ONLY with a single, "
    "valid JSON object in the requested format. Do not include any other text, "
    "explanations, or markdown formatting."
)

FALLBACK_QUANTITY = 0.01

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


@dataclass
class LLMStrategyConfig:
    """
    Configuration for the LLM strategy.

    Attributes:
        system_prompt: Instructions sent with every request
        inference_model: Model name passed to the generator
        temperature: Sampling temperature in [0, 2]
        max_tokens: Response token limit
        default_trade_size_percentage: Portfolio fraction when no quantity is given
        default_fixed_trade_quantity: Quantity when no percentage is set
        custom_prompt_prefix: Text placed before the market data
        custom_prompt_suffix: Text placed after the instructions
        structured_output_schema: JSON schema the response must follow
    """
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    inference_model: Optional[str] = field(default_factory=lambda: llm_config.inference_model)
    temperature: float = field(default_factory=lambda: llm_config.temperature)
    max_tokens: Optional[int] = field(default_factory=lambda: llm_config.max_tokens)
    default_trade_size_percentage: Optional[float] = field(
        default_factory=lambda: llm_config.default_trade_size_percentage
    )
    default_fixed_trade_quantity: Optional[float] = None
    custom_prompt_prefix: Optional[str] = None
    custom_prompt_suffix: Optional[str] = None
    structured_output_schema: Optional[Dict[str, Any]] = None


@dataclass
class LLMDecision:
    """Validated model output."""
    action: str  # BUY, SELL or HOLD
    symbol: Optional[str] = None
    quantity: Optional[float] = None
    order_type: OrderType = OrderType.MARKET
    price: Optional[float] = None
    reason: Optional[str] = None


def parse_llm_response(response: Union[str, Dict[str, Any]]) -> Optional[LLMDecision]:
    """
    Validate a model response.

    Args:
        response: JSON text (optionally inside a markdown code fence) or a dict

    Returns:
        LLMDecision, or None if the response is malformed
    """
    if isinstance(response, str):
        text = _FENCE.sub("", response.strip())
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning("llm.unparseable_response", error=str(e), response=response[:200])
            return None
    else:
        payload = response

    if not isinstance(payload, dict) or not isinstance(payload.get("action"), str):
        logger.warning("llm.missing_action", response=str(payload)[:200])
        return None

    action = payload["action"].strip().upper()
    if action not in ("BUY", "SELL", "HOLD"):
        logger.warning("llm.invalid_action", action=action)
        return None

    reason = payload.get("reason")
    if reason is not None and not isinstance(reason, str):
        reason = json.dumps(reason) if isinstance(reason, (dict, list)) else str(reason)
    decision = LLMDecision(action=action, reason=reason or None)
    if action == "HOLD":
        return decision

    symbol = payload.get("symbol")
    if symbol is not None:
        if not isinstance(symbol, str) or not symbol.strip():
            logger.warning("llm.invalid_symbol", symbol=symbol)
            return None
        decision.symbol = symbol.strip()

    quantity = payload.get("quantity")
    if quantity is not None:
        if (
            isinstance(quantity, bool)
            or not isinstance(quantity, (int, float))
            or not math.isfinite(quantity)
        ):
            logger.warning("llm.invalid_quantity", quantity=quantity)
            return None
        if quantity < 0:
            logger.warning("llm.negative_quantity", quantity=quantity)
            return None
        decision.quantity = float(quantity)

    order_type = str(payload.get("orderType") or payload.get("order_type") or "MARKET").upper()
    if order_type == OrderType.LIMIT.value:
        price = payload.get("price")
        if (
            isinstance(price, bool)
            or not isinstance(price, (int, float))
            or not math.isfinite(price)
            or price <= 0
        ):
            logger.warning("llm.invalid_limit_price", price=price)
            return None
        decision.order_type = OrderType.LIMIT
        decision.price = float(price)

    return decision


class LLMStrategy(BaseStrategy):
    """Delegates decisions to a language model."""

    id = "llm-v1"
    name = "LLM-Based Trading Strategy"
    description = "Uses AI language models to make trading decisions based on market analysis."
    config_class = LLMStrategyConfig

    def __init__(
        self,
        config: Optional[LLMStrategyConfig] = None,
        generator: Optional[LLMResponseGenerator] = None,
        **kwargs,
    ):
        super().__init__(config, **kwargs)
        self.generator = generator

    def validate_config(self, config: LLMStrategyConfig) -> None:
        if config.default_trade_size_percentage is not None:
            require_range(
                "default_trade_size_percentage",
                config.default_trade_size_percentage,
                0,
                1,
                low_inclusive=False,
            )
        if config.default_fixed_trade_quantity is not None:
            require_positive("default_fixed_trade_quantity", config.default_fixed_trade_quantity)
        if config.max_tokens is not None:
            require_positive("max_tokens", config.max_tokens)
        require_range("temperature", config.temperature, 0, 2)

    async def initialize(self, context: Optional[Dict[str, Any]] = None) -> None:
        await super().initialize(context)
        if context and context.get("llm_generator") is not None:
            self.generator = context["llm_generator"]

    def is_ready(self) -> bool:
        return self.generator is not None

    def clone(self) -> "LLMStrategy":
        twin = super().clone()
        twin.generator = self.generator
        return twin

    def build_prompt(
        self, market_data: StrategyMarketData, portfolio_snapshot: PortfolioSnapshot
    ) -> str:
        cfg = self.config
        lines = []
        if cfg.custom_prompt_prefix:
            lines += [cfg.custom_prompt_prefix, ""]

        lines.append("Market Data:")
        lines.append(f"- Pair: {market_data.pair}")
        lines.append(f"- Current Price: {market_data.current_price}")
        if market_data.price_data:
            latest = market_data.current_candle
            lines.append(
                f"- Latest Candle: O={latest.open}, H={latest.high}, L={latest.low}, "
                f"C={latest.close}, V={latest.volume}"
            )
            closes = ", ".join(str(c.close) for c in market_data.price_data[-5:])
            lines.append(f"- Recent Price Trend (last 5 closes): {closes}")
        if market_data.indicators:
            lines.append(f"- Indicators: {json.dumps(market_data.indicators, sort_keys=True)}")

        lines.append("")
        lines.append("Portfolio:")
        lines.append(f"- Total Value: {portfolio_snapshot.total_value:.2f}")
        for asset, amount in portfolio_snapshot.holdings.items():
            if amount > 0:
                lines.append(f"- {asset}: {amount}")

        lines.append("")
        lines.append("Decision Instructions:")
        lines.append("Your response MUST be a single JSON object.")
        lines.append(
            f'- For a trade: {{ "action": "BUY" or "SELL", "symbol": "{market_data.pair}", '
            '"quantity": <number or null>, "orderType": "MARKET" or "LIMIT", '
            '"price": <number_if_limit>, "reason": "<brief_reasoning>" }'
        )
        lines.append('- To do nothing: { "action": "HOLD", "reason": "<brief_reasoning>" }')
        lines.append("- If quantity is null or 0, the default trade size is used.")

        if cfg.structured_output_schema:
            lines.append("Adhere STRICTLY to this JSON schema for your response:")
            lines.append(json.dumps(cfg.structured_output_schema, sort_keys=True))

        if cfg.custom_prompt_suffix:
            lines += ["", cfg.custom_prompt_suffix]
        return "\n".join(lines)

    def _generation_options(self) -> Dict[str, Any]:
        return {
            "system_prompt": self.config.system_prompt,
            "model": self.config.inference_model,
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
        }

    def _default_quantity(self, market_data: StrategyMarketData, total_value: float) -> float:
        cfg = self.config
        price = market_data.current_price
        if cfg.default_trade_size_percentage and total_value > 0 and price > 0:
            return total_value * cfg.default_trade_size_percentage / price
        if cfg.default_fixed_trade_quantity:
            return cfg.default_fixed_trade_quantity
        return FALLBACK_QUANTITY

    @staticmethod
    def _matches_pair(symbol: str, market_data: StrategyMarketData) -> bool:
        symbol = symbol.upper()
        return symbol in (market_data.pair.upper(), market_data.base_asset)

    async def decide(
        self,
        market_data: StrategyMarketData,
        agent_state: AgentState,
        portfolio_snapshot: PortfolioSnapshot,
    ) -> Optional[TradeOrder]:
        self.decisions_made += 1
        if self.generator is None:
            self.logger.warning("llm.no_generator")
            return None

        prompt = self.build_prompt(market_data, portfolio_snapshot)
        response = await self.generator(prompt, self._generation_options())

        decision = parse_llm_response(response)
        if decision is None or decision.action == "HOLD":
            return None

        if decision.symbol and not self._matches_pair(decision.symbol, market_data):
            self.logger.warning(
                "llm.symbol_mismatch", suggested=decision.symbol, pair=market_data.pair
            )
            return None

        quantity = decision.quantity
        if not quantity:
            quantity = self._default_quantity(market_data, portfolio_snapshot.total_value)

        action = TradeAction(decision.action)
        if action == TradeAction.SELL:
            held = self._position(portfolio_snapshot, market_data)
            if held < quantity:
                self.logger.info("llm.insufficient_holdings", required=quantity, available=held)
                return None

        return self._create_order(
            market_data,
            action,
            quantity,
            reason=decision.reason or "LLM decision",
            order_type=decision.order_type,
            price=decision.price,
        )
