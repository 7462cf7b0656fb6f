"""
Simulation Engine - candle-by-candle strategy replay.

Replays a historical candle sequence against one registered strategy:
- Strict no look-ahead: each decision sees only candles up to the current one
- Sequential: every decide() call is awaited before the next candle
- Virtual ledger absorbing fees and slippage
- Weighted-average cost basis for realized P&L

Rejected orders (insufficient cash or holdings, unreachable limit price,
wrong pair) are logged and skipped. Errors raised by the strategy propagate
and abort the run.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import structlog

from src.backtest.data_loader import BaseDataProvider
from src.backtest.performance import PerformanceAnalyzer
from src.core.config import SimulationConfig, simulation_config
from src.core.exceptions import NoDataError, StrategyNotFoundError
from src.core.models import (QUANTITY_PRECISION, AgentState, BacktestParams,
                             Candle, OrderType, PortfolioSnapshot,
                             SimulationReport, StrategyMarketData, Trade,
                             TradeAction, TradeOrder, split_pair)
from src.strategies.base import BaseStrategy
from src.strategies.registry import StrategyRegistry

logger = structlog.get_logger(__name__)

# Float noise allowed when selling an entire holding
HOLDING_TOLERANCE = 1e-9


@dataclass
class SimulationLedger:
    """Cash, holdings and records of a single run. Discarded after the report."""

    base_asset: str
    quote_asset: str
    cash: float
    holdings: Dict[str, float] = field(default_factory=dict)
    average_entry: Dict[str, float] = field(default_factory=dict)
    trades: List[Trade] = field(default_factory=list)
    snapshots: List[PortfolioSnapshot] = field(default_factory=list)

    def position(self, asset: Optional[str] = None) -> float:
        return self.holdings.get(asset or self.base_asset, 0.0)

    def total_value(self, price: float) -> float:
        """Cash plus the held asset marked at price."""
        return self.cash + self.position() * price

    def snapshot(self, timestamp: int, price: float) -> PortfolioSnapshot:
        holdings = {self.quote_asset: self.cash}
        holdings.update({k: v for k, v in self.holdings.items() if v > 0})
        return PortfolioSnapshot(
            timestamp=timestamp,
            total_value=self.total_value(price),
            holdings=holdings,
        )

    def record_buy(self, quantity: float, price: float, cost: float) -> None:
        held = self.position()
        avg = self.average_entry.get(self.base_asset, 0.0)
        new_total = held + quantity
        self.average_entry[self.base_asset] = (avg * held + price * quantity) / new_total
        self.holdings[self.base_asset] = new_total
        self.cash -= cost

    def record_sell(self, quantity: float, proceeds: float) -> None:
        remaining = round(self.position() - quantity, QUANTITY_PRECISION)
        if remaining <= HOLDING_TOLERANCE:
            self.holdings.pop(self.base_asset, None)
            self.average_entry.pop(self.base_asset, None)
        else:
            self.holdings[self.base_asset] = remaining
        self.cash += proceeds


class SimulationEngine:
    """
    Runs backtests of registered strategies.

    The registry and data provider are injected; neither is mutated by a run,
    so independent runs may execute concurrently.
    """

    def __init__(
        self,
        registry: StrategyRegistry,
        data_provider: BaseDataProvider,
        context: Optional[Dict[str, Any]] = None,
        config: Optional[SimulationConfig] = None,
        analyzer: Optional[PerformanceAnalyzer] = None,
    ):
        self.registry = registry
        self.data_provider = data_provider
        self.context = context or {}
        self.config = config or simulation_config
        self.analyzer = analyzer or PerformanceAnalyzer()

    async def run_backtest(self, params: BacktestParams) -> SimulationReport:
        """
        Replay the requested window against one strategy.

        Args:
            params: Strategy id, pair, window, capital, fee and slippage

        Returns:
            SimulationReport with trades, snapshots and metrics

        Raises:
            StrategyNotFoundError: Unknown strategy id (before any fetch)
            NoDataError: The provider returned no candles
        """
        strategy = self.registry.get_strategy(params.strategy_id)
        if strategy is None:
            raise StrategyNotFoundError(params.strategy_id)

        candles = await self.data_provider.fetch_data(
            params.pair,
            params.interval,
            params.start_date,
            params.end_date,
            params.data_source,
        )
        if not candles:
            raise NoDataError(params.pair, params.interval, params.start_date, params.end_date)

        log = logger.bind(strategy=params.strategy_id, pair=params.pair)
        log.info(
            "simulation.starting",
            interval=params.interval,
            candles=len(candles),
            initial_capital=params.initial_capital,
            fee=params.transaction_cost_percentage,
            slippage=params.slippage_percentage,
        )

        await strategy.initialize(self.context)
        if not strategy.is_ready():
            log.warning("simulation.strategy_not_ready")

        base, quote = split_pair(params.pair, self.config.quote_currency)
        ledger = SimulationLedger(base_asset=base, quote_asset=quote, cash=params.initial_capital)
        ledger.snapshots.append(
            PortfolioSnapshot(
                timestamp=params.start_date,
                total_value=params.initial_capital,
                holdings={quote: params.initial_capital},
            )
        )

        candles = tuple(candles)
        closes = np.array([c.close for c in candles], dtype=float)

        for i, candle in enumerate(candles):
            market_data = self._market_data(params.pair, candles, closes, i)
            agent_state = self._agent_state(ledger, market_data)
            snapshot = ledger.snapshot(candle.timestamp, candle.close)

            order = await strategy.decide(market_data, agent_state, snapshot)
            if order is None:
                continue

            trade = self._execute(order, candle, ledger, params, strategy)
            if trade is not None:
                ledger.trades.append(trade)
                ledger.snapshots.append(ledger.snapshot(candle.timestamp, candle.close))

        last = candles[-1]
        final_capital = ledger.total_value(last.close)
        metrics = self.analyzer.generate_metrics(
            ledger.trades,
            ledger.snapshots,
            params.initial_capital,
            final_capital,
            first_asset_price=candles[0].open,
            last_asset_price=last.close,
        )

        log.info(
            "simulation.complete",
            trades=len(ledger.trades),
            final_capital=f"{final_capital:.2f}",
            pnl_pct=f"{metrics.total_pnl_percentage * 100:.2f}%",
            max_drawdown=f"{metrics.max_drawdown * 100:.2f}%",
        )

        return SimulationReport(
            strategy_id=params.strategy_id,
            pair=params.pair,
            interval=params.interval,
            start_date=params.start_date,
            end_date=params.end_date,
            initial_capital=params.initial_capital,
            final_capital=final_capital,
            trades=tuple(ledger.trades),
            portfolio_snapshots=tuple(ledger.snapshots),
            metrics=metrics,
        )

    # -------------------------------------------------------------------------
    # Per-candle context
    # -------------------------------------------------------------------------

    def _market_data(
        self, pair: str, candles: Tuple[Candle, ...], closes: np.ndarray, index: int
    ) -> StrategyMarketData:
        window_start = max(0, index + 1 - self.config.last_prices_window)
        return StrategyMarketData(
            pair=pair,
            current_price=candles[index].close,
            price_data=candles[: index + 1],
            last_prices=tuple(float(c) for c in closes[window_start : index + 1]),
        )

    def _agent_state(
        self, ledger: SimulationLedger, market_data: StrategyMarketData
    ) -> AgentState:
        return AgentState(
            portfolio_value=ledger.total_value(market_data.current_price),
            volatility=self.volatility(market_data.last_prices),
            confidence_level=self.config.confidence_level,
            recent_trades=self._recent_trades(ledger.trades, market_data.timestamp),
            last_action=ledger.trades[-1].action if ledger.trades else None,
        )

    @staticmethod
    def volatility(prices: Sequence[float]) -> float:
        """Population standard deviation of simple returns."""
        if len(prices) < 2:
            return 0.0
        values = np.asarray(prices, dtype=float)
        previous = values[:-1]
        returns = np.divide(
            values[1:] - previous, previous, out=np.zeros_like(previous), where=previous > 0
        )
        return float(returns.std())

    def _recent_trades(self, trades: Sequence[Trade], now: int) -> int:
        cutoff = now - self.config.recent_trades_window_ms
        return sum(1 for t in trades if cutoff <= t.executed_timestamp < now)

    # -------------------------------------------------------------------------
    # Order execution
    # -------------------------------------------------------------------------

    def _reject(self, order: TradeOrder, reason: str, **details) -> None:
        logger.info(
            "simulation.order_rejected",
            reason=reason,
            pair=order.pair,
            action=order.action.value,
            quantity=order.quantity,
            **details,
        )

    def _execute(
        self,
        order: TradeOrder,
        candle: Candle,
        ledger: SimulationLedger,
        params: BacktestParams,
        strategy: BaseStrategy,
    ) -> Optional[Trade]:
        """Validate and fill an order. Returns None when it does not execute."""
        if split_pair(order.pair, ledger.quote_asset) != (ledger.base_asset, ledger.quote_asset):
            self._reject(order, "pair_mismatch", expected=params.pair)
            return None

        quantity = round(order.quantity, QUANTITY_PRECISION)
        if quantity <= 0:
            self._reject(order, "quantity_rounds_to_zero")
            return None

        if order.order_type == OrderType.LIMIT:
            if not candle.reaches(order.price):
                logger.debug(
                    "simulation.limit_not_reached",
                    price=order.price,
                    low=candle.low,
                    high=candle.high,
                )
                return None
            price = order.price
        elif order.action == TradeAction.BUY:
            price = candle.close * (1 + params.slippage_percentage)
        else:
            price = candle.close * (1 - params.slippage_percentage)

        if price <= 0:
            self._reject(order, "non_positive_price", price=price)
            return None

        notional = quantity * price
        fee = notional * params.transaction_cost_percentage
        realized_pnl = None

        if order.action == TradeAction.BUY:
            if notional + fee > ledger.cash:
                self._reject(
                    order,
                    "insufficient_cash",
                    required=notional + fee,
                    available=ledger.cash,
                )
                return None
            ledger.record_buy(quantity, price, notional + fee)
        else:
            held = ledger.position()
            if quantity > held + HOLDING_TOLERANCE:
                self._reject(order, "insufficient_holdings", available=held)
                return None
            quantity = min(quantity, held)
            notional = quantity * price
            fee = notional * params.transaction_cost_percentage
            entry = ledger.average_entry.get(ledger.base_asset, price)
            realized_pnl = (price - entry) * quantity - fee
            ledger.record_sell(quantity, notional - fee)

        trade = Trade(
            pair=order.pair,
            action=order.action,
            quantity=quantity,
            order_type=order.order_type,
            price=order.price,
            timestamp=order.timestamp,
            reason=order.reason,
            executed_price=price,
            executed_timestamp=candle.timestamp,
            fees=fee,
            fee_currency=ledger.quote_asset,
            trade_id=self._trade_id(strategy.id, params.pair, candle.timestamp, len(ledger.trades)),
            realized_pnl=realized_pnl,
        )

        logger.debug(
            "simulation.order_executed",
            action=trade.action.value,
            quantity=quantity,
            price=price,
            fees=fee,
            realized_pnl=realized_pnl,
            cash=ledger.cash,
        )
        return trade

    @staticmethod
    def _trade_id(strategy_id: str, pair: str, timestamp: int, sequence: int) -> str:
        return str(uuid.uuid5(uuid.NAMESPACE_URL, f"{strategy_id}:{pair}:{timestamp}:{sequence}"))
