"""Data models for the strategy backtesting core.

This module defines the data structures exchanged between the data provider,
the simulation engine, the strategies and the performance analyzer:
- Candle: one OHLCV interval
- TradeOrder / Trade: strategy output and its executed record
- PortfolioSnapshot: ledger valuation at a point in time
- PerformanceMetrics / SimulationReport: immutable run results

All monetary values are plain floats.
All timestamps are integer epoch milliseconds (UTC).
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_QUOTE_CURRENCY = "USDC"
QUANTITY_PRECISION = 8


def to_epoch_ms(value: Union[datetime, int, float]) -> int:
    """Convert a datetime (naive values are taken as UTC) or number to epoch ms."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(round(value.timestamp() * 1000))
    return int(value)


def from_epoch_ms(value: int) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def split_pair(pair: str, default_quote: str = DEFAULT_QUOTE_CURRENCY) -> Tuple[str, str]:
    """Split 'SOL/USDC' into ('SOL', 'USDC'). A bare symbol trades against default_quote."""
    if "/" in pair:
        base, quote = pair.split("/", 1)
        return base.strip().upper(), quote.strip().upper()
    return pair.strip().upper(), default_quote


# =============================================================================
# Enums
# =============================================================================

class TradeAction(str, Enum):
    """Direction of an order."""
    BUY = "BUY"
    SELL = "SELL"


class OrderType(str, Enum):
    """Execution style of an order."""
    MARKET = "MARKET"     # Fills at the candle close adjusted for slippage
    LIMIT = "LIMIT"       # Fills at its price only if the candle range reaches it


# =============================================================================
# Market Data Models
# =============================================================================

class Candle(BaseModel):
    """OHLCV summary of one time interval.

    Attributes:
        timestamp: Interval open time in epoch milliseconds
        open: Opening price
        high: Highest price
        low: Lowest price
        close: Closing price
        volume: Traded volume
    """
    model_config = ConfigDict(frozen=True)

    timestamp: int = Field(..., ge=0, description="Epoch milliseconds")
    open: float = Field(..., ge=0, description="Opening price")
    high: float = Field(..., ge=0, description="Highest price")
    low: float = Field(..., ge=0, description="Lowest price")
    close: float = Field(..., ge=0, description="Closing price")
    volume: float = Field(default=0.0, ge=0, description="Traded volume")

    @field_validator("low")
    @classmethod
    def low_lte_high(cls, v: float, info) -> float:
        """Validate low is <= high."""
        high = info.data.get("high")
        if high is not None and v > high:
            raise ValueError("Low must be <= high")
        return v

    @property
    def range(self) -> float:
        """Price range (high - low)."""
        return self.high - self.low

    def reaches(self, price: float) -> bool:
        """True if the price traded inside this candle's range."""
        return self.low <= price <= self.high


@dataclass(frozen=True)
class StrategyMarketData:
    """Market context handed to a strategy for one decision step.

    ``price_data`` only ever contains candles up to and including the current
    one, so a strategy cannot look ahead.
    """

    pair: str
    current_price: float
    price_data: Tuple[Candle, ...]
    last_prices: Tuple[float, ...] = ()
    indicators: Optional[Dict[str, float]] = None

    @property
    def current_candle(self) -> Candle:
        return self.price_data[-1]

    @property
    def timestamp(self) -> int:
        return self.price_data[-1].timestamp if self.price_data else 0

    @property
    def base_asset(self) -> str:
        return split_pair(self.pair)[0]

    @property
    def quote_asset(self) -> str:
        return split_pair(self.pair)[1]


@dataclass(frozen=True)
class AgentState:
    """Summary of the simulated agent at a decision step."""

    portfolio_value: float
    volatility: float
    confidence_level: float
    recent_trades: int
    last_action: Optional[TradeAction] = None
    sentiment: Optional[float] = None
    extra: Dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Portfolio Models
# =============================================================================

class PortfolioSnapshot(BaseModel):
    """Valuation of the virtual ledger at a point in time.

    ``holdings`` always contains the cash entry (quote currency) plus any
    asset quantities. ``total_value`` is cash plus assets marked at the
    snapshot's price.
    """
    model_config = ConfigDict(frozen=True)

    timestamp: int = Field(..., description="Epoch milliseconds")
    total_value: float = Field(..., description="Cash plus marked asset value")
    holdings: Dict[str, float] = Field(default_factory=dict, description="Symbol -> quantity")

    def holding(self, symbol: str) -> float:
        """Quantity held for a symbol (0 when absent)."""
        return self.holdings.get(symbol, 0.0)


# =============================================================================
# Order Models
# =============================================================================

class TradeOrder(BaseModel):
    """Order proposed by a strategy. Ephemeral unless executed.

    Attributes:
        pair: Trading pair, e.g. "SOL/USDC"
        action: BUY or SELL
        quantity: Base-asset quantity
        order_type: MARKET or LIMIT
        price: Limit price (required for LIMIT orders)
        timestamp: Decision time in epoch milliseconds
        reason: Human-readable justification
    """
    model_config = ConfigDict(frozen=True)

    pair: str = Field(..., min_length=1, description="Trading pair")
    action: TradeAction = Field(..., description="Order side")
    quantity: float = Field(..., gt=0, description="Order quantity")
    order_type: OrderType = Field(default=OrderType.MARKET, description="Order type")
    price: Optional[float] = Field(default=None, description="Limit price")
    timestamp: int = Field(..., description="Epoch milliseconds")
    reason: str = Field(default="", description="Why the order was produced")

    @model_validator(mode="after")
    def price_required_for_limit(self) -> "TradeOrder":
        """Validate limit orders have a positive price."""
        if self.order_type == OrderType.LIMIT and (self.price is None or self.price <= 0):
            raise ValueError("Price required and must be positive for LIMIT orders")
        return self


class Trade(TradeOrder):
    """Executed order as recorded in the trade ledger.

    ``realized_pnl`` is only set on SELL trades; BUY trades leave it unset.
    """

    executed_price: float = Field(..., gt=0, description="Fill price")
    executed_timestamp: int = Field(..., description="Fill time in epoch milliseconds")
    fees: float = Field(default=0.0, ge=0, description="Fee paid in quote currency")
    fee_currency: str = Field(default=DEFAULT_QUOTE_CURRENCY, description="Fee currency")
    trade_id: str = Field(..., description="Deterministic trade identifier")
    realized_pnl: Optional[float] = Field(default=None, description="Realized P&L (SELL only)")

    @property
    def notional(self) -> float:
        """Quantity times execution price."""
        return self.quantity * self.executed_price


# =============================================================================
# Result Models
# =============================================================================

class PerformanceMetrics(BaseModel):
    """Statistics derived from a completed run. Never mutated after creation."""
    model_config = ConfigDict(frozen=True, ser_json_inf_nan="constants")

    total_pnl_absolute: float
    total_pnl_percentage: float
    total_trades: int = Field(..., ge=0)
    winning_trades: int = Field(..., ge=0)
    losing_trades: int = Field(..., ge=0)
    win_loss_ratio: float = Field(..., ge=0)
    average_win_amount: float = Field(default=0.0, ge=0)
    average_loss_amount: float = Field(default=0.0, ge=0)
    max_drawdown: float = Field(..., ge=0, le=1)
    sharpe_ratio: Optional[float] = None
    buy_and_hold_pnl_percentage: Optional[float] = None
    first_asset_price: Optional[float] = None
    last_asset_price: Optional[float] = None

    @property
    def win_rate(self) -> float:
        """Winning trades over all trades (0 with no trades)."""
        if self.total_trades == 0:
            return 0.0
        return self.winning_trades / self.total_trades


class SimulationReport(BaseModel):
    """Immutable outcome of one backtest run."""
    model_config = ConfigDict(frozen=True, ser_json_inf_nan="constants")

    strategy_id: str = Field(..., description="Strategy identifier")
    pair: str = Field(..., description="Trading pair")
    interval: str = Field(..., description="Candle granularity")
    start_date: int = Field(..., description="Replay window start (epoch ms)")
    end_date: int = Field(..., description="Replay window end (epoch ms)")
    initial_capital: float = Field(..., ge=0)
    final_capital: float = Field(..., description="Cash plus holdings at the last close")
    trades: Tuple[Trade, ...] = Field(default=(), description="Executed trades in order")
    portfolio_snapshots: Tuple[PortfolioSnapshot, ...] = Field(
        default=(), description="Snapshots in order"
    )
    metrics: PerformanceMetrics

    @property
    def final_portfolio_value(self) -> float:
        return self.final_capital


# =============================================================================
# Run Parameters
# =============================================================================

class BacktestParams(BaseModel):
    """Parameters of a single backtest run.

    Dates accept datetimes or epoch milliseconds and are stored as epoch ms.
    """
    model_config = ConfigDict(frozen=True)

    strategy_id: str = Field(..., description="Registered strategy id")
    pair: str = Field(..., min_length=1, description="Trading pair")
    interval: str = Field(default="1h", description="Candle granularity")
    start_date: int = Field(..., description="Window start (epoch ms, inclusive)")
    end_date: int = Field(..., description="Window end (epoch ms, exclusive)")
    initial_capital: float = Field(..., ge=0, description="Starting cash")
    transaction_cost_percentage: float = Field(default=0.0, ge=0, le=1)
    slippage_percentage: float = Field(default=0.0, ge=0, le=1)
    data_source: str = Field(default="mock", description="Passed through to the data provider")

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def coerce_dates(cls, v: Any) -> int:
        """Accept datetimes as well as epoch milliseconds."""
        if isinstance(v, (datetime, int, float)):
            return to_epoch_ms(v)
        return v

    @property
    def base_asset(self) -> str:
        return split_pair(self.pair)[0]

    @property
    def quote_asset(self) -> str:
        return split_pair(self.pair)[1]
