"""Error taxonomy for the backtesting core.

Order rejections (insufficient cash, insufficient holdings, unreachable limit
price) are not errors: the engine logs them and keeps replaying.
"""


class BacktestError(Exception):
    """Base class for all backtesting errors."""


class StrategyNotFoundError(BacktestError):
    """Raised when a strategy id is not present in the registry."""

    def __init__(self, strategy_id: str):
        self.strategy_id = strategy_id
        super().__init__(f"Strategy with ID '{strategy_id}' not found")


class NoDataError(BacktestError):
    """Raised when the data provider returns no candles for the requested range."""

    def __init__(self, symbol: str, timeframe: str, start_date: int, end_date: int):
        self.symbol = symbol
        self.timeframe = timeframe
        self.start_date = start_date
        self.end_date = end_date
        super().__init__(
            f"No historical data for {symbol} ({timeframe}) "
            f"between {start_date} and {end_date}"
        )


class InvalidDateRangeError(BacktestError, ValueError):
    """Raised by data providers when the end date is not after the start date."""


class ValidationError(BacktestError, ValueError):
    """Raised by Strategy.configure for unknown or out-of-range parameters."""


class StrategyRegistrationError(BacktestError, ValueError):
    """Raised when a strategy cannot be added to the registry."""


__all__ = [
    "BacktestError",
    "StrategyNotFoundError",
    "NoDataError",
    "InvalidDateRangeError",
    "ValidationError",
    "StrategyRegistrationError",
]
