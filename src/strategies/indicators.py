"""Technical indicator helpers shared by the strategy variants.

Every helper works on plain sequences (or candle sequences) and only looks at
the data it is given, so strategies stay free of look-ahead as long as the
engine hands them a truncated history.
"""

from typing import List, NamedTuple, Optional, Sequence

import numpy as np
import pandas as pd

from src.core.models import Candle


class MACDResult(NamedTuple):
    macd: float
    signal: float
    histogram: float


class BollingerBands(NamedTuple):
    upper: float
    middle: float
    lower: float
    width: float


def candles_to_frame(candles: Sequence[Candle]) -> pd.DataFrame:
    """Convert candles into a DataFrame with one column per OHLCV field."""
    return pd.DataFrame(
        {
            "timestamp": [c.timestamp for c in candles],
            "open": [c.open for c in candles],
            "high": [c.high for c in candles],
            "low": [c.low for c in candles],
            "close": [c.close for c in candles],
            "volume": [c.volume for c in candles],
        }
    )


def aggregate_candles(candles: Sequence[Candle], period: int) -> pd.DataFrame:
    """Group consecutive candles into bars of ``period`` candles each.

    The last bar may be partial. Returns a DataFrame with OHLCV columns.
    """
    df = candles_to_frame(candles)
    if df.empty:
        return df
    groups = np.arange(len(df)) // period
    return (
        df.groupby(groups)
        .agg(
            timestamp=("timestamp", "first"),
            open=("open", "first"),
            high=("high", "max"),
            low=("low", "min"),
            close=("close", "last"),
            volume=("volume", "sum"),
        )
        .reset_index(drop=True)
    )


def sma(values: Sequence[float], period: int) -> float:
    """Simple moving average of the last ``period`` values."""
    if len(values) == 0:
        return 0.0
    if len(values) < period:
        return float(values[-1])
    return float(np.mean(np.asarray(values[-period:], dtype=float)))


def ema_series(values: Sequence[float], period: int) -> np.ndarray:
    """EMA seeded with the SMA of the first ``period`` values.

    Entries before the seed are NaN.
    """
    arr = np.asarray(values, dtype=float)
    out = np.full(len(arr), np.nan)
    if period <= 0 or len(arr) < period:
        return out

    multiplier = 2.0 / (period + 1)
    out[period - 1] = arr[:period].mean()
    for i in range(period, len(arr)):
        out[i] = (arr[i] - out[i - 1]) * multiplier + out[i - 1]
    return out


def ema(values: Sequence[float], period: int) -> float:
    """Latest EMA value, or the last value when there is not enough data."""
    if len(values) == 0:
        return 0.0
    if len(values) < period:
        return float(values[-1])
    return float(ema_series(values, period)[-1])


def rsi_series(values: Sequence[float], period: int = 14) -> pd.Series:
    """Relative Strength Index with Wilder smoothing."""
    closes = pd.Series(values, dtype=float)
    delta = closes.diff()
    gains = delta.clip(lower=0)
    losses = -delta.clip(upper=0)

    avg_gain = gains.ewm(alpha=1.0 / period, adjust=False, min_periods=period).mean()
    avg_loss = losses.ewm(alpha=1.0 / period, adjust=False, min_periods=period).mean()

    with np.errstate(divide="ignore", invalid="ignore"):
        rs = avg_gain / avg_loss
        rsi = 100 - 100 / (1 + rs)

    # Flat windows have neither gains nor losses
    rsi = rsi.where(~((avg_gain == 0) & (avg_loss == 0)), 50.0)
    return rsi


def rsi(values: Sequence[float], period: int = 14) -> Optional[float]:
    """Latest RSI value, or None with fewer than ``period + 1`` values."""
    if len(values) < period + 1:
        return None
    value = rsi_series(values, period).iloc[-1]
    if pd.isna(value):
        return None
    return float(value)


def macd_history(
    values: Sequence[float],
    fast_period: int = 12,
    slow_period: int = 26,
    signal_period: int = 9,
) -> List[MACDResult]:
    """MACD line, signal line and histogram for every point where all three exist."""
    fast = ema_series(values, fast_period)
    slow = ema_series(values, slow_period)
    line = fast - slow

    valid = ~np.isnan(line)
    if valid.sum() < signal_period:
        return []

    line_values = line[valid]
    signal = ema_series(line_values, signal_period)

    results = []
    for macd_value, signal_value in zip(line_values, signal):
        if np.isnan(signal_value):
            continue
        results.append(
            MACDResult(
                macd=float(macd_value),
                signal=float(signal_value),
                histogram=float(macd_value - signal_value),
            )
        )
    return results


def macd(
    values: Sequence[float],
    fast_period: int = 12,
    slow_period: int = 26,
    signal_period: int = 9,
) -> Optional[MACDResult]:
    """Latest MACD reading, or None when there is not enough data."""
    history = macd_history(values, fast_period, slow_period, signal_period)
    return history[-1] if history else None


def true_ranges(
    highs: Sequence[float], lows: Sequence[float], closes: Sequence[float]
) -> np.ndarray:
    """True range of each candle after the first."""
    high = np.asarray(highs, dtype=float)
    low = np.asarray(lows, dtype=float)
    close = np.asarray(closes, dtype=float)
    if len(close) < 2:
        return np.array([])

    prev_close = close[:-1]
    return np.maximum.reduce(
        [
            high[1:] - low[1:],
            np.abs(high[1:] - prev_close),
            np.abs(low[1:] - prev_close),
        ]
    )


def atr(
    highs: Sequence[float],
    lows: Sequence[float],
    closes: Sequence[float],
    period: int = 14,
) -> float:
    """Average True Range as the plain mean of the last ``period`` true ranges."""
    ranges = true_ranges(highs, lows, closes)
    if len(ranges) == 0:
        return 0.0
    return float(ranges[-period:].mean())


def bollinger_bands(
    values: Sequence[float], period: int = 20, std_dev: float = 2.0
) -> Optional[BollingerBands]:
    """Bollinger Bands over the last ``period`` values (population deviation)."""
    if len(values) < period:
        return None
    window = np.asarray(values[-period:], dtype=float)
    middle = float(window.mean())
    std = float(window.std())
    return BollingerBands(
        upper=middle + std * std_dev,
        middle=middle,
        lower=middle - std * std_dev,
        width=std * std_dev * 2,
    )


def adx(candles: Sequence[Candle], period: int = 14) -> float:
    """Directional movement index over the last ``period`` candles.

    Single-pass DX reading, used as a 0-100 trend strength score.
    """
    if len(candles) < period + 1:
        return 0.0

    high = np.array([c.high for c in candles], dtype=float)
    low = np.array([c.low for c in candles], dtype=float)
    close = np.array([c.close for c in candles], dtype=float)

    up_move = high[1:] - high[:-1]
    down_move = low[:-1] - low[1:]
    plus_dm = np.where((up_move > down_move) & (up_move > 0), up_move, 0.0)
    minus_dm = np.where((down_move > up_move) & (down_move > 0), down_move, 0.0)
    ranges = true_ranges(high, low, close)

    avg_tr = ranges[-period:].mean()
    if avg_tr <= 0:
        return 0.0
    plus_di = plus_dm[-period:].mean() / avg_tr * 100
    minus_di = minus_dm[-period:].mean() / avg_tr * 100

    di_sum = plus_di + minus_di
    if di_sum <= 0:
        return 0.0
    return float(abs(plus_di - minus_di) / di_sum * 100)


def price_change(values: Sequence[float], lookback: int) -> float:
    """Fractional change between the last value and the one ``lookback`` back."""
    if len(values) == 0:
        return 0.0
    current = values[-1]
    past = values[max(0, len(values) - lookback)]
    if past == 0:
        return 0.0
    return (current - past) / past


def volume_ratio(volumes: Sequence[float], recent: int = 5, window: int = 20) -> float:
    """Mean of the last ``recent`` volumes over the mean of the last ``window``."""
    if len(volumes) < window:
        return 0.0
    arr = np.asarray(volumes, dtype=float)
    average = arr[-window:].mean()
    if average <= 0:
        return 0.0
    return float(arr[-recent:].mean() / average)


def volume_trend(volumes: Sequence[float], short: int = 5, long: int = 10) -> str:
    """'increasing', 'decreasing' or 'stable' from short vs long volume averages."""
    if len(volumes) < long:
        return "stable"
    arr = np.asarray(volumes, dtype=float)
    short_avg = arr[-short:].mean()
    long_avg = arr[-long:].mean()
    if short_avg > long_avg * 1.2:
        return "increasing"
    if short_avg < long_avg * 0.8:
        return "decreasing"
    return "stable"


def simple_returns(values: Sequence[float]) -> np.ndarray:
    """Step returns, skipping steps whose previous value is not positive."""
    arr = np.asarray(values, dtype=float)
    if len(arr) < 2:
        return np.array([])
    prev = arr[:-1]
    mask = prev > 0
    return (arr[1:][mask] - prev[mask]) / prev[mask]
