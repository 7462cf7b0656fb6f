"""
Unit tests for technical indicator helpers.
"""

import math

import numpy as np
import pytest

from src.strategies import indicators


class TestMovingAverages:
    """Test SMA and EMA helpers."""

    def test_sma(self):
        assert indicators.sma([1, 2, 3, 4], 2) == 3.5
        assert indicators.sma([1, 2, 3, 4], 4) == 2.5

    def test_sma_short_data_returns_last_value(self):
        assert indicators.sma([5], 3) == 5.0
        assert indicators.sma([], 3) == 0.0

    def test_ema_series_seeded_with_sma(self):
        """Test the first EMA value is the SMA of the seed window."""
        series = indicators.ema_series([1, 2, 3, 4], 2)

        assert math.isnan(series[0])
        assert series[1:] == pytest.approx([1.5, 2.5, 3.5])

    def test_ema_series_too_short(self):
        assert np.isnan(indicators.ema_series([1, 2], 5)).all()

    def test_ema(self):
        assert indicators.ema([1, 2, 3, 4], 2) == pytest.approx(3.5)
        assert indicators.ema([7], 3) == 7.0


class TestRSI:
    """Test RSI calculation."""

    def test_not_enough_data(self):
        assert indicators.rsi(list(range(14)), 14) is None

    def test_only_gains_is_100(self):
        assert indicators.rsi([float(i) for i in range(1, 30)], 14) == pytest.approx(100.0)

    def test_only_losses_is_0(self):
        assert indicators.rsi([float(i) for i in range(30, 1, -1)], 14) == pytest.approx(0.0)

    def test_flat_series_is_neutral(self):
        assert indicators.rsi([100.0] * 20, 14) == 50.0

    def test_mixed_series_in_range(self):
        closes = [100 + 5 * math.sin(i / 3) for i in range(60)]

        value = indicators.rsi(closes, 14)

        assert 0 < value < 100


class TestMACD:
    """Test MACD calculation."""

    def test_requires_slow_plus_signal_periods(self):
        """Test one reading needs slow + signal - 1 values."""
        assert indicators.macd(list(range(33))) is None
        assert indicators.macd(list(range(34))) is not None
        assert len(indicators.macd_history(list(range(40)))) == 7

    def test_uptrend_macd_positive(self):
        result = indicators.macd([float(i) for i in range(1, 80)])

        assert result.macd > 0
        assert result.histogram == pytest.approx(result.macd - result.signal)


class TestVolatilityIndicators:
    """Test ATR, Bollinger Bands and ADX."""

    def test_true_range(self):
        ranges = indicators.true_ranges([10, 12], [8, 9], [9, 11])

        assert list(ranges) == [3.0]

    def test_true_range_uses_gaps(self):
        """Test a gap from the previous close widens the range."""
        ranges = indicators.true_ranges([10, 20], [8, 19], [9, 19.5])

        assert list(ranges) == [11.0]

    def test_atr(self):
        assert indicators.atr([10, 12, 13], [8, 9, 12], [9, 11, 12.5], period=2) == pytest.approx(2.5)
        assert indicators.atr([10], [8], [9]) == 0.0

    def test_bollinger_bands(self):
        bands = indicators.bollinger_bands([1, 2, 3, 4, 5], period=5, std_dev=2)

        assert bands.middle == 3.0
        assert bands.upper == pytest.approx(3 + 2 * math.sqrt(2))
        assert bands.lower == pytest.approx(3 - 2 * math.sqrt(2))
        assert bands.width == pytest.approx(4 * math.sqrt(2))

    def test_bollinger_bands_not_enough_data(self):
        assert indicators.bollinger_bands([1, 2, 3], period=5) is None

    def test_adx_strong_uptrend(self, candle_factory):
        """Test a one-way move scores maximum trend strength."""
        candles = candle_factory([100 + i for i in range(30)])

        assert indicators.adx(candles, 14) == pytest.approx(100.0)

    def test_adx_not_enough_data(self, candle_factory):
        assert indicators.adx(candle_factory([100, 101, 102]), 14) == 0.0


class TestPriceAndVolume:
    """Test price change and volume helpers."""

    def test_price_change(self):
        assert indicators.price_change([100, 110, 121], 2) == pytest.approx(0.1)
        assert indicators.price_change([100, 110, 121], 10) == pytest.approx(0.21)
        assert indicators.price_change([], 5) == 0.0

    def test_volume_ratio(self):
        volumes = [1.0] * 15 + [2.0] * 5

        assert indicators.volume_ratio(volumes, 5, 20) == pytest.approx(1.6)
        assert indicators.volume_ratio(volumes[:10], 5, 20) == 0.0

    def test_volume_trend(self):
        assert indicators.volume_trend([1.0] * 5 + [2.0] * 5) == "increasing"
        assert indicators.volume_trend([2.0] * 5 + [1.0] * 5) == "decreasing"
        assert indicators.volume_trend([1.0] * 10) == "stable"
        assert indicators.volume_trend([1.0] * 3) == "stable"

    def test_simple_returns_skip_zero_base(self):
        returns = indicators.simple_returns([100, 0, 50, 55])

        assert list(returns) == pytest.approx([-1.0, 0.1])


class TestCandleFrames:
    """Test candle to DataFrame conversion."""

    def test_candles_to_frame(self, candle_factory):
        df = indicators.candles_to_frame(candle_factory([100, 101, 102]))

        assert list(df.columns) == ["timestamp", "open", "high", "low", "close", "volume"]
        assert df["close"].tolist() == [100, 101, 102]

    def test_aggregate_candles(self, candle_factory):
        """Test OHLCV aggregation into larger bars with a partial tail."""
        candles = candle_factory([100, 105, 95, 110, 108], volumes=[1, 2, 3, 4, 5])

        bars = indicators.aggregate_candles(candles, 2)

        assert len(bars) == 3
        assert bars.iloc[0]["open"] == candles[0].open
        assert bars.iloc[0]["close"] == 105
        assert bars.iloc[0]["high"] == max(candles[0].high, candles[1].high)
        assert bars.iloc[1]["low"] == min(candles[2].low, candles[3].low)
        assert bars["volume"].tolist() == [3, 7, 5]
        assert bars.iloc[2]["timestamp"] == candles[4].timestamp
