"""
Unit tests for the adaptive rule-based strategy.
"""

import pytest

from src.core.models import TradeAction
from src.strategies.adaptive_rule_based import (AdaptiveIndicators,
                                                AdaptiveRuleBasedStrategy)
from src.strategies.indicators import BollingerBands, MACDResult
from src.strategies.market_regime import MarketRegime


def make_indicators(**overrides) -> AdaptiveIndicators:
    """A strong uptrend with bullish MACD and wide bands."""
    values = dict(
        ema10=105.0,
        ema30=100.0,
        ema100=95.0,
        trend_strength=0.8,
        regime=MarketRegime.TRENDING_UP,
        rsi=50.0,
        rsi_zone="neutral",
        macd=MACDResult(1.0, 0.5, 0.5),
        momentum=0.02,
        atr=2.0,
        volatility_ratio=0.02,
        bands=BollingerBands(110.0, 100.0, 90.0, 20.0),
        volume_ratio=1.0,
        volume_trend="stable",
        price_level="neutral",
        support=90.0,
        resistance=110.0,
    )
    values.update(overrides)
    return AdaptiveIndicators(**values)


@pytest.fixture
def strategy():
    return AdaptiveRuleBasedStrategy()


# =============================================================================
# Signal scoring
# =============================================================================


class TestGenerateSignal:
    """Test regime dependent scoring."""

    def test_trend_plus_macd_buys(self, strategy):
        """Test three points are enough in a trending market."""
        action, reason = strategy.generate_signal(make_indicators(), holding=0.0)

        assert action == TradeAction.BUY
        assert "Strong uptrend" in reason
        assert "MACD bullish" in reason

    def test_trend_alone_is_not_enough(self, strategy):
        ind = make_indicators(macd=MACDResult(0.0, 0.0, 0.0))

        assert strategy.generate_signal(ind, holding=0.0) is None

    def test_ranging_needs_four_points(self, strategy):
        ind = make_indicators(
            regime=MarketRegime.RANGING, rsi=30.0, rsi_zone="oversold", price_level="support"
        )

        assert strategy.generate_signal(ind, holding=0.0) is None

    def test_ranging_with_volume_surge_buys(self, strategy):
        ind = make_indicators(
            regime=MarketRegime.RANGING,
            rsi=30.0,
            rsi_zone="oversold",
            price_level="support",
            volume_trend="increasing",
            volume_ratio=2.0,
        )

        action, reason = strategy.generate_signal(ind, holding=0.0)

        assert action == TradeAction.BUY
        assert "Oversold at support" in reason
        assert "Volume surge on upward momentum" in reason

    def test_squeeze_adds_point(self, strategy):
        ind = make_indicators(
            macd=MACDResult(0.0, 0.0, 0.0), bands=BollingerBands(101.0, 100.0, 99.0, 1.0)
        )

        # squeeze needs a positive histogram as well
        assert strategy.generate_signal(ind, holding=0.0) is None

        ind = make_indicators(bands=BollingerBands(101.0, 100.0, 99.0, 1.0))
        action, reason = strategy.generate_signal(ind, holding=0.0)
        assert action == TradeAction.BUY
        assert "Bollinger squeeze breakout bullish" in reason

    def test_weak_trend_exits_holding(self, strategy):
        action, _ = strategy.generate_signal(make_indicators(trend_strength=0.1), holding=2.0)

        assert action == TradeAction.SELL

    def test_strong_sell_score_exits_holding(self, strategy):
        ind = make_indicators(
            ema10=95.0,
            ema100=105.0,
            regime=MarketRegime.TRENDING_DOWN,
            macd=MACDResult(-1.0, -0.5, -0.5),
        )

        action, reason = strategy.generate_signal(ind, holding=2.0)

        assert action == TradeAction.SELL
        assert "Strong downtrend" in reason

    def test_holding_in_healthy_trend_is_kept(self, strategy):
        """Test no new buy is stacked on an existing position."""
        assert strategy.generate_signal(make_indicators(), holding=2.0) is None


# =============================================================================
# Trade filters and sizing
# =============================================================================


class TestShouldTrade:
    """Test the conditions that pause trading."""

    def test_default_conditions_trade(self, strategy):
        assert strategy.should_trade(make_indicators())

    def test_extreme_volatility_pauses(self, strategy):
        assert not strategy.should_trade(make_indicators(volatility_ratio=0.06))

    def test_quiet_range_pauses(self, strategy):
        ind = make_indicators(regime=MarketRegime.RANGING, volatility_ratio=0.005)

        assert not strategy.should_trade(ind)

    def test_poor_win_rate_pauses_after_enough_trades(self, strategy):
        for _ in range(19):
            strategy.record_trade_result(False)
        assert strategy.should_trade(make_indicators())

        strategy.record_trade_result(False)

        assert not strategy.should_trade(make_indicators())


class TestPositionSize:
    """Test risk based sizing."""

    def test_strong_trend_capped_at_max_position(self, strategy):
        """Test 1.5x risk in a strong trend is capped at 25% of the portfolio."""
        assert strategy.position_size(make_indicators(), 10000.0, 100.0) == pytest.approx(25.0)

    def test_high_volatility_halves_risk(self, strategy):
        ind = make_indicators(regime=MarketRegime.HIGH_VOLATILITY)

        assert strategy.position_size(ind, 10000.0, 100.0) == pytest.approx(12.5)

    def test_win_rate_scaling(self, strategy):
        ind = make_indicators(regime=MarketRegime.RANGING, atr=4.0)
        for _ in range(10):
            strategy.record_trade_result(True)

        assert strategy.position_size(ind, 10000.0, 100.0) == pytest.approx(15.0)

        strategy.reset()
        for _ in range(10):
            strategy.record_trade_result(False)

        assert strategy.position_size(ind, 10000.0, 100.0) == pytest.approx(10.0)

    def test_zero_atr(self, strategy):
        assert strategy.position_size(make_indicators(atr=0.0), 10000.0, 100.0) == 0.0

    def test_recent_win_rate_neutral_until_ten_trades(self, strategy):
        for _ in range(9):
            strategy.record_trade_result(True)

        assert strategy.recent_win_rate == 0.5


# =============================================================================
# Helpers
# =============================================================================


class TestHelpers:
    """Test the static indicator helpers."""

    def test_aligned_trend_strength_saturates(self):
        assert AdaptiveRuleBasedStrategy._trend_strength(110.0, 105.0, 100.0, 95.0) == 1.0

    def test_mixed_trend_strength(self):
        total = (100 - 105) / 105 + (105 - 100) / 100 + (100 - 95) / 95

        assert AdaptiveRuleBasedStrategy._trend_strength(100.0, 105.0, 100.0, 95.0) == pytest.approx(
            abs(total) * 3
        )

    def test_trend_strength_without_averages(self):
        assert AdaptiveRuleBasedStrategy._trend_strength(100.0, 0.0, 100.0, 95.0) == 0.0

    @pytest.mark.parametrize(
        "volumes,expected",
        [
            ([100.0] * 5 + [150.0] * 5, "increasing"),
            ([100.0] * 5 + [70.0] * 5, "decreasing"),
            ([100.0] * 10, "stable"),
            ([100.0] * 9, "stable"),
        ],
    )
    def test_volume_trend(self, volumes, expected):
        assert AdaptiveRuleBasedStrategy._volume_trend(volumes) == expected

    @pytest.mark.parametrize(
        "price,expected",
        [(91.0, "support"), (109.0, "resistance"), (100.0, "neutral")],
    )
    def test_price_level(self, price, expected):
        assert AdaptiveRuleBasedStrategy._price_level(price, 90.0, 110.0) == expected

    def test_price_level_flat_range(self):
        assert AdaptiveRuleBasedStrategy._price_level(100.0, 100.0, 100.0) == "neutral"


# =============================================================================
# Decide
# =============================================================================


class TestDecide:
    """Test the decide loop."""

    @pytest.mark.asyncio
    async def test_not_enough_candles(self, strategy, candle_factory, market_data_factory,
                                      agent_state_factory, snapshot_factory):
        market_data = market_data_factory(candle_factory([100.0] * 199))

        assert await strategy.decide(market_data, agent_state_factory(), snapshot_factory()) is None
        assert strategy.decisions_made == 1

    @pytest.mark.asyncio
    async def test_round_trip_records_result(self, strategy, candle_factory, market_data_factory,
                                             agent_state_factory, snapshot_factory):
        """Test a profitable exit is remembered for win rate tracking."""
        entry_data = market_data_factory(candle_factory([100.0] * 200))
        exit_data = market_data_factory(candle_factory([100.0] * 199 + [110.0]))

        strategy.calculate_indicators = lambda market_data: make_indicators()
        buy = await strategy.decide(entry_data, agent_state_factory(), snapshot_factory())

        strategy.calculate_indicators = lambda market_data: make_indicators(trend_strength=0.1)
        sell = await strategy.decide(
            exit_data, agent_state_factory(), snapshot_factory(cash=7500.0, base_quantity=25.0)
        )

        assert buy.action == TradeAction.BUY
        assert buy.quantity == pytest.approx(25.0)
        assert sell.action == TradeAction.SELL
        assert sell.quantity == 25.0
        assert list(strategy.recent_trades) == [True]

    def test_indicators_on_real_candles(self, strategy, candle_factory, market_data_factory, wave_factory):
        market_data = market_data_factory(candle_factory(wave_factory(250)))

        ind = strategy.calculate_indicators(market_data)

        assert ind.atr > 0
        assert 0 <= ind.rsi <= 100
        assert ind.support <= market_data.current_price <= ind.resistance
        assert isinstance(ind.regime, MarketRegime)
