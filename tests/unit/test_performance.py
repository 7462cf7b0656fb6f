"""
Unit tests for the PerformanceAnalyzer.
"""

import math

import pytest

from src.backtest.performance import PerformanceAnalyzer
from src.core.models import PortfolioSnapshot, Trade, TradeAction

START = 1_704_067_200_000
HOUR = 60 * 60 * 1000


def make_trade(action, pnl=None, index=0):
    return Trade(
        pair="SOL/USDC",
        action=action,
        quantity=1,
        timestamp=START + index * HOUR,
        executed_price=100,
        executed_timestamp=START + index * HOUR,
        trade_id=f"t-{index}",
        realized_pnl=pnl,
    )


def make_snapshots(values):
    return [
        PortfolioSnapshot(timestamp=START + i * HOUR, total_value=v, holdings={"USDC": v})
        for i, v in enumerate(values)
    ]


@pytest.fixture
def analyzer():
    return PerformanceAnalyzer()


# =============================================================================
# generate_metrics
# =============================================================================


class TestGenerateMetrics:
    """Test the full metrics build."""

    def test_mixed_trades(self, analyzer):
        """Test win/loss counts, averages and totals."""
        trades = [
            make_trade(TradeAction.BUY, index=0),
            make_trade(TradeAction.SELL, pnl=100.0, index=1),
            make_trade(TradeAction.BUY, index=2),
            make_trade(TradeAction.SELL, pnl=-50.0, index=3),
            make_trade(TradeAction.BUY, index=4),
            make_trade(TradeAction.SELL, pnl=50.0, index=5),
        ]
        snapshots = make_snapshots([10000, 10100, 10050, 10100])

        metrics = analyzer.generate_metrics(trades, snapshots, 10000.0, 10100.0)

        assert metrics.total_trades == 6
        assert metrics.winning_trades == 2
        assert metrics.losing_trades == 1
        assert metrics.win_loss_ratio == 2.0
        assert metrics.average_win_amount == pytest.approx(75.0)
        assert metrics.average_loss_amount == pytest.approx(50.0)
        assert metrics.total_pnl_absolute == pytest.approx(100.0)
        assert metrics.total_pnl_percentage == pytest.approx(0.01)
        assert metrics.buy_and_hold_pnl_percentage is None

    def test_drawdown_from_snapshot_series(self, analyzer):
        """Test drawdown of 10000 -> 9500 -> 10200 -> 9000 -> 9800."""
        snapshots = make_snapshots([10000, 9500, 10200, 9000, 9800])

        metrics = analyzer.generate_metrics([], snapshots, 10000.0, 9800.0)

        assert metrics.max_drawdown == pytest.approx(0.1176, abs=1e-4)
        assert metrics.total_pnl_absolute == pytest.approx(-200.0)

    def test_break_even_sell_is_neither(self, analyzer):
        """Test a zero P&L sell counts only toward total trades."""
        trades = [make_trade(TradeAction.SELL, pnl=0.0)]

        metrics = analyzer.generate_metrics(trades, make_snapshots([100]), 100.0, 100.0)

        assert metrics.total_trades == 1
        assert metrics.winning_trades == 0
        assert metrics.losing_trades == 0
        assert metrics.win_loss_ratio == 0.0

    def test_buy_and_hold(self, analyzer):
        """Test the benchmark uses first and last asset prices."""
        metrics = analyzer.generate_metrics(
            [], make_snapshots([100]), 100.0, 100.0, first_asset_price=50.0, last_asset_price=60.0
        )

        assert metrics.buy_and_hold_pnl_percentage == pytest.approx(0.2)
        assert metrics.first_asset_price == 50.0
        assert metrics.last_asset_price == 60.0

    def test_buy_and_hold_skipped_for_zero_price(self, analyzer):
        metrics = analyzer.generate_metrics(
            [], make_snapshots([100]), 100.0, 100.0, first_asset_price=0.0, last_asset_price=60.0
        )

        assert metrics.buy_and_hold_pnl_percentage is None

    def test_zero_initial_capital(self, analyzer):
        """Test zero capital does not divide by zero."""
        metrics = analyzer.generate_metrics([], make_snapshots([0]), 0.0, 0.0)

        assert metrics.total_pnl_percentage == 0.0

    def test_inputs_not_mutated(self, analyzer):
        trades = [make_trade(TradeAction.SELL, pnl=10.0)]
        snapshots = make_snapshots([100, 110])

        analyzer.generate_metrics(trades, snapshots, 100.0, 110.0)

        assert len(trades) == 1
        assert [s.total_value for s in snapshots] == [100, 110]


# =============================================================================
# Individual statistics
# =============================================================================


class TestWinLossRatio:
    """Test win/loss ratio edge cases."""

    def test_ratio(self):
        assert PerformanceAnalyzer.win_loss_ratio(3, 2) == 1.5

    def test_wins_without_losses_is_infinite(self):
        assert math.isinf(PerformanceAnalyzer.win_loss_ratio(2, 0))

    def test_no_closed_trades_is_zero(self):
        assert PerformanceAnalyzer.win_loss_ratio(0, 0) == 0.0


class TestMaxDrawdown:
    """Test max drawdown calculation."""

    def test_too_few_snapshots(self):
        assert PerformanceAnalyzer.max_drawdown([]) == 0.0
        assert PerformanceAnalyzer.max_drawdown(make_snapshots([100])) == 0.0

    def test_monotonic_rise_has_no_drawdown(self):
        assert PerformanceAnalyzer.max_drawdown(make_snapshots([100, 110, 120])) == 0.0

    def test_total_loss_is_one(self):
        """Test a crash to zero gives a full drawdown."""
        assert PerformanceAnalyzer.max_drawdown(make_snapshots([100, 50, 0])) == 1.0

    def test_zero_peak_ignored(self):
        """Test points with a non-positive peak contribute nothing."""
        assert PerformanceAnalyzer.max_drawdown(make_snapshots([0, 0, 0])) == 0.0


class TestSharpeRatio:
    """Test Sharpe ratio calculation."""

    def test_none_with_one_snapshot(self):
        assert PerformanceAnalyzer.sharpe_ratio(make_snapshots([100])) is None

    def test_zero_with_single_return(self):
        assert PerformanceAnalyzer.sharpe_ratio(make_snapshots([100, 110])) == 0.0

    def test_zero_for_flat_equity(self):
        """Test a zero standard deviation yields zero."""
        assert PerformanceAnalyzer.sharpe_ratio(make_snapshots([100, 100, 100])) == 0.0

    def test_annualized_value(self):
        """Test mean/std(ddof=1) * sqrt(252)."""
        sharpe = PerformanceAnalyzer.sharpe_ratio(make_snapshots([100, 100, 102]))

        # returns [0, 0.02]: mean 0.01, sample std 0.0141421
        assert sharpe == pytest.approx(0.01 / 0.0141421356 * math.sqrt(252), rel=1e-6)

    def test_negative_for_losing_run(self):
        assert PerformanceAnalyzer.sharpe_ratio(make_snapshots([100, 95, 92, 85])) < 0

    def test_skips_returns_after_zero_value(self):
        """Test steps from a zero value are left out."""
        assert PerformanceAnalyzer.sharpe_ratio(make_snapshots([100, 0, 5])) == 0.0
