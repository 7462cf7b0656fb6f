"""
Performance Analyzer

Derives PerformanceMetrics from the trade list and the snapshot history of a
completed run. Inputs are never mutated.

Conventions:
- A trade wins when realized_pnl > 0 and loses when realized_pnl < 0. BUY
  trades (realized_pnl unset) and break-even SELLs only count toward
  total_trades.
- Sharpe ratio uses the returns between consecutive snapshots, the sample
  standard deviation (ddof=1) and a fixed sqrt(252) annualization with a zero
  risk-free rate.
"""
import math
from typing import Optional, Sequence

import numpy as np
import pandas as pd
import structlog

from src.core.models import PerformanceMetrics, PortfolioSnapshot, Trade

logger = structlog.get_logger(__name__)

ANNUALIZATION_PERIODS = 252


class PerformanceAnalyzer:
    """Computes standardized metrics for a simulation run."""

    def generate_metrics(
        self,
        trades: Sequence[Trade],
        snapshots: Sequence[PortfolioSnapshot],
        initial_capital: float,
        final_capital: float,
        first_asset_price: Optional[float] = None,
        last_asset_price: Optional[float] = None,
    ) -> PerformanceMetrics:
        """
        Build the metrics of a run.

        Args:
            trades: Executed trades in order
            snapshots: Portfolio snapshots in order
            initial_capital: Starting cash
            final_capital: Cash plus holdings at the last close
            first_asset_price: Benchmark entry price (first candle open)
            last_asset_price: Benchmark exit price (last candle close)

        Returns:
            PerformanceMetrics
        """
        total_pnl = final_capital - initial_capital
        total_pnl_pct = total_pnl / initial_capital if initial_capital else 0.0

        wins = [t.realized_pnl for t in trades if t.realized_pnl is not None and t.realized_pnl > 0]
        losses = [t.realized_pnl for t in trades if t.realized_pnl is not None and t.realized_pnl < 0]

        buy_and_hold = None
        if first_asset_price is not None and last_asset_price is not None and first_asset_price > 0:
            buy_and_hold = (last_asset_price - first_asset_price) / first_asset_price

        metrics = PerformanceMetrics(
            total_pnl_absolute=total_pnl,
            total_pnl_percentage=total_pnl_pct,
            total_trades=len(trades),
            winning_trades=len(wins),
            losing_trades=len(losses),
            win_loss_ratio=self.win_loss_ratio(len(wins), len(losses)),
            average_win_amount=float(np.mean(wins)) if wins else 0.0,
            average_loss_amount=float(abs(np.mean(losses))) if losses else 0.0,
            max_drawdown=self.max_drawdown(snapshots),
            sharpe_ratio=self.sharpe_ratio(snapshots),
            buy_and_hold_pnl_percentage=buy_and_hold,
            first_asset_price=first_asset_price,
            last_asset_price=last_asset_price,
        )

        logger.debug(
            "performance.metrics_generated",
            total_trades=metrics.total_trades,
            total_pnl=f"{total_pnl:.2f}",
            max_drawdown=f"{metrics.max_drawdown:.4f}",
            sharpe=metrics.sharpe_ratio,
        )
        return metrics

    @staticmethod
    def win_loss_ratio(winning: int, losing: int) -> float:
        if losing > 0:
            return winning / losing
        if winning > 0:
            return math.inf
        return 0.0

    @staticmethod
    def max_drawdown(snapshots: Sequence[PortfolioSnapshot]) -> float:
        """Largest peak-to-trough decline as a fraction of the peak, in [0, 1]."""
        if len(snapshots) < 2:
            return 0.0

        equity = pd.Series([s.total_value for s in snapshots], dtype=float)
        peak = equity.cummax()
        drawdown = ((peak - equity) / peak).where(peak > 0, 0.0)
        return float(min(max(drawdown.max(), 0.0), 1.0))

    @staticmethod
    def sharpe_ratio(snapshots: Sequence[PortfolioSnapshot]) -> Optional[float]:
        """Annualized Sharpe ratio of step returns (None with fewer than two snapshots)."""
        if len(snapshots) < 2:
            return None

        values = [s.total_value for s in snapshots]
        returns = np.array(
            [(cur - prev) / prev for prev, cur in zip(values[:-1], values[1:]) if prev > 0]
        )
        if len(returns) < 2:
            return 0.0

        std = returns.std(ddof=1)
        if std == 0 or not np.isfinite(std):
            return 0.0
        return float(returns.mean() / std * np.sqrt(ANNUALIZATION_PERIODS))
