"""
Strategy Backtester Backtest Module.

Candle-by-candle replay of trading strategies with a virtual ledger.

Usage:
    from src.backtest.runner import BacktestRunner

    runner = BacktestRunner()
    report = await runner.run(
        "rule-based-v1",
        start_date=datetime(2024, 1, 1),
        end_date=datetime(2024, 2, 1),
        pair="SOL/USDC",
        data_source="mock",
    )

    BacktestReport(report).print_full_report()
"""

from src.backtest.data_loader import (BaseDataProvider, HistoricalDataLoader,
                                      InMemoryDataProvider)
from src.backtest.engine import SimulationEngine, SimulationLedger
from src.backtest.performance import PerformanceAnalyzer
from src.backtest.optimizer import GridOptimizer, OptimizationResult
from src.backtest.report import (BacktestReport, format_comparison,
                                 format_optimization)
from src.backtest.runner import BacktestRunner

__all__ = [
    "SimulationEngine",
    "SimulationLedger",
    "PerformanceAnalyzer",
    "BaseDataProvider",
    "InMemoryDataProvider",
    "HistoricalDataLoader",
    "BacktestReport",
    "BacktestRunner",
    "format_comparison",
    "format_optimization",
    "GridOptimizer",
    "OptimizationResult",
]
