"""
Backtest Runner - CLI and programmatic interface.

Usage:
    python -m src.backtest.runner --strategy rule-based-v1 --pair SOL/USDC --start 2024-01-01 --end 2024-02-01
    python -m src.backtest.runner --compare random-v1 momentum-breakout-v1 --source mock
    python -m src.backtest.runner --strategy random-v1 --optimize trade_attempt_probability=0.05,0.1,0.2
    python -m src.backtest.runner --list-strategies
"""

import argparse
import asyncio
import json
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from src.backtest.data_loader import BaseDataProvider, DateLike, HistoricalDataLoader
from src.backtest.engine import SimulationEngine
from src.backtest.optimizer import GridOptimizer, OptimizationResult
from src.backtest.report import BacktestReport, format_comparison, format_optimization
from src.core.config import simulation_config
from src.core.exceptions import StrategyNotFoundError, ValidationError
from src.core.models import BacktestParams, SimulationReport
from src.strategies.registry import StrategyRegistry, register_default_strategies
from src.utils.logging_config import setup_logging

logger = structlog.get_logger(__name__)


class BacktestRunner:
    """High-level backtest runner interface."""

    def __init__(
        self,
        data_provider: Optional[BaseDataProvider] = None,
        registry: Optional[StrategyRegistry] = None,
        context: Optional[Dict[str, Any]] = None,
        cache_dir: Optional[str] = None,
    ):
        self.registry = registry or register_default_strategies(StrategyRegistry())
        self.data_provider = data_provider or HistoricalDataLoader(cache_dir=cache_dir)
        self.engine = SimulationEngine(self.registry, self.data_provider, context=context)

    def build_params(
        self,
        strategy_id: str,
        start_date: DateLike,
        end_date: DateLike,
        pair: Optional[str] = None,
        interval: Optional[str] = None,
        initial_capital: Optional[float] = None,
        transaction_cost_percentage: Optional[float] = None,
        slippage_percentage: Optional[float] = None,
        data_source: Optional[str] = None,
    ) -> BacktestParams:
        """BacktestParams with unset arguments taken from SimulationConfig."""
        return BacktestParams(
            strategy_id=strategy_id,
            pair=pair or simulation_config.default_pair,
            interval=interval or simulation_config.default_interval,
            start_date=start_date,
            end_date=end_date,
            initial_capital=(
                simulation_config.initial_capital if initial_capital is None else initial_capital
            ),
            transaction_cost_percentage=(
                simulation_config.transaction_cost_percentage
                if transaction_cost_percentage is None
                else transaction_cost_percentage
            ),
            slippage_percentage=(
                simulation_config.slippage_percentage
                if slippage_percentage is None
                else slippage_percentage
            ),
            data_source=data_source or simulation_config.default_data_source,
        )

    async def run(
        self,
        strategy_id: str,
        start_date: DateLike,
        end_date: DateLike,
        pair: Optional[str] = None,
        interval: Optional[str] = None,
        initial_capital: Optional[float] = None,
        transaction_cost_percentage: Optional[float] = None,
        slippage_percentage: Optional[float] = None,
        data_source: Optional[str] = None,
        strategy_params: Optional[Dict[str, Any]] = None,
    ) -> SimulationReport:
        """
        Run one backtest. Unset arguments fall back to SimulationConfig.

        Args:
            strategy_id: Registered strategy id
            start_date: Window start (inclusive)
            end_date: Window end (exclusive)
            pair: Trading pair
            interval: Candle granularity
            initial_capital: Starting cash
            transaction_cost_percentage: Fee per trade as a fraction
            slippage_percentage: Adverse price adjustment as a fraction
            data_source: Source passed to the data provider
            strategy_params: Applied with Strategy.configure before the run

        Returns:
            SimulationReport
        """
        params = self.build_params(
            strategy_id,
            start_date,
            end_date,
            pair=pair,
            interval=interval,
            initial_capital=initial_capital,
            transaction_cost_percentage=transaction_cost_percentage,
            slippage_percentage=slippage_percentage,
            data_source=data_source,
        )

        if strategy_params:
            strategy = self.registry.get_strategy(strategy_id)
            if strategy is not None:
                strategy.configure(strategy_params)

        logger.info(
            "backtest_runner.starting",
            strategy=strategy_id,
            pair=params.pair,
            start=params.start_date,
            end=params.end_date,
        )
        report = await self.engine.run_backtest(params)
        logger.info(
            "backtest_runner.complete",
            strategy=strategy_id,
            total_return=f"{report.metrics.total_pnl_percentage * 100:.2f}%",
            sharpe=report.metrics.sharpe_ratio,
        )
        return report

    async def compare_strategies(
        self, strategy_ids: List[str], start_date: DateLike, end_date: DateLike, **kwargs
    ) -> Dict[str, Optional[SimulationReport]]:
        """
        Run several strategies over the same window concurrently.

        Each run owns its ledger. A failed run is logged and reported as None.

        Returns:
            Reports keyed by strategy id, in the order requested
        """
        unique_ids = list(dict.fromkeys(strategy_ids))
        outcomes = await asyncio.gather(
            *(self.run(sid, start_date, end_date, **kwargs) for sid in unique_ids),
            return_exceptions=True,
        )

        results = {}
        for strategy_id, outcome in zip(unique_ids, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    "backtest_runner.strategy_failed", strategy=strategy_id, error=str(outcome)
                )
                results[strategy_id] = None
            else:
                results[strategy_id] = outcome
        return results

    async def optimize(
        self,
        strategy_id: str,
        param_grid: Dict[str, List[Any]],
        start_date: DateLike,
        end_date: DateLike,
        rank_by: str = "sharpe",
        max_combinations: Optional[int] = None,
        **kwargs,
    ) -> List[OptimizationResult]:
        """
        Backtest every combination of ``param_grid`` and rank them.

        The registered strategy is left unchanged: each grid point runs on a
        fresh copy in its own registry. Remaining keyword arguments (pair,
        interval, capital, costs and data source) are passed to ``build_params``.

        Args:
            strategy_id: Registered strategy id
            param_grid: Parameter name to candidate values
            start_date: Window start (inclusive)
            end_date: Window end (exclusive)
            rank_by: "sharpe" or "return"
            max_combinations: Cap on points run (default from SimulationConfig)

        Returns:
            OptimizationResults, best first

        Raises:
            StrategyNotFoundError: Unknown strategy id
            ValidationError: Bad grid or ranking key
        """
        template = self.registry.get_strategy(strategy_id)
        if template is None:
            raise StrategyNotFoundError(strategy_id)

        params = self.build_params(strategy_id, start_date, end_date, **kwargs)
        optimizer = GridOptimizer(
            self.data_provider, context=self.engine.context, engine_config=self.engine.config
        )
        return await optimizer.optimize(
            template,
            param_grid,
            params,
            rank_by=rank_by,
            max_combinations=(
                simulation_config.optimize_max_combinations
                if max_combinations is None
                else max_combinations
            ),
        )

    def list_strategies(self) -> List[Dict[str, str]]:
        return [
            {"id": s.id, "name": s.name, "description": s.description}
            for s in self.registry.list_strategies()
        ]

    async def close(self):
        """Release provider resources (exchange connections)."""
        close = getattr(self.data_provider, "close", None)
        if close is not None:
            await close()


def _parse_date(value: str) -> datetime:
    return datetime.strptime(value, "%Y-%m-%d").replace(tzinfo=timezone.utc)


def _parse_value(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


def parse_param_grid(entries: List[str]) -> Dict[str, List[Any]]:
    """
    Build a parameter grid from NAME=V1,V2,... arguments.

    Values are read as JSON where possible (numbers, true/false, null) and
    kept as strings otherwise.

    Raises:
        ValidationError: Malformed argument
    """
    grid: Dict[str, List[Any]] = {}
    for entry in entries:
        name, sep, values = entry.partition("=")
        name = name.strip()
        if not sep or not name or not values.strip():
            raise ValidationError(f"Expected NAME=V1,V2,... got {entry!r}")
        grid[name] = [_parse_value(v.strip()) for v in values.split(",") if v.strip()]
    return grid


def parse_args(argv: Optional[List[str]] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Strategy Backtester - Backtest Runner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Backtest one strategy on synthetic data
  python -m src.backtest.runner --strategy random-v1 --source mock

  # Specific pair and date range from the exchange, with fees and slippage
  python -m src.backtest.runner --strategy rule-based-v1 --pair SOL/USDC \\
      --start 2024-01-01 --end 2024-03-01 --source ccxt --fee 0.001 --slippage 0.0005

  # Compare strategies over the same window
  python -m src.backtest.runner --compare random-v1 mean-reversion-strategy

  # Grid-search parameters, best Sharpe first
  python -m src.backtest.runner --strategy optimized-momentum-v1 \\
      --optimize stop_loss=0.01,0.015,0.02 take_profit=0.02,0.03 --rank-by sharpe
        """,
    )

    parser.add_argument("--strategy", type=str, default="random-v1", help="Strategy id")
    parser.add_argument(
        "--pair", type=str, default=simulation_config.default_pair, help="Trading pair"
    )
    parser.add_argument(
        "--interval",
        type=str,
        default=simulation_config.default_interval,
        help="Candle interval (default: 1h)",
    )
    parser.add_argument("--start", type=str, help="Start date (YYYY-MM-DD)")
    parser.add_argument("--end", type=str, help="End date (YYYY-MM-DD)")
    parser.add_argument(
        "--days", type=int, default=30, help="Window length when --start is omitted"
    )
    parser.add_argument(
        "--capital",
        type=float,
        default=simulation_config.initial_capital,
        help="Initial capital",
    )
    parser.add_argument(
        "--fee",
        type=float,
        default=simulation_config.transaction_cost_percentage,
        help="Transaction cost as a fraction (0.001 = 0.1%%)",
    )
    parser.add_argument(
        "--slippage",
        type=float,
        default=simulation_config.slippage_percentage,
        help="Slippage as a fraction",
    )
    parser.add_argument(
        "--source",
        type=str,
        default=simulation_config.default_data_source,
        help="Data source: mock or ccxt",
    )
    parser.add_argument(
        "--compare", type=str, nargs="+", metavar="STRATEGY", help="Compare strategies"
    )
    parser.add_argument(
        "--optimize",
        type=str,
        nargs="+",
        metavar="NAME=V1,V2",
        help="Grid-search parameters of --strategy",
    )
    parser.add_argument(
        "--rank-by",
        type=str,
        choices=["sharpe", "return"],
        default="sharpe",
        help="Ranking for --optimize (default: sharpe)",
    )
    parser.add_argument(
        "--max-combinations",
        type=int,
        default=simulation_config.optimize_max_combinations,
        help="Maximum grid points run by --optimize",
    )
    parser.add_argument(
        "--top", type=int, default=10, help="Rows shown for --optimize (default: 10)"
    )
    parser.add_argument(
        "--list-strategies", action="store_true", help="List registered strategies"
    )
    parser.add_argument(
        "--output", type=str, help="Output file (.json for the full report, else markdown)"
    )
    parser.add_argument("--json", action="store_true", help="Print the summary as JSON")
    parser.add_argument("--log-level", type=str, help="Override the configured log level")

    return parser.parse_args(argv)


def _window(args) -> tuple:
    end_date = _parse_date(args.end) if args.end else datetime.now(timezone.utc).replace(
        minute=0, second=0, microsecond=0
    )
    start_date = _parse_date(args.start) if args.start else end_date - timedelta(days=args.days)
    return start_date, end_date


async def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    setup_logging(log_level=args.log_level)

    grid = None
    if args.optimize:
        try:
            grid = parse_param_grid(args.optimize)
        except ValidationError as e:
            print(f"error: {e}", file=sys.stderr)
            return 2

    runner = BacktestRunner()

    if args.list_strategies:
        for info in runner.list_strategies():
            print(f"  {info['id']:<28} {info['name']}")
            print(f"  {'':<28} {info['description']}")
        return 0

    start_date, end_date = _window(args)
    run_kwargs = dict(
        pair=args.pair,
        interval=args.interval,
        initial_capital=args.capital,
        transaction_cost_percentage=args.fee,
        slippage_percentage=args.slippage,
        data_source=args.source,
    )

    try:
        if args.compare:
            results = await runner.compare_strategies(
                args.compare, start_date, end_date, **run_kwargs
            )
            reports = [r for r in results.values() if r is not None]

            if args.json:
                print(json.dumps([BacktestReport(r).get_summary_dict() for r in reports], indent=2))
            else:
                print("\n" + "=" * 80)
                print("STRATEGY COMPARISON")
                print("=" * 80 + "\n")
                print(format_comparison(reports))
                failed = [sid for sid, r in results.items() if r is None]
                if failed:
                    print(f"\n  Failed: {', '.join(failed)}")
            return 0 if reports else 1

        if args.optimize:
            results = await runner.optimize(
                args.strategy,
                grid,
                start_date,
                end_date,
                rank_by=args.rank_by,
                max_combinations=args.max_combinations,
                **run_kwargs,
            )
            rows = [dict(rank=i + 1, **r.to_dict()) for i, r in enumerate(results)]

            if args.json:
                print(json.dumps(rows, indent=2))
            else:
                print("\n" + "=" * 80)
                print(f"PARAMETER OPTIMIZATION - {args.strategy} (by {args.rank_by})")
                print("=" * 80 + "\n")
                print(format_optimization(results, top=args.top))

            best = results[0]
            if args.output:
                path = Path(args.output)
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(
                    json.dumps(
                        {
                            "strategy_id": args.strategy,
                            "rank_by": args.rank_by,
                            "best_params": best.params if best.succeeded else None,
                            "results": rows,
                        },
                        indent=2,
                    )
                )
                print(f"\nResults saved to: {args.output}")
            return 0 if best.succeeded else 1

        report = await runner.run(args.strategy, start_date, end_date, **run_kwargs)
    finally:
        await runner.close()

    formatter = BacktestReport(report)
    if args.json:
        print(json.dumps(formatter.get_summary_dict(), indent=2))
    else:
        formatter.print_full_report()

    if args.output:
        path = Path(args.output)
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.suffix == ".json":
            path.write_text(report.model_dump_json(indent=2))
        else:
            path.write_text(formatter.generate_markdown_report())
        print(f"\nReport saved to: {args.output}")

    return 0


def cli():
    """Console script entry point."""
    raise SystemExit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
