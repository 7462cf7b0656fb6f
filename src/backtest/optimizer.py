"""
Parameter-grid optimization.

Every combination of the grid is backtested on its own copy of the strategy,
in its own registry, over the same candles. The candles are fetched once so
that every grid point sees identical data and the exchange is not hit once
per point.
"""

import asyncio
import itertools
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

import structlog

from src.backtest.data_loader import BaseDataProvider, InMemoryDataProvider
from src.backtest.engine import SimulationEngine
from src.core.exceptions import NoDataError, ValidationError
from src.core.models import BacktestParams, SimulationReport
from src.strategies.base import BaseStrategy
from src.strategies.registry import StrategyRegistry

logger = structlog.get_logger(__name__)

RANK_KEYS = ("sharpe", "return")


@dataclass(frozen=True)
class OptimizationResult:
    """Outcome of one grid point. ``report`` is None when the run failed."""
    params: Dict[str, Any]
    report: Optional[SimulationReport] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.report is not None

    @property
    def total_return(self) -> Optional[float]:
        return self.report.metrics.total_pnl_percentage if self.report else None

    @property
    def sharpe_ratio(self) -> Optional[float]:
        return self.report.metrics.sharpe_ratio if self.report else None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"params": dict(self.params)}
        if self.report is None:
            data["error"] = self.error
            return data
        m = self.report.metrics
        data.update(
            total_return_pct=m.total_pnl_percentage * 100,
            sharpe_ratio=m.sharpe_ratio,
            max_drawdown_pct=m.max_drawdown * 100,
            win_rate_pct=m.win_rate * 100,
            total_trades=m.total_trades,
            final_capital=self.report.final_capital,
        )
        return data


def expand_grid(
    param_grid: Mapping[str, Sequence[Any]], max_combinations: Optional[int] = None
) -> List[Dict[str, Any]]:
    """
    All combinations of a parameter grid, last parameter varying fastest.

    Args:
        param_grid: Parameter name to candidate values
        max_combinations: Keep only the first N combinations

    Raises:
        ValidationError: Empty grid or a parameter without candidates
    """
    if not param_grid:
        raise ValidationError("Parameter grid is empty")
    names = list(param_grid)
    values = []
    for name in names:
        candidates = list(param_grid[name])
        if not candidates:
            raise ValidationError(f"No values given for parameter {name}")
        values.append(candidates)

    combos = (dict(zip(names, combo)) for combo in itertools.product(*values))
    if max_combinations is not None:
        if max_combinations < 1:
            raise ValidationError("max_combinations must be at least 1")
        combos = itertools.islice(combos, max_combinations)
    return list(combos)


def rank_results(results: Sequence[OptimizationResult], rank_by: str = "sharpe") -> List[OptimizationResult]:
    """
    Best first. Failed points go last.

    Sharpe ranking treats a missing ratio as the worst score and breaks ties
    on total return.
    """
    if rank_by not in RANK_KEYS:
        raise ValidationError(f"rank_by must be one of {', '.join(RANK_KEYS)}, got {rank_by}")

    def score(result: OptimizationResult):
        if not result.succeeded:
            return (0, -math.inf, -math.inf)
        ret = result.total_return
        if rank_by == "return":
            return (1, ret, ret)
        sharpe = result.sharpe_ratio
        return (1, sharpe if sharpe is not None else -math.inf, ret)

    return sorted(results, key=score, reverse=True)


class GridOptimizer:
    """Backtests a strategy over every point of a parameter grid."""

    def __init__(
        self,
        data_provider: BaseDataProvider,
        context: Optional[Dict[str, Any]] = None,
        engine_config=None,
    ):
        self.data_provider = data_provider
        self.context = context
        self.engine_config = engine_config

    async def optimize(
        self,
        template: BaseStrategy,
        param_grid: Mapping[str, Sequence[Any]],
        params: BacktestParams,
        rank_by: str = "sharpe",
        max_combinations: Optional[int] = None,
    ) -> List[OptimizationResult]:
        """
        Run every grid point and rank the outcomes.

        Args:
            template: Strategy whose current configuration is the base of every point
            param_grid: Parameter name to candidate values
            params: Backtest window, pair, capital and costs shared by all points
            rank_by: "sharpe" or "return"
            max_combinations: Cap on the number of points run

        Returns:
            One OptimizationResult per point, best first

        Raises:
            ValidationError: Bad grid or ranking key
            NoDataError: No candles for the window
        """
        if rank_by not in RANK_KEYS:
            raise ValidationError(f"rank_by must be one of {', '.join(RANK_KEYS)}, got {rank_by}")
        combinations = expand_grid(param_grid, max_combinations)

        candles = await self.data_provider.fetch_data(
            params.pair, params.interval, params.start_date, params.end_date, params.data_source
        )
        if not candles:
            raise NoDataError(params.pair, params.interval, params.start_date, params.end_date)
        provider = InMemoryDataProvider({params.pair: candles})

        logger.info(
            "optimizer.starting",
            strategy=template.id,
            combinations=len(combinations),
            candles=len(candles),
            rank_by=rank_by,
        )
        results = await asyncio.gather(
            *(self._run_point(template, combo, params, provider) for combo in combinations)
        )
        ranked = rank_results(results, rank_by)

        best = ranked[0]
        logger.info(
            "optimizer.complete",
            strategy=template.id,
            succeeded=sum(1 for r in results if r.succeeded),
            failed=sum(1 for r in results if not r.succeeded),
            best_params=best.params if best.succeeded else None,
        )
        return ranked

    async def _run_point(
        self,
        template: BaseStrategy,
        combo: Dict[str, Any],
        params: BacktestParams,
        provider: InMemoryDataProvider,
    ) -> OptimizationResult:
        strategy = template.clone()
        try:
            strategy.configure(combo)
        except ValidationError as e:
            logger.warning("optimizer.invalid_point", strategy=template.id, params=combo, error=str(e))
            return OptimizationResult(params=combo, error=str(e))

        registry = StrategyRegistry()
        registry.register_strategy(strategy)
        engine = SimulationEngine(registry, provider, context=self.context, config=self.engine_config)
        try:
            report = await engine.run_backtest(params)
        except Exception as e:
            logger.error("optimizer.point_failed", strategy=template.id, params=combo, error=str(e))
            return OptimizationResult(params=combo, error=str(e))
        return OptimizationResult(params=combo, report=report)

