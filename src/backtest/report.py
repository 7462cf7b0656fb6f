"""
Backtest Report Generator.

Renders a SimulationReport as:
- A console report (performance, risk, trade statistics, benchmark)
- A markdown document
- A flat summary dict for JSON output and strategy comparison
- Comparison and parameter-optimization tables
"""

import math
from typing import Dict, List, Optional, Sequence

from src.core.models import SimulationReport, TradeAction, from_epoch_ms

RECENT_TRADES_SHOWN = 10


def _pct(value: Optional[float], signed: bool = True) -> str:
    if value is None:
        return "n/a"
    return f"{value * 100:+.2f}%" if signed else f"{value * 100:.2f}%"


def _ratio(value: Optional[float]) -> str:
    if value is None:
        return "n/a"
    if math.isinf(value):
        return "inf"
    return f"{value:.2f}"


def _date(timestamp: int) -> str:
    return from_epoch_ms(timestamp).strftime("%Y-%m-%d %H:%M")


class BacktestReport:
    """Generate backtest reports for one simulation run."""

    def __init__(self, report: SimulationReport):
        self.report = report
        self.metrics = report.metrics

    def print_full_report(self):
        """Print complete backtest report to console."""
        self._print_header()
        self._print_performance_summary()
        self._print_risk_metrics()
        self._print_trade_statistics()
        self._print_recent_trades()
        self._print_conclusion()

    def generate_markdown_report(self) -> str:
        """Generate markdown formatted report."""
        r, m = self.report, self.metrics
        lines = []

        lines.append(f"# Backtest Report: {r.strategy_id}")
        lines.append("")
        lines.append(f"**Pair:** {r.pair} ({r.interval})")
        lines.append(f"**Test Period:** {_date(r.start_date)} to {_date(r.end_date)}")
        lines.append(f"**Initial Capital:** ${r.initial_capital:,.2f}")
        lines.append(f"**Final Capital:** ${r.final_capital:,.2f}")
        lines.append("")

        lines.append("## Performance Summary")
        lines.append("")
        lines.append("| Metric | Value |")
        lines.append("|--------|-------|")
        lines.append(f"| Total P&L | ${m.total_pnl_absolute:,.2f} |")
        lines.append(f"| Total Return | {_pct(m.total_pnl_percentage)} |")
        lines.append(f"| Buy & Hold Return | {_pct(m.buy_and_hold_pnl_percentage)} |")
        lines.append(f"| Max Drawdown | {_pct(m.max_drawdown, signed=False)} |")
        lines.append(f"| Sharpe Ratio | {_ratio(m.sharpe_ratio)} |")
        lines.append("")

        lines.append("## Trades")
        lines.append("")
        lines.append("| Metric | Value |")
        lines.append("|--------|-------|")
        lines.append(f"| Total Trades | {m.total_trades} |")
        lines.append(f"| Winning / Losing | {m.winning_trades} / {m.losing_trades} |")
        lines.append(f"| Win/Loss Ratio | {_ratio(m.win_loss_ratio)} |")
        lines.append(f"| Average Win | ${m.average_win_amount:,.2f} |")
        lines.append(f"| Average Loss | ${m.average_loss_amount:,.2f} |")
        lines.append("")

        if r.trades:
            lines.append("## Recent Trades")
            lines.append("")
            lines.append("| Time | Action | Quantity | Price | Fees | P&L |")
            lines.append("|------|--------|----------|-------|------|-----|")
            for t in r.trades[-RECENT_TRADES_SHOWN:]:
                pnl = f"{t.realized_pnl:+.2f}" if t.realized_pnl is not None else "-"
                lines.append(
                    f"| {_date(t.executed_timestamp)} | {t.action.value} | {t.quantity:.8g} "
                    f"| {t.executed_price:.4f} | {t.fees:.4f} | {pnl} |"
                )
            lines.append("")

        return "\n".join(lines)

    def _print_header(self):
        """Print report header."""
        r = self.report
        print("\n" + "=" * 80)
        print(f"BACKTEST REPORT - {r.strategy_id}")
        print("=" * 80)
        print(f"\nPair:            {r.pair} ({r.interval})")
        print(f"Test Period:     {_date(r.start_date)} to {_date(r.end_date)}")
        print(f"Initial Capital: ${r.initial_capital:,.2f}")
        print(f"Final Capital:   ${r.final_capital:,.2f}")
        print(f"Snapshots:       {len(r.portfolio_snapshots)}")

    def _print_performance_summary(self):
        """Print performance summary."""
        m = self.metrics
        print("\n" + "-" * 80)
        print("PERFORMANCE SUMMARY")
        print("-" * 80)

        print(f"\n  Total P&L:             ${m.total_pnl_absolute:,.2f}")
        print(f"  Total Return:          {_pct(m.total_pnl_percentage)}")
        print(f"  Buy & Hold Return:     {_pct(m.buy_and_hold_pnl_percentage)}")
        if m.first_asset_price is not None and m.last_asset_price is not None:
            print(f"  Asset Price:           {m.first_asset_price:.4f} -> {m.last_asset_price:.4f}")

        if m.total_pnl_percentage > 0:
            print("  Status:                🟢 PROFITABLE")
        elif m.total_pnl_percentage == 0:
            print("  Status:                🟡 FLAT")
        else:
            print("  Status:                🔴 LOSS")

        excess = self.excess_return
        if excess is not None:
            verdict = "outperformed" if excess > 0 else "underperformed"
            print(f"  vs Buy & Hold:         {verdict} by {abs(excess) * 100:.2f}%")

    def _print_risk_metrics(self):
        """Print risk metrics."""
        m = self.metrics
        print("\n" + "-" * 80)
        print("RISK METRICS")
        print("-" * 80)

        print(f"\n  Max Drawdown:          {_pct(m.max_drawdown, signed=False)}")
        print(f"  Sharpe Ratio:          {_ratio(m.sharpe_ratio)}")

        print("\n  Risk Assessment:")
        if m.max_drawdown < 0.25:
            print("    ✅ Drawdown controlled (< 25%)")
        else:
            print("    ⚠️  High drawdown (> 25%)")

        if m.sharpe_ratio is None:
            print("    🟡 Not enough snapshots for a Sharpe ratio")
        elif m.sharpe_ratio > 1.0:
            print("    ✅ Good risk-adjusted returns (Sharpe > 1.0)")
        elif m.sharpe_ratio > 0.5:
            print("    🟡 Moderate risk-adjusted returns")
        else:
            print("    ⚠️  Poor risk-adjusted returns")

    def _print_trade_statistics(self):
        """Print trade statistics."""
        m = self.metrics
        print("\n" + "-" * 80)
        print("TRADE STATISTICS")
        print("-" * 80)

        buys = sum(1 for t in self.report.trades if t.action == TradeAction.BUY)
        fees = sum(t.fees for t in self.report.trades)

        print(f"\n  Total Trades:          {m.total_trades} ({buys} buys, {m.total_trades - buys} sells)")
        print(f"  Winning Trades:        {m.winning_trades} ({m.win_rate * 100:.1f}%)")
        print(f"  Losing Trades:         {m.losing_trades}")
        print(f"  Win/Loss Ratio:        {_ratio(m.win_loss_ratio)}")
        print(f"\n  Average Win:           ${m.average_win_amount:,.2f}")
        print(f"  Average Loss:          ${m.average_loss_amount:,.2f}")
        print(f"  Total Fees:            ${fees:,.2f}")

    def _print_recent_trades(self):
        """Print the last executed trades."""
        trades = self.report.trades[-RECENT_TRADES_SHOWN:]
        if not trades:
            return

        print("\n" + "-" * 80)
        print(f"RECENT TRADES (last {len(trades)})")
        print("-" * 80)
        print(f"\n  {'Time':<17} {'Action':<6} {'Quantity':>14} {'Price':>12} {'P&L':>12}")
        print("  " + "-" * 65)
        for t in trades:
            pnl = f"{t.realized_pnl:+.2f}" if t.realized_pnl is not None else "-"
            print(
                f"  {_date(t.executed_timestamp):<17} {t.action.value:<6} "
                f"{t.quantity:>14.8g} {t.executed_price:>12.4f} {pnl:>12}"
            )

    def _print_conclusion(self):
        """Print conclusion."""
        m = self.metrics
        print("\n" + "=" * 80)
        print("CONCLUSION")
        print("=" * 80)

        checks = self.viability_checks()
        for passed, label in checks:
            print(f"    {'✅' if passed else '🔴'} {label}")

        score = sum(1 for passed, _ in checks if passed)
        print(f"\n  Overall Score: {score}/{len(checks)}")
        if m.total_trades == 0:
            print("\n  🟡 VERDICT: NO ACTIVITY - Strategy never traded in this window")
        elif score == len(checks):
            print("\n  🟢 VERDICT: GOOD - Worth testing on further windows")
        elif score >= 2:
            print("\n  🟡 VERDICT: MARGINAL - Requires optimization")
        else:
            print("\n  🔴 VERDICT: POOR")

        print("\n" + "=" * 80)
        print("END OF REPORT")
        print("=" * 80 + "\n")

    @property
    def excess_return(self) -> Optional[float]:
        """Strategy return minus buy-and-hold return."""
        if self.metrics.buy_and_hold_pnl_percentage is None:
            return None
        return self.metrics.total_pnl_percentage - self.metrics.buy_and_hold_pnl_percentage

    def viability_checks(self) -> List[tuple]:
        m = self.metrics
        excess = self.excess_return
        return [
            (m.total_pnl_percentage > 0, "Profitable"),
            (m.max_drawdown < 0.25, "Drawdown controlled"),
            (m.sharpe_ratio is not None and m.sharpe_ratio > 1.0, "Good Sharpe ratio"),
            (excess is not None and excess > 0, "Beats buy & hold"),
        ]

    def get_summary_dict(self) -> Dict:
        """Get summary as dictionary for further processing."""
        r, m = self.report, self.metrics
        return {
            "strategy_id": r.strategy_id,
            "pair": r.pair,
            "interval": r.interval,
            "start_date": from_epoch_ms(r.start_date).isoformat(),
            "end_date": from_epoch_ms(r.end_date).isoformat(),
            "initial_capital": r.initial_capital,
            "final_capital": r.final_capital,
            "total_pnl": m.total_pnl_absolute,
            "total_return_pct": m.total_pnl_percentage * 100,
            "buy_and_hold_pct": (
                m.buy_and_hold_pnl_percentage * 100
                if m.buy_and_hold_pnl_percentage is not None
                else None
            ),
            "max_drawdown_pct": m.max_drawdown * 100,
            "sharpe_ratio": m.sharpe_ratio,
            "total_trades": m.total_trades,
            "win_rate_pct": m.win_rate * 100,
            "win_loss_ratio": m.win_loss_ratio,
        }


def format_comparison(reports: Sequence[SimulationReport]) -> str:
    """Side-by-side table of several runs, best return first."""
    rows = sorted(reports, key=lambda r: r.metrics.total_pnl_percentage, reverse=True)
    lines = [
        f"  {'Strategy':<28} {'Return':>10} {'Max DD':>9} {'Sharpe':>8} {'Trades':>7} {'Win %':>7}",
        "  " + "-" * 74,
    ]
    for r in rows:
        m = r.metrics
        lines.append(
            f"  {r.strategy_id:<28} {_pct(m.total_pnl_percentage):>10} "
            f"{_pct(m.max_drawdown, signed=False):>9} {_ratio(m.sharpe_ratio):>8} "
            f"{m.total_trades:>7} {m.win_rate * 100:>6.1f}%"
        )
    return "\n".join(lines)


def _format_params(params: Dict) -> str:
    return ", ".join(f"{name}={value}" for name, value in params.items())


def format_optimization(results: Sequence, top: int = 10) -> str:
    """Table of ranked grid points, as returned by GridOptimizer.optimize."""
    lines = [
        f"  {'#':>3} {'Return':>10} {'Sharpe':>8} {'Max DD':>9} {'Trades':>7}  Parameters",
        "  " + "-" * 74,
    ]
    for rank, result in enumerate(results[:top], start=1):
        if result.report is None:
            lines.append(
                f"  {rank:>3} {'failed':>10} {'':>8} {'':>9} {'':>7}  "
                f"{_format_params(result.params)}"
            )
            continue
        m = result.report.metrics
        lines.append(
            f"  {rank:>3} {_pct(m.total_pnl_percentage):>10} {_ratio(m.sharpe_ratio):>8} "
            f"{_pct(m.max_drawdown, signed=False):>9} {m.total_trades:>7}  "
            f"{_format_params(result.params)}"
        )
    hidden = len(results) - top
    if hidden > 0:
        lines.append(f"  ... {hidden} more")
    return "\n".join(lines)
