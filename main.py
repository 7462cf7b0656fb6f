"""
Strategy Backtester - Main Entry Point

Replays historical candles against trading strategies and reports
performance.

Usage:
    # List the built-in strategies
    python main.py --list-strategies

    # Backtest one strategy on synthetic data
    python main.py --strategy mean-reversion-strategy --source mock --days 60

    # Compare strategies on exchange data
    python main.py --compare random-v1 momentum-breakout-v1 --source ccxt \\
        --pair BTC/USDT --start 2024-01-01 --end 2024-03-01

All options are documented by ``python main.py --help``.
"""

import asyncio
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent))

from src.backtest.runner import main

if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
