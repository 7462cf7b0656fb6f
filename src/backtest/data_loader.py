"""
Historical Data Providers for Backtesting.

All providers implement the fetch contract used by the simulation engine:

    await provider.fetch_data(symbol, timeframe, start_date, end_date, source_id)

which returns candles ordered by timestamp inside [start_date, end_date), or
an empty list when nothing is available. Only an inverted date range raises.

- InMemoryDataProvider: serves preloaded candles (tests, notebooks)
- HistoricalDataLoader: CSV cache, exchange download via CCXT, and a seeded
  synthetic series for the "mock" source
"""

import asyncio
import zlib
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

import ccxt.async_support as ccxt
import numpy as np
import pandas as pd
import structlog

from src.core.config import data_config
from src.core.exceptions import InvalidDateRangeError
from src.core.models import Candle, to_epoch_ms

logger = structlog.get_logger(__name__)

DateLike = Union[datetime, int]

MOCK_SOURCES = ("mock", "mocksource")
EXCHANGE_SOURCES = ("ccxt", "exchange")

INTERVAL_MS = {
    "1m": 60 * 1000,
    "5m": 5 * 60 * 1000,
    "15m": 15 * 60 * 1000,
    "30m": 30 * 60 * 1000,
    "1h": 60 * 60 * 1000,
    "4h": 4 * 60 * 60 * 1000,
    "1d": 24 * 60 * 60 * 1000,
}

CSV_COLUMNS = ["timestamp", "open", "high", "low", "close", "volume"]


def interval_to_ms(timeframe: str) -> int:
    """Length of one candle. Unknown timeframes fall back to one hour."""
    ms = INTERVAL_MS.get(timeframe.lower())
    if ms is None:
        logger.warning("data_loader.unknown_timeframe", timeframe=timeframe, fallback="1h")
        return INTERVAL_MS["1h"]
    return ms


def _validate_range(start_date: DateLike, end_date: DateLike) -> tuple:
    start_ms, end_ms = to_epoch_ms(start_date), to_epoch_ms(end_date)
    if end_ms <= start_ms:
        raise InvalidDateRangeError(
            f"End date must be after start date (start={start_ms}, end={end_ms})"
        )
    return start_ms, end_ms


def _in_window(candles: Iterable[Candle], start_ms: int, end_ms: int) -> List[Candle]:
    """Candles inside [start, end), sorted, one per timestamp."""
    unique = {c.timestamp: c for c in candles if start_ms <= c.timestamp < end_ms}
    return [unique[ts] for ts in sorted(unique)]


class BaseDataProvider(ABC):
    """Source of historical candles for the simulation engine."""

    @abstractmethod
    async def fetch_data(
        self,
        symbol: str,
        timeframe: str,
        start_date: DateLike,
        end_date: DateLike,
        source_id: str,
    ) -> List[Candle]:
        """
        Fetch candles for a symbol.

        Args:
            symbol: Trading pair (e.g., 'SOL/USDC')
            timeframe: Candle granularity (e.g., '1h')
            start_date: Window start, inclusive
            end_date: Window end, exclusive
            source_id: Provider-specific source name

        Returns:
            Candles ordered by timestamp, empty when no data is available

        Raises:
            InvalidDateRangeError: If end_date is not after start_date
        """
        pass


class InMemoryDataProvider(BaseDataProvider):
    """Serves candles supplied up front, keyed by symbol. The source id is ignored."""

    def __init__(self, candles_by_symbol: Optional[Dict[str, Iterable[Candle]]] = None):
        self._candles: Dict[str, List[Candle]] = {
            symbol: list(candles) for symbol, candles in (candles_by_symbol or {}).items()
        }

    def add_candles(self, symbol: str, candles: Iterable[Candle]) -> None:
        self._candles.setdefault(symbol, []).extend(candles)

    async def fetch_data(
        self,
        symbol: str,
        timeframe: str,
        start_date: DateLike,
        end_date: DateLike,
        source_id: str = "memory",
    ) -> List[Candle]:
        start_ms, end_ms = _validate_range(start_date, end_date)
        return _in_window(self._candles.get(symbol, []), start_ms, end_ms)


class HistoricalDataLoader(BaseDataProvider):
    """
    Load historical market data for backtesting.

    Features:
    - Downloads from any CCXT exchange with pagination
    - Caches downloads locally (CSV format)
    - Handles rate limiting
    - Deterministic synthetic data for the "mock" source
    """

    def __init__(
        self,
        cache_dir: Optional[str] = None,
        exchange_id: Optional[str] = None,
        fetch_limit: Optional[int] = None,
        request_delay: Optional[float] = None,
        mock_seed: Optional[int] = None,
    ):
        self.cache_dir = Path(cache_dir or data_config.cache_dir)
        self.exchange_id = exchange_id or data_config.exchange_id
        self.fetch_limit = fetch_limit or data_config.fetch_limit
        self.request_delay = (
            data_config.request_delay_seconds if request_delay is None else request_delay
        )
        self.mock_seed = data_config.mock_seed if mock_seed is None else mock_seed
        self.exchange = None

    async def initialize(self):
        """Initialize exchange connection."""
        if self.exchange is None:
            self.exchange = getattr(ccxt, self.exchange_id)(
                {
                    "enableRateLimit": True,
                    "options": {
                        "defaultType": "spot",
                    },
                }
            )
            await self.exchange.load_markets()
            logger.info("data_loader.exchange_initialized", exchange=self.exchange_id)

    async def close(self):
        """Close exchange connection."""
        if self.exchange:
            await self.exchange.close()
            self.exchange = None

    async def fetch_data(
        self,
        symbol: str,
        timeframe: str,
        start_date: DateLike,
        end_date: DateLike,
        source_id: str = "mock",
    ) -> List[Candle]:
        start_ms, end_ms = _validate_range(start_date, end_date)
        source = source_id.lower()

        if source in MOCK_SOURCES:
            logger.warning("data_loader.using_mock_source", symbol=symbol)
            return self.generate_mock_data(symbol, timeframe, start_ms, end_ms)

        if source not in EXCHANGE_SOURCES:
            logger.warning("data_loader.unknown_source", source=source_id, symbol=symbol)
            return []

        cache_file = self._get_cache_path(symbol, timeframe, start_ms, end_ms)
        if cache_file.exists():
            logger.info("data_loader.using_cache", symbol=symbol, file=str(cache_file))
            return _in_window(self._load_from_cache(cache_file), start_ms, end_ms)

        logger.info(
            "data_loader.downloading",
            symbol=symbol,
            exchange=self.exchange_id,
            start=start_ms,
            end=end_ms,
        )
        try:
            ohlcv = await self._download(symbol, timeframe, start_ms, end_ms)
        except Exception as e:
            logger.error("data_loader.fetch_error", symbol=symbol, error=str(e))
            return []

        candles = _in_window(self._ohlcv_to_candles(ohlcv), start_ms, end_ms)
        if candles:
            self._save_to_cache(candles, cache_file)

        logger.info("data_loader.complete", symbol=symbol, records=len(candles))
        return candles

    async def _download(self, symbol: str, timeframe: str, start_ms: int, end_ms: int) -> List[list]:
        await self.initialize()

        all_ohlcv = []
        since = start_ms
        while since < end_ms:
            ohlcv = await self.exchange.fetch_ohlcv(
                symbol, timeframe=timeframe, since=since, limit=self.fetch_limit
            )
            if not ohlcv:
                break

            all_ohlcv.extend(ohlcv)

            last_timestamp = ohlcv[-1][0]
            if last_timestamp >= end_ms or last_timestamp < since:
                break
            since = last_timestamp + 1

            # Rate limit protection
            await asyncio.sleep(self.request_delay)

        return all_ohlcv

    def generate_mock_data(
        self, symbol: str, timeframe: str, start_ms: int, end_ms: int
    ) -> List[Candle]:
        """Seeded random walk around 100. Identical inputs give identical candles."""
        step = interval_to_ms(timeframe)
        requested = (end_ms - start_ms + step - 1) // step
        count = min(requested, data_config.mock_max_candles)
        if count < requested:
            logger.warning(
                "data_loader.mock_truncated",
                symbol=symbol,
                timeframe=timeframe,
                requested=requested,
                generated=count,
            )
        rng = np.random.default_rng([self.mock_seed, zlib.crc32(symbol.encode())])

        candles = []
        last_close = 100 + rng.random() * 10
        for i in range(count):
            open_ = max(last_close + (rng.random() - 0.5) * 2, 0.01)
            high = open_ + rng.random() * 2
            low = max(open_ - rng.random() * 2, 0.0)
            close = low + rng.random() * (high - low)
            volume = 1000 + rng.random() * 5000
            candles.append(
                Candle(
                    timestamp=start_ms + i * step,
                    open=round(open_, 2),
                    high=round(high, 2),
                    low=round(low, 2),
                    close=round(close, 2),
                    volume=round(volume, 2),
                )
            )
            last_close = close

        return candles

    # -------------------------------------------------------------------------
    # Conversion and cache
    # -------------------------------------------------------------------------

    @staticmethod
    def _ohlcv_to_candles(ohlcv: List[list]) -> List[Candle]:
        """Convert CCXT OHLCV rows, skipping incomplete ones."""
        candles = []
        for row in ohlcv:
            # OHLCV format: [timestamp, open, high, low, close, volume]
            if len(row) < 6 or any(v is None for v in row[:6]):
                continue
            candles.append(
                Candle(
                    timestamp=int(row[0]),
                    open=float(row[1]),
                    high=float(row[2]),
                    low=float(row[3]),
                    close=float(row[4]),
                    volume=float(row[5]),
                )
            )
        return candles

    def _get_cache_path(self, symbol: str, timeframe: str, start_ms: int, end_ms: int) -> Path:
        """Generate cache file path."""
        safe_symbol = symbol.replace("/", "_")
        filename = f"{self.exchange_id}_{safe_symbol}_{timeframe}_{start_ms}_{end_ms}.csv"
        return self.cache_dir / filename

    def _save_to_cache(self, candles: List[Candle], filepath: Path):
        """Save candles to a cache file."""
        filepath.parent.mkdir(parents=True, exist_ok=True)
        df = pd.DataFrame([c.model_dump() for c in candles], columns=CSV_COLUMNS)
        df.to_csv(filepath, index=False)
        logger.info("data_loader.cached", file=str(filepath), records=len(df))

    @staticmethod
    def _load_from_cache(filepath: Path) -> List[Candle]:
        """Load candles from a cache file."""
        df = pd.read_csv(filepath)
        return [
            Candle(
                timestamp=int(row.timestamp),
                open=float(row.open),
                high=float(row.high),
                low=float(row.low),
                close=float(row.close),
                volume=float(row.volume),
            )
            for row in df.itertuples(index=False)
        ]
