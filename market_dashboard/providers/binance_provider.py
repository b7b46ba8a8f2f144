# market_dashboard/providers/binance_provider.py

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

import aiohttp
import pandas as pd

from market_dashboard.config import settings
from market_dashboard.core.exceptions import InvalidInput, UpstreamUnavailable
from market_dashboard.markets.models import Candle
from market_dashboard.markets.timeframe import TIMEFRAME_SECONDS
from ..services.data_provider import MarketDataProvider

logger = logging.getLogger(__name__)

KLINE_COLUMNS = [
    'open_time', 'open', 'high', 'low', 'close',
    'volume', 'close_time', 'quote_volume',
    'trades', 'taker_buy_base', 'taker_buy_quote', 'ignore'
]
MAX_KLINES_PER_REQUEST = 1000


def normalize_klines(data: Sequence[Any]) -> List[Candle]:
    """Convert a klines payload into time-ordered candles.

    Accepts Binance's array rows (open time in milliseconds) and object rows
    with a `time` key in seconds. Duplicate timestamps keep the last row.
    """
    if not data:
        return []

    if isinstance(data[0], dict):
        df = pd.DataFrame(list(data))
        if 'time' not in df.columns:
            raise ValueError("Candle objects must carry a 'time' field")
        if 'volume' not in df.columns:
            df['volume'] = 0.0
        df['time'] = df['time'].astype('int64')
    else:
        df = pd.DataFrame([list(row)[:len(KLINE_COLUMNS)] for row in data])
        df.columns = KLINE_COLUMNS[:len(df.columns)]
        df['time'] = df['open_time'].astype('int64') // 1000

    numeric_cols = ['open', 'high', 'low', 'close', 'volume']
    df[numeric_cols] = df[numeric_cols].astype(float)
    df = df.drop_duplicates(subset=['time'], keep='last').sort_values('time')

    return [
        Candle(
            time=int(row.time),
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=float(row.volume),
        )
        for row in df[['time'] + numeric_cols].itertuples(index=False)
    ]


class BinanceProvider(MarketDataProvider):
    """Binance REST client trying a fixed list of endpoints in order.

    The first endpoint that answers wins; there are no retries beyond the
    list. When every endpoint fails the individual errors are raised
    together as UpstreamUnavailable.
    """

    def __init__(self, endpoints: Optional[List[str]] = None, timeout: Optional[float] = None):
        self.endpoints = list(endpoints or settings.BINANCE_ENDPOINTS)
        self.timeout = timeout if timeout is not None else settings.BINANCE_TIMEOUT_SECONDS
        if not self.endpoints:
            raise ValueError("At least one Binance endpoint is required")

    async def _request_json(self, base_url: str, path: str, params: Dict[str, Any]):
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(f"{base_url}{path}", params=params) as response:
                if response.status != 200:
                    error_text = await response.text()
                    raise RuntimeError(f"HTTP {response.status}: {error_text[:200]}")
                return await response.json()

    async def _get_with_fallback(self, path: str, params: Dict[str, Any]):
        failures: Dict[str, str] = {}
        for base_url in self.endpoints:
            try:
                data = await self._request_json(base_url, path, params)
                if failures:
                    logger.info(f"Binance fallback succeeded on {base_url} after {len(failures)} failure(s)")
                return data
            except (aiohttp.ClientError, asyncio.TimeoutError, RuntimeError, ValueError) as e:
                failures[base_url] = str(e) or e.__class__.__name__
                logger.warning(f"Binance endpoint {base_url}{path} failed: {failures[base_url]}")

        raise UpstreamUnavailable(
            f"All {len(self.endpoints)} Binance endpoints failed for {path}",
            failures=failures,
        )

    async def fetch_candles(
        self,
        pair: str,
        timeframe: str,
        limit: int = 100,
        end_time: Optional[int] = None,
        start_time: Optional[int] = None,
    ) -> List[Candle]:
        if timeframe not in TIMEFRAME_SECONDS:
            raise InvalidInput(f"Unsupported timeframe for Binance: {timeframe}")
        if limit < 1:
            raise InvalidInput("limit must be positive")

        params: Dict[str, Any] = {
            "symbol": pair.upper(),
            "interval": timeframe,
            "limit": min(limit, MAX_KLINES_PER_REQUEST),
        }
        if start_time is not None:
            params["startTime"] = int(start_time) * 1000
        if end_time is not None:
            params["endTime"] = int(end_time) * 1000

        data = await self._get_with_fallback("/klines", params)
        try:
            candles = normalize_klines(data)
        except (ValueError, KeyError, TypeError) as e:
            raise UpstreamUnavailable(f"Malformed klines payload for {pair} {timeframe}: {e}") from e

        logger.debug(f"Got {len(candles)} candles for {pair} {timeframe}")
        return candles

    async def get_live_price(self, pair: str) -> Dict:
        data = await self._get_with_fallback("/ticker/price", {"symbol": pair.upper()})
        return {
            "symbol": data["symbol"],
            "price": float(data["price"]),
            "source": "binance",
        }
