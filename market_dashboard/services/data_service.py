# market_dashboard/services/data_service.py
import logging
from typing import List, Optional

from market_dashboard.core.exceptions import InvalidInput, PersistenceError
from market_dashboard.markets.models import Candle
from market_dashboard.markets.timeframe import timeframe_seconds, validate_pair, validate_timeframe
from market_dashboard.services.data_provider import MarketDataProvider
from market_dashboard.services.signal_repository import SignalRepository

logger = logging.getLogger(__name__)

MAX_CANDLES_PER_CALL = 1000


class CandleService:
    """Loads candles from the upstream provider and keeps the OHLC store in step."""

    def __init__(self, provider: MarketDataProvider, repository: Optional[SignalRepository] = None):
        self.provider = provider
        self.repository = repository

    async def get_candles(
        self,
        pair: str,
        timeframe: str,
        limit: int = 100,
        end_time: Optional[int] = None,
    ) -> List[Candle]:
        pair = validate_pair(pair)
        validate_timeframe(timeframe)
        if limit < 1 or limit > MAX_CANDLES_PER_CALL:
            raise InvalidInput(f"limit must be between 1 and {MAX_CANDLES_PER_CALL}")

        candles = await self.provider.fetch_candles(pair, timeframe, limit=limit, end_time=end_time)
        await self._store(pair, timeframe, candles)
        return candles

    async def get_candles_since(self, pair: str, timeframe: str, start_time: int) -> List[Candle]:
        """Candles opening at or after `start_time` up to now.

        Pages forward through the provider until a page comes back short.
        """
        pair = validate_pair(pair)
        validate_timeframe(timeframe)
        step = timeframe_seconds(timeframe)

        candles: List[Candle] = []
        cursor = start_time
        while True:
            page = await self.provider.fetch_candles(
                pair, timeframe, limit=MAX_CANDLES_PER_CALL, start_time=cursor
            )
            page = [c for c in page if c.time >= cursor]
            candles.extend(page)
            if len(page) < MAX_CANDLES_PER_CALL:
                break
            cursor = page[-1].time + step

        await self._store(pair, timeframe, candles)
        return candles

    async def get_stored_range(
        self,
        pair: str,
        timeframe: str,
        start_time: int,
        end_time: Optional[int] = None,
    ) -> List[Candle]:
        pair = validate_pair(pair)
        validate_timeframe(timeframe)
        if end_time is not None and end_time < start_time:
            raise InvalidInput("end must not be before start")
        if self.repository is None:
            return []
        return await self.repository.query_candle_range(pair, timeframe, start_time, end_time)

    async def _store(self, pair: str, timeframe: str, candles: List[Candle]):
        if self.repository is None or not candles:
            return
        # The forming candle is overwritten by later upserts.
        try:
            await self.repository.upsert_candles(pair, timeframe, candles)
        except PersistenceError as e:
            logger.warning(f"Could not store candles for {pair} {timeframe}: {e}")
