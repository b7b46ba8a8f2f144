from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from market_dashboard.markets.models import Candle


class MarketDataProvider(ABC):
    """Abstract interface for every upstream market data source."""

    @abstractmethod
    async def fetch_candles(
        self,
        pair: str,
        timeframe: str,
        limit: int = 100,
        end_time: Optional[int] = None,
        start_time: Optional[int] = None,
    ) -> List[Candle]:
        """Time-ordered candles; times are epoch seconds."""

    @abstractmethod
    async def get_live_price(self, pair: str) -> Dict:
        pass
