# tests/unit/services/test_data_service.py
from unittest.mock import AsyncMock

import pytest

from market_dashboard.core.exceptions import InvalidInput, PersistenceError
from market_dashboard.markets.models import Candle
from market_dashboard.services.data_service import CandleService
from tests.conftest import T0, HOUR

CANDLES = [Candle(time=T0 + i * HOUR, open=1, high=2, low=0.5, close=1.5) for i in range(4)]


def make_service(candles=CANDLES):
    provider = AsyncMock()
    provider.fetch_candles.return_value = candles
    repository = AsyncMock()
    return CandleService(provider, repository), provider, repository


@pytest.mark.asyncio
async def test_get_candles_normalizes_pair_and_stores():
    service, provider, repository = make_service()

    candles = await service.get_candles("btcusdt", "1h", limit=4)

    assert candles == CANDLES
    provider.fetch_candles.assert_awaited_once_with("BTCUSDT", "1h", limit=4, end_time=None)
    repository.upsert_candles.assert_awaited_once_with("BTCUSDT", "1h", CANDLES)


@pytest.mark.asyncio
async def test_get_candles_since_drops_older_candles():
    service, provider, _ = make_service()

    candles = await service.get_candles_since("BTCUSDT", "1h", T0 + 2 * HOUR)

    assert [c.time for c in candles] == [T0 + 2 * HOUR, T0 + 3 * HOUR]
    assert provider.fetch_candles.call_args.kwargs["start_time"] == T0 + 2 * HOUR


@pytest.mark.asyncio
async def test_store_failure_does_not_fail_read():
    service, _, repository = make_service()
    repository.upsert_candles.side_effect = PersistenceError("disk full")

    assert await service.get_candles("BTCUSDT", "1h") == CANDLES


@pytest.mark.asyncio
@pytest.mark.parametrize("pair,timeframe,limit", [
    ("BTC", "1h", 10),
    ("BTCUSDT", "3h", 10),
    ("BTCUSDT", "1h", 0),
    ("BTC/USDT", "1h", 10),
])
async def test_invalid_input_rejected_before_fetch(pair, timeframe, limit):
    service, provider, _ = make_service()

    with pytest.raises(InvalidInput):
        await service.get_candles(pair, timeframe, limit=limit)
    provider.fetch_candles.assert_not_awaited()


@pytest.mark.asyncio
async def test_stored_range_validates_bounds():
    service, _, repository = make_service()
    repository.query_candle_range.return_value = CANDLES[:2]

    assert await service.get_stored_range("ethusdt", "1h", T0, T0 + HOUR) == CANDLES[:2]
    repository.query_candle_range.assert_awaited_once_with("ETHUSDT", "1h", T0, T0 + HOUR)

    with pytest.raises(InvalidInput):
        await service.get_stored_range("ETHUSDT", "1h", T0 + HOUR, T0)


@pytest.mark.asyncio
async def test_get_candles_since_pages_forward():
    first_page = [Candle(time=T0 + i * HOUR, open=1, high=2, low=0.5, close=1.5) for i in range(1000)]
    last_page = [Candle(time=T0 + i * HOUR, open=1, high=2, low=0.5, close=1.5) for i in range(1000, 1003)]
    service, provider, repository = make_service()
    provider.fetch_candles.side_effect = [first_page, last_page]

    candles = await service.get_candles_since("BTCUSDT", "1h", T0)

    assert len(candles) == 1003
    assert candles[-1].time == T0 + 1002 * HOUR
    starts = [call.kwargs["start_time"] for call in provider.fetch_candles.call_args_list]
    assert starts == [T0, T0 + 1000 * HOUR]
    repository.upsert_candles.assert_awaited_once_with("BTCUSDT", "1h", candles)
