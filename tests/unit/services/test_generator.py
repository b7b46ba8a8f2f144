# tests/unit/services/test_generator.py
import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from market_dashboard.core.exceptions import InvalidInput, UpstreamUnavailable
from market_dashboard.services.cache import ReadThroughCache
from market_dashboard.services.signals.generator import SignalGenerator, select_level
from market_dashboard.services.signals.schemas import LevelSide, LiquidityLevel, Seasonality, SignalType
from market_dashboard.services.signals.seasonality import SeasonalityEvaluator
from tests.conftest import T0

JANUARY = datetime(2025, 1, 10, tzinfo=timezone.utc)


def evaluator(positive: bool = True, neutral: bool = False):
    if neutral:
        sample = {2020: 1.0, 2021: -1.0}
    else:
        sample = {2020: 1.0, 2021: 2.0} if positive else {2020: -1.0, 2021: -2.0}
    return SeasonalityEvaluator(returns={month: sample for month in range(12)})


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def make_generator(candles, seasonality=None, **kwargs):
    repository = AsyncMock()
    repository.query_active_signals.return_value = []
    candle_service = AsyncMock()
    candle_service.get_candles.return_value = candles
    generator = SignalGenerator(
        repository,
        candle_service,
        seasonality or evaluator(),
        pairs=["BTCUSDT"],
        **kwargs,
    )
    return generator, repository, candle_service


def test_select_level_prefers_extremes():
    def level(price, side, major=True):
        return LiquidityLevel(price=price, time=T0, candle_index=0, is_major=major, side=side)

    ssl = [level(101, LevelSide.SSL), level(99, LevelSide.SSL), level(95, LevelSide.SSL, major=False)]
    bsl = [level(120, LevelSide.BSL), level(125, LevelSide.BSL), level(130, LevelSide.BSL, major=False)]

    assert select_level(ssl, SignalType.LONG).price == 99
    assert select_level(bsl, SignalType.SHORT).price == 125
    assert select_level(bsl, SignalType.LONG) is None


@pytest.mark.asyncio
async def test_bullish_month_generates_long(scenario_candles):
    generator, repository, candle_service = make_generator(scenario_candles)

    result = await generator.generate("1h", now=JANUARY)

    candle_service.get_candles.assert_awaited_once_with("BTCUSDT", "1h", limit=100)
    assert result.results[0].signals_generated == 1
    assert not result.budget_exceeded

    signal = repository.insert_signal.call_args.args[0]
    assert signal.type == SignalType.LONG
    assert signal.pair == "BTCUSDT"
    assert signal.entry_price == pytest.approx(107.64)
    assert signal.stop_loss == pytest.approx(99.8)
    assert signal.take_profit == pytest.approx(131.16)
    assert signal.seasonality == Seasonality.BULLISH
    assert signal.positive_probability == 100.0
    assert result.results[0].signal_ids == [str(signal.id)]


@pytest.mark.asyncio
async def test_bearish_month_generates_short(scenario_candles):
    generator, repository, _ = make_generator(scenario_candles, seasonality=evaluator(positive=False))

    result = await generator.generate("1h", now=JANUARY)

    assert result.results[0].signals_generated == 1
    signal = repository.insert_signal.call_args.args[0]
    assert signal.type == SignalType.SHORT
    assert signal.major_level_price == 120
    assert signal.take_profit < signal.entry_price < signal.stop_loss


@pytest.mark.asyncio
async def test_neutral_month_is_skipped(scenario_candles):
    generator, repository, candle_service = make_generator(scenario_candles, seasonality=evaluator(neutral=True))

    result = await generator.generate("1h", now=JANUARY)

    assert result.results[0].signals_generated == 0
    assert result.results[0].skipped_reason == "seasonality neutral"
    candle_service.get_candles.assert_not_awaited()
    repository.insert_signal.assert_not_awaited()


@pytest.mark.asyncio
async def test_neutral_month_allowed_tries_both_sides(scenario_candles):
    generator, repository, _ = make_generator(
        scenario_candles, seasonality=evaluator(neutral=True), allow_neutral=True
    )

    result = await generator.generate("1h", now=JANUARY)

    assert result.results[0].signals_generated == 2
    types = {call.args[0].type for call in repository.insert_signal.call_args_list}
    assert types == {SignalType.LONG, SignalType.SHORT}


@pytest.mark.asyncio
async def test_too_few_candles_after_level(scenario_candles):
    generator, repository, _ = make_generator(scenario_candles, min_candles_after_level=30)

    result = await generator.generate("1h", now=JANUARY)

    assert result.results[0].signals_generated == 0
    assert "candles after level" in result.results[0].skipped_reason
    repository.insert_signal.assert_not_awaited()


@pytest.mark.asyncio
async def test_open_signal_on_same_level_is_not_duplicated(scenario_candles):
    generator, repository, _ = make_generator(scenario_candles)
    first = await generator.generate("1h", now=JANUARY)
    existing = repository.insert_signal.call_args.args[0]
    repository.query_active_signals.return_value = [existing]

    second = await generator.generate("1h", now=JANUARY)

    assert first.results[0].signals_generated == 1
    assert second.results[0].signals_generated == 0
    assert "duplicate" in second.results[0].skipped_reason
    assert repository.insert_signal.await_count == 1


@pytest.mark.asyncio
async def test_pair_failure_does_not_stop_batch(scenario_candles):
    generator, _, candle_service = make_generator(scenario_candles)

    async def get_candles(pair, timeframe, limit):
        if pair == "ETHUSDT":
            raise UpstreamUnavailable("all endpoints failed")
        return scenario_candles

    candle_service.get_candles.side_effect = get_candles
    result = await generator.generate("1h", pairs=["ETHUSDT", "BTCUSDT"], now=JANUARY)

    assert result.results[0].error == "all endpoints failed"
    assert result.results[1].signals_generated == 1


@pytest.mark.asyncio
async def test_budget_stops_scheduling_pairs(scenario_candles):
    clock = FakeClock()
    generator, _, candle_service = make_generator(scenario_candles, budget_seconds=50.0, clock=clock)

    async def slow_candles(pair, timeframe, limit):
        clock.now += 30.0
        return scenario_candles

    candle_service.get_candles.side_effect = slow_candles
    result = await generator.generate("1h", pairs=["BTCUSDT", "ETHUSDT", "XRPUSDT"], now=JANUARY)

    assert [r.pair for r in result.results] == ["BTCUSDT", "ETHUSDT"]
    assert result.skipped_pairs == ["XRPUSDT"]
    assert result.budget_exceeded
    assert result.elapsed_seconds == 60.0


@pytest.mark.asyncio
async def test_started_pair_finishes_even_past_budget(scenario_candles):
    cache = ReadThroughCache()
    await cache.set("active_signals", ["stale"])
    generator, repository, _ = make_generator(scenario_candles, cache=cache, budget_seconds=0.05)
    inserted = []

    async def slow_insert(signal):
        inserted.append(signal)
        await asyncio.sleep(0.2)
        return signal.id

    repository.insert_signal.side_effect = slow_insert
    result = await generator.generate("1h", pairs=["BTCUSDT", "ETHUSDT"], now=JANUARY)

    first = result.results[0]
    assert len(inserted) == 1
    assert first.signals_generated == 1
    assert first.signal_ids == [str(inserted[0].id)]
    assert first.error is None
    assert result.skipped_pairs == ["ETHUSDT"]
    assert result.budget_exceeded
    assert await cache.get("active_signals") is None


@pytest.mark.asyncio
async def test_invalid_timeframe_rejected(scenario_candles):
    generator, _, _ = make_generator(scenario_candles)
    with pytest.raises(InvalidInput):
        await generator.generate("2h")
