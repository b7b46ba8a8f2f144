# tests/unit/services/test_levels.py
import pytest

from market_dashboard.core.exceptions import InvalidInput
from market_dashboard.services.signals.levels import (
    analyze_liquidity_levels,
    candles_after,
    detect_levels,
    mark_traded,
    merge_equal_levels,
)
from market_dashboard.services.signals.schemas import LevelSide, LiquidityLevel
from tests.conftest import T0, HOUR, build_candles


def test_detect_levels_finds_swing_low_and_high(scenario_candles):
    """The scenario yields one SSL at the swing low and one BSL at the peak"""
    levels = detect_levels(scenario_candles, swing_strength=5, major_threshold=0.3)

    assert len(levels.sell_side) == 1
    ssl = levels.sell_side[0]
    assert ssl.side == LevelSide.SSL
    assert ssl.price == 100
    assert ssl.candle_index == 5
    assert ssl.time == T0 + 5 * HOUR
    assert ssl.is_major
    assert ssl.move_percent == pytest.approx(20.0)

    assert len(levels.buy_side) == 1
    bsl = levels.buy_side[0]
    assert bsl.side == LevelSide.BSL
    assert bsl.price == 120
    assert bsl.candle_index == 12
    assert bsl.is_major


def test_detect_levels_too_few_candles(scenario_candles):
    levels = detect_levels(scenario_candles[:10], swing_strength=5)
    assert levels.buy_side == []
    assert levels.sell_side == []


def test_detect_levels_rejects_zero_strength(scenario_candles):
    with pytest.raises(InvalidInput):
        detect_levels(scenario_candles, swing_strength=0)


def test_level_is_major_only_above_threshold():
    """A 0.7% bounce off a swing low stays minor at a 1% threshold"""
    lows = [100.5, 100.4, 100.3, 100.0, 100.3, 100.4, 100.5]
    highs = [low + 0.2 for low in lows]
    candles = build_candles(lows, highs)

    minor = detect_levels(candles, swing_strength=3, major_threshold=1.0)
    assert len(minor.sell_side) == 1
    assert not minor.sell_side[0].is_major
    assert minor.sell_side[0].move_percent == pytest.approx(0.7)

    major = detect_levels(candles, swing_strength=3, major_threshold=0.3)
    assert major.sell_side[0].is_major


def test_levels_are_swing_extrema(random_candles):
    strength = 4
    levels = detect_levels(random_candles, swing_strength=strength)

    for level in levels.buy_side:
        i = level.candle_index
        neighbours = random_candles[i - strength:i] + random_candles[i + 1:i + strength + 1]
        assert all(level.price > c.high for c in neighbours)
    for level in levels.sell_side:
        i = level.candle_index
        neighbours = random_candles[i - strength:i] + random_candles[i + 1:i + strength + 1]
        assert all(level.price < c.low for c in neighbours)

    keys = [(level.time, level.side) for level in levels.buy_side + levels.sell_side]
    assert len(keys) == len(set(keys))


def _level(price, side=LevelSide.BSL, major=False, index=0):
    return LiquidityLevel(price=price, time=T0 + index * HOUR, candle_index=index, is_major=major, side=side)


def test_merge_equal_levels_keeps_higher_bsl():
    levels = [_level(100.0, index=1), _level(100.01, index=5), _level(105.0, index=9)]
    merged = merge_equal_levels(levels, equal_threshold=2.0)
    assert [level.price for level in merged] == [100.01, 105.0]


def test_merge_equal_levels_keeps_lower_ssl():
    levels = [_level(100.0, LevelSide.SSL, index=1), _level(100.01, LevelSide.SSL, index=5)]
    merged = merge_equal_levels(levels, equal_threshold=2.0)
    assert [level.price for level in merged] == [100.0]


def test_merge_equal_levels_prefers_major():
    levels = [_level(100.01, major=False, index=1), _level(100.0, major=True, index=5)]
    merged = merge_equal_levels(levels, equal_threshold=2.0)
    assert len(merged) == 1
    assert merged[0].is_major


def test_mark_traded_by_wick_and_body():
    lows = [99, 98, 97, 96]
    highs = [101, 102, 100.5, 100.2]
    candles = build_candles(lows, highs)
    levels = [_level(101.5, index=0), _level(105.0, index=0)]

    marked = mark_traded(levels, candles)

    # candle 1 wicks to 102 but its body tops out at 101
    assert marked[0].is_traded
    assert not marked[0].is_traded_by_body
    assert not marked[1].is_traded


def test_analyze_uses_timeframe_strength(scenario_candles):
    """1h analysis uses a swing strength of 6, which still keeps the index-12 peak"""
    levels = analyze_liquidity_levels(scenario_candles, timeframe="1h")
    assert [level.candle_index for level in levels.buy_side] == [12]
    assert levels.sell_side == []  # index 5 has only 5 candles to its left


def test_candles_after_level(scenario_candles):
    level = detect_levels(scenario_candles, swing_strength=5).sell_side[0]
    after = candles_after(scenario_candles, level)
    assert len(after) == 24
    assert after[0].time == level.time + HOUR
