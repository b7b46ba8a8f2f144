# market_dashboard/services/signals/levels.py
"""
Liquidity level detection.

A candle is a swing high when its high is strictly above the highs of the
`swing_strength` candles on each side (swing low: same rule on lows). Swing
highs seed buy-side liquidity (BSL) at the high, swing lows seed sell-side
liquidity (SSL) at the low. A level is major when the move from the level to
the opposing extreme that follows it, up to the next swing on the same side,
exceeds `major_threshold` percent.
"""
import bisect
import logging
from typing import List, Optional, Sequence

from market_dashboard.core.exceptions import InvalidInput
from market_dashboard.markets.models import Candle
from market_dashboard.markets.timeframe import swing_strength_for
from market_dashboard.services.signals.schemas import LevelSet, LevelSide, LiquidityLevel

logger = logging.getLogger(__name__)


def _swing_indices(values: Sequence[float], swing_strength: int, higher: bool) -> List[int]:
    indices = []
    for i in range(swing_strength, len(values) - swing_strength):
        pivot = values[i]
        is_swing = True
        for j in range(1, swing_strength + 1):
            left, right = values[i - j], values[i + j]
            if higher and (pivot <= left or pivot <= right):
                is_swing = False
                break
            if not higher and (pivot >= left or pivot >= right):
                is_swing = False
                break
        if is_swing:
            indices.append(i)
    return indices


def _move_percent(level_price: float, opposing: Optional[float]) -> float:
    if opposing is None or level_price <= 0:
        return 0.0
    return abs(level_price - opposing) / level_price * 100


def detect_levels(
    candles: Sequence[Candle],
    swing_strength: int = 5,
    major_threshold: float = 0.3,
) -> LevelSet:
    """Scan candles once and return BSL and SSL levels in time order.

    Fewer than ``2 * swing_strength + 1`` candles gives an empty result.
    """
    if swing_strength < 1:
        raise InvalidInput("swing_strength must be at least 1")

    n = len(candles)
    if n < swing_strength * 2 + 1:
        return LevelSet([], [])

    highs = [c.high for c in candles]
    lows = [c.low for c in candles]
    swing_highs = _swing_indices(highs, swing_strength, higher=True)
    swing_lows = _swing_indices(lows, swing_strength, higher=False)

    buy_side: List[LiquidityLevel] = []
    sell_side: List[LiquidityLevel] = []

    for pos, i in enumerate(swing_highs):
        end = swing_highs[pos + 1] if pos + 1 < len(swing_highs) else n
        window = lows[i + 1:end]
        move = _move_percent(highs[i], min(window) if window else None)
        buy_side.append(LiquidityLevel(
            price=highs[i],
            time=candles[i].time,
            candle_index=i,
            is_major=move > major_threshold,
            side=LevelSide.BSL,
            move_percent=move,
        ))

    for pos, i in enumerate(swing_lows):
        end = swing_lows[pos + 1] if pos + 1 < len(swing_lows) else n
        window = highs[i + 1:end]
        move = _move_percent(lows[i], max(window) if window else None)
        sell_side.append(LiquidityLevel(
            price=lows[i],
            time=candles[i].time,
            candle_index=i,
            is_major=move > major_threshold,
            side=LevelSide.SSL,
            move_percent=move,
        ))

    return LevelSet(buy_side=buy_side, sell_side=sell_side)


def merge_equal_levels(levels: List[LiquidityLevel], equal_threshold: float = 2.0) -> List[LiquidityLevel]:
    """Collapse relative-equal levels of one side.

    Two levels are equal when their prices differ by at most
    ``equal_threshold * 0.01`` percent. A major level wins over a non-major
    one, otherwise the higher BSL / lower SSL is kept.
    """
    removed = set()
    percent_limit = equal_threshold * 0.01

    for i in range(len(levels)):
        if i in removed:
            continue
        for j in range(i + 1, len(levels)):
            if j in removed:
                continue
            first, second = levels[i], levels[j]
            if first.price <= 0:
                break
            percent_diff = abs(first.price - second.price) / first.price * 100
            if percent_diff > percent_limit:
                continue

            if first.is_major and not second.is_major:
                removed.add(j)
            elif second.is_major and not first.is_major:
                removed.add(i)
                break
            elif first.side == LevelSide.BSL:
                if first.price > second.price:
                    removed.add(j)
                else:
                    removed.add(i)
                    break
            else:
                if first.price < second.price:
                    removed.add(j)
                else:
                    removed.add(i)
                    break

    return [level for index, level in enumerate(levels) if index not in removed]


def mark_traded(levels: List[LiquidityLevel], candles: Sequence[Candle]) -> List[LiquidityLevel]:
    """Return copies of the levels flagged as traded through by a later candle."""
    marked = []
    for level in levels:
        is_traded = False
        by_body = False
        for candle in candles[level.candle_index + 1:]:
            body_top = max(candle.open, candle.close)
            body_bottom = min(candle.open, candle.close)
            if level.side == LevelSide.BSL and candle.high > level.price:
                is_traded = True
                if body_top > level.price:
                    by_body = True
                    break
            elif level.side == LevelSide.SSL and candle.low < level.price:
                is_traded = True
                if body_bottom < level.price:
                    by_body = True
                    break
        marked.append(LiquidityLevel(
            price=level.price,
            time=level.time,
            candle_index=level.candle_index,
            is_major=level.is_major,
            side=level.side,
            move_percent=level.move_percent,
            is_traded=is_traded,
            is_traded_by_body=by_body,
        ))
    return marked


def analyze_liquidity_levels(
    candles: Sequence[Candle],
    timeframe: Optional[str] = None,
    swing_strength: Optional[int] = None,
    major_threshold: float = 0.3,
    equal_threshold: float = 2.0,
) -> LevelSet:
    """Chart-facing analysis: detection, equal-level merge and traded flags."""
    if swing_strength is None:
        swing_strength = swing_strength_for(timeframe) if timeframe else 5

    raw = detect_levels(candles, swing_strength, major_threshold)
    buy_side = mark_traded(merge_equal_levels(raw.buy_side, equal_threshold), candles)
    sell_side = mark_traded(merge_equal_levels(raw.sell_side, equal_threshold), candles)

    logger.debug(
        "Analysed %d candles: %d BSL, %d SSL levels",
        len(candles), len(buy_side), len(sell_side)
    )
    return LevelSet(buy_side=buy_side, sell_side=sell_side)


def candles_after(candles: Sequence[Candle], level: LiquidityLevel) -> List[Candle]:
    """Candles strictly after the candle that formed the level."""
    times = [c.time for c in candles]
    start = bisect.bisect_right(times, level.time)
    return list(candles[start:])
