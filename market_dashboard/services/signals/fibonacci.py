# market_dashboard/services/signals/fibonacci.py
"""
Fibonacci retracement signal builder.

For a long, the swing runs from a major SSL level up to the peak that
followed it; the entry is the 61.8% retracement of that swing, the stop sits
just below the level (1% of the swing as buffer) and the target is three
times the risk above the entry. Shorts mirror this from a major BSL level
down to the following trough.
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from market_dashboard.services.signals.schemas import (
    Extremum,
    FibLevel,
    LevelSide,
    LiquidityLevel,
    Seasonality,
    SignalRecord,
    SignalStatus,
    SignalType,
)

logger = logging.getLogger(__name__)

FIB_RATIOS = (0.0, 0.236, 0.382, 0.5, 0.618, 0.786, 1.0)
ENTRY_RETRACEMENT = 0.618
STOP_BUFFER_RATIO = 0.01
RISK_REWARD_RATIO = 3.0

# Which level side each direction is built from
LEVEL_SIDE_FOR = {
    SignalType.LONG: LevelSide.SSL,
    SignalType.SHORT: LevelSide.BSL,
}


def fib_levels(level_price: float, extremum_price: float, ratios=FIB_RATIOS) -> List[FibLevel]:
    """Retracement prices, 0.0 at the extremum and 1.0 back at the level."""
    diff = extremum_price - level_price
    return [FibLevel(level=ratio, price=extremum_price - diff * ratio) for ratio in ratios]


def build_signal(
    level: LiquidityLevel,
    extremum: Extremum,
    direction: SignalType,
    pair: str = "",
    timeframe: str = "",
    seasonality: Seasonality = Seasonality.NEUTRAL,
    positive_probability: float = 50.0,
    risk_reward: float = RISK_REWARD_RATIO,
) -> Optional[SignalRecord]:
    """Build a waiting signal from a level and the extremum that followed it.

    Returns None when the level side does not fit the direction or the
    extremum is not beyond the level in the direction of the trade.
    """
    direction = SignalType(direction)
    if level.side != LEVEL_SIDE_FOR[direction]:
        logger.debug("Level side %s cannot seed a %s signal", level.side.value, direction.value)
        return None

    diff = extremum.price - level.price
    if direction == SignalType.LONG and diff <= 0:
        return None
    if direction == SignalType.SHORT and diff >= 0:
        return None

    entry = extremum.price - diff * ENTRY_RETRACEMENT
    buffer = abs(diff) * STOP_BUFFER_RATIO

    if direction == SignalType.LONG:
        stop_loss = level.price - buffer
        risk = entry - stop_loss
        take_profit = entry + risk * risk_reward
    else:
        stop_loss = level.price + buffer
        risk = stop_loss - entry
        take_profit = entry - risk * risk_reward

    now = datetime.now(timezone.utc)
    return SignalRecord(
        pair=pair,
        timeframe=timeframe,
        type=direction,
        entry_price=entry,
        stop_loss=stop_loss,
        take_profit=take_profit,
        risk_reward_ratio=abs(take_profit - entry) / abs(entry - stop_loss),
        major_level_price=level.price,
        peak_or_trough_price=extremum.price,
        peak_or_trough_time=extremum.time,
        fib_levels=fib_levels(level.price, extremum.price),
        seasonality=seasonality,
        positive_probability=positive_probability,
        status=SignalStatus.WAITING,
        created_at=now,
        updated_at=now,
    )
