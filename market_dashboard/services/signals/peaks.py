# market_dashboard/services/signals/peaks.py
from typing import Optional, Sequence

from market_dashboard.markets.models import Candle
from market_dashboard.services.signals.schemas import Extremum, ExtremumKind

CONFIRMATION_WINDOW = 3
MIN_CANDLES_FOR_CONFIRMATION = 5


def _price(candle: Candle, kind: ExtremumKind) -> float:
    return candle.high if kind == ExtremumKind.HIGH else candle.low


def _beyond(a: float, b: float, kind: ExtremumKind) -> bool:
    """True when `a` is strictly more extreme than `b` in the search direction."""
    return a > b if kind == ExtremumKind.HIGH else a < b


def find_confirmed_extremum(
    candles_after_level: Sequence[Candle],
    kind: ExtremumKind,
    window: int = CONFIRMATION_WINDOW,
) -> Optional[Extremum]:
    """First local peak (or trough) after a level, confirmed by `window` candles.

    A candidate at index i (i >= 2) must be beyond candles i-1 and i-2, and
    each of the next `window` candles must stay strictly inside it. The
    earliest candidate wins. Without a confirmed one, the absolute extreme of
    the whole series is returned with ``confirmed=False``. An empty series
    gives None.
    """
    kind = ExtremumKind(kind)
    candles = list(candles_after_level)
    if not candles:
        return None

    if len(candles) >= MIN_CANDLES_FOR_CONFIRMATION:
        for i in range(2, len(candles) - window):
            value = _price(candles[i], kind)
            if not (_beyond(value, _price(candles[i - 1], kind), kind)
                    and _beyond(value, _price(candles[i - 2], kind), kind)):
                continue
            following = candles[i + 1:i + 1 + window]
            if all(_beyond(value, _price(c, kind), kind) for c in following):
                return Extremum(index=i, price=value, time=candles[i].time, confirmed=True)

    best = 0
    for i in range(1, len(candles)):
        if _beyond(_price(candles[i], kind), _price(candles[best], kind), kind):
            best = i
    return Extremum(
        index=best,
        price=_price(candles[best], kind),
        time=candles[best].time,
        confirmed=False,
    )
