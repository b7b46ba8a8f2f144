# market_dashboard/markets/timeframe.py
import re

from market_dashboard.core.exceptions import InvalidInput

TIMEFRAME_SECONDS = {
    "1m": 60,
    "5m": 300,
    "15m": 900,
    "30m": 1800,
    "1h": 3600,
    "4h": 14400,
    "1d": 86400,
}

# Swing strength used when analysing a chart of the given timeframe
SWING_STRENGTH_BY_TIMEFRAME = {
    "5m": 3,
    "15m": 4,
    "30m": 5,
    "1h": 6,
}
DEFAULT_SWING_STRENGTH = 4

_PAIR_RE = re.compile(r"^[A-Z0-9]{5,20}$")


def timeframe_seconds(timeframe: str) -> int:
    try:
        return TIMEFRAME_SECONDS[timeframe]
    except KeyError:
        raise InvalidInput(
            f"Invalid timeframe '{timeframe}'. Must be one of: {', '.join(TIMEFRAME_SECONDS)}"
        )


def swing_strength_for(timeframe: str) -> int:
    return SWING_STRENGTH_BY_TIMEFRAME.get(timeframe, DEFAULT_SWING_STRENGTH)


def validate_timeframe(timeframe: str, allowed=None) -> str:
    if not timeframe:
        raise InvalidInput("Timeframe parameter is required")
    allowed = list(allowed) if allowed else list(TIMEFRAME_SECONDS)
    if timeframe not in allowed:
        raise InvalidInput(f"Invalid timeframe. Must be one of: {', '.join(allowed)}")
    return timeframe


def validate_pair(pair: str) -> str:
    if not pair:
        raise InvalidInput("Pair parameter is required")
    normalized = pair.strip().upper()
    if not _PAIR_RE.match(normalized):
        raise InvalidInput(f"Invalid pair '{pair}'")
    return normalized
