# market_dashboard/markets/models.py
from dataclasses import dataclass


@dataclass(frozen=True)
class Candle:
    """One OHLC candle. `time` is the open time in epoch seconds."""
    time: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    def touches(self, price: float) -> bool:
        return self.low <= price <= self.high

    def to_dict(self):
        return {
            "time": self.time,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
        }
