# market_dashboard/services/signals/schemas.py
import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SignalType(str, enum.Enum):
    LONG = "long"
    SHORT = "short"


class SignalStatus(str, enum.Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in (SignalStatus.COMPLETED, SignalStatus.EXPIRED)


class ExitType(str, enum.Enum):
    TP = "tp"
    SL = "sl"
    MANUAL = "manual"
    EXPIRED = "expired"


class Seasonality(str, enum.Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"


class LevelSide(str, enum.Enum):
    BSL = "BSL"  # buy-side liquidity, resting above swing highs
    SSL = "SSL"  # sell-side liquidity, resting below swing lows


class ExtremumKind(str, enum.Enum):
    HIGH = "high"
    LOW = "low"


@dataclass(frozen=True)
class LiquidityLevel:
    price: float
    time: int
    candle_index: int
    is_major: bool
    side: LevelSide
    move_percent: float = 0.0
    is_traded: bool = False
    is_traded_by_body: bool = False

    def to_dict(self):
        return {
            "price": self.price,
            "time": self.time,
            "candle_index": self.candle_index,
            "is_major": self.is_major,
            "side": self.side.value,
            "move_percent": self.move_percent,
            "is_traded": self.is_traded,
            "is_traded_by_body": self.is_traded_by_body,
        }


@dataclass(frozen=True)
class LevelSet:
    buy_side: List[LiquidityLevel] = field(default_factory=list)
    sell_side: List[LiquidityLevel] = field(default_factory=list)


@dataclass(frozen=True)
class Extremum:
    index: int
    price: float
    time: int
    confirmed: bool = True


class FibLevel(BaseModel):
    level: float
    price: float


class SignalRecord(BaseModel):
    """A persisted trading signal.

    The entry/level/fib fields are fixed when the signal is built; only the
    lifecycle manager changes status and exit fields afterwards.
    """
    model_config = ConfigDict(from_attributes=True, use_enum_values=False)

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    pair: str
    timeframe: str
    type: SignalType
    entry_price: float
    stop_loss: float
    take_profit: float
    risk_reward_ratio: float
    major_level_price: float
    peak_or_trough_price: float
    peak_or_trough_time: Optional[int] = None
    fib_levels: List[FibLevel] = Field(default_factory=list)
    seasonality: Seasonality = Seasonality.NEUTRAL
    positive_probability: float = 50.0
    signal_source: str = "fibonacci"
    status: SignalStatus = SignalStatus.WAITING
    entry_hit: bool = False
    entry_hit_time: Optional[int] = None
    exit_price: Optional[float] = None
    exit_time: Optional[int] = None
    exit_type: Optional[ExitType] = None
    profit_loss: Optional[float] = None
    profit_loss_percent: Optional[float] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class MonthlySeasonalityStat(BaseModel):
    month: int
    name: str
    positive_probability: float
    sample_years: int
    classification: Seasonality
    positive_years: int = 0
    negative_years: int = 0
    average_return: float = 0.0
    median_return: float = 0.0
    best_year: Optional[Dict[str, float]] = None
    worst_year: Optional[Dict[str, float]] = None


class ReconcileSummary(BaseModel):
    checked: int = 0
    activated: int = 0
    completed: int = 0
    expired: int = 0
    conflicts: int = 0
    errors: int = 0


class PairGenerationResult(BaseModel):
    pair: str
    timeframe: str
    signals_generated: int = 0
    signal_ids: List[str] = Field(default_factory=list)
    skipped_reason: Optional[str] = None
    error: Optional[str] = None


class GenerationResult(BaseModel):
    timeframe: str
    results: List[PairGenerationResult] = Field(default_factory=list)
    skipped_pairs: List[str] = Field(default_factory=list)
    budget_exceeded: bool = False
    elapsed_seconds: float = 0.0
