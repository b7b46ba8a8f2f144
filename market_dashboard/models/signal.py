import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, BigInteger, Boolean, Column, DateTime, Float, Index, Integer, String, Uuid

from market_dashboard.database import Base


def _utcnow():
    return datetime.now(timezone.utc)


class Signal(Base):
    """Generated signal row. Candle-related times are epoch seconds."""
    __tablename__ = "generated_signals"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    pair = Column(String(20), nullable=False, index=True)
    timeframe = Column(String(10), nullable=False, index=True)
    signal_type = Column(String(10), nullable=False)
    signal_source = Column(String(50), nullable=False, default="fibonacci")
    entry_price = Column(Float, nullable=False)
    stop_loss = Column(Float, nullable=False)
    take_profit = Column(Float, nullable=False)
    risk_reward_ratio = Column(Float, nullable=False)
    major_level = Column(Float, nullable=False)
    peak_price = Column(Float, nullable=False)
    peak_time = Column(BigInteger)
    fib_levels = Column(JSON, default=list)
    seasonality = Column(String(20), default="neutral")
    positive_probability = Column(Float, default=50.0)
    status = Column(String(20), nullable=False, default="waiting", index=True)
    entry_hit = Column(Boolean, nullable=False, default=False)
    entry_hit_time = Column(BigInteger)
    exit_price = Column(Float)
    exit_time = Column(BigInteger)
    exit_type = Column(String(10))
    profit_loss = Column(Float)
    profit_loss_percent = Column(Float)
    created_at = Column(DateTime(timezone=True), default=_utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        Index("idx_generated_signals_pair_tf_status", "pair", "timeframe", "status"),
    )

    def to_dict(self):
        return {
            "id": str(self.id),
            "pair": self.pair,
            "timeframe": self.timeframe,
            "type": self.signal_type,
            "signal_source": self.signal_source,
            "entry_price": self.entry_price,
            "stop_loss": self.stop_loss,
            "take_profit": self.take_profit,
            "risk_reward_ratio": self.risk_reward_ratio,
            "major_level_price": self.major_level,
            "peak_or_trough_price": self.peak_price,
            "peak_or_trough_time": self.peak_time,
            "fib_levels": self.fib_levels or [],
            "seasonality": self.seasonality,
            "positive_probability": self.positive_probability,
            "status": self.status,
            "entry_hit": self.entry_hit,
            "entry_hit_time": self.entry_hit_time,
            "exit_price": self.exit_price,
            "exit_time": self.exit_time,
            "exit_type": self.exit_type,
            "profit_loss": self.profit_loss,
            "profit_loss_percent": self.profit_loss_percent,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class CompletedSignal(Base):
    """Archive row written once a signal closes on TP, SL or manually."""
    __tablename__ = "completed_signals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    signal_id = Column(Uuid(as_uuid=True), nullable=False, unique=True)
    signal_type = Column(String(10), nullable=False)
    entry_price = Column(Float, nullable=False)
    stop_loss = Column(Float, nullable=False)
    take_profit = Column(Float, nullable=False)
    exit_price = Column(Float, nullable=False)
    exit_type = Column(String(10), nullable=False)
    entry_time = Column(BigInteger, nullable=False)
    exit_time = Column(BigInteger, nullable=False)
    pair = Column(String(20), nullable=False, index=True)
    timeframe = Column(String(10), nullable=False)
    profit_loss = Column(Float, nullable=False)
    profit_loss_percent = Column(Float, nullable=False)
    risk_reward_ratio = Column(Float, nullable=False)
    signal_source = Column(String(50), nullable=False)
    notes = Column(String)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "signal_id": str(self.signal_id),
            "type": self.signal_type,
            "entry_price": self.entry_price,
            "stop_loss": self.stop_loss,
            "take_profit": self.take_profit,
            "exit_price": self.exit_price,
            "exit_type": self.exit_type,
            "entry_time": self.entry_time,
            "exit_time": self.exit_time,
            "pair": self.pair,
            "timeframe": self.timeframe,
            "profit_loss": self.profit_loss,
            "profit_loss_percent": self.profit_loss_percent,
            "risk_reward_ratio": self.risk_reward_ratio,
            "signal_source": self.signal_source,
            "notes": self.notes,
        }
