from sqlalchemy import BigInteger, Column, Float, Integer, String, UniqueConstraint

from market_dashboard.database import Base
from market_dashboard.markets.models import Candle


class OhlcCandle(Base):
    __tablename__ = "ohlc_candles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    pair = Column(String(20), nullable=False)
    timeframe = Column(String(10), nullable=False)
    time = Column(BigInteger, nullable=False)  # candle open, epoch seconds
    open = Column(Float, nullable=False)
    high = Column(Float, nullable=False)
    low = Column(Float, nullable=False)
    close = Column(Float, nullable=False)
    volume = Column(Float, nullable=False, default=0.0)

    __table_args__ = (
        UniqueConstraint("pair", "timeframe", "time", name="uq_ohlc_pair_tf_time"),
    )

    def to_candle(self) -> Candle:
        return Candle(
            time=self.time,
            open=self.open,
            high=self.high,
            low=self.low,
            close=self.close,
            volume=self.volume,
        )
