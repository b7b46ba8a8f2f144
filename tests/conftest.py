# tests/conftest.py
from datetime import datetime, timezone

import numpy as np
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from market_dashboard.database import init_db
from market_dashboard.markets.models import Candle
from market_dashboard.services.signal_repository import SignalRepository
from market_dashboard.services.signals.schemas import SignalRecord, SignalStatus, SignalType

HOUR = 3600
T0 = 1_699_999_200  # aligned to the hour


def make_candle(index: int, low: float, high: float, step: int = HOUR, start: int = T0) -> Candle:
    return Candle(
        time=start + index * step,
        open=low + (high - low) * 0.25,
        high=high,
        low=low,
        close=low + (high - low) * 0.75,
        volume=1000.0,
    )


def build_candles(lows, highs, step: int = HOUR, start: int = T0):
    return [make_candle(i, low, high, step, start) for i, (low, high) in enumerate(zip(lows, highs))]


@pytest.fixture
def scenario_candles():
    """30 hourly candles: swing low at index 5 (100), confirmed peak at index 12 (120)."""
    lows = [110, 108, 106, 104, 102, 100, 102, 104, 106, 108, 110, 112, 115]
    highs = [112, 110, 108, 106, 104, 103, 106, 108, 110, 112, 114, 116, 120]
    for k in range(1, 18):
        highs.append(120 - k * 0.5)
        lows.append(highs[-1] - 3)
    return build_candles(lows, highs)


@pytest.fixture
def random_candles():
    """Random-walk series for property checks."""
    rng = np.random.default_rng(42)
    closes = 100 + np.cumsum(rng.normal(0, 1.5, 300))
    lows = closes - np.abs(rng.normal(0, 1, 300)) - 0.1
    highs = closes + np.abs(rng.normal(0, 1, 300)) + 0.1
    return build_candles(lows.round(4).tolist(), highs.round(4).tolist())


@pytest.fixture
def long_signal():
    """Waiting long signal from the reference scenario."""
    return SignalRecord(
        pair="BTCUSDT",
        timeframe="1h",
        type=SignalType.LONG,
        entry_price=107.64,
        stop_loss=99.8,
        take_profit=131.16,
        risk_reward_ratio=3.0,
        major_level_price=100.0,
        peak_or_trough_price=120.0,
        peak_or_trough_time=T0 + 12 * HOUR,
        status=SignalStatus.WAITING,
        created_at=datetime.fromtimestamp(T0, tz=timezone.utc),
        updated_at=datetime.fromtimestamp(T0, tz=timezone.utc),
    )


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(bind=engine)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def repository(session_factory):
    return SignalRepository(session_factory)
