# tests/unit/services/test_fibonacci.py
import pytest

from market_dashboard.services.signals.fibonacci import build_signal, fib_levels
from market_dashboard.services.signals.schemas import (
    Extremum,
    LevelSide,
    LiquidityLevel,
    Seasonality,
    SignalStatus,
    SignalType,
)
from tests.conftest import T0, HOUR


def _level(price, side):
    return LiquidityLevel(price=price, time=T0 + 5 * HOUR, candle_index=5, is_major=True, side=side)


def test_long_signal_reference_prices():
    signal = build_signal(
        _level(100.0, LevelSide.SSL),
        Extremum(index=6, price=120.0, time=T0 + 12 * HOUR),
        SignalType.LONG,
        pair="BTCUSDT",
        timeframe="1h",
        seasonality=Seasonality.BULLISH,
        positive_probability=71.4,
    )

    assert signal.type == SignalType.LONG
    assert signal.status == SignalStatus.WAITING
    assert signal.entry_price == pytest.approx(107.64)
    assert signal.stop_loss == pytest.approx(99.8)
    assert signal.take_profit == pytest.approx(131.16)
    assert signal.major_level_price == 100.0
    assert signal.peak_or_trough_price == 120.0
    assert signal.peak_or_trough_time == T0 + 12 * HOUR
    assert signal.seasonality == Seasonality.BULLISH
    assert signal.stop_loss < signal.entry_price < signal.take_profit


def test_short_signal_mirrors_long():
    signal = build_signal(
        _level(120.0, LevelSide.BSL),
        Extremum(index=3, price=100.0, time=T0 + 9 * HOUR),
        SignalType.SHORT,
    )

    assert signal.entry_price == pytest.approx(112.36)
    assert signal.stop_loss == pytest.approx(120.2)
    assert signal.take_profit == pytest.approx(88.84)
    assert signal.take_profit < signal.entry_price < signal.stop_loss


@pytest.mark.parametrize("level_price,extremum_price,direction,side", [
    (100.0, 120.0, SignalType.LONG, LevelSide.SSL),
    (0.00042, 0.00051, SignalType.LONG, LevelSide.SSL),
    (64000.0, 61000.0, SignalType.SHORT, LevelSide.BSL),
])
def test_risk_reward_is_three(level_price, extremum_price, direction, side):
    signal = build_signal(_level(level_price, side), Extremum(0, extremum_price, T0), direction)

    reward = abs(signal.take_profit - signal.entry_price)
    risk = abs(signal.entry_price - signal.stop_loss)
    assert reward / risk == pytest.approx(3.0, abs=1e-6)
    assert signal.risk_reward_ratio == pytest.approx(3.0, abs=1e-6)


def test_level_side_must_match_direction():
    extremum = Extremum(index=6, price=120.0, time=T0)
    assert build_signal(_level(100.0, LevelSide.BSL), extremum, SignalType.LONG) is None


def test_extremum_on_wrong_side_gives_no_signal():
    extremum = Extremum(index=6, price=95.0, time=T0)
    assert build_signal(_level(100.0, LevelSide.SSL), extremum, SignalType.LONG) is None


def test_fib_levels_span_extremum_to_level():
    levels = {level.level: level.price for level in fib_levels(100.0, 120.0)}

    assert levels[0.0] == pytest.approx(120.0)
    assert levels[0.618] == pytest.approx(107.64)
    assert levels[1.0] == pytest.approx(100.0)
