# tests/unit/services/test_seasonality.py
from datetime import datetime, timezone

import pytest

from market_dashboard.core.exceptions import InvalidInput
from market_dashboard.services.signals.schemas import Seasonality, SignalType
from market_dashboard.services.signals.seasonality import (
    HISTORICAL_MONTHLY_RETURNS,
    SeasonalityEvaluator,
    classify,
    direction_matches,
)


@pytest.mark.parametrize("probability,expected", [
    (60.0, Seasonality.BULLISH),
    (59.9, Seasonality.NEUTRAL),
    (40.1, Seasonality.NEUTRAL),
    (40.0, Seasonality.BEARISH),
    (100.0, Seasonality.BULLISH),
    (0.0, Seasonality.BEARISH),
])
def test_classify_boundaries(probability, expected):
    assert classify(probability) == expected


def test_direction_filter():
    assert direction_matches(SignalType.LONG, Seasonality.BULLISH)
    assert not direction_matches(SignalType.LONG, Seasonality.BEARISH)
    assert direction_matches(SignalType.SHORT, Seasonality.BEARISH)
    assert not direction_matches(SignalType.SHORT, Seasonality.BULLISH)
    assert not direction_matches(SignalType.LONG, Seasonality.NEUTRAL)
    assert direction_matches(SignalType.SHORT, Seasonality.NEUTRAL, allow_neutral=True)


def test_monthly_stats_from_table():
    evaluator = SeasonalityEvaluator(returns={0: {2020: 5.0, 2021: -2.0, 2022: 3.0, 2023: 0.0}})
    stat = evaluator.monthly_stats(0)

    assert stat.name == "January"
    assert stat.sample_years == 4
    assert stat.positive_years == 2
    assert stat.negative_years == 2
    assert stat.positive_probability == pytest.approx(50.0)
    assert stat.classification == Seasonality.NEUTRAL
    assert stat.average_return == pytest.approx(1.5)
    assert stat.median_return == pytest.approx(1.5)
    assert stat.best_year == {"year": 2020, "return": 5.0}
    assert stat.worst_year == {"year": 2021, "return": -2.0}


def test_month_without_data_is_neutral():
    stat = SeasonalityEvaluator(returns={}).monthly_stats(3)
    assert stat.sample_years == 0
    assert stat.positive_probability == 50.0
    assert stat.classification == Seasonality.NEUTRAL


def test_historical_january_is_bullish():
    evaluator = SeasonalityEvaluator()
    stat = evaluator.current(datetime(2025, 1, 15, tzinfo=timezone.utc))

    assert stat.month == 0
    assert stat.sample_years == 14
    assert stat.positive_probability == pytest.approx(10 / 14 * 100)
    assert stat.classification == Seasonality.BULLISH


def test_monthly_positive_probability_matches_table():
    evaluator = SeasonalityEvaluator()

    assert evaluator.monthly_positive_probability(0) == pytest.approx(10 / 14 * 100)
    for month, returns in HISTORICAL_MONTHLY_RETURNS.items():
        positive = sum(1 for value in returns.values() if value > 0)
        expected = positive / len(returns) * 100
        assert evaluator.monthly_positive_probability(month) == pytest.approx(expected)

def test_overview_and_cache_reset():
    evaluator = SeasonalityEvaluator()
    assert evaluator.warm() == 12
    assert [stat.month for stat in evaluator.overview()] == list(range(12))

    first = evaluator.monthly_stats(5)
    assert evaluator.monthly_stats(5) is first
    evaluator.invalidate()
    assert evaluator.monthly_stats(5) is not first


@pytest.mark.parametrize("month", [-1, 12, True])
def test_invalid_month(month):
    with pytest.raises(InvalidInput):
        SeasonalityEvaluator().monthly_stats(month)
