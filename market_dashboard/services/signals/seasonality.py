# market_dashboard/services/signals/seasonality.py
import calendar
import logging
from datetime import datetime, timezone
from typing import Dict, List, Mapping, Optional

import pandas as pd

from market_dashboard.core.exceptions import InvalidInput
from market_dashboard.services.signals.schemas import (
    MonthlySeasonalityStat,
    Seasonality,
    SignalType,
)

logger = logging.getLogger(__name__)

BULLISH_THRESHOLD = 60.0
BEARISH_THRESHOLD = 40.0

# BTC monthly returns in percent, month index 0 = January
HISTORICAL_MONTHLY_RETURNS: Dict[int, Dict[int, float]] = {
    0: {2011: 66.67, 2012: 10.0, 2013: 15.38, 2014: -14.29, 2015: -33.33, 2016: 11.11, 2017: 15.79,
        2018: -14.29, 2019: 2.7, 2020: 4.73, 2021: 10.37, 2022: -2.17, 2023: 25.0, 2024: 0.72},
    1: {2011: 100.0, 2012: 0.0, 2013: 33.33, 2014: -16.67, 2015: 25.0, 2016: 20.0, 2017: 18.18,
        2018: -16.67, 2019: 5.26, 2020: 20.0, 2021: 40.63, 2022: -11.11, 2023: 8.0, 2024: 43.76},
    2: {2011: 400.0, 2012: 9.09, 2013: 50.0, 2014: -10.0, 2015: 0.0, 2016: 8.33, 2017: 7.69,
        2018: -10.0, 2019: 25.0, 2020: -16.67, 2021: 33.33, 2022: -12.5, 2023: 5.56, 2024: 16.62},
    3: {2011: 10.0, 2012: 0.0, 2013: 733.33, 2014: 33.33, 2015: 0.0, 2016: 7.69, 2017: 28.57,
        2018: -11.11, 2019: 20.0, 2020: 20.0, 2021: 6.67, 2022: -8.57, 2023: 2.79, 2024: -15.0},
    4: {2011: 81.82, 2012: 0.0, 2013: -40.0, 2014: -8.33, 2015: 8.0, 2016: 7.14, 2017: 11.11,
        2018: -12.5, 2019: 33.33, 2020: 5.56, 2021: -14.06, 2022: -9.38, 2023: -6.87, 2024: 11.35},
    5: {2011: 200.0, 2012: -8.33, 2013: -20.0, 2014: -9.09, 2015: 7.41, 2016: 20.0, 2017: -25.0,
        2018: -14.29, 2019: 25.0, 2020: 5.26, 2021: -9.09, 2022: -13.79, 2023: 11.97, 2024: -7.13},
    6: {2011: -33.33, 2012: 0.0, 2013: 8.33, 2014: -20.0, 2015: -13.79, 2016: -5.56, 2017: -6.67,
        2018: 16.67, 2019: 10.0, 2020: 5.0, 2021: -10.0, 2022: 20.0, 2023: -4.09, 2024: 3.1},
    7: {2011: -25.0, 2012: 9.09, 2013: -7.69, 2014: -12.5, 2015: 4.0, 2016: -5.88, 2017: 7.14,
        2018: -14.29, 2019: -13.64, 2020: 14.29, 2021: 11.11, 2022: -6.67, 2023: -11.29, 2024: -8.75},
    8: {2011: -33.33, 2012: 0.0, 2013: 8.33, 2014: -14.29, 2015: 7.69, 2016: -6.25, 2017: 33.33,
        2018: -16.67, 2019: -10.53, 2020: -8.33, 2021: -20.0, 2022: -3.57, 2023: 3.99, 2024: 7.39},
    9: {2011: 0.0, 2012: 8.33, 2013: 53.85, 2014: -16.67, 2015: 7.14, 2016: 6.67, 2017: 50.0,
        2018: -10.0, 2019: -5.88, 2020: 9.09, 2021: 50.0, 2022: -3.7, 2023: 28.55, 2024: 10.87},
    10: {2011: -30.0, 2012: 7.69, 2013: 400.0, 2014: -20.0, 2015: 33.33, 2016: 12.5, 2017: 133.33,
         2018: -11.11, 2019: -12.5, 2020: 53.19, 2021: 15.0, 2022: -3.85, 2023: 8.81, 2024: 37.36},
    11: {2011: -28.57, 2012: 92.14, 2013: -30.0, 2014: 50.0, 2015: 12.5, 2016: 5.56, 2017: 100.0,
         2018: -7.5, 2019: 0.0, 2020: 57.72, 2021: -33.33, 2022: -20.0, 2023: 12.06, 2024: -3.14},
}


def classify(probability: float) -> Seasonality:
    """>= 60 is bullish, <= 40 is bearish, anything between is neutral."""
    if probability >= BULLISH_THRESHOLD:
        return Seasonality.BULLISH
    if probability <= BEARISH_THRESHOLD:
        return Seasonality.BEARISH
    return Seasonality.NEUTRAL


def direction_matches(direction: SignalType, seasonality: Seasonality, allow_neutral: bool = False) -> bool:
    """Hard generation filter: longs need a bullish month, shorts a bearish one."""
    if seasonality == Seasonality.NEUTRAL:
        return allow_neutral
    if direction == SignalType.LONG:
        return seasonality == Seasonality.BULLISH
    return seasonality == Seasonality.BEARISH


def _validate_month(month: int) -> int:
    if not isinstance(month, int) or isinstance(month, bool) or not 0 <= month <= 11:
        raise InvalidInput(f"Month must be an integer between 0 and 11, got {month!r}")
    return month


class SeasonalityEvaluator:
    """Month-of-year statistics over a fixed table of historical returns.

    Results are memoised per month until `invalidate` is called.
    """

    def __init__(self, returns: Optional[Mapping[int, Mapping[int, float]]] = None):
        self.returns = returns if returns is not None else HISTORICAL_MONTHLY_RETURNS
        self._stats: Dict[int, MonthlySeasonalityStat] = {}

    def _series(self, month: int) -> pd.Series:
        data = self.returns.get(month) or {}
        return pd.Series(data, dtype=float).sort_index()

    def _compute(self, month: int) -> MonthlySeasonalityStat:
        series = self._series(month)
        name = calendar.month_name[month + 1]

        if series.empty:
            return MonthlySeasonalityStat(
                month=month,
                name=name,
                positive_probability=50.0,
                sample_years=0,
                classification=Seasonality.NEUTRAL,
            )

        positive = int((series > 0).sum())
        probability = positive / len(series) * 100
        best_year = int(series.idxmax())
        worst_year = int(series.idxmin())

        return MonthlySeasonalityStat(
            month=month,
            name=name,
            positive_probability=probability,
            sample_years=len(series),
            classification=classify(probability),
            positive_years=positive,
            negative_years=len(series) - positive,
            average_return=float(series.mean()),
            median_return=float(series.median()),
            best_year={"year": best_year, "return": float(series[best_year])},
            worst_year={"year": worst_year, "return": float(series[worst_year])},
        )

    def monthly_stats(self, month: int) -> MonthlySeasonalityStat:
        month = _validate_month(month)
        if month not in self._stats:
            self._stats[month] = self._compute(month)
        return self._stats[month]

    def monthly_positive_probability(self, month: int) -> float:
        return self.monthly_stats(month).positive_probability

    def overview(self) -> List[MonthlySeasonalityStat]:
        return [self.monthly_stats(month) for month in range(12)]

    def current(self, now: Optional[datetime] = None) -> MonthlySeasonalityStat:
        now = now or datetime.now(timezone.utc)
        return self.monthly_stats(now.month - 1)

    def warm(self) -> int:
        return len(self.overview())

    def invalidate(self):
        logger.info("Seasonality cache invalidated (%d months)", len(self._stats))
        self._stats.clear()
