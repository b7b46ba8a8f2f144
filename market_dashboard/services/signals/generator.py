# market_dashboard/services/signals/generator.py
import logging
import time
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from market_dashboard.core.exceptions import MarketDashboardError
from market_dashboard.markets.models import Candle
from market_dashboard.markets.timeframe import validate_pair, validate_timeframe
from market_dashboard.services.cache import ACTIVE_SIGNALS
from market_dashboard.services.signals.fibonacci import LEVEL_SIDE_FOR, build_signal
from market_dashboard.services.signals.levels import candles_after, detect_levels
from market_dashboard.services.signals.peaks import find_confirmed_extremum
from market_dashboard.services.signals.schemas import (
    ExtremumKind,
    GenerationResult,
    LevelSide,
    LiquidityLevel,
    MonthlySeasonalityStat,
    PairGenerationResult,
    Seasonality,
    SignalRecord,
    SignalType,
)
from market_dashboard.services.signals.seasonality import SeasonalityEvaluator, direction_matches

logger = logging.getLogger(__name__)
perf_logger = logging.getLogger('performance')

# relative price distance under which two levels count as the same level
DUPLICATE_LEVEL_TOLERANCE = 1e-6


def select_level(levels: Sequence[LiquidityLevel], direction: SignalType) -> Optional[LiquidityLevel]:
    """Lowest major SSL for a long, highest major BSL for a short."""
    side = LEVEL_SIDE_FOR[SignalType(direction)]
    majors = [level for level in levels if level.is_major and level.side == side]
    if not majors:
        return None
    if side == LevelSide.SSL:
        return min(majors, key=lambda level: level.price)
    return max(majors, key=lambda level: level.price)


class SignalGenerator:
    """Scans pairs on one timeframe and stores new waiting signals.

    Pairs are processed one after another inside a wall-clock budget. A pair
    already started always runs to completion; once the budget is spent no
    further pair is started and the rest are reported as skipped.
    """

    def __init__(
        self,
        repository,
        candle_service,
        seasonality: SeasonalityEvaluator,
        cache=None,
        pairs: Optional[List[str]] = None,
        candle_limit: int = 100,
        swing_strength: int = 5,
        major_threshold: float = 0.3,
        min_candles_after_level: int = 5,
        allow_neutral: bool = False,
        budget_seconds: float = 50.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.repository = repository
        self.candle_service = candle_service
        self.seasonality = seasonality
        self.cache = cache
        self.pairs = list(pairs or [])
        self.candle_limit = candle_limit
        self.swing_strength = swing_strength
        self.major_threshold = major_threshold
        self.min_candles_after_level = min_candles_after_level
        self.allow_neutral = allow_neutral
        self.budget_seconds = budget_seconds
        self.clock = clock

    def directions_for(self, seasonality: Seasonality) -> List[SignalType]:
        return [d for d in (SignalType.LONG, SignalType.SHORT)
                if direction_matches(d, seasonality, self.allow_neutral)]

    def build_from_candles(
        self,
        candles: Sequence[Candle],
        direction: SignalType,
        pair: str,
        timeframe: str,
        stat: MonthlySeasonalityStat,
    ):
        """Run the detection pipeline on one candle series.

        Returns (signal, None) or (None, reason) when nothing qualifies.
        """
        levels = detect_levels(candles, self.swing_strength, self.major_threshold)
        level_pool = levels.sell_side if direction == SignalType.LONG else levels.buy_side
        level = select_level(level_pool, direction)
        if level is None:
            return None, f"no major {LEVEL_SIDE_FOR[direction].value} level"

        after = candles_after(candles, level)
        if len(after) < self.min_candles_after_level:
            return None, f"only {len(after)} candles after level"

        kind = ExtremumKind.HIGH if direction == SignalType.LONG else ExtremumKind.LOW
        extremum = find_confirmed_extremum(after, kind)
        if extremum is None:
            return None, "no extremum after level"

        signal = build_signal(
            level,
            extremum,
            direction,
            pair=pair,
            timeframe=timeframe,
            seasonality=stat.classification,
            positive_probability=stat.positive_probability,
        )
        if signal is None:
            return None, "extremum not beyond level"
        return signal, None

    async def _is_duplicate(self, signal: SignalRecord) -> bool:
        open_signals = await self.repository.query_active_signals(signal.pair, signal.timeframe)
        for existing in open_signals:
            if existing.type != signal.type:
                continue
            reference = abs(existing.major_level_price) or 1.0
            if abs(existing.major_level_price - signal.major_level_price) / reference < DUPLICATE_LEVEL_TOLERANCE:
                return True
        return False

    async def generate_for_pair(
        self,
        pair: str,
        timeframe: str,
        stat: MonthlySeasonalityStat,
    ) -> PairGenerationResult:
        result = PairGenerationResult(pair=pair, timeframe=timeframe)
        directions = self.directions_for(stat.classification)
        if not directions:
            result.skipped_reason = f"seasonality {stat.classification.value}"
            return result

        candles = await self.candle_service.get_candles(pair, timeframe, limit=self.candle_limit)
        reasons = []
        for direction in directions:
            signal, reason = self.build_from_candles(candles, direction, pair, timeframe, stat)
            if signal is None:
                reasons.append(f"{direction.value}: {reason}")
                continue
            if not direction_matches(signal.type, signal.seasonality, self.allow_neutral):
                reasons.append(f"{direction.value}: seasonality {signal.seasonality.value}")
                continue
            if await self._is_duplicate(signal):
                reasons.append(f"{direction.value}: duplicate of open signal")
                continue

            await self.repository.insert_signal(signal)
            result.signals_generated += 1
            result.signal_ids.append(str(signal.id))
            logger.info(
                f"New {signal.type.value} signal {pair} {timeframe}: entry {signal.entry_price:.6f} "
                f"SL {signal.stop_loss:.6f} TP {signal.take_profit:.6f}"
            )

        if result.signals_generated and self.cache is not None:
            await self.cache.invalidate(ACTIVE_SIGNALS, pair=pair)
        elif not result.signals_generated:
            result.skipped_reason = "; ".join(reasons)
        return result

    async def generate(
        self,
        timeframe: str,
        pairs: Optional[List[str]] = None,
        now: Optional[datetime] = None,
    ) -> GenerationResult:
        timeframe = validate_timeframe(timeframe)
        pairs = [validate_pair(p) for p in (pairs or self.pairs)]
        stat = self.seasonality.current(now)

        started = self.clock()
        output = GenerationResult(timeframe=timeframe)

        for index, pair in enumerate(pairs):
            remaining = self.budget_seconds - (self.clock() - started)
            if remaining <= 0:
                output.budget_exceeded = True
                output.skipped_pairs.extend(pairs[index:])
                logger.warning(
                    f"Generation budget of {self.budget_seconds}s spent, skipping {len(pairs) - index} pairs"
                )
                break

            try:
                result = await self.generate_for_pair(pair, timeframe, stat)
            except MarketDashboardError as e:
                logger.error(f"Signal generation failed for {pair} {timeframe}: {e}")
                result = PairGenerationResult(pair=pair, timeframe=timeframe, error=str(e))
            output.results.append(result)

        output.elapsed_seconds = round(self.clock() - started, 3)
        perf_logger.info({
            "event": "signal_generation",
            "timeframe": timeframe,
            "pairs": len(pairs),
            "signals_generated": sum(r.signals_generated for r in output.results),
            "skipped_pairs": len(output.skipped_pairs),
            "budget_exceeded": output.budget_exceeded,
            "elapsed_seconds": output.elapsed_seconds,
        })
        return output
