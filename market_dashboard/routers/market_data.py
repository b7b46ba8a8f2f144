import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query

from market_dashboard.config import settings
from market_dashboard.core.exceptions import InvalidInput
from market_dashboard.dependencies import (
    get_cache,
    get_candle_service,
    get_repository,
    get_seasonality,
    require_api_key,
)
from market_dashboard.services.cache import ACTIVE_SIGNALS, SEASONALITY, ReadThroughCache
from market_dashboard.services.data_service import CandleService
from market_dashboard.services.signal_repository import SignalRepository
from market_dashboard.services.signals.levels import analyze_liquidity_levels
from market_dashboard.services.signals.seasonality import SeasonalityEvaluator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["market-data"])

CACHE_ACTIONS = ("warm", "invalidate")


@router.get("/health")
async def health(
    repository: SignalRepository = Depends(get_repository),
    cache: ReadThroughCache = Depends(get_cache),
):
    """Service status with database and cache reachability."""
    services = {}
    try:
        await repository.count_signals()
        services["database"] = "connected"
    except Exception as e:
        logger.warning(f"Health check: database unavailable: {e}")
        services["database"] = "unavailable"

    ping = getattr(cache.backend, "ping", None)
    if ping is None:
        services["cache"] = "memory"
    else:
        try:
            services["cache"] = "connected" if await ping() else "unavailable"
        except Exception as e:
            logger.warning(f"Health check: cache unavailable: {e}")
            services["cache"] = "unavailable"

    healthy = services["database"] == "connected"
    return {
        "success": healthy,
        "status": "operational" if healthy else "degraded",
        "version": settings.VERSION,
        "services": services,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/market/candles")
async def get_candles(
    pair: str,
    timeframe: str = "1h",
    limit: int = Query(100, ge=1, le=1000),
    end_time: Optional[int] = None,
    candle_service: CandleService = Depends(get_candle_service),
):
    candles = await candle_service.get_candles(pair, timeframe, limit=limit, end_time=end_time)
    return {
        "success": True,
        "pair": pair.upper(),
        "timeframe": timeframe,
        "candles": [c.to_dict() for c in candles],
        "count": len(candles),
    }


@router.get("/market/ohlc")
async def get_stored_ohlc(
    pair: str,
    timeframe: str,
    start: int,
    end: Optional[int] = None,
    candle_service: CandleService = Depends(get_candle_service),
):
    """Candles previously stored for a pair, `start`/`end` in epoch seconds."""
    candles = await candle_service.get_stored_range(pair, timeframe, start, end)
    return {
        "success": True,
        "pair": pair.upper(),
        "timeframe": timeframe,
        "candles": [c.to_dict() for c in candles],
        "count": len(candles),
    }


@router.get("/market/levels")
async def get_liquidity_levels(
    pair: str,
    timeframe: str = "1h",
    limit: int = Query(100, ge=10, le=1000),
    candle_service: CandleService = Depends(get_candle_service),
):
    """BSL/SSL levels for charting, with equal levels merged and traded flags set."""
    candles = await candle_service.get_candles(pair, timeframe, limit=limit)
    levels = analyze_liquidity_levels(
        candles,
        timeframe=timeframe,
        major_threshold=settings.MAJOR_THRESHOLD,
        equal_threshold=settings.EQUAL_LEVEL_THRESHOLD,
    )
    return {
        "success": True,
        "pair": pair.upper(),
        "timeframe": timeframe,
        "buy_side": [level.to_dict() for level in levels.buy_side],
        "sell_side": [level.to_dict() for level in levels.sell_side],
    }


@router.get("/seasonality")
async def seasonality_overview(
    evaluator: SeasonalityEvaluator = Depends(get_seasonality),
    cache: ReadThroughCache = Depends(get_cache),
):
    async def load():
        return [stat.model_dump(mode="json") for stat in evaluator.overview()]

    months = await cache.get_or_load(SEASONALITY, load)
    current = evaluator.current()
    return {
        "success": True,
        "current_month": current.month,
        "current": current.model_dump(mode="json"),
        "months": months,
    }


@router.get("/seasonality/{month}")
async def seasonality_month(
    month: int,
    evaluator: SeasonalityEvaluator = Depends(get_seasonality),
):
    """Statistics for one month, 0 = January."""
    stat = evaluator.monthly_stats(month)
    return {"success": True, **stat.model_dump(mode="json")}


@router.post("/cache/seasonality", dependencies=[Depends(require_api_key)])
async def manage_seasonality_cache(
    action: str = "warm",
    evaluator: SeasonalityEvaluator = Depends(get_seasonality),
    cache: ReadThroughCache = Depends(get_cache),
):
    if action not in CACHE_ACTIONS:
        raise InvalidInput(f"Invalid action. Must be one of: {', '.join(CACHE_ACTIONS)}")

    if action == "invalidate":
        evaluator.invalidate()
        removed = await cache.invalidate(SEASONALITY)
        removed += await cache.invalidate(ACTIVE_SIGNALS)
        return {"success": True, "action": action, "removed": removed}

    months = evaluator.warm()
    await cache.set(SEASONALITY, [stat.model_dump(mode="json") for stat in evaluator.overview()])
    return {"success": True, "action": action, "months": months}
