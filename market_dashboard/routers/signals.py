import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from market_dashboard.config import settings
from market_dashboard.core.exceptions import InvalidInput
from market_dashboard.dependencies import (
    get_cache,
    get_generator,
    get_lifecycle,
    get_repository,
    require_api_key,
)
from market_dashboard.markets.timeframe import validate_pair, validate_timeframe
from market_dashboard.services.cache import ACTIVE_SIGNALS, ReadThroughCache
from market_dashboard.services.signal_repository import SignalRepository
from market_dashboard.services.signals.generator import SignalGenerator
from market_dashboard.services.signals.lifecycle import SignalLifecycleManager
from market_dashboard.services.signals.schemas import SignalStatus

logger = logging.getLogger(__name__)

router = APIRouter(tags=["signals"])

STATUS_FILTERS = {status.value for status in SignalStatus} | {"all"}


class ManualCloseRequest(BaseModel):
    exit_price: float = Field(..., gt=0)
    exit_time: Optional[int] = None


def _optional_pair(pair: Optional[str]) -> Optional[str]:
    return validate_pair(pair) if pair else None


def _optional_timeframe(timeframe: Optional[str]) -> Optional[str]:
    return validate_timeframe(timeframe) if timeframe else None


def _parse_id(signal_id: str) -> uuid.UUID:
    try:
        return uuid.UUID(signal_id)
    except ValueError:
        raise InvalidInput(f"Invalid signal id: {signal_id}")


@router.post("/signals/generate", dependencies=[Depends(require_api_key)])
async def generate_signals(
    timeframe: str = Query("1h"),
    generator: SignalGenerator = Depends(get_generator),
):
    """Run batch generation for the configured pairs on one timeframe."""
    validate_timeframe(timeframe, settings.SIGNAL_TIMEFRAMES)
    result = await generator.generate(timeframe)
    return {
        "success": True,
        "timeframe": result.timeframe,
        "signals_generated": sum(r.signals_generated for r in result.results),
        "results": [r.model_dump() for r in result.results],
        "skipped_pairs": result.skipped_pairs,
        "budget_exceeded": result.budget_exceeded,
        "elapsed_seconds": result.elapsed_seconds,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.post("/signals/check", dependencies=[Depends(require_api_key)])
async def check_signals(
    timeframe: Optional[str] = None,
    pair: Optional[str] = None,
    lifecycle: SignalLifecycleManager = Depends(get_lifecycle),
):
    """One reconciliation tick over the open signals."""
    summary = await lifecycle.reconcile_all(_optional_pair(pair), _optional_timeframe(timeframe))
    return {"success": True, **summary.model_dump()}


@router.post("/signals/{signal_id}/close", dependencies=[Depends(require_api_key)])
async def close_signal(
    signal_id: str,
    body: ManualCloseRequest,
    lifecycle: SignalLifecycleManager = Depends(get_lifecycle),
):
    signal = await lifecycle.close_manually(_parse_id(signal_id), body.exit_price, body.exit_time)
    return {"success": True, "signal": signal.model_dump(mode="json")}


@router.get("/signals")
async def list_signals(
    pair: Optional[str] = None,
    timeframe: Optional[str] = None,
    status: str = "all",
    limit: int = Query(10, ge=1, le=500),
    offset: int = Query(0, ge=0),
    count_only: bool = False,
    repository: SignalRepository = Depends(get_repository),
):
    if status not in STATUS_FILTERS:
        raise InvalidInput(f"Unknown status filter: {status}")
    pair = _optional_pair(pair)
    timeframe = _optional_timeframe(timeframe)

    total = await repository.count_signals(status, pair, timeframe)
    if count_only:
        return {"success": True, "count": total}

    signals = await repository.list_signals(pair, timeframe, status, limit, offset)
    return {
        "success": True,
        "signals": [s.model_dump(mode="json") for s in signals],
        "count": len(signals),
        "total": total,
        "limit": limit,
        "offset": offset,
    }


@router.get("/signals/active")
async def active_signals(
    pair: Optional[str] = None,
    timeframe: Optional[str] = None,
    repository: SignalRepository = Depends(get_repository),
    cache: ReadThroughCache = Depends(get_cache),
):
    """Waiting and active signals, served through the cache."""
    pair = _optional_pair(pair)
    timeframe = _optional_timeframe(timeframe)

    async def load():
        signals = await repository.query_active_signals(pair, timeframe)
        return [s.model_dump(mode="json") for s in signals]

    signals = await cache.get_or_load(ACTIVE_SIGNALS, load, pair, timeframe)
    return {"success": True, "signals": signals, "count": len(signals)}


@router.get("/signals/completed")
async def completed_signals(
    pair: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    repository: SignalRepository = Depends(get_repository),
):
    rows = await repository.list_completed(_optional_pair(pair), limit, offset)
    return {"success": True, "signals": rows, "count": len(rows)}


@router.get("/signals/stats")
async def signal_stats(repository: SignalRepository = Depends(get_repository)):
    stats = await repository.signal_stats()
    return {"success": True, "stats": stats}
