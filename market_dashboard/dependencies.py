import logging
import secrets
from typing import Optional

from fastapi import Header, Request

from market_dashboard.config import settings
from market_dashboard.core.exceptions import Unauthorized
from market_dashboard.database import AsyncSessionLocal
from market_dashboard.database.redis_client import create_redis_client
from market_dashboard.providers.binance_provider import BinanceProvider
from market_dashboard.services.cache import ReadThroughCache
from market_dashboard.services.data_service import CandleService
from market_dashboard.services.signal_repository import SignalRepository
from market_dashboard.services.signals.generator import SignalGenerator
from market_dashboard.services.signals.lifecycle import SignalLifecycleManager
from market_dashboard.services.signals.seasonality import SeasonalityEvaluator

logger = logging.getLogger(__name__)


class ServiceContainer:
    """Builds the service graph from `settings`.

    One container is created per application in the lifespan and kept on
    `app.state.services`; route dependencies read it from the request.
    """

    def __init__(self, config=settings, session_factory=AsyncSessionLocal):
        self.redis = create_redis_client(config.REDIS_URL)
        self.cache = ReadThroughCache(backend=self.redis, ttl_seconds=config.CACHE_TTL_SECONDS)
        self.seasonality = SeasonalityEvaluator()
        self.repository = SignalRepository(session_factory)
        self.provider = BinanceProvider(config.BINANCE_ENDPOINTS, config.BINANCE_TIMEOUT_SECONDS)
        self.candles = CandleService(self.provider, self.repository)
        self.lifecycle = SignalLifecycleManager(
            self.repository,
            self.candles.get_candles_since,
            cache=self.cache,
            expiry_periods=config.SIGNAL_EXPIRY_PERIODS,
            active_expiry_periods=config.SIGNAL_ACTIVE_EXPIRY_PERIODS,
            stop_loss_first=config.STOP_LOSS_FIRST,
        )
        self.generator = SignalGenerator(
            self.repository,
            self.candles,
            self.seasonality,
            cache=self.cache,
            pairs=config.SIGNAL_PAIRS,
            candle_limit=config.SIGNAL_CANDLE_LIMIT,
            swing_strength=config.SWING_STRENGTH,
            major_threshold=config.MAJOR_THRESHOLD,
            min_candles_after_level=config.MIN_CANDLES_AFTER_LEVEL,
            allow_neutral=config.ALLOW_NEUTRAL_SEASONALITY,
            budget_seconds=config.GENERATION_BUDGET_SECONDS,
        )


def get_repository(request: Request) -> SignalRepository:
    return request.app.state.services.repository


def get_cache(request: Request) -> ReadThroughCache:
    return request.app.state.services.cache


def get_seasonality(request: Request) -> SeasonalityEvaluator:
    return request.app.state.services.seasonality


def get_candle_service(request: Request) -> CandleService:
    return request.app.state.services.candles


def get_lifecycle(request: Request) -> SignalLifecycleManager:
    return request.app.state.services.lifecycle


def get_generator(request: Request) -> SignalGenerator:
    return request.app.state.services.generator


def require_api_key(authorization: Optional[str] = Header(None)):
    """Bearer-token check for write and administrative endpoints."""
    expected = settings.SIGNAL_GENERATOR_API_KEY
    if not expected or not authorization:
        raise Unauthorized("Unauthorized")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not secrets.compare_digest(token.strip(), expected):
        logger.warning("Rejected request with invalid bearer token")
        raise Unauthorized("Unauthorized")
