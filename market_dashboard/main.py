import logging
import traceback
from contextlib import asynccontextmanager
from datetime import datetime
from functools import partial

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from market_dashboard.config import settings
from market_dashboard.core.exceptions import (
    InvalidInput,
    PersistenceError,
    SignalNotFound,
    Unauthorized,
    UpstreamUnavailable,
)
from market_dashboard.core.logging_config import setup_logging
from market_dashboard.database import close_db, init_db
from market_dashboard.dependencies import ServiceContainer
from market_dashboard.routers import market_data, signals
from market_dashboard.services.scheduler import PeriodicJob

logger = logging.getLogger(__name__)


async def run_signal_cycle(services: ServiceContainer):
    """Generate new signals, then reconcile the open ones, for every timeframe."""
    for timeframe in settings.SIGNAL_TIMEFRAMES:
        await services.generator.generate(timeframe)
        await services.lifecycle.reconcile_all(timeframe=timeframe)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.LOG_LEVEL, settings.LOG_DIR)
    logger.info(f"Starting {settings.PROJECT_NAME} {settings.VERSION}")

    if settings.DB_CREATE_TABLES:
        try:
            await init_db()
            logger.info("Database tables ready")
        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            logger.error(traceback.format_exc())

    services = ServiceContainer()
    app.state.services = services

    if services.redis is not None:
        try:
            await services.redis.connect()
            logger.info("Redis connected")
        except Exception as e:
            logger.warning(f"Redis unavailable, cache reads will miss: {e}")

    job = None
    if settings.SCHEDULER_ENABLED:
        job = PeriodicJob(
            "signal-cycle", partial(run_signal_cycle, services), settings.SCHEDULER_INTERVAL_SECONDS
        )
        job.start()
    app.state.signal_job = job

    yield

    if job is not None:
        await job.stop()
    if services.redis is not None:
        await services.redis.disconnect()
    try:
        await close_db()
        logger.info("Database connection closed")
    except Exception as e:
        logger.error(f"Error closing database: {e}")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    lifespan=lifespan
)


@app.middleware("http")
async def log_request_response(request: Request, call_next):
    start_time = datetime.now()
    try:
        response = await call_next(request)
    except Exception as e:
        process_time = (datetime.now() - start_time).total_seconds() * 1000
        logger.error(f"ERROR in {request.method} {request.url.path}: {str(e)}")
        logger.error(f"   Traceback:\n{traceback.format_exc()}")
        logger.error(f"   Time: {process_time:.2f}ms")
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Internal Server Error"}
        )

    process_time = (datetime.now() - start_time).total_seconds() * 1000
    logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({process_time:.2f}ms)")
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": str(exc)})


@app.exception_handler(InvalidInput)
async def invalid_input_handler(request: Request, exc: InvalidInput):
    return _error(400, exc)


@app.exception_handler(SignalNotFound)
async def not_found_handler(request: Request, exc: SignalNotFound):
    return _error(404, exc)


@app.exception_handler(UpstreamUnavailable)
async def upstream_handler(request: Request, exc: UpstreamUnavailable):
    logger.error(f"Upstream unavailable on {request.url.path}: {exc.failures}")
    return _error(502, exc)


@app.exception_handler(PersistenceError)
async def persistence_handler(request: Request, exc: PersistenceError):
    logger.error(f"Persistence error on {request.url.path}: {exc}")
    return _error(500, exc)


@app.exception_handler(Unauthorized)
async def unauthorized_handler(request: Request, exc: Unauthorized):
    return JSONResponse(status_code=401, content={"error": "Unauthorized"})


app.include_router(market_data.router, prefix=settings.API_V1_PREFIX)
app.include_router(signals.router, prefix=settings.API_V1_PREFIX)


@app.get("/")
async def root():
    return {
        "message": settings.PROJECT_NAME,
        "version": settings.VERSION,
        "docs": "/docs",
    }
