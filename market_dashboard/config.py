from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    # Core
    PROJECT_NAME: str = "Market Dashboard"
    VERSION: str = "1.0.0"
    API_V1_PREFIX: str = "/api/v1"
    DEBUG: bool = False

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./market_dashboard.db"
    DB_CREATE_TABLES: bool = True
    REDIS_URL: Optional[str] = None

    CORS_ORIGINS: list = ["http://localhost:3000"]

    # Bearer token for write / administrative endpoints
    SIGNAL_GENERATOR_API_KEY: str = ""

    # Candle source, tried in order
    BINANCE_ENDPOINTS: List[str] = [
        "https://api.binance.com/api/v3",
        "https://api1.binance.com/api/v3",
        "https://api-eu.binance.com/api/v3",
        "https://api-tr.binance.com/api/v3",
    ]
    BINANCE_TIMEOUT_SECONDS: float = 5.0

    # Signal generation
    SIGNAL_PAIRS: List[str] = ["BTCUSDT", "ETHUSDT", "BNBUSDT", "XRPUSDT", "ADAUSDT"]
    SIGNAL_TIMEFRAMES: List[str] = ["5m", "15m", "30m", "1h"]
    SIGNAL_CANDLE_LIMIT: int = 100
    SWING_STRENGTH: int = 5
    MAJOR_THRESHOLD: float = 0.3
    EQUAL_LEVEL_THRESHOLD: float = 2.0
    MIN_CANDLES_AFTER_LEVEL: int = 5
    ALLOW_NEUTRAL_SEASONALITY: bool = False
    GENERATION_BUDGET_SECONDS: float = 50.0

    # Lifecycle, measured in candle periods of the signal's timeframe
    SIGNAL_EXPIRY_PERIODS: int = 200
    SIGNAL_ACTIVE_EXPIRY_PERIODS: Optional[int] = 400
    # A candle reaching both TP and SL closes on TP unless this is set
    STOP_LOSS_FIRST: bool = False

    CACHE_TTL_SECONDS: int = 300

    SCHEDULER_ENABLED: bool = False
    SCHEDULER_INTERVAL_SECONDS: float = 300.0

    LOG_LEVEL: str = "INFO"
    LOG_DIR: Optional[str] = None

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "allow"


settings = Settings()
