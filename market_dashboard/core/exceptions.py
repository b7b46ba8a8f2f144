# market_dashboard/core/exceptions.py
from typing import Dict, Optional


class MarketDashboardError(Exception):
    """Base class for errors raised by the dashboard services."""


class InvalidInput(MarketDashboardError):
    """Bad pair, timeframe or date, rejected before any core logic runs."""


class UpstreamUnavailable(MarketDashboardError):
    """Every candle-source endpoint failed."""

    def __init__(self, message: str, failures: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.failures = failures or {}


class PersistenceError(MarketDashboardError):
    """Database read or write failed."""


class ConcurrentUpdateConflict(MarketDashboardError):
    """A conditional status update found the row in another status."""

    def __init__(self, signal_id, expected_status: str):
        super().__init__(
            f"Signal {signal_id} is no longer in status '{expected_status}'"
        )
        self.signal_id = signal_id
        self.expected_status = expected_status


class SignalNotFound(MarketDashboardError):
    def __init__(self, signal_id):
        super().__init__(f"Signal {signal_id} not found")
        self.signal_id = signal_id


class Unauthorized(MarketDashboardError):
    """Missing or wrong bearer token on a protected endpoint."""
