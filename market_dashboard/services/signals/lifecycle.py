# market_dashboard/services/signals/lifecycle.py
"""
Signal lifecycle: waiting -> active -> completed, or expired.

Reconciliation replays the candles since the signal was created (or since
the entry was hit) and moves the signal forward. Every write is conditional
on the status that was read, so a second reconciler racing on the same row
loses cleanly with ConcurrentUpdateConflict instead of double-completing it.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from market_dashboard.core.exceptions import (
    ConcurrentUpdateConflict,
    InvalidInput,
    MarketDashboardError,
    SignalNotFound,
)
from market_dashboard.markets.models import Candle
from market_dashboard.markets.timeframe import timeframe_seconds
from market_dashboard.services.cache import ACTIVE_SIGNALS
from market_dashboard.services.signals.schemas import (
    ExitType,
    ReconcileSummary,
    SignalRecord,
    SignalStatus,
    SignalType,
)

logger = logging.getLogger(__name__)

CandleLoader = Callable[[str, str, int], Awaitable[List[Candle]]]


def _epoch(value: Optional[datetime]) -> Optional[int]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


def profit_loss(signal: SignalRecord, exit_price: float):
    """Absolute and percent result of closing `signal` at `exit_price`."""
    if signal.type == SignalType.LONG:
        pl = exit_price - signal.entry_price
    else:
        pl = signal.entry_price - exit_price
    return pl, pl / signal.entry_price * 100


def exit_for_candle(signal: SignalRecord, candle: Candle, stop_loss_first: bool = False):
    """(exit_type, exit_price) when the candle reaches TP or SL, else None.

    A candle reaching both resolves to the take-profit unless
    `stop_loss_first` is set.
    """
    if signal.type == SignalType.LONG:
        hit_sl = candle.low <= signal.stop_loss
        hit_tp = candle.high >= signal.take_profit
    else:
        hit_sl = candle.high >= signal.stop_loss
        hit_tp = candle.low <= signal.take_profit

    if hit_sl and (stop_loss_first or not hit_tp):
        return ExitType.SL, signal.stop_loss
    if hit_tp:
        return ExitType.TP, signal.take_profit
    return None


class SignalLifecycleManager:
    def __init__(
        self,
        repository,
        candle_loader: CandleLoader,
        cache=None,
        expiry_periods: int = 200,
        active_expiry_periods: Optional[int] = 400,
        stop_loss_first: bool = False,
    ):
        self.repository = repository
        self.candle_loader = candle_loader
        self.cache = cache
        self.expiry_periods = expiry_periods
        self.active_expiry_periods = active_expiry_periods
        self.stop_loss_first = stop_loss_first

    def _replay_start(self, signal: SignalRecord, step: int) -> int:
        """First candle open time that can move the signal.

        Waiting signals start at the first candle opening at or after
        `created_at`; the candle forming at creation time already traded
        before the signal existed.
        """
        if signal.status == SignalStatus.ACTIVE and signal.entry_hit_time is not None:
            return signal.entry_hit_time
        created = _epoch(signal.created_at) or 0
        return -(-created // step) * step

    def _deadline(self, signal: SignalRecord, status: SignalStatus, entry_hit_time: Optional[int],
                  step: int) -> Optional[int]:
        """Last candle open time that may still move a signal in `status`, None for no limit."""
        if status == SignalStatus.WAITING:
            created = _epoch(signal.created_at)
            return None if created is None else created + self.expiry_periods * step
        if status == SignalStatus.ACTIVE and self.active_expiry_periods and entry_hit_time is not None:
            return entry_hit_time + self.active_expiry_periods * step
        return None

    async def reconcile(self, signal: SignalRecord, now: Optional[datetime] = None) -> Optional[str]:
        """Advance one signal. Returns the transition made, or None.

        Candles past the expiry deadline of the current status are never
        replayed, so a late tick expires the signal instead of acting on
        them. Terminal signals are left untouched, so reconciling twice over
        the same candles is a no-op the second time.
        """
        if signal.status.is_terminal:
            return None

        now = now or datetime.now(timezone.utc)
        now_ts = _epoch(now)
        step = timeframe_seconds(signal.timeframe)
        candles = await self.candle_loader(signal.pair, signal.timeframe, self._replay_start(signal, step))

        status = signal.status
        entry_hit_time = signal.entry_hit_time
        deadline = self._deadline(signal, status, entry_hit_time, step)
        exit_result = None
        exit_time = None
        last_close = None

        for candle in candles:
            if deadline is not None and candle.time > deadline:
                break
            if status == SignalStatus.ACTIVE and entry_hit_time is not None and candle.time < entry_hit_time:
                continue
            last_close = candle.close

            if status == SignalStatus.WAITING:
                if not candle.touches(signal.entry_price):
                    continue
                status = SignalStatus.ACTIVE
                entry_hit_time = candle.time
                deadline = self._deadline(signal, status, entry_hit_time, step)

            exit_result = exit_for_candle(signal, candle, self.stop_loss_first)
            if exit_result:
                exit_time = candle.time
                break

        fields: Dict[str, Any] = {}
        if status != signal.status:
            fields.update(entry_hit=True, entry_hit_time=entry_hit_time)

        if exit_result:
            exit_type, exit_price = exit_result
            pl, pl_percent = profit_loss(signal, exit_price)
            fields.update(
                status=SignalStatus.COMPLETED,
                exit_type=exit_type,
                exit_price=exit_price,
                exit_time=exit_time,
                profit_loss=pl,
                profit_loss_percent=pl_percent,
            )
            await self._write(signal, fields, archive=True)
            logger.info(
                f"Signal {signal.id} {signal.pair} {signal.timeframe} completed by "
                f"{exit_type.value} at {exit_price:.6f} (P/L {pl_percent:.2f}%)"
            )
            return "completed"

        if deadline is not None and now_ts > deadline:
            fields.update(
                status=SignalStatus.EXPIRED,
                exit_type=ExitType.EXPIRED,
                exit_price=last_close,
                exit_time=now_ts,
            )
            await self._write(signal, fields)
            logger.info(f"Signal {signal.id} {signal.pair} {signal.timeframe} expired while {status.value}")
            return "expired"

        if status != signal.status:
            fields["status"] = status
            await self._write(signal, fields)
            logger.info(f"Signal {signal.id} {signal.pair} {signal.timeframe} entry hit at {entry_hit_time}")
            return "activated"

        return None

    async def _write(self, signal: SignalRecord, fields: Dict[str, Any], archive: bool = False):
        updated = await self.repository.update_signal_status(
            signal.id, signal.status, fields, archive=archive
        )
        if not updated:
            raise ConcurrentUpdateConflict(signal.id, signal.status.value)
        if self.cache is not None:
            await self.cache.invalidate(ACTIVE_SIGNALS, pair=signal.pair)

    async def reconcile_all(
        self,
        pair: Optional[str] = None,
        timeframe: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ReconcileSummary:
        """Reconcile every open signal, optionally narrowed to one pair/timeframe.

        Failures on one signal are counted and do not stop the others.
        """
        summary = ReconcileSummary()
        signals = await self.repository.query_active_signals(pair, timeframe)

        for signal in signals:
            summary.checked += 1
            try:
                outcome = await self.reconcile(signal, now=now)
            except ConcurrentUpdateConflict as e:
                logger.info(f"Skipped signal already moved by another run: {e}")
                summary.conflicts += 1
                continue
            except MarketDashboardError as e:
                logger.error(f"Failed to reconcile signal {signal.id} {signal.pair} {signal.timeframe}: {e}")
                summary.errors += 1
                continue

            if outcome == "activated":
                summary.activated += 1
            elif outcome == "completed":
                summary.completed += 1
            elif outcome == "expired":
                summary.expired += 1

        logger.info(
            f"Reconciled {summary.checked} signals: {summary.activated} activated, "
            f"{summary.completed} completed, {summary.expired} expired, "
            f"{summary.conflicts} conflicts, {summary.errors} errors"
        )
        return summary

    async def close_manually(
        self,
        signal_id,
        exit_price: float,
        exit_time: Optional[int] = None,
    ) -> SignalRecord:
        if exit_price is None or exit_price <= 0:
            raise InvalidInput("exit_price must be positive")

        signal = await self.repository.get_signal(signal_id)
        if signal is None:
            raise SignalNotFound(signal_id)
        if signal.status != SignalStatus.ACTIVE:
            raise InvalidInput(f"Only active signals can be closed, signal is {signal.status.value}")

        pl, pl_percent = profit_loss(signal, exit_price)
        await self._write(
            signal,
            {
                "status": SignalStatus.COMPLETED,
                "exit_type": ExitType.MANUAL,
                "exit_price": exit_price,
                "exit_time": exit_time or _epoch(datetime.now(timezone.utc)),
                "profit_loss": pl,
                "profit_loss_percent": pl_percent,
            },
            archive=True,
        )
        logger.info(f"Signal {signal_id} closed manually at {exit_price}")
        return await self.repository.get_signal(signal_id)
