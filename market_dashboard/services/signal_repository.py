# market_dashboard/services/signal_repository.py
"""
Persistence gateway for signals, the completed-signal archive and stored
OHLC candles.

Every database failure surfaces as PersistenceError; retries are left to the
caller. Status writes are conditional on the prior status so overlapping
reconciliation runs cannot both move the same signal.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import and_, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from market_dashboard.core.exceptions import PersistenceError
from market_dashboard.markets.models import Candle
from market_dashboard.models.candle import OhlcCandle
from market_dashboard.models.signal import CompletedSignal, Signal
from market_dashboard.services.signals.schemas import (
    ExitType,
    FibLevel,
    Seasonality,
    SignalRecord,
    SignalStatus,
    SignalType,
)

logger = logging.getLogger(__name__)

OPEN_STATUSES = (SignalStatus.WAITING.value, SignalStatus.ACTIVE.value)

# SignalRecord field -> Signal column for the fields the lifecycle owns
_STATUS_FIELDS = {
    "status": "status",
    "entry_hit": "entry_hit",
    "entry_hit_time": "entry_hit_time",
    "exit_price": "exit_price",
    "exit_time": "exit_time",
    "exit_type": "exit_type",
    "profit_loss": "profit_loss",
    "profit_loss_percent": "profit_loss_percent",
}


def _value(v):
    return v.value if hasattr(v, "value") else v


def _to_record(row: Signal) -> SignalRecord:
    return SignalRecord(
        id=row.id,
        pair=row.pair,
        timeframe=row.timeframe,
        type=SignalType(row.signal_type),
        entry_price=row.entry_price,
        stop_loss=row.stop_loss,
        take_profit=row.take_profit,
        risk_reward_ratio=row.risk_reward_ratio,
        major_level_price=row.major_level,
        peak_or_trough_price=row.peak_price,
        peak_or_trough_time=row.peak_time,
        fib_levels=[FibLevel(**level) for level in (row.fib_levels or [])],
        seasonality=Seasonality(row.seasonality or "neutral"),
        positive_probability=row.positive_probability if row.positive_probability is not None else 50.0,
        signal_source=row.signal_source,
        status=SignalStatus(row.status),
        entry_hit=bool(row.entry_hit),
        entry_hit_time=row.entry_hit_time,
        exit_price=row.exit_price,
        exit_time=row.exit_time,
        exit_type=ExitType(row.exit_type) if row.exit_type else None,
        profit_loss=row.profit_loss,
        profit_loss_percent=row.profit_loss_percent,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class SignalRepository:
    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    # Signals

    async def insert_signal(self, record: SignalRecord) -> uuid.UUID:
        row = Signal(
            id=record.id,
            pair=record.pair,
            timeframe=record.timeframe,
            signal_type=_value(record.type),
            signal_source=record.signal_source,
            entry_price=record.entry_price,
            stop_loss=record.stop_loss,
            take_profit=record.take_profit,
            risk_reward_ratio=record.risk_reward_ratio,
            major_level=record.major_level_price,
            peak_price=record.peak_or_trough_price,
            peak_time=record.peak_or_trough_time,
            fib_levels=[level.model_dump() for level in record.fib_levels],
            seasonality=_value(record.seasonality),
            positive_probability=record.positive_probability,
            status=_value(record.status),
            entry_hit=record.entry_hit,
            entry_hit_time=record.entry_hit_time,
        )
        if record.created_at:
            row.created_at = record.created_at
            row.updated_at = record.updated_at or record.created_at
        try:
            async with self.session_factory() as session:
                session.add(row)
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to insert signal {record.pair} {record.timeframe}: {e}")
            raise PersistenceError(f"Failed to insert signal: {e}") from e
        return record.id

    async def update_signal_status(
        self,
        signal_id: uuid.UUID,
        expected_status: SignalStatus,
        fields: Dict[str, Any],
        archive: bool = False,
    ) -> bool:
        """Apply `fields` only if the row is still in `expected_status`.

        Returns False when another writer moved the signal first. With
        `archive`, a completed_signals row is written in the same transaction.
        """
        values = {}
        for key, value in fields.items():
            if key not in _STATUS_FIELDS:
                raise ValueError(f"Field '{key}' is not a lifecycle field")
            values[_STATUS_FIELDS[key]] = _value(value)
        values["updated_at"] = datetime.now(timezone.utc)

        stmt = (
            update(Signal)
            .where(and_(Signal.id == signal_id, Signal.status == _value(expected_status)))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                if result.rowcount != 1:
                    await session.rollback()
                    return False
                if archive:
                    row = await session.get(Signal, signal_id)
                    await session.refresh(row)
                    session.add(self._archive_row(row))
                await session.commit()
                return True
        except SQLAlchemyError as e:
            logger.error(f"Failed to update signal {signal_id}: {e}")
            raise PersistenceError(f"Failed to update signal {signal_id}: {e}") from e

    @staticmethod
    def _archive_row(row: Signal) -> CompletedSignal:
        entry_time = row.entry_hit_time
        if entry_time is None and row.created_at is not None:
            created = row.created_at if row.created_at.tzinfo else row.created_at.replace(tzinfo=timezone.utc)
            entry_time = int(created.timestamp())
        return CompletedSignal(
            signal_id=row.id,
            signal_type=row.signal_type,
            entry_price=row.entry_price,
            stop_loss=row.stop_loss,
            take_profit=row.take_profit,
            exit_price=row.exit_price,
            exit_type=row.exit_type,
            entry_time=entry_time or 0,
            exit_time=row.exit_time or 0,
            pair=row.pair,
            timeframe=row.timeframe,
            profit_loss=row.profit_loss or 0.0,
            profit_loss_percent=row.profit_loss_percent or 0.0,
            risk_reward_ratio=row.risk_reward_ratio,
            signal_source=row.signal_source,
        )

    async def get_signal(self, signal_id: uuid.UUID) -> Optional[SignalRecord]:
        try:
            async with self.session_factory() as session:
                row = await session.get(Signal, signal_id)
                return _to_record(row) if row else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read signal {signal_id}: {e}") from e

    def _filtered(self, query, pair: Optional[str], timeframe: Optional[str]):
        if pair:
            query = query.where(Signal.pair == pair)
        if timeframe:
            query = query.where(Signal.timeframe == timeframe)
        return query

    async def query_active_signals(
        self,
        pair: Optional[str] = None,
        timeframe: Optional[str] = None,
    ) -> List[SignalRecord]:
        """Signals still open: waiting for entry or active."""
        query = self._filtered(
            select(Signal).where(Signal.status.in_(OPEN_STATUSES)), pair, timeframe
        ).order_by(Signal.created_at.asc())
        return await self._fetch_records(query)

    async def list_signals(
        self,
        pair: Optional[str] = None,
        timeframe: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 10,
        offset: int = 0,
    ) -> List[SignalRecord]:
        query = self._filtered(select(Signal), pair, timeframe)
        if status and status != "all":
            query = query.where(Signal.status == status)
        query = query.order_by(Signal.created_at.desc()).offset(offset).limit(limit)
        return await self._fetch_records(query)

    async def count_signals(
        self,
        status: Optional[str] = None,
        pair: Optional[str] = None,
        timeframe: Optional[str] = None,
    ) -> int:
        query = self._filtered(select(func.count()).select_from(Signal), pair, timeframe)
        if status and status != "all":
            query = query.where(Signal.status == status)
        try:
            async with self.session_factory() as session:
                result = await session.execute(query)
                return int(result.scalar() or 0)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to count signals: {e}") from e

    async def signal_stats(self) -> Dict[str, Any]:
        try:
            async with self.session_factory() as session:
                by_status = await session.execute(
                    select(Signal.status, func.count()).group_by(Signal.status)
                )
                counts = {status: int(count) for status, count in by_status.all()}
                by_exit = await session.execute(
                    select(Signal.exit_type, func.count())
                    .where(Signal.status == SignalStatus.COMPLETED.value)
                    .group_by(Signal.exit_type)
                )
                exits = {exit_type: int(count) for exit_type, count in by_exit.all()}
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to compute signal stats: {e}") from e

        wins = exits.get(ExitType.TP.value, 0)
        losses = exits.get(ExitType.SL.value, 0)
        decided = wins + losses
        return {
            "total": sum(counts.values()),
            "by_status": {status.value: counts.get(status.value, 0) for status in SignalStatus},
            "tp": wins,
            "sl": losses,
            "manual": exits.get(ExitType.MANUAL.value, 0),
            "win_rate": round(wins / decided * 100, 2) if decided else 0.0,
        }

    async def list_completed(
        self,
        pair: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        query = select(CompletedSignal)
        if pair:
            query = query.where(CompletedSignal.pair == pair)
        query = query.order_by(CompletedSignal.exit_time.desc()).offset(offset).limit(limit)
        try:
            async with self.session_factory() as session:
                result = await session.execute(query)
                return [row.to_dict() for row in result.scalars().all()]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read completed signals: {e}") from e

    async def _fetch_records(self, query) -> List[SignalRecord]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(query)
                return [_to_record(row) for row in result.scalars().all()]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to query signals: {e}") from e

    # OHLC candles

    async def upsert_candles(self, pair: str, timeframe: str, candles: Iterable[Candle]) -> int:
        rows = [
            {"pair": pair, "timeframe": timeframe, **candle.to_dict()}
            for candle in candles
        ]
        if not rows:
            return 0
        try:
            async with self.session_factory() as session:
                dialect = session.bind.dialect.name
                insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
                stmt = insert(OhlcCandle).values(rows)
                stmt = stmt.on_conflict_do_update(
                    index_elements=["pair", "timeframe", "time"],
                    set_={
                        "open": stmt.excluded.open,
                        "high": stmt.excluded.high,
                        "low": stmt.excluded.low,
                        "close": stmt.excluded.close,
                        "volume": stmt.excluded.volume,
                    },
                )
                await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to store candles for {pair} {timeframe}: {e}")
            raise PersistenceError(f"Failed to store candles: {e}") from e
        return len(rows)

    async def query_candle_range(
        self,
        pair: str,
        timeframe: str,
        start: int,
        end: Optional[int] = None,
    ) -> List[Candle]:
        query = select(OhlcCandle).where(
            OhlcCandle.pair == pair,
            OhlcCandle.timeframe == timeframe,
            OhlcCandle.time >= start,
        )
        if end is not None:
            query = query.where(OhlcCandle.time <= end)
        query = query.order_by(OhlcCandle.time.asc())
        try:
            async with self.session_factory() as session:
                result = await session.execute(query)
                return [row.to_candle() for row in result.scalars().all()]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read candles: {e}") from e
