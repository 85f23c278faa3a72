"""
Signal storage.

Durable persistence and query access for Signal rows. Every mutation goes
through ``create``, ``update_lifecycle`` or ``delete``; the storage engine
serializes writes, so no locking happens here.

Classes:
    LifecyclePatch   fields a status update may change
    SignalFilter     equality filters and pagination for history queries
    SignalStatistics aggregate numbers for a timeframe
    SignalStore      async store over an SQLAlchemy session factory

Functions:
    compute_profit(action, entry, close_price) -> (profit, profit_percent)
"""

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import case, delete, desc, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from signalhub.core.exceptions import SignalNotFoundError, SignalValidationError, StorageError
from signalhub.models.base import new_id, utcnow
from signalhub.models.signal import Direction, Signal, SignalStatus

logger = logging.getLogger(__name__)

HUNDRED = Decimal(100)


class Timeframe(str, enum.Enum):
    TODAY = "today"
    WEEK = "week"
    MONTH = "month"
    ALL = "all"

    @classmethod
    def parse(cls, value: Optional[str]) -> "Timeframe":
        if not value:
            return cls.ALL
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise SignalValidationError(
                f"Timeframe must be one of: {', '.join(t.value for t in cls)}",
                code="invalid_timeframe",
                field="timeframe",
            )

    def cutoff(self, now: datetime) -> Optional[datetime]:
        if self is Timeframe.TODAY:
            return now.replace(hour=0, minute=0, second=0, microsecond=0)
        if self is Timeframe.WEEK:
            return now - timedelta(days=7)
        if self is Timeframe.MONTH:
            return now - timedelta(days=30)
        return None


@dataclass
class LifecyclePatch:
    status: Optional[SignalStatus] = None
    close_price: Optional[Decimal] = None
    closed_at: Optional[datetime] = None
    # Explicit overrides win over the computed values
    profit: Optional[Decimal] = None
    profit_percent: Optional[Decimal] = None

    def has_close_fields(self) -> bool:
        return any(
            value is not None
            for value in (self.close_price, self.closed_at, self.profit, self.profit_percent)
        )


@dataclass
class SignalFilter:
    status: Optional[str] = None
    pair: Optional[str] = None
    action: Optional[str] = None
    limit: int = 50
    offset: int = 0


@dataclass
class SignalStatistics:
    total_signals: int
    active_signals: int
    closed_signals: int
    winning_signals: int
    losing_signals: int
    win_rate: float
    total_profit: float
    total_profit_percent: float
    average_profit: float


def compute_profit(action: str, entry: Decimal, close_price: Decimal) -> tuple[Decimal, Decimal]:
    """
    Realized profit in price units and as a percentage of entry.

    LONG gains when price rises, SHORT when it falls.
    """
    entry = Decimal(entry)
    close_price = Decimal(close_price)
    if action == Direction.SHORT.value:
        profit = entry - close_price
    else:
        profit = close_price - entry
    profit_percent = profit / entry * HUNDRED if entry else Decimal(0)
    return profit, profit_percent


def win_rate(wins: int, losses: int) -> float:
    decided = wins + losses
    if decided == 0:
        return 0.0
    return round(wins / decided * 100, 2)


class SignalStore:
    """
    Async store for Signal rows.

    Supports:
    - create / get_by_id / delete
    - list_active and list_history (most recent first)
    - update_lifecycle with server-side profit computation
    - aggregate_statistics per timeframe
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        default_source: str = "RiskCompass",
    ):
        self.session_factory = session_factory
        self.default_source = default_source

    @staticmethod
    def _newest_first(stmt):
        return stmt.order_by(desc(Signal.created_at), desc(Signal.id))

    async def create(self, signal: Signal) -> Signal:
        """
        Persist a new signal.

        Assigns id, created_at and source when absent; status always starts ACTIVE
        with empty close fields.
        """
        if not signal.id:
            signal.id = new_id()
        if signal.created_at is None:
            signal.created_at = utcnow()
        if not signal.source:
            signal.source = self.default_source
        signal.status = SignalStatus.ACTIVE.value
        signal.close_price = None
        signal.profit = None
        signal.profit_percent = None
        signal.closed_at = None

        try:
            async with self.session_factory() as session:
                session.add(signal)
                await session.commit()
                # Reload so numeric fields carry the column scale, as later reads do
                await session.refresh(signal)
        except SQLAlchemyError as exc:
            logger.exception("Failed to save signal %s %s", signal.action, signal.pair)
            raise StorageError("Failed to save signal") from exc

        logger.info("Signal saved: %s %s (id=%s)", signal.action, signal.pair, signal.id)
        return signal

    async def get_by_id(self, signal_id: str) -> Optional[Signal]:
        try:
            async with self.session_factory() as session:
                return await session.get(Signal, signal_id)
        except SQLAlchemyError as exc:
            logger.exception("Failed to fetch signal %s", signal_id)
            raise StorageError("Failed to fetch signal") from exc

    async def list_active(self) -> Sequence[Signal]:
        """Active signals, most recent first."""
        stmt = self._newest_first(
            select(Signal).where(Signal.status == SignalStatus.ACTIVE.value)
        )
        return await self._fetch_all(stmt, "active signals")

    async def list_history(self, filters: Optional[SignalFilter] = None) -> Sequence[Signal]:
        """Signals matching the optional equality filters, most recent first."""
        filters = filters or SignalFilter()
        stmt = select(Signal)
        if filters.status:
            stmt = stmt.where(Signal.status == filters.status.upper())
        if filters.pair:
            stmt = stmt.where(Signal.pair == filters.pair)
        if filters.action:
            stmt = stmt.where(Signal.action == filters.action.upper())
        stmt = self._newest_first(stmt).limit(filters.limit).offset(filters.offset)
        return await self._fetch_all(stmt, "signal history")

    async def list_pairs(self) -> list[str]:
        """Distinct pairs, for filter dropdowns."""
        stmt = select(Signal.pair).distinct().order_by(Signal.pair)
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                return [row[0] for row in result.all()]
        except SQLAlchemyError as exc:
            logger.exception("Failed to list signal pairs")
            raise StorageError("Failed to list signal pairs") from exc

    async def update_lifecycle(self, signal_id: str, patch: LifecyclePatch) -> Signal:
        """
        Apply a status patch and return the merged record.

        Profit fields are computed from close_price and the stored entry/action
        unless the patch overrides them. Close fields are null exactly when the
        resulting status is ACTIVE: setting ACTIVE clears them, and close values
        on a signal that stays ACTIVE are rejected. Raises SignalNotFoundError
        for unknown ids.
        """
        try:
            async with self.session_factory() as session:
                signal = await session.get(Signal, signal_id)
                if signal is None:
                    raise SignalNotFoundError(signal_id)

                status = patch.status or SignalStatus(signal.status)
                if status.is_terminal:
                    self._apply_close(signal, patch)
                elif patch.has_close_fields():
                    raise SignalValidationError(
                        "Close fields require a closed or cancelled status",
                        code="invalid_request",
                        field="status",
                    )
                else:
                    signal.close_price = None
                    signal.profit = None
                    signal.profit_percent = None
                    signal.closed_at = None
                signal.status = status.value

                await session.commit()
                await session.refresh(signal)
        except SQLAlchemyError as exc:
            logger.exception("Failed to update signal %s", signal_id)
            raise StorageError("Failed to update signal") from exc

        logger.info("Signal updated: %s -> %s", signal_id, signal.status)
        return signal

    @staticmethod
    def _apply_close(signal: Signal, patch: LifecyclePatch) -> None:
        if patch.close_price is not None:
            signal.close_price = patch.close_price
            signal.profit, signal.profit_percent = compute_profit(
                signal.action, signal.entry, patch.close_price
            )

        if patch.profit is not None:
            signal.profit = patch.profit
        if patch.profit_percent is not None:
            signal.profit_percent = patch.profit_percent

        signal.closed_at = patch.closed_at or utcnow()

    async def delete(self, signal_id: str) -> bool:
        """Hard delete. Returns whether a row was removed."""
        try:
            async with self.session_factory() as session:
                result = await session.execute(delete(Signal).where(Signal.id == signal_id))
                await session.commit()
        except SQLAlchemyError as exc:
            logger.exception("Failed to delete signal %s", signal_id)
            raise StorageError("Failed to delete signal") from exc

        removed = result.rowcount > 0
        if removed:
            logger.info("Signal deleted: %s", signal_id)
        return removed

    async def aggregate_statistics(self, timeframe: Timeframe = Timeframe.ALL) -> SignalStatistics:
        """Counts, win rate and profit totals over signals created in the timeframe."""
        wins = func.coalesce(func.sum(case((Signal.status == SignalStatus.CLOSED_WIN.value, 1), else_=0)), 0)
        losses = func.coalesce(func.sum(case((Signal.status == SignalStatus.CLOSED_LOSS.value, 1), else_=0)), 0)
        active = func.coalesce(func.sum(case((Signal.status == SignalStatus.ACTIVE.value, 1), else_=0)), 0)

        stmt = select(
            func.count(Signal.id),
            active,
            wins,
            losses,
            func.sum(Signal.profit),
            func.sum(Signal.profit_percent),
            func.avg(Signal.profit_percent),
        )
        cutoff = timeframe.cutoff(utcnow())
        if cutoff is not None:
            stmt = stmt.where(Signal.created_at >= cutoff)

        try:
            async with self.session_factory() as session:
                row = (await session.execute(stmt)).one()
        except SQLAlchemyError as exc:
            logger.exception("Failed to aggregate signal statistics")
            raise StorageError("Failed to aggregate signal statistics") from exc

        total, active_count, win_count, loss_count, profit_sum, percent_sum, percent_avg = row
        win_count = int(win_count or 0)
        loss_count = int(loss_count or 0)
        return SignalStatistics(
            total_signals=int(total or 0),
            active_signals=int(active_count or 0),
            closed_signals=win_count + loss_count,
            winning_signals=win_count,
            losing_signals=loss_count,
            win_rate=win_rate(win_count, loss_count),
            total_profit=round(float(profit_sum or 0), 2),
            total_profit_percent=round(float(percent_sum or 0), 2),
            average_profit=round(float(percent_avg or 0), 2),
        )

    async def _fetch_all(self, stmt, what: str) -> Sequence[Signal]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                return result.scalars().all()
        except SQLAlchemyError as exc:
            logger.exception("Failed to fetch %s", what)
            raise StorageError(f"Failed to fetch {what}") from exc
