"""
SQLAlchemy implementations of the catalog, ledger and record store.

CONCURRENCY STRATEGY: Optimistic Compare-and-Swap with Retry
=============================================================

Problem:
  Two users try to book seat 7 of the same show simultaneously.
  Both read seats {3, 4}, both add 7, both write.
  Result: Double booking, and one booking record silently owns nothing.

Solution:
  The seat holds (seat -> owning booking id and reservation time) live on
  the show row next to a `version` column.

  1. Read seat_holds and version
  2. Check the requested seats against the snapshot (conflict -> reject now)
  3. UPDATE shows SET seat_holds = :new, version = version + 1
     WHERE id = :show_id AND version = :read_version
  4. If rows_affected == 0, someone else changed the ledger -> re-read, retry

  Every mutation of the ledger (reserve, release, reconcile) goes through the
  same CAS loop, so no writer can ever overwrite another writer's seats.
  Each attempt is its own short transaction; nothing is held across the
  booking record write.
"""

import asyncio
import random
from datetime import datetime, timezone
from typing import AbstractSet, Awaitable, Callable, Dict, FrozenSet, List, Optional, Tuple, TypeVar

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reservations.core.exceptions import BookingNotFound, LedgerContention, ShowNotFound, SeatsUnavailable
from reservations.core.logging import get_logger
from reservations.core.metrics import ledger_retries
from reservations.models.booking import Booking
from reservations.models.show import Show
from reservations.services.interfaces import (
    BookingRecord,
    BookingRecordStore,
    CommittedSeats,
    ReconcileReport,
    ReservationToken,
    SeatHold,
    SeatLedger,
    ShowCatalog,
    ShowInfo,
    repair_holds,
)

logger = get_logger(__name__)

BASE_BACKOFF_SECONDS = 0.005

T = TypeVar("T")


class SqlShowCatalog(ShowCatalog):
    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]):
        self._sessionmaker = sessionmaker

    async def get_show(self, show_id: int) -> ShowInfo:
        async with self._sessionmaker() as session:
            show = await session.get(Show, show_id)
            if show is None:
                raise ShowNotFound(show_id)
            return ShowInfo(
                id=show.id,
                name=show.name,
                movie_id=show.movie_id,
                theatre_id=show.theatre_id,
                date=show.date,
                time=show.time,
                ticket_price=show.ticket_price,
                total_seats=show.total_seats,
            )


def _load_holds(raw: Optional[dict]) -> Dict[int, SeatHold]:
    """`seat_holds` is stored as {"<seat>": [hold_id, reserved_at ISO-8601]}."""
    return {
        int(seat): SeatHold(hold_id, datetime.fromisoformat(reserved_at))
        for seat, (hold_id, reserved_at) in (raw or {}).items()
    }


def _dump_holds(holds: Dict[int, SeatHold]) -> dict:
    return {
        str(seat): [hold.hold_id, hold.reserved_at.isoformat()]
        for seat, hold in sorted(holds.items())
    }


class SqlSeatLedger(SeatLedger):
    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession], max_retries: int = 5):
        self._sessionmaker = sessionmaker
        self._max_retries = max_retries

    async def current_booked_seats(self, show_id: int) -> FrozenSet[int]:
        async with self._sessionmaker() as session:
            result = await session.execute(select(Show.seat_holds).where(Show.id == show_id))
            row = result.one_or_none()
            if row is None:
                raise ShowNotFound(show_id)
            return frozenset(int(seat) for seat in (row.seat_holds or {}))

    async def _compare_and_swap(
        self,
        show_id: int,
        mutate: Callable[[Dict[int, SeatHold]], Awaitable[Tuple[Dict[int, SeatHold], T]]],
        operation: str,
    ) -> T:
        """
        Apply `mutate` to the holds of a show under optimistic locking and
        return its result. `mutate` may raise to abort without writing anything.
        """
        for attempt in range(1, self._max_retries + 1):
            async with self._sessionmaker() as session:
                result = await session.execute(
                    select(Show.seat_holds, Show.version).where(Show.id == show_id)
                )
                row = result.one_or_none()
                if row is None:
                    raise ShowNotFound(show_id)

                new_holds, outcome = await mutate(_load_holds(row.seat_holds))
                update_result = await session.execute(
                    update(Show)
                    .where(Show.id == show_id, Show.version == row.version)
                    .values(seat_holds=_dump_holds(new_holds), version=Show.version + 1)
                    .execution_options(synchronize_session=False)
                )
                if update_result.rowcount == 1:
                    await session.commit()
                    return outcome
                await session.rollback()

            ledger_retries.inc()
            logger.info(
                "ledger_retry",
                show_id=show_id,
                operation=operation,
                attempt=attempt,
                reason="version_conflict",
            )
            if attempt < self._max_retries:
                await asyncio.sleep(BASE_BACKOFF_SECONDS * (2 ** (attempt - 1)) + random.uniform(0, 0.002))

        raise LedgerContention(show_id, self._max_retries)

    async def try_reserve(self, show_id: int, seats: AbstractSet[int]) -> ReservationToken:
        token = ReservationToken(show_id=show_id, seats=frozenset(seats))

        async def reserve(holds):
            taken = holds.keys() & seats
            if taken:
                raise SeatsUnavailable(taken)
            hold = SeatHold(token.hold_id, token.reserved_at)
            return {**holds, **{seat: hold for seat in seats}}, token

        return await self._compare_and_swap(show_id, reserve, "reserve")

    async def release(self, token: ReservationToken) -> FrozenSet[int]:
        async def release(holds):
            freed = frozenset(
                seat for seat in token.seats if seat in holds and holds[seat].hold_id == token.hold_id
            )
            return {seat: hold for seat, hold in holds.items() if seat not in freed}, freed

        return await self._compare_and_swap(token.show_id, release, "release")

    async def reconcile(
        self,
        show_id: int,
        load_committed: Callable[[], Awaitable[CommittedSeats]],
        stale_before: datetime,
    ) -> ReconcileReport:
        async def repair(holds):
            # Records are re-read on every attempt; a booking that reserves in
            # between bumps the version and forces a retry.
            committed = await load_committed()
            return repair_holds(show_id, holds, committed, stale_before, datetime.now(timezone.utc))

        return await self._compare_and_swap(show_id, repair, "reconcile")


def _to_record(row: Booking) -> BookingRecord:
    created_at = row.created_at
    if created_at.tzinfo is None:
        # SQLite drops the offset; everything is stored in UTC
        created_at = created_at.replace(tzinfo=timezone.utc)
    return BookingRecord(
        id=row.id,
        show_id=row.show_id,
        user_id=row.user_id,
        seats=tuple(row.seats),
        payment_reference=row.payment_reference,
        created_at=created_at,
    )


class SqlBookingRecordStore(BookingRecordStore):
    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]):
        self._sessionmaker = sessionmaker

    async def create(self, record: BookingRecord) -> BookingRecord:
        async with self._sessionmaker() as session:
            session.add(
                Booking(
                    id=record.id,
                    show_id=record.show_id,
                    user_id=record.user_id,
                    seats=list(record.seats),
                    payment_reference=record.payment_reference,
                    created_at=record.created_at,
                )
            )
            await session.commit()
        return record

    async def get(self, booking_id: str) -> BookingRecord:
        async with self._sessionmaker() as session:
            row = await session.get(Booking, booking_id)
            if row is None:
                raise BookingNotFound(booking_id)
            return _to_record(row)

    async def find_by_show(self, show_id: int) -> List[BookingRecord]:
        async with self._sessionmaker() as session:
            result = await session.execute(
                select(Booking).where(Booking.show_id == show_id).order_by(Booking.created_at.asc())
            )
            return [_to_record(row) for row in result.scalars().all()]

    async def find_by_user(self, user_id: str) -> List[BookingRecord]:
        async with self._sessionmaker() as session:
            result = await session.execute(
                select(Booking).where(Booking.user_id == user_id).order_by(Booking.created_at.desc())
            )
            return [_to_record(row) for row in result.scalars().all()]

    async def delete(self, booking_id: str) -> bool:
        async with self._sessionmaker() as session:
            result = await session.execute(delete(Booking).where(Booking.id == booking_id))
            await session.commit()
            return result.rowcount == 1
