"""
In-process implementations of the catalog, ledger and record store.

Used for the `memory` ledger backend (single-process deployments, demos and
tests). State lives on the instances, which the backend factory owns, never
at module level.

Each show gets its own asyncio.Lock, so bookings for one show are serialized
while different shows proceed fully in parallel.
"""

import asyncio
from datetime import datetime, timezone
from typing import AbstractSet, Awaitable, Callable, Dict, FrozenSet, List

from reservations.core.exceptions import BookingNotFound, ShowNotFound, SeatsUnavailable
from reservations.core.logging import get_logger
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


class InMemoryShowCatalog(ShowCatalog):
    def __init__(self):
        self._shows: Dict[int, ShowInfo] = {}

    def add_show(self, show: ShowInfo) -> None:
        self._shows[show.id] = show

    async def get_show(self, show_id: int) -> ShowInfo:
        try:
            return self._shows[show_id]
        except KeyError:
            raise ShowNotFound(show_id) from None


class InMemorySeatLedger(SeatLedger):
    def __init__(self):
        self._holds: Dict[int, Dict[int, SeatHold]] = {}
        self._locks: Dict[int, asyncio.Lock] = {}

    def open_show(self, show_id: int) -> None:
        self._holds.setdefault(show_id, {})
        self._locks.setdefault(show_id, asyncio.Lock())

    def _lock_for(self, show_id: int) -> asyncio.Lock:
        try:
            return self._locks[show_id]
        except KeyError:
            raise ShowNotFound(show_id) from None

    def _holds_of(self, show_id: int) -> Dict[int, SeatHold]:
        try:
            return self._holds[show_id]
        except KeyError:
            raise ShowNotFound(show_id) from None

    async def current_booked_seats(self, show_id: int) -> FrozenSet[int]:
        return frozenset(self._holds_of(show_id))

    async def try_reserve(self, show_id: int, seats: AbstractSet[int]) -> ReservationToken:
        async with self._lock_for(show_id):
            holds = self._holds_of(show_id)
            taken = holds.keys() & seats
            if taken:
                raise SeatsUnavailable(taken)
            token = ReservationToken(show_id=show_id, seats=frozenset(seats))
            hold = SeatHold(token.hold_id, token.reserved_at)
            holds.update((seat, hold) for seat in seats)
        return token

    async def release(self, token: ReservationToken) -> FrozenSet[int]:
        if token.show_id not in self._locks:
            logger.warning("release_unknown_show", show_id=token.show_id)
            return frozenset()

        async with self._locks[token.show_id]:
            holds = self._holds[token.show_id]
            freed = frozenset(
                seat for seat in token.seats if seat in holds and holds[seat].hold_id == token.hold_id
            )
            for seat in freed:
                del holds[seat]
        return freed

    async def reconcile(
        self,
        show_id: int,
        load_committed: Callable[[], Awaitable[CommittedSeats]],
        stale_before: datetime,
    ) -> ReconcileReport:
        async with self._lock_for(show_id):
            holds = self._holds_of(show_id)
            committed = await load_committed()
            repaired, report = repair_holds(show_id, holds, committed, stale_before, datetime.now(timezone.utc))
            holds.clear()
            holds.update(repaired)
        return report


class InMemoryBookingRecordStore(BookingRecordStore):
    def __init__(self):
        self._records: Dict[str, BookingRecord] = {}

    async def create(self, record: BookingRecord) -> BookingRecord:
        if record.id in self._records:
            raise ValueError(f"Booking {record.id} already exists")
        self._records[record.id] = record
        return record

    async def get(self, booking_id: str) -> BookingRecord:
        try:
            return self._records[booking_id]
        except KeyError:
            raise BookingNotFound(booking_id) from None

    async def find_by_show(self, show_id: int) -> List[BookingRecord]:
        return [r for r in self._records.values() if r.show_id == show_id]

    async def find_by_user(self, user_id: str) -> List[BookingRecord]:
        records = [r for r in self._records.values() if r.user_id == user_id]
        return sorted(records, key=lambda r: r.created_at, reverse=True)

    async def delete(self, booking_id: str) -> bool:
        return self._records.pop(booking_id, None) is not None
