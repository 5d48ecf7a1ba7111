"""
Seat ledger interface.

The ledger is the authoritative booked-seat set of each show and the only
mutual-exclusion boundary in the booking flow. Every booked seat carries a
hold: the booking id that owns it and when it was reserved. Releases only
free seats still owned by the releasing hold.
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import AbstractSet, Awaitable, Callable, Dict, FrozenSet, Mapping, NamedTuple, Tuple


@dataclass(frozen=True)
class ReservationToken:
    """Proof that `seats` were reserved on `show_id`; hand it back to release them."""

    show_id: int
    seats: FrozenSet[int]
    hold_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    reserved_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class SeatHold(NamedTuple):
    hold_id: str
    reserved_at: datetime


@dataclass(frozen=True)
class ReconcileReport:
    show_id: int
    booked_seats: FrozenSet[int]
    released: FrozenSet[int]
    restored: FrozenSet[int]


# Seat label -> id of the committed booking that owns it
CommittedSeats = Mapping[int, str]


def repair_holds(
    show_id: int,
    holds: Mapping[int, SeatHold],
    committed: CommittedSeats,
    stale_before: datetime,
    now: datetime,
) -> Tuple[Dict[int, SeatHold], ReconcileReport]:
    """
    Rebuild a show's holds from its committed bookings.

    Seats without a record are released only once their hold is older than
    `stale_before`; younger holds belong to bookings still being written.
    """
    repaired: Dict[int, SeatHold] = {}
    released = set()
    for seat, hold in holds.items():
        if seat in committed:
            repaired[seat] = SeatHold(committed[seat], hold.reserved_at)
        elif hold.reserved_at > stale_before:
            repaired[seat] = hold
        else:
            released.add(seat)

    restored = set()
    for seat, booking_id in committed.items():
        if seat not in repaired:
            repaired[seat] = SeatHold(booking_id, now)
            restored.add(seat)

    report = ReconcileReport(
        show_id=show_id,
        booked_seats=frozenset(repaired),
        released=frozenset(released),
        restored=frozenset(restored),
    )
    return repaired, report


class SeatLedger(ABC):
    """
    Interface for per-show seat ledgers.

    Implementations:
    - InMemorySeatLedger: per-show asyncio.Lock critical section
    - SqlSeatLedger: optimistic compare-and-swap on the show row version
    """

    @abstractmethod
    async def current_booked_seats(self, show_id: int) -> FrozenSet[int]:
        """
        Snapshot of the booked seats of a show. No side effects.

        Raises:
            ShowNotFound: the show does not exist
        """
        pass

    @abstractmethod
    async def try_reserve(self, show_id: int, seats: AbstractSet[int]) -> ReservationToken:
        """
        Atomically book every seat in `seats`, or none of them.

        Raises:
            SeatsUnavailable: carrying exactly the requested seats already booked
            ShowNotFound: the show does not exist
        """
        pass

    @abstractmethod
    async def release(self, token: ReservationToken) -> FrozenSet[int]:
        """
        Return the token's seats to the pool and report which were freed.
        Seats not booked, or now held by another booking, are left alone.
        """
        pass

    @abstractmethod
    async def reconcile(
        self,
        show_id: int,
        load_committed: Callable[[], Awaitable[CommittedSeats]],
        stale_before: datetime,
    ) -> ReconcileReport:
        """
        Rebuild the holds of a show from its committed bookings (see
        `repair_holds`). `load_committed` runs inside the ledger's exclusion
        so no reservation can slip in between reading records and writing.
        """
        pass
