"""
Reservation coordinator: validate, reserve, persist, or roll back.

BOOKING ATTEMPT LIFECYCLE
=========================

  pending --validate--> reserved --persist--> committed
     |                     |
     +--> rejected         +--> rolled_back --> rejected

- pending:     show looked up, selection validated. Nothing written yet.
- reserved:    the seat ledger holds the seats. Nothing else does.
- committed:   the booking record is stored. Terminal.
- rolled_back: the record could not be stored (error, timeout or caller gone);
               seats are released before the failure is reported.

The ledger's try_reserve is the only critical section. The booking id is the
id of the ledger hold, so a release can only free seats that booking still
owns. Record persistence runs outside the critical section and is bounded by
`reservation_timeout`, so a seat can never stay reserved without a record for
longer than that bound on any path this process survives. A crash inside the
window is repaired by `reconcile`.

Payment is captured by the caller before `book` runs; the coordinator only
stores the reference it is given.
"""

import asyncio
import time
import uuid
from collections import Counter as Multiset
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, FrozenSet, Iterable, List, Optional

import structlog

from reservations.core.exceptions import (
    BookingError,
    BookingNotFound,
    InvalidSelection,
    NotFound,
    PersistenceFailed,
    SeatsUnavailable,
)
from reservations.core.logging import get_logger
from reservations.core.metrics import (
    booking_cancellations,
    booking_latency,
    record_booking_attempt,
    record_rollback,
)
from reservations.services.interfaces import (
    BookingRecord,
    BookingRecordStore,
    CommittedSeats,
    ReconcileReport,
    ReservationToken,
    SeatLedger,
    ShowCatalog,
    ShowInfo,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class SeatSelection:
    seats: FrozenSet[int]

    @classmethod
    def parse(cls, seats: Iterable, total_seats: int, max_seats: int) -> "SeatSelection":
        requested = list(seats)
        if not requested:
            raise InvalidSelection("Select at least one seat")
        if len(requested) > max_seats:
            raise InvalidSelection(f"At most {max_seats} seats can be booked at once")

        # bool is an int subclass; True is not seat 1
        not_labels = [s for s in requested if isinstance(s, bool) or not isinstance(s, int)]
        if not_labels:
            raise InvalidSelection(f"Seat labels must be integers: {not_labels!r}")

        duplicates = sorted(s for s, n in Multiset(requested).items() if n > 1)
        if duplicates:
            raise InvalidSelection(f"Seats selected more than once: {duplicates}")

        out_of_range = sorted(s for s in requested if not 1 <= s <= total_seats)
        if out_of_range:
            raise InvalidSelection(f"Seats out of range 1-{total_seats}: {out_of_range}")

        return cls(seats=frozenset(requested))


@dataclass(frozen=True)
class SeatMap:
    show: ShowInfo
    booked_seats: FrozenSet[int]

    @property
    def available_seats(self) -> List[int]:
        return [s for s in range(1, self.show.total_seats + 1) if s not in self.booked_seats]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _seat_outcome(released: bool) -> str:
    return "seats were released" if released else "seats stay held until reconciliation"


class ReservationCoordinator:
    def __init__(
        self,
        catalog: ShowCatalog,
        ledger: SeatLedger,
        store: BookingRecordStore,
        reservation_timeout: float = 5.0,
        max_seats_per_booking: int = 10,
        reconcile_grace: Optional[float] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.catalog = catalog
        self.ledger = ledger
        self.store = store
        self.reservation_timeout = reservation_timeout
        self.max_seats_per_booking = max_seats_per_booking
        # Holds younger than this may still be getting their record written
        self.reconcile_grace = 2 * reservation_timeout if reconcile_grace is None else reconcile_grace
        self._clock = clock

    async def book(
        self,
        show_id: int,
        user_id: str,
        seats: Iterable[int],
        payment_reference: str,
    ) -> BookingRecord:
        """
        Book `seats` on a show for a user who has already paid.

        Raises:
            InvalidSelection, ShowNotFound, SeatsUnavailable, PersistenceFailed
        """
        attempt_id = uuid.uuid4().hex[:8]
        log = logger.bind(attempt_id=attempt_id, show_id=show_id, user_id=user_id)
        start = time.perf_counter()
        try:
            record = await self._book(show_id, user_id, seats, payment_reference, log)
        except InvalidSelection as e:
            record_booking_attempt("invalid")
            log.info("booking_rejected", reason="invalid_selection", detail=e.message)
            raise
        except NotFound:
            record_booking_attempt("not_found")
            log.info("booking_rejected", reason="show_not_found")
            raise
        except SeatsUnavailable as e:
            record_booking_attempt("conflict")
            log.info("booking_rejected", reason="seats_unavailable", seats=sorted(e.seats))
            raise
        except PersistenceFailed as e:
            record_booking_attempt("persistence_failed")
            log.warning("booking_rejected", reason="persistence_failed", detail=e.message)
            raise
        finally:
            booking_latency.observe(time.perf_counter() - start)

        record_booking_attempt("committed")
        return record

    async def _book(
        self,
        show_id: int,
        user_id: str,
        seats: Iterable[int],
        payment_reference: str,
        log: structlog.stdlib.BoundLogger,
    ) -> BookingRecord:
        show = await self.catalog.get_show(show_id)
        selection = SeatSelection.parse(seats, show.total_seats, self.max_seats_per_booking)
        if not payment_reference or not payment_reference.strip():
            raise InvalidSelection("A payment reference is required")

        token = await self.ledger.try_reserve(show_id, selection.seats)
        log.debug("booking_reserved", seats=sorted(token.seats))

        record = BookingRecord(
            id=token.hold_id,
            show_id=show_id,
            user_id=user_id,
            seats=tuple(sorted(selection.seats)),
            payment_reference=payment_reference.strip(),
            created_at=self._clock(),
        )

        try:
            stored = await asyncio.wait_for(self.store.create(record), timeout=self.reservation_timeout)
        except asyncio.CancelledError:
            await self._roll_back(token, record, "cancelled", log)
            raise
        except asyncio.TimeoutError as e:
            released = await self._roll_back(token, record, "timeout", log)
            raise PersistenceFailed(
                f"Booking was not persisted within {self.reservation_timeout}s; {_seat_outcome(released)}"
            ) from e
        except Exception as e:
            released = await self._roll_back(token, record, "error", log, error=e)
            raise PersistenceFailed(f"Booking could not be saved; {_seat_outcome(released)}") from e

        log.info("booking_committed", booking_id=stored.id, seats=list(stored.seats))
        return stored

    async def _roll_back(
        self,
        token: ReservationToken,
        record: BookingRecord,
        reason: str,
        log: structlog.stdlib.BoundLogger,
        error: Exception = None,
    ) -> bool:
        record_rollback(reason)
        log.warning(
            "reservation_rolling_back",
            reason=reason,
            booking_id=record.id,
            error=str(error) if error else None,
        )
        # Shielded so a second cancellation cannot interrupt the release
        return await asyncio.shield(self._compensate(token, record, log))

    async def _compensate(
        self,
        token: ReservationToken,
        record: BookingRecord,
        log: structlog.stdlib.BoundLogger,
    ) -> bool:
        """Undo a reservation. True once its seats are back in the pool."""
        # A timed-out write may still have landed. The record goes first: seats
        # freed while a record still claims them could be sold twice.
        try:
            await self.store.delete(record.id)
        except Exception as e:
            log.error(
                "rollback_failed",
                step="delete_record",
                booking_id=record.id,
                error=str(e),
                requires_reconciliation=True,
            )
            return False

        try:
            await self.ledger.release(token)
        except Exception as e:
            log.error(
                "rollback_failed",
                step="release_seats",
                seats=sorted(token.seats),
                error=str(e),
                requires_reconciliation=True,
            )
            return False

        log.info("reservation_rolled_back", booking_id=record.id, seats=sorted(token.seats))
        return True

    async def cancel(self, booking_id: str, user_id: str) -> BookingRecord:
        """
        Cancel a booking and release its seats.
        Bookings of other users are reported as not found.
        """
        record = await self.store.get(booking_id)
        if record.user_id != user_id:
            raise BookingNotFound(booking_id)

        # Only the caller that removed the record may release its seats
        if not await self.store.delete(booking_id):
            raise BookingNotFound(booking_id)

        token = ReservationToken(show_id=record.show_id, seats=frozenset(record.seats), hold_id=record.id)
        try:
            released = await self.ledger.release(token)
        except BookingError:
            raise
        except Exception as e:
            logger.error(
                "cancellation_release_failed",
                booking_id=booking_id,
                show_id=record.show_id,
                error=str(e),
                requires_reconciliation=True,
            )
            raise PersistenceFailed("Booking cancelled but seats could not be released yet") from e

        if released != token.seats:
            logger.warning(
                "cancellation_released_partially",
                booking_id=booking_id,
                show_id=record.show_id,
                not_held=sorted(token.seats - released),
            )

        booking_cancellations.inc()
        logger.info(
            "booking_cancelled",
            booking_id=booking_id,
            user_id=user_id,
            show_id=record.show_id,
            seats_released=list(record.seats),
        )
        return record

    async def get_booking(self, booking_id: str, user_id: str) -> BookingRecord:
        record = await self.store.get(booking_id)
        if record.user_id != user_id:
            raise BookingNotFound(booking_id)
        return record

    async def user_bookings(self, user_id: str) -> List[BookingRecord]:
        return await self.store.find_by_user(user_id)

    async def show_bookings(self, show_id: int) -> List[BookingRecord]:
        await self.catalog.get_show(show_id)
        return await self.store.find_by_show(show_id)

    async def seat_map(self, show_id: int) -> SeatMap:
        show = await self.catalog.get_show(show_id)
        booked = await self.ledger.current_booked_seats(show_id)
        return SeatMap(show=show, booked_seats=booked)

    async def reconcile(self, show_id: int) -> ReconcileReport:
        """
        Rebuild a show's ledger from its committed records.

        Repairs seats left reserved by a process that died between reserve and
        commit. Records are read inside the ledger's exclusion, and holds
        younger than `reconcile_grace` are kept, so bookings still in flight in
        any process survive.
        """
        await self.catalog.get_show(show_id)
        stale_before = self._clock() - timedelta(seconds=self.reconcile_grace)

        async def load_committed() -> CommittedSeats:
            records = await self.store.find_by_show(show_id)
            return {seat: record.id for record in records for seat in record.seats}

        report = await self.ledger.reconcile(show_id, load_committed, stale_before)
        logger.info(
            "ledger_reconciled",
            show_id=show_id,
            released=sorted(report.released),
            restored=sorted(report.restored),
        )
        return report
