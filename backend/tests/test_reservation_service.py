"""
Tests for the reservation coordinator: validation, conflicts, rollback,
cancellation and reconciliation.
"""

import asyncio
import random
from datetime import datetime, timezone

import pytest

from reservations.core.exceptions import (
    BookingNotFound,
    InvalidSelection,
    PersistenceFailed,
    SeatsUnavailable,
    ShowNotFound,
)
from reservations.services.interfaces import ReservationToken
from reservations.services.memory_backend import InMemoryBookingRecordStore, InMemorySeatLedger
from reservations.services.reservation_service import ReservationCoordinator

from tests.conftest import SHOW_ID, add_show, make_show


class FailingRecordStore(InMemoryBookingRecordStore):
    async def create(self, record):
        raise RuntimeError("database connection reset")


class HangingRecordStore(InMemoryBookingRecordStore):
    """Never finishes a write; lets tests observe the reserved state."""

    def __init__(self):
        super().__init__()
        self.write_started = asyncio.Event()

    async def create(self, record):
        self.write_started.set()
        await asyncio.Event().wait()


class UndeletableRecordStore(InMemoryBookingRecordStore):
    async def create(self, record):
        raise RuntimeError("database connection reset")

    async def delete(self, booking_id):
        raise RuntimeError("database connection reset")


class PausingRecordStore(InMemoryBookingRecordStore):
    """Parks the next call of `pause_next` after it has read, until `resume` is set."""

    def __init__(self):
        super().__init__()
        self.pause_next = None
        self.paused = asyncio.Event()
        self.resume = asyncio.Event()

    async def _maybe_pause(self, method: str):
        if self.pause_next == method:
            self.pause_next = None
            self.paused.set()
            await self.resume.wait()

    async def get(self, booking_id):
        record = await super().get(booking_id)
        await self._maybe_pause("get")
        return record

    async def find_by_show(self, show_id):
        records = await super().find_by_show(show_id)
        await self._maybe_pause("find_by_show")
        return records


def with_store(
    coordinator: ReservationCoordinator,
    store,
    timeout: float = 5.0,
    reconcile_grace: float = None,
) -> ReservationCoordinator:
    return ReservationCoordinator(
        catalog=coordinator.catalog,
        ledger=coordinator.ledger,
        store=store,
        reservation_timeout=timeout,
        reconcile_grace=reconcile_grace,
    )


@pytest.mark.asyncio
async def test_book_then_conflict_scenario(coordinator):
    """Seats {3,4} booked; a later {4,5} request is rejected naming seat 4 only."""
    record = await coordinator.book(SHOW_ID, "user-a", [3, 4], "pay1")
    assert record.seats == (3, 4)
    assert record.user_id == "user-a"
    assert record.payment_reference == "pay1"
    assert await coordinator.ledger.current_booked_seats(SHOW_ID) == {3, 4}

    with pytest.raises(SeatsUnavailable) as exc_info:
        await coordinator.book(SHOW_ID, "user-b", [4, 5], "pay2")

    assert exc_info.value.seats == {4}
    assert await coordinator.ledger.current_booked_seats(SHOW_ID) == {3, 4}
    assert len(await coordinator.store.find_by_show(SHOW_ID)) == 1


@pytest.mark.asyncio
async def test_book_out_of_range_seat(coordinator):
    with pytest.raises(InvalidSelection):
        await coordinator.book(SHOW_ID, "user-c", [11], "pay3")
    assert await coordinator.ledger.current_booked_seats(SHOW_ID) == frozenset()


@pytest.mark.asyncio
async def test_book_unknown_show(coordinator):
    with pytest.raises(ShowNotFound):
        await coordinator.book(999, "user-a", [1], "pay")


@pytest.mark.asyncio
async def test_book_requires_payment_reference(coordinator):
    with pytest.raises(InvalidSelection):
        await coordinator.book(SHOW_ID, "user-a", [1], "   ")
    assert await coordinator.ledger.current_booked_seats(SHOW_ID) == frozenset()


@pytest.mark.asyncio
async def test_persistence_failure_rolls_back_reservation(coordinator):
    await coordinator.book(SHOW_ID, "user-a", [1], "pay1")
    failing = with_store(coordinator, FailingRecordStore())

    with pytest.raises(PersistenceFailed) as exc_info:
        await failing.book(SHOW_ID, "user-b", [2, 3], "pay2")

    assert exc_info.value.retryable
    assert isinstance(exc_info.value.__cause__, RuntimeError)
    assert await coordinator.ledger.current_booked_seats(SHOW_ID) == {1}


@pytest.mark.asyncio
async def test_slow_persistence_times_out_and_releases_seats(coordinator):
    slow = with_store(coordinator, HangingRecordStore(), timeout=0.05)

    with pytest.raises(PersistenceFailed):
        await slow.book(SHOW_ID, "user-a", [5, 6], "pay")

    assert await coordinator.ledger.current_booked_seats(SHOW_ID) == frozenset()
    assert await slow.store.find_by_show(SHOW_ID) == []


@pytest.mark.asyncio
async def test_abandoned_request_releases_seats(coordinator):
    store = HangingRecordStore()
    hanging = with_store(coordinator, store)

    task = asyncio.create_task(hanging.book(SHOW_ID, "user-a", [7, 8], "pay"))
    await store.write_started.wait()
    assert await coordinator.ledger.current_booked_seats(SHOW_ID) == {7, 8}

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert await coordinator.ledger.current_booked_seats(SHOW_ID) == frozenset()


@pytest.mark.asyncio
async def test_concurrent_disjoint_bookings_all_succeed(coordinator):
    selections = [[1, 2], [3], [4, 5, 6], [7], [8, 9, 10]]

    records = await asyncio.gather(
        *(coordinator.book(SHOW_ID, f"user-{i}", seats, f"pay-{i}") for i, seats in enumerate(selections))
    )

    assert len(records) == len(selections)
    assert await coordinator.ledger.current_booked_seats(SHOW_ID) == set(range(1, 11))


@pytest.mark.asyncio
async def test_concurrent_overlapping_bookings_one_winner(coordinator):
    results = await asyncio.gather(
        coordinator.book(SHOW_ID, "user-a", [2, 3, 4], "pay-a"),
        coordinator.book(SHOW_ID, "user-b", [4, 5], "pay-b"),
        return_exceptions=True,
    )

    winners = [r for r in results if not isinstance(r, Exception)]
    losers = [r for r in results if isinstance(r, SeatsUnavailable)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert losers[0].seats == {4}
    assert await coordinator.ledger.current_booked_seats(SHOW_ID) == set(winners[0].seats)


@pytest.mark.asyncio
async def test_no_double_booking_under_random_contention(memory_backend):
    coordinator = memory_backend.coordinator
    add_show(memory_backend, make_show(show_id=2, total_seats=20))
    rng = random.Random(42)
    requests = [rng.sample(range(1, 21), rng.randint(1, 3)) for _ in range(40)]

    results = await asyncio.gather(
        *(coordinator.book(2, f"user-{i}", seats, f"pay-{i}") for i, seats in enumerate(requests)),
        return_exceptions=True,
    )

    committed = [r for r in results if not isinstance(r, Exception)]
    assert all(isinstance(r, SeatsUnavailable) for r in results if isinstance(r, Exception))

    seen = set()
    for record in committed:
        assert seen.isdisjoint(record.seats)
        seen.update(record.seats)
    booked = await coordinator.ledger.current_booked_seats(2)
    assert booked == seen
    assert len(booked) <= 20


@pytest.mark.asyncio
async def test_cancel_releases_seats(coordinator):
    record = await coordinator.book(SHOW_ID, "user-a", [1, 2], "pay")

    cancelled = await coordinator.cancel(record.id, "user-a")

    assert cancelled.id == record.id
    assert await coordinator.ledger.current_booked_seats(SHOW_ID) == frozenset()
    with pytest.raises(BookingNotFound):
        await coordinator.store.get(record.id)

    again = await coordinator.book(SHOW_ID, "user-b", [1, 2], "pay-b")
    assert again.seats == (1, 2)


@pytest.mark.asyncio
async def test_cancel_other_users_booking_is_not_found(coordinator):
    record = await coordinator.book(SHOW_ID, "user-a", [1], "pay")

    with pytest.raises(BookingNotFound):
        await coordinator.cancel(record.id, "user-b")
    assert await coordinator.ledger.current_booked_seats(SHOW_ID) == {1}


@pytest.mark.asyncio
async def test_user_bookings_newest_first(coordinator):
    ticks = iter(datetime(2026, 10, 1, 12, minute, tzinfo=timezone.utc) for minute in range(10))
    coordinator = ReservationCoordinator(
        catalog=coordinator.catalog,
        ledger=coordinator.ledger,
        store=coordinator.store,
        clock=lambda: next(ticks),
    )
    first = await coordinator.book(SHOW_ID, "user-a", [1], "pay-1")
    second = await coordinator.book(SHOW_ID, "user-a", [2], "pay-2")
    await coordinator.book(SHOW_ID, "user-b", [3], "pay-3")

    records = await coordinator.user_bookings("user-a")

    assert [r.id for r in records] == [second.id, first.id]


@pytest.mark.asyncio
async def test_seat_map(coordinator):
    await coordinator.book(SHOW_ID, "user-a", [2, 9], "pay")

    seat_map = await coordinator.seat_map(SHOW_ID)

    assert seat_map.booked_seats == {2, 9}
    assert seat_map.available_seats == [1, 3, 4, 5, 6, 7, 8, 10]


@pytest.mark.asyncio
async def test_rollback_keeps_seats_when_record_cannot_be_deleted(coordinator):
    """If the record may still exist, its seats must not be handed to anyone else."""
    stuck = with_store(coordinator, UndeletableRecordStore(), reconcile_grace=0)

    with pytest.raises(PersistenceFailed) as exc_info:
        await stuck.book(SHOW_ID, "user-a", [2, 3], "pay")
    assert "until reconciliation" in exc_info.value.message

    assert await coordinator.ledger.current_booked_seats(SHOW_ID) == {2, 3}
    with pytest.raises(SeatsUnavailable):
        await coordinator.book(SHOW_ID, "user-b", [3], "pay-b")

    # Once the store is reachable again, reconciliation frees them
    repair = with_store(coordinator, InMemoryBookingRecordStore(), reconcile_grace=0)
    report = await repair.reconcile(SHOW_ID)
    assert report.released == {2, 3}
    assert await coordinator.ledger.current_booked_seats(SHOW_ID) == frozenset()


@pytest.mark.asyncio
async def test_concurrent_double_cancel_releases_seats_once(coordinator):
    store = PausingRecordStore()
    service = with_store(coordinator, store)
    record = await service.book(SHOW_ID, "user-a", [3, 4], "pay-a")

    store.pause_next = "get"
    first_cancel = asyncio.create_task(service.cancel(record.id, "user-a"))
    await store.paused.wait()

    await service.cancel(record.id, "user-a")
    rebooked = await service.book(SHOW_ID, "user-b", [3, 4], "pay-b")

    store.resume.set()
    with pytest.raises(BookingNotFound):
        await first_cancel

    assert await service.ledger.current_booked_seats(SHOW_ID) == {3, 4}
    with pytest.raises(SeatsUnavailable):
        await service.book(SHOW_ID, "user-c", [3, 4], "pay-c")
    assert [r.id for r in await service.show_bookings(SHOW_ID)] == [rebooked.id]


@pytest.mark.asyncio
async def test_stale_token_does_not_release_another_bookings_seats(coordinator):
    ledger = coordinator.ledger
    first = await ledger.try_reserve(SHOW_ID, {5})
    assert await ledger.release(first) == {5}
    second = await ledger.try_reserve(SHOW_ID, {5})

    assert await ledger.release(first) == frozenset()
    assert await ledger.current_booked_seats(SHOW_ID) == {5}
    assert await ledger.release(second) == {5}


@pytest.mark.asyncio
async def test_reconcile_releases_orphaned_seats(coordinator):
    await coordinator.book(SHOW_ID, "user-a", [1, 2], "pay")
    # Seats reserved by a process that died before writing its record
    await coordinator.ledger.try_reserve(SHOW_ID, {5, 6})
    repair = with_store(coordinator, coordinator.store, reconcile_grace=0)

    report = await repair.reconcile(SHOW_ID)

    assert report.released == {5, 6}
    assert report.restored == frozenset()
    assert report.booked_seats == {1, 2}
    assert await coordinator.ledger.current_booked_seats(SHOW_ID) == {1, 2}


@pytest.mark.asyncio
async def test_reconcile_keeps_recent_orphans(coordinator):
    await coordinator.ledger.try_reserve(SHOW_ID, {5})

    report = await coordinator.reconcile(SHOW_ID)

    assert report.released == frozenset()
    assert await coordinator.ledger.current_booked_seats(SHOW_ID) == {5}


@pytest.mark.asyncio
async def test_reconcile_restores_committed_seats(coordinator):
    record = await coordinator.book(SHOW_ID, "user-a", [4], "pay")
    # Ledger lost the seat while the record survived
    await coordinator.ledger.release(ReservationToken(show_id=SHOW_ID, seats=frozenset({4}), hold_id=record.id))

    report = await coordinator.reconcile(SHOW_ID)

    assert report.restored == {4}
    assert await coordinator.ledger.current_booked_seats(SHOW_ID) == {4}

    # The restored seat belongs to the booking again, so cancelling frees it
    await coordinator.cancel(record.id, "user-a")
    assert await coordinator.ledger.current_booked_seats(SHOW_ID) == frozenset()


@pytest.mark.asyncio
async def test_reconcile_keeps_bookings_in_flight(coordinator):
    store = HangingRecordStore()
    hanging = with_store(coordinator, store)
    task = asyncio.create_task(hanging.book(SHOW_ID, "user-a", [3], "pay"))
    await store.write_started.wait()

    report = await hanging.reconcile(SHOW_ID)

    assert report.released == frozenset()
    assert await coordinator.ledger.current_booked_seats(SHOW_ID) == {3}

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert await coordinator.ledger.current_booked_seats(SHOW_ID) == frozenset()


@pytest.mark.asyncio
async def test_booking_during_reconcile_is_not_wiped(coordinator):
    store = PausingRecordStore()
    service = with_store(coordinator, store, reconcile_grace=0)

    store.pause_next = "find_by_show"
    reconciling = asyncio.create_task(service.reconcile(SHOW_ID))
    await store.paused.wait()
    booking = asyncio.create_task(service.book(SHOW_ID, "user-a", [5], "pay-a"))
    await asyncio.sleep(0)

    store.resume.set()
    await reconciling
    record = await booking

    assert record.seats == (5,)
    assert await service.ledger.current_booked_seats(SHOW_ID) == {5}
    with pytest.raises(SeatsUnavailable):
        await service.book(SHOW_ID, "user-b", [5], "pay-b")


@pytest.mark.asyncio
async def test_no_double_booking_with_cancels_and_reconciles(memory_backend):
    coordinator = memory_backend.coordinator
    add_show(memory_backend, make_show(show_id=3, total_seats=12))
    rng = random.Random(7)
    requests = [rng.sample(range(1, 13), rng.randint(1, 3)) for _ in range(30)]

    async def customer(i: int, seats: list):
        try:
            record = await coordinator.book(3, f"user-{i}", seats, f"pay-{i}")
        except SeatsUnavailable:
            return
        if i % 3 == 0:
            await asyncio.gather(
                coordinator.cancel(record.id, f"user-{i}"),
                coordinator.cancel(record.id, f"user-{i}"),
                return_exceptions=True,
            )
        if i % 5 == 0:
            await coordinator.reconcile(3)

    await asyncio.gather(*(customer(i, seats) for i, seats in enumerate(requests)))

    seen = set()
    for record in await coordinator.store.find_by_show(3):
        assert seen.isdisjoint(record.seats)
        seen.update(record.seats)
    assert await coordinator.ledger.current_booked_seats(3) == seen


@pytest.mark.asyncio
async def test_release_of_unbooked_seats_is_noop(coordinator):
    await coordinator.book(SHOW_ID, "user-a", [1], "pay")

    released = await coordinator.ledger.release(ReservationToken(show_id=SHOW_ID, seats=frozenset({2, 3})))

    assert released == frozenset()
    assert await coordinator.ledger.current_booked_seats(SHOW_ID) == {1}


@pytest.mark.asyncio
async def test_unknown_show_leaves_no_ledger_state():
    ledger = InMemorySeatLedger()

    async def no_records():
        return {}

    with pytest.raises(ShowNotFound):
        await ledger.try_reserve(404, {1})
    with pytest.raises(ShowNotFound):
        await ledger.reconcile(404, no_records, datetime.now(timezone.utc))
    assert await ledger.release(ReservationToken(show_id=404, seats=frozenset({1}))) == frozenset()

    assert 404 not in ledger._locks
    assert 404 not in ledger._holds
