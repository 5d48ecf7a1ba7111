"""
Service interfaces for dependency inversion.
Allows swapping storage backends without changing the booking flow.
"""

from .catalog import ShowCatalog, ShowInfo
from .ledger import CommittedSeats, ReconcileReport, ReservationToken, SeatHold, SeatLedger, repair_holds
from .record_store import BookingRecord, BookingRecordStore

__all__ = [
    'ShowCatalog', 'ShowInfo',
    'CommittedSeats', 'ReconcileReport', 'ReservationToken', 'SeatHold', 'SeatLedger', 'repair_holds',
    'BookingRecord', 'BookingRecordStore',
]
