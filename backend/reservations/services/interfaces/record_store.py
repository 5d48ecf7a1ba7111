"""
Booking record store interface: append-only storage of committed bookings.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import List, Tuple


@dataclass(frozen=True)
class BookingRecord:
    id: str
    show_id: int
    user_id: str
    seats: Tuple[int, ...]
    payment_reference: str
    created_at: datetime


class BookingRecordStore(ABC):
    """There is deliberately no update operation: records are immutable."""

    @abstractmethod
    async def create(self, record: BookingRecord) -> BookingRecord:
        pass

    @abstractmethod
    async def get(self, booking_id: str) -> BookingRecord:
        """Return the record or raise BookingNotFound."""
        pass

    @abstractmethod
    async def find_by_show(self, show_id: int) -> List[BookingRecord]:
        pass

    @abstractmethod
    async def find_by_user(self, user_id: str) -> List[BookingRecord]:
        """Records of one user, newest first."""
        pass

    @abstractmethod
    async def delete(self, booking_id: str) -> bool:
        """Remove a record (cancellation and rollback). False if there was none to remove."""
        pass
