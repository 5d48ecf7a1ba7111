"""
Typed failures of the reservation core.

Every outcome a caller can see besides a committed booking is one of these.
The API layer maps them onto HTTP responses in one place
(see reservations.api.errors) so services never build HTTP errors.
"""

from typing import Iterable


class BookingError(Exception):
    status_code: int = 400
    retryable: bool = False

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"detail": self.message, "retryable": self.retryable}


class InvalidSelection(BookingError):
    """Caller error: empty, duplicated or out-of-range seats, or no payment reference."""

    status_code = 400


class SeatsUnavailable(BookingError):
    """Some requested seats are already booked. Retry without them."""

    status_code = 409
    retryable = True

    def __init__(self, seats: Iterable[int]):
        self.seats = frozenset(seats)
        super().__init__(f"Seats already booked: {sorted(self.seats)}")

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["unavailable_seats"] = sorted(self.seats)
        return data


class NotFound(BookingError):
    status_code = 404


class ShowNotFound(NotFound):
    def __init__(self, show_id: int):
        self.show_id = show_id
        super().__init__(f"Show {show_id} not found")


class BookingNotFound(NotFound):
    def __init__(self, booking_id: str):
        self.booking_id = booking_id
        super().__init__(f"Booking {booking_id} not found")


class PersistenceFailed(BookingError):
    """Transient storage fault. The reservation was rolled back; safe to retry."""

    status_code = 503
    retryable = True


class LedgerContention(PersistenceFailed):
    def __init__(self, show_id: int, attempts: int):
        self.show_id = show_id
        self.attempts = attempts
        super().__init__(
            f"Seat ledger for show {show_id} is under heavy contention "
            f"({attempts} attempts). Please try again."
        )
