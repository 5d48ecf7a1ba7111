from reservations.schemas.booking import BookingCreate, BookingResponse, BookingCancelResponse
from reservations.schemas.show import ShowResponse, SeatMapResponse, ReconcileResponse

__all__ = [
    "BookingCreate", "BookingResponse", "BookingCancelResponse",
    "ShowResponse", "SeatMapResponse", "ReconcileResponse",
]
