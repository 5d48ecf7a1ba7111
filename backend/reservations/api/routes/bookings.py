"""
Booking endpoints: the HTTP face of the reservation coordinator.
"""

from fastapi import APIRouter, Depends, status

from reservations.api.dependencies import get_coordinator
from reservations.core.security import get_current_user_id
from reservations.schemas.booking import BookingCreate, BookingResponse, BookingCancelResponse
from reservations.services.reservation_service import ReservationCoordinator

router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    user_id: str = Depends(get_current_user_id),
    coordinator: ReservationCoordinator = Depends(get_coordinator),
):
    """
    Book specific seats of a show.

    Payment must already be captured; pass its reference. Either every
    requested seat is booked or none is. A 409 response lists the seats that
    were already taken so the client can drop them and resubmit.
    """
    record = await coordinator.book(
        show_id=booking_data.show_id,
        user_id=user_id,
        seats=booking_data.seats,
        payment_reference=booking_data.payment_reference,
    )
    return BookingResponse.model_validate(record)


@router.get("/", response_model=list[BookingResponse])
async def list_user_bookings(
    user_id: str = Depends(get_current_user_id),
    coordinator: ReservationCoordinator = Depends(get_coordinator),
):
    """All bookings of the authenticated user, newest first."""
    records = await coordinator.user_bookings(user_id)
    return [BookingResponse.model_validate(r) for r in records]


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: str,
    user_id: str = Depends(get_current_user_id),
    coordinator: ReservationCoordinator = Depends(get_coordinator),
):
    record = await coordinator.get_booking(booking_id, user_id)
    return BookingResponse.model_validate(record)


@router.delete("/{booking_id}", response_model=BookingCancelResponse)
async def cancel_booking(
    booking_id: str,
    user_id: str = Depends(get_current_user_id),
    coordinator: ReservationCoordinator = Depends(get_coordinator),
):
    """Cancel a booking and release its seats."""
    record = await coordinator.cancel(booking_id, user_id)
    return BookingCancelResponse(
        message="Booking cancelled successfully",
        booking_id=record.id,
        seats_released=list(record.seats),
    )
