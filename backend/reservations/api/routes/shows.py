"""
Show endpoints: metadata and live seat map. Shows themselves are managed by
the catalog service.
"""

from fastapi import APIRouter, Depends

from reservations.api.dependencies import get_coordinator
from reservations.core.security import get_current_operator_id
from reservations.schemas.booking import BookingResponse
from reservations.schemas.show import ShowResponse, SeatMapResponse, ReconcileResponse
from reservations.services.reservation_service import ReservationCoordinator

router = APIRouter(prefix="/shows", tags=["Shows"])


@router.get("/{show_id}", response_model=ShowResponse)
async def get_show(
    show_id: int,
    coordinator: ReservationCoordinator = Depends(get_coordinator),
):
    seat_map = await coordinator.seat_map(show_id)
    booked = len(seat_map.booked_seats)
    return ShowResponse(
        **seat_map.show.to_dict(),
        booked_count=booked,
        available_count=seat_map.show.total_seats - booked,
    )


@router.get("/{show_id}/seats", response_model=SeatMapResponse)
async def get_seat_map(
    show_id: int,
    coordinator: ReservationCoordinator = Depends(get_coordinator),
):
    """Live seat map read straight from the ledger (never cached)."""
    seat_map = await coordinator.seat_map(show_id)
    return SeatMapResponse(
        show_id=show_id,
        total_seats=seat_map.show.total_seats,
        booked_seats=sorted(seat_map.booked_seats),
        available_seats=seat_map.available_seats,
    )


@router.get("/{show_id}/bookings", response_model=list[BookingResponse])
async def list_show_bookings(
    show_id: int,
    operator_id: str = Depends(get_current_operator_id),
    coordinator: ReservationCoordinator = Depends(get_coordinator),
):
    """All bookings of a show, including payment references. Operators only."""
    records = await coordinator.show_bookings(show_id)
    return [BookingResponse.model_validate(r) for r in records]


@router.post("/{show_id}/reconcile", response_model=ReconcileResponse)
async def reconcile_show(
    show_id: int,
    operator_id: str = Depends(get_current_operator_id),
    coordinator: ReservationCoordinator = Depends(get_coordinator),
):
    """Rebuild the show's seat ledger from its committed bookings. Operators only."""
    report = await coordinator.reconcile(show_id)
    return ReconcileResponse(
        show_id=report.show_id,
        booked_seats=sorted(report.booked_seats),
        released=sorted(report.released),
        restored=sorted(report.restored),
    )
