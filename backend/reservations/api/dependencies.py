from fastapi import Request

from reservations.services.reservation_service import ReservationCoordinator


def get_coordinator(request: Request) -> ReservationCoordinator:
    """The coordinator of the backend built at application startup."""
    return request.app.state.backend.coordinator
