"""
Maps reservation failures onto HTTP responses.
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from reservations.core.exceptions import BookingError
from reservations.core.logging import get_logger

logger = get_logger(__name__)


async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("booking_error", error_type=type(exc).__name__, detail=exc.message)
    else:
        logger.info("booking_error", error_type=type(exc).__name__, detail=exc.message)

    headers = {"Retry-After": "1"} if exc.status_code == 503 else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BookingError, booking_error_handler)
