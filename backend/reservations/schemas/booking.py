"""
Pydantic schemas for booking-related request/response validation.

Seat rules that depend on the show (range, availability) are checked by the
reservation coordinator, not here.
"""

from datetime import datetime
from pydantic import BaseModel, Field


class BookingCreate(BaseModel):
    show_id: int
    seats: list[int] = Field(..., min_length=1)
    payment_reference: str = Field(..., min_length=1, max_length=255)


class BookingResponse(BaseModel):
    id: str
    show_id: int
    user_id: str
    seats: list[int]
    payment_reference: str
    created_at: datetime

    model_config = {"from_attributes": True}


class BookingCancelResponse(BaseModel):
    message: str
    booking_id: str
    seats_released: list[int]
