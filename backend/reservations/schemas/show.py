"""
Pydantic schemas for show and seat-map responses.
"""

import datetime
from pydantic import BaseModel


class ShowResponse(BaseModel):
    id: int
    name: str
    movie_id: str
    theatre_id: str
    date: datetime.date
    time: str
    ticket_price: float
    total_seats: int
    booked_count: int
    available_count: int


class SeatMapResponse(BaseModel):
    show_id: int
    total_seats: int
    booked_seats: list[int]
    available_seats: list[int]


class ReconcileResponse(BaseModel):
    show_id: int
    booked_seats: list[int]
    released: list[int]
    restored: list[int]
