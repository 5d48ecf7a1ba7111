"""
Booking model: the persisted form of a committed BookingRecord.

Rows are inserted once and never updated; cancellation deletes them.
`created_at` is taken from the record rather than a server default so the
stored row and the value returned to the caller are identical.
"""

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String

from reservations.db.base import Base


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True)
    show_id = Column(Integer, ForeignKey("shows.id"), nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    seats = Column(JSON, nullable=False)
    payment_reference = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, user={self.user_id}, show={self.show_id}, seats={self.seats})>"
