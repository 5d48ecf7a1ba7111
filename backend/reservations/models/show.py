"""
Show model: one scheduled screening and its seat ledger.

Key design decisions:
- `seat_holds` is the authoritative ledger for the show: booked seat label ->
  [owning booking id, reservation time]. It is stored on the show row itself
  so one conditional UPDATE covers the whole consistency unit
- `version` column enables optimistic compare-and-swap on that ledger
- Rows are written by catalog management; this service only touches
  `seat_holds` and `version`
"""

from sqlalchemy import JSON, Column, Date, Float, Index, Integer, String, CheckConstraint

from reservations.db.base import Base, TimestampMixin


class Show(Base, TimestampMixin):
    __tablename__ = "shows"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    movie_id = Column(String(64), nullable=False)
    theatre_id = Column(String(64), nullable=False)
    date = Column(Date, nullable=False)
    time = Column(String(16), nullable=False)
    ticket_price = Column(Float, nullable=False)
    total_seats = Column(Integer, nullable=False)
    seat_holds = Column(JSON, nullable=False, default=dict)

    # Optimistic locking version counter
    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        CheckConstraint("total_seats > 0", name="check_total_seats_positive"),
        CheckConstraint("ticket_price >= 0", name="check_ticket_price_non_negative"),
        Index("ix_shows_theatre_date", "theatre_id", "date"),
    )

    def __repr__(self) -> str:
        return f"<Show(id={self.id}, name={self.name}, booked={len(self.seat_holds or {})}/{self.total_seats})>"
