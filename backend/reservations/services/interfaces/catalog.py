"""
Show catalog interface: read-only show metadata.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date


@dataclass(frozen=True)
class ShowInfo:
    id: int
    name: str
    movie_id: str
    theatre_id: str
    date: date
    time: str
    ticket_price: float
    total_seats: int

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "movie_id": self.movie_id,
            "theatre_id": self.theatre_id,
            "date": self.date.isoformat(),
            "time": self.time,
            "ticket_price": self.ticket_price,
            "total_seats": self.total_seats,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ShowInfo":
        return cls(
            id=int(data["id"]),
            name=data["name"],
            movie_id=data["movie_id"],
            theatre_id=data["theatre_id"],
            date=date.fromisoformat(data["date"]),
            time=data["time"],
            ticket_price=float(data["ticket_price"]),
            total_seats=int(data["total_seats"]),
        )


class ShowCatalog(ABC):
    """Lookup of shows created by catalog management."""

    @abstractmethod
    async def get_show(self, show_id: int) -> ShowInfo:
        """Return the show or raise ShowNotFound."""
        pass
