from reservations.models.show import Show
from reservations.models.booking import Booking

__all__ = ["Show", "Booking"]
