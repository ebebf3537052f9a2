import logging
import random
from typing import Iterable, List, Optional, Set

from roster_service.errors import AllocationExhausted

logger = logging.getLogger(__name__)

DEFAULT_ROWS = "ABCDEFGHIJ"
DEFAULT_SEATS_PER_ROW = 20
DEFAULT_TOTAL_SEATS = 40
DEFAULT_MAX_ATTEMPTS = 200


def generate_grid_layout(rows: str = DEFAULT_ROWS, seats_per_row: int = DEFAULT_SEATS_PER_ROW) -> List[str]:
    """Seat ids row by row: A1..A20, B1..B20, ..."""
    return [f"{row}{number}" for row in rows for number in range(1, seats_per_row + 1)]


def generate_numeric_layout(total_seats: int = DEFAULT_TOTAL_SEATS) -> List[str]:
    return [str(number) for number in range(1, total_seats + 1)]


def normalize_seat(seat: str) -> str:
    return seat.strip().upper()


class SeatAllocator:
    """Picks a random free seat out of a fixed layout."""

    def __init__(self, layout: Iterable[str], max_attempts: int = DEFAULT_MAX_ATTEMPTS,
                 rng: Optional[random.Random] = None):
        self.layout = list(layout)
        if not self.layout:
            raise ValueError("Seat layout is empty")
        self.max_attempts = max_attempts
        self.rng = rng or random.Random()

    @classmethod
    def from_settings(cls, mode: str = "grid", rows: str = DEFAULT_ROWS,
                      seats_per_row: int = DEFAULT_SEATS_PER_ROW, total_seats: int = DEFAULT_TOTAL_SEATS,
                      max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> "SeatAllocator":
        if mode == "grid":
            layout = generate_grid_layout(rows, seats_per_row)
        elif mode == "numeric":
            layout = generate_numeric_layout(total_seats)
        else:
            raise ValueError(f"Unknown seat layout mode: {mode}")
        return cls(layout, max_attempts=max_attempts)

    @property
    def capacity(self) -> int:
        return len(self.layout)

    def allocate(self, existing_seats: Set[str]) -> str:
        taken = {normalize_seat(s) for s in existing_seats if s}
        if all(normalize_seat(seat) in taken for seat in self.layout):
            raise AllocationExhausted(f"All {self.capacity} seats are taken", attempts=0)

        for attempt in range(1, self.max_attempts + 1):
            seat = self.rng.choice(self.layout)
            if normalize_seat(seat) not in taken:
                logger.debug("Picked seat %s after %d attempt(s)", seat, attempt)
                return seat

        raise AllocationExhausted(
            f"No free seat found after {self.max_attempts} attempts",
            attempts=self.max_attempts,
        )
