from dataclasses import dataclass, field
from typing import List, Optional

from roster_service.models import StudentRecord, VerificationOutcome
from roster_service.roster import RosterSource
from roster_service.seating import normalize_seat
from roster_service.verification import VerificationService


@dataclass
class SeatInfo:
    seat: str
    occupied: bool = False
    enrollment: Optional[str] = None
    name: Optional[str] = None


@dataclass
class SeatChart:
    total: int
    seats: List[SeatInfo] = field(default_factory=list)

    @property
    def occupied(self) -> int:
        return sum(1 for s in self.seats if s.occupied)

    @property
    def available(self) -> int:
        return self.total - self.occupied


class RosterFacade:
    """The only entry point the HTTP layer talks to."""

    def __init__(self, source: RosterSource, verifier: VerificationService):
        self.source = source
        self.verifier = verifier

    def list_students(self) -> List[StudentRecord]:
        return self.source.fetch_roster()

    def verify_student(self, enrollment: str, code: str) -> VerificationOutcome:
        return self.verifier.verify(enrollment, code)

    def seat_chart(self) -> SeatChart:
        # seats outside the configured layout are ignored
        holders = {normalize_seat(s.seat): s for s in self.list_students() if s.seat}
        layout = self.verifier.allocator.layout
        seats = []
        for seat in layout:
            holder = holders.get(normalize_seat(seat))
            if holder:
                seats.append(SeatInfo(seat, True, holder.enrollment, holder.name))
            else:
                seats.append(SeatInfo(seat))
        return SeatChart(total=len(layout), seats=seats)
