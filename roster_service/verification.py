"""
Student verification.

Matches an enrollment + access code against a fresh roster snapshot and, on a
match, marks the student as paid and gives them a seat. The snapshot and the
matched record are passed explicitly between steps; nothing is kept between
calls.
"""
import logging
import threading
from typing import List, Optional, Set

from roster_service.errors import AllocationExhausted, NotFound, WriteBackFailed
from roster_service.models import StudentRecord, VerificationOutcome, VERIFIED_MARKER
from roster_service.roster import RosterSource
from roster_service.seating import SeatAllocator

logger = logging.getLogger(__name__)

INVALID_CODE_MESSAGE = "Invalid unique code"


def find_student(roster: List[StudentRecord], enrollment: str) -> Optional[StudentRecord]:
    # exact, case-sensitive; first match wins on duplicates
    for student in roster:
        if student.enrollment == enrollment:
            return student
    return None


def occupied_seats(roster: List[StudentRecord], exclude: Optional[StudentRecord] = None) -> Set[str]:
    return {s.seat for s in roster if s.seat and s is not exclude}


def success_message(seat: Optional[str]) -> str:
    if seat:
        return f"Verification successful! Your seat is {seat}"
    return "Verification successful! Status updated to paid."


class VerificationService:
    def __init__(self, source: RosterSource, allocator: SeatAllocator, lock: Optional[threading.Lock] = None):
        self.source = source
        self.allocator = allocator
        # one read-check-write at a time, so two verifications can't both see a seat as free
        self.lock = lock or threading.Lock()

    def verify(self, enrollment: str, submitted_code: str) -> VerificationOutcome:
        with self.lock:
            roster = self.source.fetch_roster()
            student = find_student(roster, enrollment)
            if student is None:
                logger.info("Verification attempt for unknown enrollment %s", enrollment)
                raise NotFound("Student not found", enrollment=enrollment)

            if student.access_code != submitted_code:
                logger.info("Invalid code submitted for %s", enrollment)
                return VerificationOutcome(verified=False, status="failed", message=INVALID_CODE_MESSAGE)

            if student.status.is_verified and student.seat:
                logger.info("%s already verified with seat %s", enrollment, student.seat)
                return VerificationOutcome(
                    verified=True,
                    status="verified",
                    seat=student.seat,
                    message=f"Student already verified. Your seat is {student.seat}",
                )

            return self._complete(roster, student)

    def _complete(self, roster: List[StudentRecord], student: StudentRecord) -> VerificationOutcome:
        seat = student.seat
        warning = None
        new_seat = False
        if not seat:
            try:
                seat = self.allocator.allocate(occupied_seats(roster, exclude=student))
                new_seat = True
                logger.info("Allocating seat %s for %s", seat, student.enrollment)
            except AllocationExhausted as e:
                logger.warning("No seat for %s: %s", student.enrollment, e.message)
                warning = "No free seat is available; please see the event staff."

        self._write_back(student, seat if new_seat else None)

        return VerificationOutcome(
            verified=True,
            status="verified",
            seat=seat,
            message=success_message(seat),
            warning=warning,
        )

    def _write_back(self, student: StudentRecord, new_seat: Optional[str]):
        """Persist status and seat. Failures are logged, never raised.

        Each field is written independently: a seat handed to the student must
        reach the roster even when the status update is rejected.
        """
        updates = [("status", VERIFIED_MARKER.value)]
        if new_seat:
            updates.append(("seat", new_seat))

        for field, value in updates:
            try:
                self.source.write(student.row, field, value)
                logger.info("Updated %s to '%s' for %s", field, value, student.enrollment)
            except WriteBackFailed as e:
                logger.error("Error updating roster %s for %s: %s", field, student.enrollment, e.message)
