import copy
import random

import pytest
from fastapi.testclient import TestClient

from roster_service.errors import WriteBackFailed
from roster_service.facade import RosterFacade
from roster_service.main import app, get_facade
from roster_service.models import StudentRecord, StudentStatus
from roster_service.roster import RosterSource
from roster_service.seating import SeatAllocator, generate_grid_layout
from roster_service.verification import VerificationService


class InMemoryRosterSource(RosterSource):
    """Roster held in a list; every fetch returns a fresh copy like a re-read would."""

    def __init__(self, records, fail_writes=False, fail_fields=()):
        self.records = records
        self.fail_writes = fail_writes
        self.fail_fields = set(fail_fields)
        self.writes = []
        self.fetch_count = 0

    def fetch_roster(self):
        self.fetch_count += 1
        return copy.deepcopy(self.records)

    def write(self, row, field, value):
        if self.fail_writes or field in self.fail_fields:
            raise WriteBackFailed(f"429 Too Many Requests writing {field}")
        self.writes.append((row, field, value))
        for record in self.records:
            if record.row == row:
                setattr(record, field, StudentStatus.parse(value) if field == "status" else value)

    def get(self, enrollment):
        return next(r for r in self.records if r.enrollment == enrollment)


def make_student(enrollment="21CS001", name="Asha Rao", code="ABCD", status=StudentStatus.PENDING,
                 seat=None, row=2):
    return StudentRecord(enrollment=enrollment, name=name, access_code=code, status=status, seat=seat, row=row)


@pytest.fixture
def roster_source():
    return InMemoryRosterSource([
        make_student(),
        make_student("21CS002", "Ben Okafor", "EFGH", StudentStatus.PAID, "A1", row=3),
        make_student("21CS003", "Chen Li", "IJKL", StudentStatus.UNPAID, row=4),
    ])


@pytest.fixture
def allocator():
    return SeatAllocator(generate_grid_layout("AB", 5), rng=random.Random(42))


@pytest.fixture
def service(roster_source, allocator):
    return VerificationService(roster_source, allocator)


@pytest.fixture
def facade(roster_source, service):
    return RosterFacade(roster_source, service)


@pytest.fixture
def client(facade):
    app.dependency_overrides[get_facade] = lambda: facade
    yield TestClient(app)
    app.dependency_overrides.clear()
