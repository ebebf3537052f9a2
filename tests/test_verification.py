import random
import threading
from unittest.mock import patch, MagicMock

import pytest

from roster_service.errors import NotFound
from roster_service.models import StudentStatus
from roster_service.roster import GoogleSheetRosterSource
from roster_service.seating import SeatAllocator
from roster_service.sheets import ServiceAccountTokenProvider, SheetsWriter
from roster_service.verification import VerificationService, find_student, occupied_seats

from conftest import InMemoryRosterSource, make_student


def test_correct_code_verifies_and_persists_status(service, roster_source):
    outcome = service.verify("21CS001", "ABCD")

    assert outcome.verified is True
    assert outcome.status == "verified"
    assert outcome.seat
    assert outcome.message == f"Verification successful! Your seat is {outcome.seat}"
    student = roster_source.get("21CS001")
    assert student.status.is_verified
    assert student.seat == outcome.seat
    assert roster_source.writes == [(2, "status", "paid"), (2, "seat", outcome.seat)]


def test_wrong_code_fails_without_write_back(service, roster_source):
    outcome = service.verify("21CS001", "WRONG")

    assert outcome.verified is False
    assert outcome.status == "failed"
    assert outcome.seat is None
    assert outcome.message == "Invalid unique code"
    assert roster_source.writes == []
    assert roster_source.get("21CS001").status == StudentStatus.PENDING


@pytest.mark.parametrize("code", ["ABCD", "WRONG", ""])
def test_unknown_enrollment_raises_not_found(service, roster_source, code):
    with pytest.raises(NotFound) as exc_info:
        service.verify("NOPE", code)

    assert exc_info.value.enrollment == "NOPE"
    assert roster_source.writes == []


def test_enrollment_match_is_case_sensitive(service):
    with pytest.raises(NotFound):
        service.verify("21cs001", "ABCD")


def test_code_match_is_exact(service):
    assert service.verify("21CS001", "abcd").verified is False
    assert service.verify("21CS001", "ABCD ").verified is False


def test_new_seat_avoids_seats_held_by_others(roster_source):
    # only A2 is free once A1 is held by 21CS002
    allocator = SeatAllocator(["A1", "A2"], max_attempts=1000, rng=random.Random(3))
    service = VerificationService(roster_source, allocator)

    assert service.verify("21CS001", "ABCD").seat == "A2"


def test_second_verification_reuses_first_seat(service, roster_source):
    first = service.verify("21CS001", "ABCD")
    second = service.verify("21CS001", "ABCD")

    assert second.verified is True
    assert second.seat == first.seat
    assert second.message.startswith("Student already verified")
    seat_writes = [w for w in roster_source.writes if w[1] == "seat"]
    assert len(seat_writes) == 1


def test_verified_student_without_seat_gets_one(allocator):
    source = InMemoryRosterSource([make_student(status=StudentStatus.PAID)])
    service = VerificationService(source, allocator)

    outcome = service.verify("21CS001", "ABCD")

    assert outcome.seat
    assert source.get("21CS001").seat == outcome.seat


def test_existing_seat_is_kept_on_first_verification(allocator):
    source = InMemoryRosterSource([make_student(status=StudentStatus.FAILED, seat="B2")])
    service = VerificationService(source, allocator)

    outcome = service.verify("21CS001", "ABCD")

    assert outcome.seat == "B2"
    assert source.writes == [(2, "status", "paid")]


def test_retry_after_failed_attempt_verifies(service, roster_source):
    assert service.verify("21CS003", "nope").verified is False
    assert service.verify("21CS003", "IJKL").verified is True
    assert roster_source.get("21CS003").status == StudentStatus.PAID


def test_write_back_failure_still_verifies(allocator, caplog):
    source = InMemoryRosterSource([make_student()], fail_writes=True)
    service = VerificationService(source, allocator)

    outcome = service.verify("21CS001", "ABCD")

    assert outcome.verified is True
    assert outcome.seat
    assert source.get("21CS001").status == StudentStatus.PENDING
    assert "Error updating roster status for 21CS001" in caplog.text


def test_rejected_status_write_still_persists_new_seat(allocator, caplog):
    source = InMemoryRosterSource([make_student()], fail_fields={"status"})
    service = VerificationService(source, allocator)

    outcome = service.verify("21CS001", "ABCD")

    assert outcome.verified is True
    assert source.writes == [(2, "seat", outcome.seat)]
    assert source.get("21CS001").seat == outcome.seat
    assert "Error updating roster status for 21CS001" in caplog.text


def test_persisted_seat_is_not_handed_out_again_after_status_failure():
    source = InMemoryRosterSource(
        [make_student(), make_student("21CS002", code="EFGH", row=3)],
        fail_fields={"status"},
    )
    service = VerificationService(source, SeatAllocator(["A1", "A2"], max_attempts=1000))

    first = service.verify("21CS001", "ABCD")
    second = service.verify("21CS002", "EFGH")

    assert {first.seat, second.seat} == {"A1", "A2"}


ROSTER_CSV = "Enrollment,Name,Unique Code,Status,Seat\n21CS001,Asha Rao,ABCD,pending,\n"


@pytest.fixture
def sheet_csv():
    response = MagicMock(ok=True, status_code=200, text=ROSTER_CSV)
    with patch("roster_service.roster.requests.get", return_value=response):
        yield


def sheet_service(private_key, allocator):
    credentials = {"client_email": "roster@project.iam.gserviceaccount.com", "private_key": private_key}
    writer = SheetsWriter("sheet-123", ServiceAccountTokenProvider(credentials))
    return VerificationService(GoogleSheetRosterSource("sheet-123", writer), allocator)


def test_unparseable_service_account_key_still_verifies(sheet_csv, allocator, caplog):
    service = sheet_service("not a key", allocator)

    outcome = service.verify("21CS001", "ABCD")

    assert outcome.verified is True
    assert outcome.status == "verified"
    assert outcome.seat
    assert "Could not sign token assertion" in caplog.text


@patch("roster_service.sheets.requests.post")
def test_rejected_token_exchange_still_verifies(mock_post, sheet_csv, allocator, caplog):
    mock_post.return_value.json.return_value = {"error": "invalid_grant"}

    with patch.object(ServiceAccountTokenProvider, "build_assertion", return_value="signed.jwt"):
        outcome = sheet_service("unused", allocator).verify("21CS001", "ABCD")

    assert outcome.verified is True
    assert "Failed to get access token" in caplog.text


@patch("roster_service.sheets.requests.put")
@patch("roster_service.sheets.requests.post")
def test_sheet_status_cell_rejected_but_seat_cell_written(mock_post, mock_put, sheet_csv, allocator):
    mock_post.return_value.json.return_value = {"access_token": "ya29.token", "expires_in": 3600}
    mock_put.side_effect = lambda url, **kwargs: MagicMock(
        ok=not url.endswith("!D2"), status_code=429, text="RESOURCE_EXHAUSTED"
    )

    with patch.object(ServiceAccountTokenProvider, "build_assertion", return_value="signed.jwt"):
        outcome = sheet_service("unused", allocator).verify("21CS001", "ABCD")

    cells = [call.args[0].rsplit("!", 1)[1] for call in mock_put.call_args_list]
    assert cells == ["D2", "E2"]
    assert mock_put.call_args_list[1].kwargs["json"] == {"values": [[outcome.seat]]}


def test_exhausted_seat_space_verifies_without_seat():
    source = InMemoryRosterSource([
        make_student(),
        make_student("21CS002", code="X", status=StudentStatus.PAID, seat="A1", row=3),
    ])
    service = VerificationService(source, SeatAllocator(["A1"]))

    outcome = service.verify("21CS001", "ABCD")

    assert outcome.verified is True
    assert outcome.seat is None
    assert outcome.warning
    assert outcome.message == "Verification successful! Status updated to paid."
    assert source.writes == [(2, "status", "paid")]


def test_first_duplicate_enrollment_wins():
    roster = [make_student(code="ONE", row=2), make_student(code="TWO", row=3)]

    assert find_student(roster, "21CS001").access_code == "ONE"


def test_occupied_seats_excludes_target():
    target = make_student(seat="A3")
    roster = [target, make_student("21CS002", seat="B1", row=3), make_student("21CS003", row=4)]

    assert occupied_seats(roster, exclude=target) == {"B1"}


def test_concurrent_verifications_get_distinct_seats():
    students = [make_student(f"21CS{n:03d}", code="C", row=n + 1) for n in range(1, 11)]
    source = InMemoryRosterSource(students)
    service = VerificationService(source, SeatAllocator([f"S{n}" for n in range(1, 11)], max_attempts=10_000))

    threads = [threading.Thread(target=service.verify, args=(s.enrollment, "C")) for s in students]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    seats = [s.seat for s in source.records]
    assert all(seats)
    assert len(set(seats)) == len(seats)
