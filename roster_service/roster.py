"""
Roster source adapters.

A roster source hands back the current list of StudentRecord and accepts
single-field write-backs addressed by row. Sheet-backed sources read the
spreadsheet's CSV export; the SQL source reads the ``roster`` table.
"""
import logging
from typing import List, Optional

import requests

from roster_service import database, models
from roster_service.errors import ParseError, SourceUnavailable, WriteBackFailed
from roster_service.models import StudentRecord, StudentStatus

logger = logging.getLogger(__name__)

# positional columns of the roster export
COLUMNS = ["enrollment", "name", "access_code", "status", "seat"]
REQUIRED_FIELDS = 3
DEFAULT_TIMEOUT_SECONDS = 10


def column_letter(field: str) -> str:
    """Spreadsheet column holding ``field`` (enrollment is A, seat is E)."""
    return chr(ord("A") + COLUMNS.index(field))


def _clean_field(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == '"' and value[-1] == '"':
        value = value[1:-1]
    return value


def parse_row(line: str, row: int, delimiter: str = ",") -> StudentRecord:
    """Map one CSV line onto a StudentRecord.

    Delimiters inside quoted fields are not supported: the line is split naively.
    Raises ParseError when the row is too short or has no enrollment.
    """
    fields = [_clean_field(f) for f in line.split(delimiter)]
    if len(fields) < REQUIRED_FIELDS:
        raise ParseError(
            f"Row {row} has {len(fields)} fields, expected at least {REQUIRED_FIELDS}",
            line=row,
        )

    values = dict(zip(COLUMNS, fields))
    if not values["enrollment"]:
        raise ParseError(f"Row {row} has an empty enrollment", line=row)

    return StudentRecord(
        enrollment=values["enrollment"],
        name=values["name"],
        access_code=values["access_code"],
        status=StudentStatus.parse(values.get("status")),
        seat=values.get("seat") or None,
        row=row,
    )


def parse_roster_csv(text: str, delimiter: str = ",") -> List[StudentRecord]:
    """Parse a CSV export. The first line is a header; blank lines are ignored.

    ``row`` on each record is the 1-based spreadsheet row, so blank lines
    in the middle of the sheet keep later rows correctly addressed.
    Malformed rows are logged and skipped rather than failing the whole roster.
    """
    students = []
    lines = text.splitlines()
    for index, line in enumerate(lines[1:], start=2):
        if not line.strip():
            continue
        try:
            students.append(parse_row(line, index, delimiter))
        except ParseError as e:
            logger.warning("Skipping malformed roster row: %s", e.message)
    logger.debug("Parsed %d students from %d lines", len(students), len(lines))
    return students


class RosterSource:
    """Read/write capability over the external roster."""

    def fetch_roster(self) -> List[StudentRecord]:
        raise NotImplementedError

    def write(self, row: int, field: str, value: str) -> None:
        raise NotImplementedError


class CsvExportRosterSource(RosterSource):
    """Read-only roster served as a downloadable CSV export."""

    def __init__(self, export_url: str, timeout: float = DEFAULT_TIMEOUT_SECONDS, delimiter: str = ","):
        self.export_url = export_url
        self.timeout = timeout
        self.delimiter = delimiter

    def read(self) -> str:
        if not self.export_url:
            raise SourceUnavailable("Roster export URL is not configured")

        logger.info("Fetching roster export from %s", self.export_url)
        try:
            response = requests.get(self.export_url, timeout=self.timeout)
        except requests.exceptions.Timeout:
            raise SourceUnavailable(f"Timeout fetching roster (timeout: {self.timeout}s)")
        except requests.exceptions.RequestException as e:
            raise SourceUnavailable(f"Failed to fetch roster: {e}")

        if not response.ok:
            raise SourceUnavailable(f"Failed to fetch sheet data: {response.status_code}")

        logger.debug("Roster export received, length: %d", len(response.text))
        return response.text

    def fetch_roster(self) -> List[StudentRecord]:
        return parse_roster_csv(self.read(), self.delimiter)

    def write(self, row: int, field: str, value: str) -> None:
        raise WriteBackFailed("Roster write-back is not configured")


class GoogleSheetRosterSource(CsvExportRosterSource):
    """CSV export for reads, Sheets values API for write-back."""

    EXPORT_URL = "https://docs.google.com/spreadsheets/d/{spreadsheet_id}/export?format=csv"

    def __init__(self, spreadsheet_id: str, writer=None, export_url: Optional[str] = None,
                 timeout: float = DEFAULT_TIMEOUT_SECONDS):
        super().__init__(export_url or self.EXPORT_URL.format(spreadsheet_id=spreadsheet_id), timeout)
        self.spreadsheet_id = spreadsheet_id
        self.writer = writer

    def write(self, row: int, field: str, value: str) -> None:
        if self.writer is None:
            raise WriteBackFailed("No service account configured for sheet write-back")
        self.writer.update_cell(f"{column_letter(field)}{row}", value)


class SqlRosterSource(RosterSource):
    """Roster kept in the ``roster`` table; ``row`` is the primary key."""

    def __init__(self, database_url: str):
        self.database_url = database_url

    def _session(self):
        try:
            return database.init_db(self.database_url)()
        except Exception as e:
            raise SourceUnavailable(f"Database unreachable: {e}")

    def fetch_roster(self) -> List[StudentRecord]:
        db = self._session()
        try:
            entries = db.query(models.RosterEntry).order_by(models.RosterEntry.id).all()
        except Exception as e:
            raise SourceUnavailable(f"Failed to read roster table: {e}")
        finally:
            db.close()

        return [
            StudentRecord(
                enrollment=e.enrollment,
                name=e.name,
                access_code=e.access_code,
                status=StudentStatus.parse(e.status),
                seat=e.seat or None,
                row=e.id,
            )
            for e in entries
        ]

    def write(self, row: int, field: str, value: str) -> None:
        if field not in ("status", "seat"):
            raise WriteBackFailed(f"Field {field!r} is not writable")

        db = self._session()
        try:
            entry = db.query(models.RosterEntry).filter(models.RosterEntry.id == row).first()
            if not entry:
                raise WriteBackFailed(f"Roster row {row} not found")
            setattr(entry, field, value)
            db.commit()
        except WriteBackFailed:
            raise
        except Exception as e:
            db.rollback()
            raise WriteBackFailed(f"Failed to update roster row {row}: {e}")
        finally:
            db.close()
