from dataclasses import dataclass


@dataclass(eq=False)
class RosterServiceError(Exception):
    message: str

    def __str__(self):
        return self.message


@dataclass(eq=False)
class SourceUnavailable(RosterServiceError):
    """Roster source could not be read (transport failure, timeout, non-2xx)."""


@dataclass(eq=False)
class ParseError(RosterServiceError):
    line: int = 0


@dataclass(eq=False)
class NotFound(RosterServiceError):
    enrollment: str = ""


@dataclass(eq=False)
class AllocationExhausted(RosterServiceError):
    attempts: int = 0


@dataclass(eq=False)
class WriteBackFailed(RosterServiceError):
    """Status/seat could not be persisted. Never fatal to a verification."""
