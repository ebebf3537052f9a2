import enum
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import Column, Integer, String, DateTime, func
from roster_service.database import Base

logger = logging.getLogger(__name__)


class StudentStatus(str, enum.Enum):
    PENDING = "pending"
    UNPAID = "unpaid"
    FAILED = "failed"
    PAID = "paid"
    VERIFIED = "verified"

    @classmethod
    def parse(cls, value: Optional[str]) -> "StudentStatus":
        """Blank means pending. Unknown values are logged and treated as pending."""
        cleaned = (value or "").strip().lower()
        if not cleaned:
            return cls.PENDING
        try:
            return cls(cleaned)
        except ValueError:
            logger.warning("Unknown roster status %r, treating as pending", value)
            return cls.PENDING

    @property
    def is_verified(self) -> bool:
        # "paid" is what gets persisted, "verified" is what the API reports
        return self in (StudentStatus.PAID, StudentStatus.VERIFIED)


# value written back to the roster on a successful verification
VERIFIED_MARKER = StudentStatus.PAID


@dataclass
class StudentRecord:
    enrollment: str
    name: str
    access_code: str
    status: StudentStatus = StudentStatus.PENDING
    seat: Optional[str] = None
    row: int = 0


@dataclass
class VerificationOutcome:
    verified: bool
    status: str
    message: str
    seat: Optional[str] = None
    warning: Optional[str] = None


class RosterEntry(Base):
    __tablename__ = "roster"
    id = Column(Integer, primary_key=True, index=True)
    enrollment = Column(String(64), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    access_code = Column(String(64), nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    seat = Column(String(16), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
