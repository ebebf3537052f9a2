from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional
from datetime import datetime

class StudentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    enrollment: str
    name: str
    status: str
    seat: Optional[str] = None

class StudentList(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    students: List[StudentOut]
    last_updated: datetime = Field(alias="lastUpdated")

class VerifyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    enrollment: Optional[str] = None
    unique_code: Optional[str] = Field(default=None, alias="uniqueCode")

class VerifyResponse(BaseModel):
    success: bool = True
    verified: bool
    status: str
    seat: Optional[str] = None
    message: str
    warning: Optional[str] = None

class SeatOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    seat: str
    occupied: bool
    enrollment: Optional[str] = None
    name: Optional[str] = None

class SeatChartOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total: int
    occupied: int
    available: int
    seats: List[SeatOut]
