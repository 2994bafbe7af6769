# dtp_attendance/backend/models/db_models.py

from enum import Enum
from pydantic import BaseModel, Field, model_validator
from datetime import datetime
from typing import Optional, FrozenSet
from uuid import UUID


class ScanType(str, Enum):
    TIME_IN = "time_in"
    TIME_OUT = "time_out"


class WindowState(str, Enum):
    UPCOMING = "upcoming"
    TIME_IN_ACTIVE = "time_in_active"
    TIME_OUT_ACTIVE = "time_out_active"
    ENDED = "ended"
    NO_WINDOW = "no_window"


class TimeWindow(BaseModel):
    """
    Kapsayıcı [start, end] zaman aralığı. start == end (sıfır genişlik) geçerlidir.
    """
    start: datetime
    end: datetime

    @model_validator(mode="after")
    def _check_order(self):
        if self.start > self.end:
            raise ValueError("Time window start must not be after its end")
        return self

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant <= self.end


class Session(BaseModel):
    """
    Represents a scheduled session of an event, mapping to the 'sessions' table.
    """
    id: UUID = Field(..., description="Unique identifier for the session")
    event_id: UUID = Field(..., description="FK linking to the parent event")
    name: str
    time_in_window: Optional[TimeWindow] = None
    time_out_window: Optional[TimeWindow] = None
    is_active: bool = True


class Event(BaseModel):
    """
    Represents an event, mapping to the 'events' table. organizer_ids holds the
    organizers with an active assignment.
    """
    id: UUID
    name: str
    is_active: bool = True
    organizer_ids: FrozenSet[str] = Field(default_factory=frozenset)


class Student(BaseModel):
    """
    Represents a student, mapping to the 'students' table joined with 'programs'.
    """
    id: UUID
    student_id_number: str = Field(..., description="Canonical identifier, S###-####-###")
    first_name: str
    last_name: str
    email: str
    year: int
    program_id: Optional[UUID] = None
    program_name: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class AttendanceRecord(BaseModel):
    """
    Represents a single scan, mapping to the 'attendance' table.
    (student_id, session_id, scan_type) is unique.
    """
    id: UUID
    student_id: UUID
    session_id: UUID
    event_id: UUID
    scan_type: ScanType
    organizer_id: str
    timestamp: datetime = Field(..., description="Creation instant of the record")
    time_in: Optional[datetime] = None
    time_out: Optional[datetime] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    device_info: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    accuracy: Optional[float] = None


class RecentScan(BaseModel):
    """Durum ekranı için öğrenci adıyla birleştirilmiş kısa kayıt."""
    record_id: UUID
    student_id_number: str
    student_name: str
    scan_type: ScanType
    timestamp: datetime


class SessionScanStats(BaseModel):
    total_scans: int = 0
    time_in_scans: int = 0
    time_out_scans: int = 0
    unique_students: int = 0
    # time_in kaydı olup time_out kaydı olmayan öğrenciler
    incomplete_attendance: int = 0
