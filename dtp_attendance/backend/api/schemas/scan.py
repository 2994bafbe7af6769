# dtp_attendance/backend/api/schemas/scan.py
from datetime import datetime
from typing import List, Optional, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from ...models.db_models import ScanType, WindowState


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# --- İstek Modelleri ---

class LocationIn(CamelModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    accuracy: Optional[float] = Field(None, ge=0)


class ScanMetadataIn(CamelModel):
    device_info: Optional[str] = None
    user_agent: Optional[str] = None
    timestamp: Optional[datetime] = None


class ScanRequest(CamelModel):
    qr_data: str = Field(..., min_length=1, description="Raw text read from the QR code")
    session_id: str = Field(..., min_length=1)
    organizer_id: str = Field(..., min_length=1)
    location: Optional[LocationIn] = None
    metadata: Optional[ScanMetadataIn] = None

    @field_validator("qr_data", "session_id", "organizer_id")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value


# --- Yanıt Modelleri ---

class TimeWindowResponse(CamelModel):
    start: datetime
    end: datetime


class AttendanceRecordResponse(CamelModel):
    id: UUID
    student_id: UUID
    session_id: UUID
    event_id: UUID
    organizer_id: str
    scan_type: ScanType
    timestamp: datetime
    time_in: Optional[datetime] = None
    time_out: Optional[datetime] = None


class StudentResponse(CamelModel):
    id: UUID
    student_id_number: str
    full_name: str
    program_name: Optional[str] = None
    year: int


class SessionResponse(CamelModel):
    id: UUID
    name: str
    event_id: UUID
    event_name: Optional[str] = None
    time_in_window: Optional[TimeWindowResponse] = None
    time_out_window: Optional[TimeWindowResponse] = None


class ScanResult(CamelModel):
    scan_type: ScanType
    attendance_record: Optional[AttendanceRecordResponse] = None
    message: str
    timestamp: datetime


class ScanResponse(CamelModel):
    success: Literal[True] = True
    result: ScanResult
    student: Optional[StudentResponse] = None
    session: SessionResponse


class ErrorResponse(CamelModel):
    """ Failure body shared by every scan endpoint. """
    success: Literal[False] = False
    error: str
    message: str
    reason: Optional[str] = None
    minutes_since_last_scan: Optional[int] = None
    retryable: Optional[bool] = None


class RecentScanResponse(CamelModel):
    record_id: UUID
    student_id_number: str
    student_name: str
    scan_type: ScanType
    timestamp: datetime


class ScanStatsResponse(CamelModel):
    total_scans: int
    time_in_scans: int
    time_out_scans: int
    unique_students: int
    incomplete_attendance: int


class ScanStatusResponse(CamelModel):
    success: Literal[True] = True
    session: SessionResponse
    window_state: WindowState
    next_opening: Optional[datetime] = None
    minutes_remaining: int = 0
    total_scans: int
    stats: ScanStatsResponse
    recent_scans: List[RecentScanResponse]
    generated_at: datetime
