from datetime import datetime
from typing import List, Optional, Literal

from pydantic import BaseModel, ConfigDict

from .db_models import (
    Session, Event, Student, ScanType, WindowState, AttendanceRecord,
    RecentScan, SessionScanStats,
)
from .redis_models import CallerIdentity


class GeoLocation(BaseModel):
    latitude: float
    longitude: float
    accuracy: Optional[float] = None


class ScanMetadata(BaseModel):
    """Kayda iliştirilen ağ/istemci bilgisi."""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    device_info: Optional[str] = None
    client_timestamp: Optional[datetime] = None
    location: Optional[GeoLocation] = None


class ScanContext(BaseModel):
    """
    Her istek için kurulan geçici bağlam. Kalıcı değildir; yalnızca karar
    vermek için kullanılır. `now` karar anının tek kaynağıdır.
    """
    model_config = ConfigDict(frozen=True)

    session: Session
    event: Event
    organizer: CallerIdentity
    now: datetime
    timezone: str = "UTC"
    location: Optional[GeoLocation] = None


RejectionKind = Literal["session_inactive", "event_inactive", "upcoming", "ended", "no_window"]


class ScanDecision(BaseModel):
    is_allowed: bool
    scan_type: Optional[ScanType] = None
    reason: Optional[str] = None
    window_state: Optional[WindowState] = None
    rejection: Optional[RejectionKind] = None


class DuplicateCheckResult(BaseModel):
    is_duplicate: bool
    last_scan_record: Optional[AttendanceRecord] = None
    minutes_since_last_scan: Optional[int] = None


class ScanOutcome(BaseModel):
    """Başarılı bir taramanın sonucu; kayıt yalnızca öğrenci QR'ında oluşur."""
    scan_type: ScanType
    message: str
    timestamp: datetime
    session: Session
    event: Event
    student: Optional[Student] = None
    attendance_record: Optional[AttendanceRecord] = None

    @property
    def created(self) -> bool:
        return self.attendance_record is not None


class ScanStatus(BaseModel):
    session: Session
    event: Event
    window_state: WindowState
    next_opening: Optional[datetime] = None
    minutes_remaining: int = 0
    stats: SessionScanStats
    recent_scans: List[RecentScan]
    generated_at: datetime
