import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status

from ..config.config import settings
from ..models.db_models import AttendanceRecord, Event, Session, Student
from ..models.redis_models import CallerIdentity
from ..models.scan_models import GeoLocation, ScanMetadata
from ..services.scan_pipeline import ScanPipeline
from .auth import get_current_user
from .dependencies import get_scan_pipeline, get_client_ip
from .schemas.scan import (
    ScanRequest, ScanResponse, ScanResult, ScanStatusResponse, ErrorResponse,
    AttendanceRecordResponse, StudentResponse, SessionResponse, TimeWindowResponse,
    RecentScanResponse, ScanStatsResponse,
)
from .utilities.limiter import limiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/scan", tags=["Scanning"])

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


# --- YARDIMCI (HELPER) FONKSİYONLAR ---

def _session_response(session: Session, event: Event) -> SessionResponse:
    def window(w):
        return TimeWindowResponse(start=w.start, end=w.end) if w else None

    return SessionResponse(
        id=session.id,
        name=session.name,
        event_id=session.event_id,
        event_name=event.name,
        time_in_window=window(session.time_in_window),
        time_out_window=window(session.time_out_window),
    )


def _student_response(student: Optional[Student]) -> Optional[StudentResponse]:
    if student is None:
        return None
    return StudentResponse(
        id=student.id,
        student_id_number=student.student_id_number,
        full_name=student.full_name,
        program_name=student.program_name,
        year=student.year,
    )


def _record_response(record: Optional[AttendanceRecord]) -> Optional[AttendanceRecordResponse]:
    if record is None:
        return None
    return AttendanceRecordResponse.model_validate(record.model_dump())


def _build_metadata(scan_request: ScanRequest, request: Request, client_ip: Optional[str]) -> ScanMetadata:
    meta = scan_request.metadata
    location = scan_request.location
    return ScanMetadata(
        ip_address=client_ip,
        user_agent=(meta.user_agent if meta and meta.user_agent else request.headers.get("user-agent")),
        device_info=meta.device_info if meta else None,
        client_timestamp=meta.timestamp if meta else None,
        location=GeoLocation(**location.model_dump()) if location else None,
    )


# === ENDPOINT'LER ===

@router.post(
    "",
    response_model=ScanResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
    responses=_ERROR_RESPONSES,
    summary="Validate a scanned QR code and record attendance",
)
@limiter.limit(settings.SCAN_RATE_LIMIT)
async def process_scan(
    request: Request,
    response: Response,
    scan_request: ScanRequest,
    caller: Optional[CallerIdentity] = Depends(get_current_user),
    pipeline: ScanPipeline = Depends(get_scan_pipeline),
    client_ip: Optional[str] = Depends(get_client_ip),
):
    """
    Öğrenci QR'ı için kayıt oluşturur (201). Oturum QR'ı yalnızca doğrulanır (200).
    Hatalar ScanError handler'ı tarafından {success: false, error, message} olarak döner.
    """
    outcome = await pipeline.process_scan(
        caller=caller,
        qr_data=scan_request.qr_data,
        session_id=scan_request.session_id,
        organizer_id=scan_request.organizer_id,
        metadata=_build_metadata(scan_request, request, client_ip),
    )
    if not outcome.created:
        response.status_code = status.HTTP_200_OK

    return ScanResponse(
        result=ScanResult(
            scan_type=outcome.scan_type,
            attendance_record=_record_response(outcome.attendance_record),
            message=outcome.message,
            timestamp=outcome.timestamp,
        ),
        student=_student_response(outcome.student),
        session=_session_response(outcome.session, outcome.event),
    )


@router.get(
    "/status",
    response_model=ScanStatusResponse,
    responses=_ERROR_RESPONSES,
    summary="Current window state and recent scans of a session",
)
@limiter.limit("60/minute")
async def get_scan_status(
    request: Request,
    session_id: str = Query(..., alias="sessionId", min_length=1),
    organizer_id: str = Query(..., alias="organizerId", min_length=1),
    caller: Optional[CallerIdentity] = Depends(get_current_user),
    pipeline: ScanPipeline = Depends(get_scan_pipeline),
):
    scan_status = await pipeline.get_scan_status(caller=caller, session_id=session_id, organizer_id=organizer_id)
    return ScanStatusResponse(
        session=_session_response(scan_status.session, scan_status.event),
        window_state=scan_status.window_state,
        next_opening=scan_status.next_opening,
        minutes_remaining=scan_status.minutes_remaining,
        total_scans=scan_status.stats.total_scans,
        stats=ScanStatsResponse.model_validate(scan_status.stats.model_dump()),
        recent_scans=[RecentScanResponse.model_validate(scan.model_dump()) for scan in scan_status.recent_scans],
        generated_at=scan_status.generated_at,
    )
