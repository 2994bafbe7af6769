import logging
import time
from datetime import datetime, timezone
from typing import Callable, Optional, Tuple
from uuid import UUID

from ..db.db_client import AsyncPostgresClient
from ..logging.event_log import ScanEventLog
from ..models.db_models import Event, Session, Student, ScanType
from ..models.qr_models import SessionAttendancePayload, StudentAttendancePayload
from ..models.redis_models import CallerIdentity
from ..models.scan_models import ScanContext, ScanMetadata, ScanOutcome, ScanStatus
from ..tools import qr_codec, scan_type_decider, window_resolver
from .attendance_recorder import AttendanceRecorder
from .duplicate_guard import DuplicateGuard
from .errors import (
    ScanError, AuthenticationError, AuthorizationError, ConflictError, DuplicateError,
    FormatError, NotFoundError, UnknownError, WindowRejectedError,
)
from .student_service import StudentService

logger = logging.getLogger(__name__)

SCAN_ROLES = ("organizer", "admin")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def duplicate_message(scan_type: ScanType, minutes: Optional[int]) -> str:
    message = f"Student has already scanned {ScanType(scan_type).value} for this session."
    if minutes is not None:
        message += f" Last scan was {minutes} minutes ago."
    return message


class ScanPipeline:
    """
    Tek bir tarama isteğini baştan sona işleyen orkestratör.

    Adımlar sırayla çalışır ve ilk hatada durur:
    kimlik -> organizatör -> QR çözümleme -> (öğrenci QR'ı ise) öğrenci doğrulama
    -> oturum -> etkinlik aktif mi -> organizatör atanmış mı -> bağlam -> karar
    -> tekrar kontrolü -> kayıt. Son adımdan önce hiçbir yazma yapılmaz ve servis
    içinde yeniden deneme yoktur.
    """
    def __init__(
        self,
        db_client: AsyncPostgresClient,
        student_service: StudentService,
        duplicate_guard: DuplicateGuard,
        recorder: AttendanceRecorder,
        event_log: ScanEventLog = None,
        clock: Callable[[], datetime] = utc_now,
        tz_name: str = "UTC",
        recent_limit: int = 10,
    ):
        self.db_client = db_client
        self.student_service = student_service
        self.duplicate_guard = duplicate_guard
        self.recorder = recorder
        self.event_log = event_log or ScanEventLog()
        self.clock = clock
        self.tz_name = tz_name
        self.recent_limit = recent_limit

    # --- Adımlar ---

    @staticmethod
    def _authenticate(caller: Optional[CallerIdentity]) -> CallerIdentity:
        if caller is None:
            raise AuthenticationError("Authentication is required to scan attendance")
        return caller

    @staticmethod
    def _resolve_organizer(caller: CallerIdentity, organizer_id: str) -> CallerIdentity:
        """Yalnızca çağıran kimliğine bakar; veritabanına gitmez."""
        if not caller.is_active:
            raise AuthorizationError("Organizer account is inactive", code="organizer_inactive")
        if caller.role not in SCAN_ROLES:
            raise AuthorizationError("Only organizers can scan attendance", code="forbidden_role")
        if caller.role != "admin" and caller.user_id != organizer_id:
            raise AuthorizationError("You can only scan as yourself", code="organizer_mismatch")
        return caller

    @staticmethod
    def _parse_session_id(session_id: str) -> UUID:
        try:
            return UUID(str(session_id))
        except ValueError:
            raise NotFoundError("Session not found", code="session_not_found")

    async def _load_session_and_event(self, session_id: UUID) -> Tuple[Session, Event]:
        session = await self.db_client.get_session(session_id)
        if session is None:
            raise NotFoundError("Session not found", code="session_not_found")
        event = await self.db_client.get_event(session.event_id)
        if event is None:
            raise NotFoundError("Event not found", code="event_not_found")
        return session, event

    @staticmethod
    def _check_assignment(event: Event, organizer_id: str):
        if organizer_id not in event.organizer_ids:
            raise AuthorizationError("Organizer is not assigned to this event", code="organizer_not_assigned")

    async def _duplicate_error(self, student: Student, session: Session, scan_type: ScanType, now: datetime) -> DuplicateError:
        # Yarış kaybedildi; yeniden okuma başarısız olsa da yanıt 409 kalır.
        try:
            check = await self.duplicate_guard.check_with_context(student.id, session.id, scan_type, now)
        except ScanError as e:
            logger.warning(f"Tekrar tarama süresi okunamadı: {e.message}")
            return DuplicateError(duplicate_message(scan_type, None), minutes_since_last_scan=None)
        minutes = check.minutes_since_last_scan if check.is_duplicate else None
        return DuplicateError(duplicate_message(scan_type, minutes), minutes_since_last_scan=minutes)

    # --- Ana akış ---

    async def process_scan(
        self,
        caller: Optional[CallerIdentity],
        qr_data: str,
        session_id: str,
        organizer_id: str,
        metadata: Optional[ScanMetadata] = None,
    ) -> ScanOutcome:
        started = time.perf_counter()
        trace = {"actor": caller.user_id if caller else None, "session_id": session_id, "student_id": None, "scan_type": None}

        try:
            outcome = await self._run(caller, qr_data, session_id, organizer_id, metadata or ScanMetadata(), trace)
        except ScanError as e:
            self.event_log.emit(
                event="scan_processed",
                outcome="failure",
                duration_ms=(time.perf_counter() - started) * 1000,
                reason=e.message,
                error_code=e.code,
                **trace,
            )
            raise
        except Exception as e:
            logger.error(f"Tarama işlenirken beklenmeyen hata oluştu (oturum={session_id}).", exc_info=True)
            self.event_log.emit(
                event="scan_processed",
                outcome="failure",
                duration_ms=(time.perf_counter() - started) * 1000,
                reason=repr(e),
                error_code="internal_error",
                **trace,
            )
            raise UnknownError("An unexpected error occurred while processing the scan.") from e

        self.event_log.emit(
            event="scan_processed",
            outcome="success",
            duration_ms=(time.perf_counter() - started) * 1000,
            reason=outcome.message,
            **trace,
        )
        return outcome

    async def _run(self, caller, qr_data, session_id, organizer_id, metadata: ScanMetadata, trace: dict) -> ScanOutcome:
        caller = self._authenticate(caller)
        organizer = self._resolve_organizer(caller, organizer_id)

        decoded = qr_codec.decode(qr_data)
        if not decoded.valid:
            raise FormatError(f"Invalid QR code: {decoded.error}", code="invalid_qr")
        payload = decoded.payload

        session_uuid = self._parse_session_id(session_id)

        student: Optional[Student] = None
        if isinstance(payload, StudentAttendancePayload):
            student = await self.student_service.resolve_student(payload.student_id_number)
            trace["student_id"] = str(student.id)
            if student.id != payload.student_id:
                logger.warning(
                    f"QR öğrenci kimliği ({payload.student_id}) kayıttaki öğrenciyle "
                    f"({student.id}) eşleşmiyor; eski ya da sahte QR olabilir."
                )
                raise FormatError("QR code does not match the student record", code="qr_student_mismatch")

        session, event = await self._load_session_and_event(session_uuid)

        if isinstance(payload, SessionAttendancePayload):
            if payload.session_id != session.id or payload.event_id != session.event_id:
                raise FormatError("QR code does not belong to this session", code="qr_session_mismatch")

        if not event.is_active:
            raise AuthorizationError("Event is not currently active", code="event_inactive")
        self._check_assignment(event, organizer_id)

        now = self.clock()
        context = ScanContext(
            session=session,
            event=event,
            organizer=organizer,
            now=now,
            timezone=self.tz_name,
            location=metadata.location,
        )
        decision = scan_type_decider.decide(context)
        if not decision.is_allowed:
            if decision.rejection in ("session_inactive", "event_inactive"):
                raise AuthorizationError(decision.reason, code=decision.rejection)
            raise WindowRejectedError(decision.reason, reason=decision.rejection)

        scan_type = decision.scan_type
        trace["scan_type"] = scan_type.value

        if student is None:
            # Oturum QR'ı yalnızca doğrulanır; kayıt oluşturulmaz.
            return ScanOutcome(
                scan_type=scan_type,
                message=f"Session QR verified. {session.name} is open for {scan_type.value} scanning.",
                timestamp=now,
                session=session,
                event=event,
            )

        check = await self.duplicate_guard.check_with_context(student.id, session.id, scan_type, now)
        if check.is_duplicate:
            raise DuplicateError(
                duplicate_message(scan_type, check.minutes_since_last_scan),
                minutes_since_last_scan=check.minutes_since_last_scan,
            )

        try:
            record = await self.recorder.record(
                student_id=student.id,
                session_id=session.id,
                event_id=session.event_id,
                scan_type=scan_type,
                organizer_id=organizer_id,
                timestamp=now,
                metadata=metadata,
            )
        except ConflictError as e:
            logger.info(f"Eşzamanlı tekrar tarama yakalandı: öğrenci={student.id}, oturum={session.id}")
            raise await self._duplicate_error(student, session, scan_type, now) from e

        label = "Time-in" if scan_type == ScanType.TIME_IN else "Time-out"
        return ScanOutcome(
            scan_type=scan_type,
            message=f"{label} recorded for {student.full_name}",
            timestamp=now,
            session=session,
            event=event,
            student=student,
            attendance_record=record,
        )

    async def get_scan_status(self, caller: Optional[CallerIdentity], session_id: str, organizer_id: str) -> ScanStatus:
        """Operatör ekranı için salt okunur durum: pencere, sayılar ve son kayıtlar."""
        started = time.perf_counter()
        trace = {"actor": caller.user_id if caller else None, "session_id": session_id}

        try:
            scan_status = await self._load_status(caller, session_id, organizer_id)
        except ScanError as e:
            self.event_log.emit(
                event="scan_status",
                outcome="failure",
                duration_ms=(time.perf_counter() - started) * 1000,
                reason=e.message,
                error_code=e.code,
                **trace,
            )
            raise
        except Exception as e:
            logger.error(f"Oturum durumu alınırken beklenmeyen hata (oturum={session_id}).", exc_info=True)
            self.event_log.emit(
                event="scan_status",
                outcome="failure",
                duration_ms=(time.perf_counter() - started) * 1000,
                reason=repr(e),
                error_code="internal_error",
                **trace,
            )
            raise UnknownError("An unexpected error occurred while loading the scan status.") from e

        self.event_log.emit(
            event="scan_status",
            outcome="success",
            duration_ms=(time.perf_counter() - started) * 1000,
            reason=scan_status.window_state.value,
            **trace,
        )
        return scan_status

    async def _load_status(self, caller: Optional[CallerIdentity], session_id: str, organizer_id: str) -> ScanStatus:
        caller = self._authenticate(caller)
        self._resolve_organizer(caller, organizer_id)
        session, event = await self._load_session_and_event(self._parse_session_id(session_id))
        self._check_assignment(event, organizer_id)

        now = self.clock()
        time_in, time_out = session.time_in_window, session.time_out_window
        stats = await self.db_client.get_session_scan_stats(session.id)
        recent = await self.db_client.get_recent_attendance(session.id, limit=self.recent_limit)

        return ScanStatus(
            session=session,
            event=event,
            window_state=window_resolver.classify(time_in, time_out, now),
            next_opening=window_resolver.next_opening(time_in, time_out, now),
            minutes_remaining=window_resolver.minutes_remaining(window_resolver.active_window(time_in, time_out, now), now),
            stats=stats,
            recent_scans=recent,
            generated_at=now,
        )
