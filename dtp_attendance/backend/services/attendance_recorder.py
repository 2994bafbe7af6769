import logging
import time
from datetime import datetime
from typing import Optional
from uuid import UUID

from ..db.db_client import AsyncPostgresClient
from ..logging.event_log import ScanEventLog
from ..models.db_models import AttendanceRecord, ScanType
from ..models.scan_models import ScanMetadata
from .errors import ConflictError, ScanError

logger = logging.getLogger(__name__)


class AttendanceRecorder:
    """
    Yoklama kaydını oluşturan tek bileşen. Her yazma denemesi için olay loguna
    bir satır düşer (süre, aktör, sonuç).
    """
    def __init__(self, db_client: AsyncPostgresClient, event_log: ScanEventLog = None):
        self.db_client = db_client
        self.event_log = event_log or ScanEventLog()

    async def record(
        self,
        student_id: UUID,
        session_id: UUID,
        event_id: UUID,
        scan_type: ScanType,
        organizer_id: str,
        timestamp: datetime,
        metadata: Optional[ScanMetadata] = None,
    ) -> AttendanceRecord:
        scan_type = ScanType(scan_type)
        started = time.perf_counter()
        log_context = dict(
            event="attendance_write",
            actor=organizer_id,
            session_id=str(session_id),
            student_id=str(student_id),
            scan_type=scan_type.value,
        )

        try:
            record = await self.db_client.create_attendance(
                student_id=student_id,
                session_id=session_id,
                event_id=event_id,
                scan_type=scan_type,
                organizer_id=organizer_id,
                timestamp=timestamp,
                metadata=metadata,
            )
        except ConflictError:
            # Aynı üçlü için eşzamanlı başka bir istek yarışı kazandı.
            self.event_log.emit(
                outcome="conflict",
                duration_ms=(time.perf_counter() - started) * 1000,
                reason="unique constraint rejected concurrent write",
                error_code="duplicate_scan",
                **log_context,
            )
            raise
        except ScanError as e:
            self.event_log.emit(
                outcome="failure",
                duration_ms=(time.perf_counter() - started) * 1000,
                reason=e.message,
                error_code=e.code,
                **log_context,
            )
            raise
        except Exception as e:
            logger.error("Yoklama kaydı yazılırken beklenmeyen hata oluştu.", exc_info=True)
            self.event_log.emit(
                outcome="failure",
                duration_ms=(time.perf_counter() - started) * 1000,
                reason=repr(e),
                error_code="internal_error",
                **log_context,
            )
            raise

        self.event_log.emit(
            outcome="success",
            duration_ms=(time.perf_counter() - started) * 1000,
            record_id=str(record.id),
            **log_context,
        )
        logger.info(f"Yoklama kaydı oluşturuldu: {record.id} ({scan_type.value})")
        return record
