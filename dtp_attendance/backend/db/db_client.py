import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional
from uuid import UUID, uuid4

import asyncpg

from ..models.db_models import (
    Session, Event, Student, AttendanceRecord, TimeWindow, ScanType,
    RecentScan, SessionScanStats,
)
from ..models.scan_models import ScanMetadata
from ..services.errors import ConflictError, TransientError

logger = logging.getLogger(__name__)

ATTENDANCE_UNIQUE_CONSTRAINT = "attendance_student_session_scan_type_key"

_RECORD_COLUMNS = """
    id, student_id, session_id, event_id, scan_type, organizer_id,
    created_at AS timestamp, time_in, time_out, ip_address, user_agent,
    device_info, latitude, longitude, accuracy
"""

# Bağlantı kopması, havuz tükenmesi ve zaman aşımı; hepsi yeniden denenebilir.
_TRANSIENT_ERRORS = (
    asyncio.TimeoutError,
    asyncpg.PostgresConnectionError,
    asyncpg.InterfaceError,
    asyncpg.TooManyConnectionsError,
    OSError,
)


def _window(start: Optional[datetime], end: Optional[datetime]) -> Optional[TimeWindow]:
    # Pencere ya tamamen vardır ya da hiç yoktur.
    if start is None or end is None:
        return None
    return TimeWindow(start=start, end=end)


class AsyncPostgresClient:
    """
    Tarama hattının ihtiyaç duyduğu tüm veritabanı operasyonlarını yöneten PostgreSQL istemcisi.
    Oturum, etkinlik ve öğrenci tablolarını yalnızca okur; sadece attendance tablosuna yazar.
    """
    def __init__(self, pool: asyncpg.Pool, timeout: float = 5.0):
        self._pool = pool
        self._timeout = timeout

    @asynccontextmanager
    async def _connection(self):
        """
        Havuzdan zaman sınırlı bir bağlantı alır ve depo hatalarını servis
        hatalarına çevirir.
        """
        try:
            async with self._pool.acquire(timeout=self._timeout) as connection:
                yield connection
        except asyncpg.UniqueViolationError as e:
            raise ConflictError("Attendance record already exists", constraint=getattr(e, "constraint_name", None) or ATTENDANCE_UNIQUE_CONSTRAINT) from e
        except _TRANSIENT_ERRORS as e:
            logger.error(f"Veritabanına erişilemedi: {e!r}")
            raise TransientError("The attendance store is temporarily unavailable. Please retry.") from e

    async def get_session(self, session_id: UUID) -> Optional[Session]:
        """Oturumu pencereleriyle birlikte getirir."""
        query = """
            SELECT id, event_id, name, is_active,
                   time_in_start, time_in_end, time_out_start, time_out_end
            FROM sessions WHERE id = $1;
        """
        async with self._connection() as connection:
            record = await connection.fetchrow(query, session_id, timeout=self._timeout)
        if not record:
            return None
        return Session(
            id=record["id"],
            event_id=record["event_id"],
            name=record["name"],
            is_active=record["is_active"],
            time_in_window=_window(record["time_in_start"], record["time_in_end"]),
            time_out_window=_window(record["time_out_start"], record["time_out_end"]),
        )

    async def get_event(self, event_id: UUID) -> Optional[Event]:
        """Etkinliği, aktif organizatör atamalarıyla birlikte getirir."""
        query = """
            SELECT e.id, e.name, e.is_active,
                   COALESCE(
                       array_agg(a.organizer_id) FILTER (WHERE a.organizer_id IS NOT NULL),
                       '{}'
                   ) AS organizer_ids
            FROM events e
            LEFT JOIN organizer_event_assignments a
                   ON a.event_id = e.id AND a.is_active = TRUE
            WHERE e.id = $1
            GROUP BY e.id;
        """
        async with self._connection() as connection:
            record = await connection.fetchrow(query, event_id, timeout=self._timeout)
        if not record:
            return None
        return Event(
            id=record["id"],
            name=record["name"],
            is_active=record["is_active"],
            organizer_ids=frozenset(record["organizer_ids"]),
        )

    async def get_student_by_id_number(self, student_id_number: str) -> Optional[Student]:
        """Öğrenciyi kanonik öğrenci numarasıyla, program adıyla birlikte getirir."""
        query = """
            SELECT s.id, s.student_id_number, s.first_name, s.last_name, s.email,
                   s.year, s.program_id, p.display_name AS program_name
            FROM students s
            LEFT JOIN programs p ON p.id = s.program_id
            WHERE s.student_id_number = $1;
        """
        async with self._connection() as connection:
            record = await connection.fetchrow(query, student_id_number, timeout=self._timeout)
            return Student(**record) if record else None

    async def get_latest_attendance(self, student_id: UUID, session_id: UUID, scan_type: ScanType) -> Optional[AttendanceRecord]:
        """(öğrenci, oturum, tür) üçlüsü için en son kaydı getirir."""
        query = f"""
            SELECT {_RECORD_COLUMNS} FROM attendance
            WHERE student_id = $1 AND session_id = $2 AND scan_type = $3
            ORDER BY created_at DESC
            LIMIT 1;
        """
        async with self._connection() as connection:
            record = await connection.fetchrow(query, student_id, session_id, ScanType(scan_type).value, timeout=self._timeout)
            return AttendanceRecord(**record) if record else None

    async def create_attendance(
        self,
        student_id: UUID,
        session_id: UUID,
        event_id: UUID,
        scan_type: ScanType,
        organizer_id: str,
        timestamp: datetime,
        metadata: Optional[ScanMetadata] = None,
    ) -> AttendanceRecord:
        """
        Yeni bir yoklama kaydı ekler. Benzersizlik kısıtı ihlal edilirse
        ConflictError fırlatılır; kayıt üzerine yazılmaz.
        """
        metadata = metadata or ScanMetadata()
        location = metadata.location
        scan_type = ScanType(scan_type)
        query = f"""
            INSERT INTO attendance (
                id, student_id, session_id, event_id, scan_type, organizer_id,
                created_at, time_in, time_out, ip_address, user_agent, device_info,
                latitude, longitude, accuracy
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15)
            RETURNING {_RECORD_COLUMNS};
        """
        async with self._connection() as connection:
            record = await connection.fetchrow(
                query,
                uuid4(), student_id, session_id, event_id, scan_type.value, organizer_id,
                timestamp,
                timestamp if scan_type == ScanType.TIME_IN else None,
                timestamp if scan_type == ScanType.TIME_OUT else None,
                metadata.ip_address, metadata.user_agent, metadata.device_info,
                location.latitude if location else None,
                location.longitude if location else None,
                location.accuracy if location else None,
                timeout=self._timeout,
            )
            return AttendanceRecord(**record)

    async def get_recent_attendance(self, session_id: UUID, limit: int = 10) -> List[RecentScan]:
        """Bir oturumun en son kayıtlarını öğrenci adlarıyla birlikte getirir."""
        query = """
            SELECT a.id AS record_id, s.student_id_number,
                   s.first_name || ' ' || s.last_name AS student_name,
                   a.scan_type, a.created_at AS timestamp
            FROM attendance a
            JOIN students s ON s.id = a.student_id
            WHERE a.session_id = $1
            ORDER BY a.created_at DESC
            LIMIT $2;
        """
        async with self._connection() as connection:
            records = await connection.fetch(query, session_id, limit, timeout=self._timeout)
            return [RecentScan(**record) for record in records]

    async def get_session_scan_stats(self, session_id: UUID) -> SessionScanStats:
        """Bir oturum için tarama sayılarını hesaplar."""
        query = """
            WITH per_student AS (
                SELECT student_id,
                       bool_or(scan_type = 'time_in') AS has_in,
                       bool_or(scan_type = 'time_out') AS has_out
                FROM attendance WHERE session_id = $1
                GROUP BY student_id
            )
            SELECT
                (SELECT count(*) FROM attendance WHERE session_id = $1) AS total_scans,
                (SELECT count(*) FROM attendance WHERE session_id = $1 AND scan_type = 'time_in') AS time_in_scans,
                (SELECT count(*) FROM attendance WHERE session_id = $1 AND scan_type = 'time_out') AS time_out_scans,
                (SELECT count(*) FROM per_student) AS unique_students,
                (SELECT count(*) FROM per_student WHERE has_in AND NOT has_out) AS incomplete_attendance;
        """
        async with self._connection() as connection:
            record = await connection.fetchrow(query, session_id, timeout=self._timeout)
            return SessionScanStats(**record)
