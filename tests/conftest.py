# tests/conftest.py
import asyncio
import os
import sys
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

import pytest

# Ayarlar import sırasında okunur; paket import edilmeden önce test ortamını kur.
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ALGORITHM", "HS256")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("STUDENT_CACHE_BACKEND", "none")

from dtp_attendance.backend.models.db_models import (  # noqa: E402
    AttendanceRecord, Event, Session, Student, TimeWindow, ScanType, RecentScan, SessionScanStats,
)
from dtp_attendance.backend.models.redis_models import CallerIdentity  # noqa: E402
from dtp_attendance.backend.services.errors import ConflictError  # noqa: E402

# This is the crucial fix for Windows asyncio issues with pytest.
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


def at(hour: int, minute: int, second: int = 0) -> datetime:
    """Testlerde kullanılan sabit günün belirli bir anı (UTC)."""
    return datetime(2025, 3, 10, hour, minute, second, tzinfo=timezone.utc)


class FakeAttendanceStore:
    """
    AsyncPostgresClient'ın bellek içi karşılığı. (öğrenci, oturum, tür) için
    benzersizlik kısıtını veritabanı gibi uygular; her çağrıda olay döngüsüne
    söz vererek eşzamanlı isteklerin araya girmesine izin verir.
    """
    def __init__(self):
        self.sessions: Dict[uuid.UUID, Session] = {}
        self.events: Dict[uuid.UUID, Event] = {}
        self.students: Dict[str, Student] = {}
        self.records: List[AttendanceRecord] = []
        self.calls: List[str] = []

    def add_session(self, session: Session):
        self.sessions[session.id] = session

    def add_event(self, event: Event):
        self.events[event.id] = event

    def add_student(self, student: Student):
        self.students[student.student_id_number] = student

    async def get_session(self, session_id):
        self.calls.append("get_session")
        await asyncio.sleep(0)
        return self.sessions.get(session_id)

    async def get_event(self, event_id):
        self.calls.append("get_event")
        await asyncio.sleep(0)
        return self.events.get(event_id)

    async def get_student_by_id_number(self, student_id_number):
        self.calls.append("get_student_by_id_number")
        await asyncio.sleep(0)
        return self.students.get(student_id_number)

    async def get_latest_attendance(self, student_id, session_id, scan_type) -> Optional[AttendanceRecord]:
        self.calls.append("get_latest_attendance")
        await asyncio.sleep(0)
        matches = [
            r for r in self.records
            if r.student_id == student_id and r.session_id == session_id and r.scan_type == ScanType(scan_type)
        ]
        return max(matches, key=lambda r: r.timestamp) if matches else None

    async def create_attendance(self, student_id, session_id, event_id, scan_type, organizer_id, timestamp, metadata=None):
        self.calls.append("create_attendance")
        await asyncio.sleep(0)
        scan_type = ScanType(scan_type)
        for r in self.records:
            if (r.student_id, r.session_id, r.scan_type) == (student_id, session_id, scan_type):
                raise ConflictError("Attendance record already exists", constraint="attendance_student_session_scan_type_key")
        location = metadata.location if metadata else None
        record = AttendanceRecord(
            id=uuid.uuid4(),
            student_id=student_id,
            session_id=session_id,
            event_id=event_id,
            scan_type=scan_type,
            organizer_id=organizer_id,
            timestamp=timestamp,
            time_in=timestamp if scan_type == ScanType.TIME_IN else None,
            time_out=timestamp if scan_type == ScanType.TIME_OUT else None,
            ip_address=metadata.ip_address if metadata else None,
            user_agent=metadata.user_agent if metadata else None,
            device_info=metadata.device_info if metadata else None,
            latitude=location.latitude if location else None,
            longitude=location.longitude if location else None,
            accuracy=location.accuracy if location else None,
        )
        self.records.append(record)
        return record

    async def get_recent_attendance(self, session_id, limit=10) -> List[RecentScan]:
        self.calls.append("get_recent_attendance")
        by_id = {s.id: s for s in self.students.values()}
        rows = sorted((r for r in self.records if r.session_id == session_id), key=lambda r: r.timestamp, reverse=True)
        return [
            RecentScan(
                record_id=r.id,
                student_id_number=by_id[r.student_id].student_id_number,
                student_name=by_id[r.student_id].full_name,
                scan_type=r.scan_type,
                timestamp=r.timestamp,
            )
            for r in rows[:limit]
        ]

    async def get_session_scan_stats(self, session_id) -> SessionScanStats:
        self.calls.append("get_session_scan_stats")
        rows = [r for r in self.records if r.session_id == session_id]
        ins = {r.student_id for r in rows if r.scan_type == ScanType.TIME_IN}
        outs = {r.student_id for r in rows if r.scan_type == ScanType.TIME_OUT}
        return SessionScanStats(
            total_scans=len(rows),
            time_in_scans=sum(1 for r in rows if r.scan_type == ScanType.TIME_IN),
            time_out_scans=sum(1 for r in rows if r.scan_type == ScanType.TIME_OUT),
            unique_students=len(ins | outs),
            incomplete_attendance=len(ins - outs),
        )


# --- Ortak Fikstürler ---

@pytest.fixture
def organizer() -> CallerIdentity:
    return CallerIdentity(user_id="org-001", full_name="Maria Santos", email="maria@example.edu", role="organizer")


@pytest.fixture
def event(organizer) -> Event:
    return Event(id=uuid.uuid4(), name="DTP Orientation", is_active=True, organizer_ids=frozenset({organizer.user_id}))


@pytest.fixture
def session(event) -> Session:
    """Yalnızca time-in penceresi olan oturum: [09:00, 09:15]."""
    return Session(
        id=uuid.uuid4(),
        event_id=event.id,
        name="Morning Session",
        time_in_window=TimeWindow(start=at(9, 0), end=at(9, 15)),
        is_active=True,
    )


@pytest.fixture
def student() -> Student:
    return Student(
        id=uuid.uuid4(),
        student_id_number="S123-4567-890",
        first_name="Juan",
        last_name="Dela Cruz",
        email="juan.delacruz@example.edu",
        year=2,
        program_id=uuid.uuid4(),
        program_name="BS Information Technology",
    )


@pytest.fixture
def store(event, session, student) -> FakeAttendanceStore:
    fake = FakeAttendanceStore()
    fake.add_event(event)
    fake.add_session(session)
    fake.add_student(student)
    return fake
