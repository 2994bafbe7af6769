import asyncio
import json
import logging
import uuid
import pytest
from unittest.mock import AsyncMock

from redis.exceptions import ConnectionError as RedisConnectionError

from dtp_attendance.backend.db.student_cache import NullStudentCache, InMemoryStudentCache, RedisStudentCache
from dtp_attendance.backend.logging.event_log import ScanEventLog
from dtp_attendance.backend.models.db_models import ScanType, TimeWindow, WindowState
from dtp_attendance.backend.models.redis_models import CallerIdentity
from dtp_attendance.backend.models.qr_models import SessionAttendancePayload, StudentAttendancePayload
from dtp_attendance.backend.services.attendance_recorder import AttendanceRecorder
from dtp_attendance.backend.services.duplicate_guard import DuplicateGuard
from dtp_attendance.backend.services.errors import (
    AuthenticationError, AuthorizationError, DuplicateError, FormatError, NotFoundError,
    TransientError, UnknownError, WindowRejectedError, ConflictError,
)
from dtp_attendance.backend.services.scan_pipeline import ScanPipeline
from dtp_attendance.backend.services.student_service import StudentService
from dtp_attendance.backend.tools import qr_codec
from conftest import at

EVENT_LOGGER = "tests.pipeline_events"


class Clock:
    """Testlerin ilerletebildiği sabit saat."""
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


def build_pipeline(store, clock, cache=None) -> ScanPipeline:
    event_log = ScanEventLog(logging.getLogger(EVENT_LOGGER))
    return ScanPipeline(
        db_client=store,
        student_service=StudentService(db_client=store, cache=cache or NullStudentCache()),
        duplicate_guard=DuplicateGuard(db_client=store),
        recorder=AttendanceRecorder(db_client=store, event_log=event_log),
        event_log=event_log,
        clock=clock,
    )


def student_qr(student) -> str:
    return qr_codec.encode(StudentAttendancePayload(
        student_id=student.id,
        student_id_number=student.student_id_number,
        timestamp=at(8, 0),
        first_name=student.first_name,
        last_name=student.last_name,
    ))


@pytest.fixture
def clock():
    return Clock(at(9, 5))


@pytest.fixture
def pipeline(store, clock):
    return build_pipeline(store, clock)


@pytest.mark.asyncio
class TestScanPipelineScenarios:

    async def test_valid_student_scan_in_time_in_window(self, pipeline, store, organizer, session, student):
        """
        Senaryo: [09:00, 09:15] penceresi, saat 09:05, geçerli öğrenci QR'ı, atanmış organizatör.
        Beklenti: time_in kaydı oluşur.
        """
        outcome = await pipeline.process_scan(organizer, student_qr(student), str(session.id), organizer.user_id)

        assert outcome.created is True
        assert outcome.scan_type == ScanType.TIME_IN
        assert outcome.student == student
        assert outcome.attendance_record.time_in == at(9, 5)
        assert outcome.attendance_record.organizer_id == organizer.user_id
        assert len(store.records) == 1

    async def test_scan_after_window_is_rejected_as_ended(self, pipeline, store, organizer, session, student, clock):
        clock.now = at(9, 20)
        with pytest.raises(WindowRejectedError) as exc_info:
            await pipeline.process_scan(organizer, student_qr(student), str(session.id), organizer.user_id)
        assert exc_info.value.reason == "ended"
        assert exc_info.value.status_code == 400
        assert store.records == []

    @pytest.mark.parametrize("now", [at(8, 0), at(9, 5), at(12, 0)])
    async def test_unassigned_organizer_is_forbidden_regardless_of_window(self, store, organizer, event, session, student, now):
        store.add_event(event.model_copy(update={"organizer_ids": frozenset({"someone-else"})}))
        outsider = build_pipeline(store, Clock(now))

        with pytest.raises(AuthorizationError) as exc_info:
            await outsider.process_scan(organizer, student_qr(student), str(session.id), organizer.user_id)
        assert exc_info.value.code == "organizer_not_assigned"
        assert exc_info.value.status_code == 403

    async def test_not_json_fails_before_any_store_access(self, pipeline, store, organizer, session):
        with pytest.raises(FormatError) as exc_info:
            await pipeline.process_scan(organizer, "not json", str(session.id), organizer.user_id)
        assert "Invalid JSON in QR code" in exc_info.value.message
        assert store.calls == []

    async def test_same_malformed_qr_always_yields_same_error(self, pipeline, organizer, session):
        messages = []
        for _ in range(2):
            with pytest.raises(FormatError) as exc_info:
                await pipeline.process_scan(organizer, '{"type": "bogus"}', str(session.id), organizer.user_id)
            messages.append((exc_info.value.code, exc_info.value.message))
        assert messages[0] == messages[1]


@pytest.mark.asyncio
class TestDuplicateHandling:

    async def test_second_time_in_is_duplicate_with_minutes(self, pipeline, organizer, session, student, clock):
        await pipeline.process_scan(organizer, student_qr(student), str(session.id), organizer.user_id)
        clock.now = at(9, 12, 30)

        with pytest.raises(DuplicateError) as exc_info:
            await pipeline.process_scan(organizer, student_qr(student), str(session.id), organizer.user_id)

        assert exc_info.value.minutes_since_last_scan == 7
        assert "Last scan was 7 minutes ago" in exc_info.value.message
        assert exc_info.value.status_code == 409

    async def test_time_out_after_time_in_is_allowed(self, store, organizer, session, student, clock):
        """
        Senaryo: Aynı öğrenci ve oturum için time-in sonrası time-out penceresinde tarama.
        Beklenti: Farklı tür olduğu için kabul edilir.
        """
        with_out = session.model_copy(update={"time_out_window": TimeWindow(start=at(11, 0), end=at(11, 15))})
        store.add_session(with_out)
        pipeline = build_pipeline(store, clock)

        first = await pipeline.process_scan(organizer, student_qr(student), str(session.id), organizer.user_id)
        clock.now = at(11, 1)
        second = await pipeline.process_scan(organizer, student_qr(student), str(session.id), organizer.user_id)

        assert first.scan_type == ScanType.TIME_IN
        assert second.scan_type == ScanType.TIME_OUT
        assert second.attendance_record.time_out == at(11, 1)
        assert len(store.records) == 2

    @pytest.mark.parametrize("n", [2, 5, 20])
    async def test_concurrent_identical_scans_create_exactly_one_record(self, store, organizer, session, student, clock, n):
        pipeline = build_pipeline(store, clock)
        qr = student_qr(student)

        results = await asyncio.gather(
            *[pipeline.process_scan(organizer, qr, str(session.id), organizer.user_id) for _ in range(n)],
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        duplicates = [r for r in results if isinstance(r, DuplicateError)]
        assert len(successes) == 1
        assert len(duplicates) == n - 1
        assert len(store.records) == 1

    async def test_conflict_at_write_is_translated_to_duplicate(self, store, organizer, session, student, clock):
        """
        Senaryo: Ön kontrol temiz, ama yazma sırasında depo benzersizlik ihlali bildirir.
        Beklenti: 500 değil, dakika bilgisiyle DuplicateError.
        """
        class RacingGuard(DuplicateGuard):
            """Ön kontrolden hemen sonra başka bir isteğin aynı kaydı yazdığı durum."""
            raced = False

            async def check_with_context(self, *args, **kwargs):
                result = await super().check_with_context(*args, **kwargs)
                if not self.raced:
                    self.raced = True
                    await store.create_attendance(student.id, session.id, session.event_id, ScanType.TIME_IN, "org-002", at(9, 3))
                return result

        pipeline = build_pipeline(store, clock)
        pipeline.duplicate_guard = RacingGuard(db_client=store)

        with pytest.raises(DuplicateError) as exc_info:
            await pipeline.process_scan(organizer, student_qr(student), str(session.id), organizer.user_id)
        assert exc_info.value.minutes_since_last_scan == 2
        assert isinstance(exc_info.value.__cause__, ConflictError)


@pytest.mark.asyncio
class TestPipelineFailures:

    async def test_missing_caller_is_unauthenticated(self, pipeline, store, student, session):
        with pytest.raises(AuthenticationError):
            await pipeline.process_scan(None, student_qr(student), str(session.id), "org-001")
        assert store.calls == []

    async def test_caller_cannot_scan_as_another_organizer(self, pipeline, organizer, student, session):
        with pytest.raises(AuthorizationError) as exc_info:
            await pipeline.process_scan(organizer, student_qr(student), str(session.id), "org-999")
        assert exc_info.value.code == "organizer_mismatch"

    async def test_inactive_caller_is_forbidden(self, pipeline, organizer, student, session):
        inactive = organizer.model_copy(update={"is_active": False})
        with pytest.raises(AuthorizationError, match="inactive"):
            await pipeline.process_scan(inactive, student_qr(student), str(session.id), organizer.user_id)

    async def test_admin_may_scan_on_behalf_of_assigned_organizer(self, pipeline, organizer, student, session):
        admin = organizer.model_copy(update={"user_id": "admin-1", "role": "admin"})
        outcome = await pipeline.process_scan(admin, student_qr(student), str(session.id), organizer.user_id)
        assert outcome.attendance_record.organizer_id == organizer.user_id

    async def test_unknown_session(self, pipeline, organizer, student):
        with pytest.raises(NotFoundError, match="Session not found"):
            await pipeline.process_scan(organizer, student_qr(student), str(uuid.uuid4()), organizer.user_id)
        with pytest.raises(NotFoundError):
            await pipeline.process_scan(organizer, student_qr(student), "not-a-uuid", organizer.user_id)

    async def test_unknown_student(self, pipeline, organizer, session, student):
        stranger = student.model_copy(update={"student_id_number": "S000-0000-001"})
        with pytest.raises(NotFoundError, match="Student not found"):
            await pipeline.process_scan(organizer, student_qr(stranger), str(session.id), organizer.user_id)

    async def test_forged_student_id_is_rejected(self, pipeline, organizer, session, student):
        forged = student.model_copy(update={"id": uuid.uuid4()})
        with pytest.raises(FormatError) as exc_info:
            await pipeline.process_scan(organizer, student_qr(forged), str(session.id), organizer.user_id)
        assert exc_info.value.code == "qr_student_mismatch"

    async def test_inactive_event_and_session_are_forbidden(self, store, organizer, event, session, student, clock):
        store.add_session(session.model_copy(update={"is_active": False}))
        with pytest.raises(AuthorizationError) as exc_info:
            await build_pipeline(store, clock).process_scan(organizer, student_qr(student), str(session.id), organizer.user_id)
        assert exc_info.value.code == "session_inactive"

        store.add_session(session)
        store.add_event(event.model_copy(update={"is_active": False}))
        with pytest.raises(AuthorizationError) as exc_info:
            await build_pipeline(store, clock).process_scan(organizer, student_qr(student), str(session.id), organizer.user_id)
        assert exc_info.value.code == "event_inactive"

    async def test_no_window_and_upcoming(self, store, organizer, session, student, clock):
        store.add_session(session.model_copy(update={"time_in_window": None}))
        with pytest.raises(WindowRejectedError) as exc_info:
            await build_pipeline(store, clock).process_scan(organizer, student_qr(student), str(session.id), organizer.user_id)
        assert exc_info.value.reason == "no_window"

        store.add_session(session)
        clock.now = at(8, 30)
        with pytest.raises(WindowRejectedError) as exc_info:
            await build_pipeline(store, clock).process_scan(organizer, student_qr(student), str(session.id), organizer.user_id)
        assert exc_info.value.reason == "upcoming"
        assert exc_info.value.message == "Scanning opens at 09:00"

    async def test_transient_store_error_is_not_masked(self, organizer, student, session, clock):
        store = AsyncMock()
        store.get_student_by_id_number.side_effect = TransientError("timeout")
        with pytest.raises(TransientError):
            await build_pipeline(store, clock).process_scan(organizer, student_qr(student), str(session.id), organizer.user_id)

    async def test_unexpected_error_becomes_unknown_error(self, organizer, student, session, clock):
        store = AsyncMock()
        store.get_student_by_id_number.side_effect = RuntimeError("boom at row 42")
        with pytest.raises(UnknownError) as exc_info:
            await build_pipeline(store, clock).process_scan(organizer, student_qr(student), str(session.id), organizer.user_id)
        assert "boom" not in exc_info.value.message
        assert exc_info.value.status_code == 500

    async def test_every_outcome_is_written_to_event_log(self, pipeline, organizer, session, student, caplog):
        caplog.set_level(logging.INFO, logger=EVENT_LOGGER)
        await pipeline.process_scan(organizer, student_qr(student), str(session.id), organizer.user_id)
        with pytest.raises(DuplicateError):
            await pipeline.process_scan(organizer, student_qr(student), str(session.id), organizer.user_id)

        processed = [json.loads(r.getMessage()) for r in caplog.records if r.name == EVENT_LOGGER]
        processed = [e for e in processed if e["event"] == "scan_processed"]
        assert [e["outcome"] for e in processed] == ["success", "failure"]
        assert processed[1]["error_code"] == "duplicate_scan"
        assert processed[1]["student_id"] == str(student.id)
        assert processed[1]["actor"] == organizer.user_id


@pytest.mark.asyncio
class TestSessionQR:

    async def test_session_qr_is_verified_without_writing(self, pipeline, store, organizer, session):
        qr = qr_codec.encode(SessionAttendancePayload(session_id=session.id, event_id=session.event_id, timestamp=at(8, 0)))
        outcome = await pipeline.process_scan(organizer, qr, str(session.id), organizer.user_id)

        assert outcome.created is False
        assert outcome.scan_type == ScanType.TIME_IN
        assert outcome.student is None
        assert store.records == []

    async def test_session_qr_for_another_session_is_rejected(self, pipeline, organizer, session):
        qr = qr_codec.encode(SessionAttendancePayload(session_id=uuid.uuid4(), event_id=session.event_id, timestamp=at(8, 0)))
        with pytest.raises(FormatError) as exc_info:
            await pipeline.process_scan(organizer, qr, str(session.id), organizer.user_id)
        assert exc_info.value.code == "qr_session_mismatch"


@pytest.mark.asyncio
class TestScanStatus:

    async def test_status_reports_window_stats_and_recent_scans(self, pipeline, organizer, session, student, clock):
        await pipeline.process_scan(organizer, student_qr(student), str(session.id), organizer.user_id)
        clock.now = at(9, 10)

        status = await pipeline.get_scan_status(organizer, str(session.id), organizer.user_id)

        assert status.window_state == WindowState.TIME_IN_ACTIVE
        assert status.minutes_remaining == 5
        assert status.stats.total_scans == 1
        assert status.stats.incomplete_attendance == 1
        assert status.recent_scans[0].student_name == "Juan Dela Cruz"

    async def test_status_requires_assignment(self, store, event, session, clock):
        stranger = CallerIdentity(user_id="org-777", full_name="Not Assigned")
        with pytest.raises(AuthorizationError):
            await build_pipeline(store, clock).get_scan_status(stranger, str(session.id), "org-777")


@pytest.mark.asyncio
async def test_cached_student_skips_store_lookup(store, organizer, session, student, clock):
    cache = InMemoryStudentCache(ttl_seconds=300)
    pipeline = build_pipeline(store, clock, cache=cache)
    await pipeline.process_scan(organizer, student_qr(student), str(session.id), organizer.user_id)

    clock.now = at(9, 6)
    with pytest.raises(DuplicateError):
        await pipeline.process_scan(organizer, student_qr(student), str(session.id), organizer.user_id)

    assert store.calls.count("get_student_by_id_number") == 1
    assert (await cache.stats()).hits == 1


@pytest.mark.asyncio
class TestDegradedDependencies:

    async def test_deeply_nested_qr_is_a_format_error(self, pipeline, organizer, session, store):
        with pytest.raises(FormatError) as exc_info:
            await pipeline.process_scan(organizer, "[" * 100000, str(session.id), organizer.user_id)
        assert exc_info.value.code == "invalid_qr"
        assert exc_info.value.status_code == 400
        assert store.calls == []

    async def test_redis_cache_outage_falls_back_to_store(self, store, organizer, session, student, clock):
        """
        Senaryo: Paylaşılan Redis önbelleği erişilemez durumda.
        Beklenti: Arama veritabanına düşer ve tarama kaydedilir; 500 dönmez.
        """
        redis_client = AsyncMock()
        redis_client.get_cached_student.side_effect = RedisConnectionError("connection refused")
        redis_client.cache_student.side_effect = RedisConnectionError("connection refused")
        pipeline = build_pipeline(store, clock, cache=RedisStudentCache(redis_client, ttl_seconds=60))

        outcome = await pipeline.process_scan(organizer, student_qr(student), str(session.id), organizer.user_id)

        assert outcome.created is True
        assert "get_student_by_id_number" in store.calls

    async def test_failed_reread_after_conflict_still_reports_duplicate(self, store, organizer, session, student, clock):
        """
        Senaryo: Yazma sırasında yarış kaybedilir, ardından süre için yapılan okuma zaman aşımına uğrar.
        Beklenti: Yanıt 503 değil, süresiz DuplicateError (409).
        """
        class FlakyRacingGuard(DuplicateGuard):
            calls = 0

            async def check_with_context(self, *args, **kwargs):
                self.calls += 1
                if self.calls == 1:
                    result = await super().check_with_context(*args, **kwargs)
                    await store.create_attendance(student.id, session.id, session.event_id, ScanType.TIME_IN, "org-002", at(9, 3))
                    return result
                raise TransientError("store timeout")

        pipeline = build_pipeline(store, clock)
        pipeline.duplicate_guard = FlakyRacingGuard(db_client=store)

        with pytest.raises(DuplicateError) as exc_info:
            await pipeline.process_scan(organizer, student_qr(student), str(session.id), organizer.user_id)
        assert exc_info.value.status_code == 409
        assert exc_info.value.minutes_since_last_scan is None

    async def test_unexpected_status_error_becomes_unknown_error(self, organizer, session, clock, caplog):
        store = AsyncMock()
        store.get_session.side_effect = RuntimeError("broken row")
        caplog.set_level(logging.INFO, logger=EVENT_LOGGER)

        with pytest.raises(UnknownError) as exc_info:
            await build_pipeline(store, clock).get_scan_status(organizer, str(session.id), organizer.user_id)
        assert exc_info.value.status_code == 500

        entries = [json.loads(r.getMessage()) for r in caplog.records if r.name == EVENT_LOGGER]
        assert entries[-1]["event"] == "scan_status"
        assert entries[-1]["outcome"] == "failure"
        assert entries[-1]["error_code"] == "internal_error"

    async def test_status_success_is_logged(self, pipeline, organizer, session, caplog):
        caplog.set_level(logging.INFO, logger=EVENT_LOGGER)
        await pipeline.get_scan_status(organizer, str(session.id), organizer.user_id)

        entries = [json.loads(r.getMessage()) for r in caplog.records if r.name == EVENT_LOGGER]
        assert entries[-1]["event"] == "scan_status"
        assert entries[-1]["outcome"] == "success"
        assert entries[-1]["reason"] == "time_in_active"
