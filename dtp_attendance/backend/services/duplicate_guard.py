import logging
from datetime import datetime
from uuid import UUID

from ..db.db_client import AsyncPostgresClient
from ..models.db_models import ScanType
from ..models.scan_models import DuplicateCheckResult

logger = logging.getLogger(__name__)


def minutes_between(later: datetime, earlier: datetime) -> int:
    """Tam dakika farkı, aşağı yuvarlanır; saat kayması olsa bile negatif olmaz."""
    return max(0, int((later - earlier).total_seconds() // 60))


class DuplicateGuard:
    """
    (öğrenci, oturum, tür) üçlüsü için önceden kayıt olup olmadığını kontrol eder.
    Bu yalnızca hızlı bir ön kontroldür ve daha iyi bir hata mesajı içindir;
    asıl garanti veritabanındaki benzersizlik kısıtıdır.
    """
    def __init__(self, db_client: AsyncPostgresClient):
        self.db_client = db_client

    async def exists(self, student_id: UUID, session_id: UUID, scan_type: ScanType) -> bool:
        record = await self.db_client.get_latest_attendance(student_id, session_id, scan_type)
        return record is not None

    async def check_with_context(
        self,
        student_id: UUID,
        session_id: UUID,
        scan_type: ScanType,
        now: datetime,
    ) -> DuplicateCheckResult:
        record = await self.db_client.get_latest_attendance(student_id, session_id, scan_type)
        if record is None:
            return DuplicateCheckResult(is_duplicate=False)

        minutes = minutes_between(now, record.timestamp)
        logger.info(
            f"Tekrarlanan tarama tespit edildi: öğrenci={student_id}, oturum={session_id}, "
            f"tür={ScanType(scan_type).value}, {minutes} dakika önce."
        )
        return DuplicateCheckResult(is_duplicate=True, last_scan_record=record, minutes_since_last_scan=minutes)
