import json
import logging
from datetime import datetime, timezone
from typing import Optional

from .logging_config import SCAN_EVENT_LOGGER_NAME


class ScanEventLog:
    """
    Tarama hattının denetim kaydı. Her deneme (başarılı ya da başarısız) için
    tek satırlık bir JSON olayı yazar; ham isteğe bakmadan ne olduğunu
    yeniden kurmaya yetecek bağlamı taşır.
    """
    def __init__(self, logger: Optional[logging.Logger] = None):
        self._logger = logger or logging.getLogger(SCAN_EVENT_LOGGER_NAME)

    def emit(
        self,
        event: str,
        outcome: str,
        actor: Optional[str] = None,
        session_id: Optional[str] = None,
        student_id: Optional[str] = None,
        scan_type: Optional[str] = None,
        duration_ms: Optional[float] = None,
        reason: Optional[str] = None,
        error_code: Optional[str] = None,
        **extra,
    ) -> dict:
        entry = {
            "event": event,
            "outcome": outcome,
            "actor": actor,
            "session_id": session_id,
            "student_id": student_id,
            "scan_type": scan_type,
            "duration_ms": round(duration_ms, 2) if duration_ms is not None else None,
            "reason": reason,
            "error_code": error_code,
            "logged_at": datetime.now(timezone.utc).isoformat(),
        }
        entry.update(extra)
        level = logging.INFO if outcome == "success" else logging.WARNING
        self._logger.log(level, json.dumps(entry, default=str))
        return entry
