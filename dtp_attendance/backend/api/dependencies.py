#dtp_attendance/backend/api/dependencies.py
import logging
from fastapi import Request, Depends
import redis.asyncio as redis
import asyncpg

from ..config.config import settings
from ..db.redis_client import RedisClient
from ..db.db_client import AsyncPostgresClient
from ..db.student_cache import StudentCache, NullStudentCache
from ..logging.event_log import ScanEventLog
from ..services.errors import TransientError
from ..services.student_service import StudentService
from ..services.duplicate_guard import DuplicateGuard
from ..services.attendance_recorder import AttendanceRecorder
from ..services.scan_pipeline import ScanPipeline

logger = logging.getLogger(__name__)


def get_redis_pool(request: Request) -> redis.ConnectionPool:
    """
    Uygulamanın state'inden Redis bağlantı havuzunu alır ve bir bağımlılık olarak sağlar.
    """
    pool = getattr(request.app.state, "redis_pool", None)
    if pool is None:
        raise TransientError("The session store is not available. Please retry.")
    return pool


def get_postgres_pool(request: Request) -> asyncpg.Pool:
    """
    Uygulamanın state'inden PostgreSQL bağlantı havuzunu alır. Başlangıçta havuz
    oluşturulamadıysa istek 503 ile döner.
    """
    pool = getattr(request.app.state, "postgres_pool", None)
    if pool is None:
        raise TransientError("The attendance store is not available. Please retry.")
    return pool


def get_redis_client(redis_pool: redis.ConnectionPool = Depends(get_redis_pool)) -> RedisClient:
    return RedisClient(pool=redis_pool)


def get_db_client(postgres_pool: asyncpg.Pool = Depends(get_postgres_pool)) -> AsyncPostgresClient:
    return AsyncPostgresClient(pool=postgres_pool, timeout=settings.DB_QUERY_TIMEOUT_SECONDS)


def get_student_cache(request: Request) -> StudentCache:
    """Önbellek uygulama örneğine aittir; lifespan'da oluşturulur."""
    return getattr(request.app.state, "student_cache", None) or NullStudentCache()


def get_scan_pipeline(
    db_client: AsyncPostgresClient = Depends(get_db_client),
    student_cache: StudentCache = Depends(get_student_cache),
) -> ScanPipeline:
    """
    Her istek için yeni bir ScanPipeline nesnesi oluşturur.

    Paylaşımlı havuzlar ve önbellek uygulama başlangıcında bir kez oluşturulur;
    istemci ve servis nesneleri ise her istekte tazelenir.
    """
    event_log = ScanEventLog()
    return ScanPipeline(
        db_client=db_client,
        student_service=StudentService(db_client=db_client, cache=student_cache),
        duplicate_guard=DuplicateGuard(db_client=db_client),
        recorder=AttendanceRecorder(db_client=db_client, event_log=event_log),
        event_log=event_log,
        tz_name=settings.SCAN_TIMEZONE,
        recent_limit=settings.STATUS_RECENT_SCANS_LIMIT,
    )


async def get_client_ip(request: Request) -> str | None:
    """
    İstemcinin gerçek IP adresini proxy başlıklarından okur.
    Nginx, CloudFlare gibi proxy'ler için çoklu başlık desteği.
    """
    for header_name in ["cf-connecting-ip", "x-real-ip", "x-forwarded-for"]:
        header = request.headers.get(header_name)
        if header:
            # X-Forwarded-For "client, proxy1, proxy2" olabilir; en soldaki istemcidir.
            return header.split(",")[0].strip()

    return request.client.host if request.client else None
