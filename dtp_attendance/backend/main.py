from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import redis.asyncio as redis
import asyncpg
from apscheduler.schedulers.asyncio import AsyncIOScheduler as Scheduler
import logging

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .config.config import settings
from .logging.logging_config import setup_logging
from .api import scan
from .api.utilities.limiter import limiter
from .db.redis_client import RedisClient
from .db.student_cache import build_student_cache
from .services.errors import ScanError, RequestValidationFailed
from .tasks.cron import purge_expired_cache_task

from fastapi.middleware.cors import CORSMiddleware

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Uygulama başlatıldığında ve durdurulduğunda çalışacak olan yaşam döngüsü yöneticisi.
    """
    setup_logging()
    app.state.limiter = limiter

    logger.info("Uygulama başlatılıyor...")

    try:
        postgres_pool = await asyncpg.create_pool(
            dsn=settings.DATABASE_URL,
            min_size=settings.DB_POOL_MIN_SIZE,
            max_size=settings.DB_POOL_MAX_SIZE,
            command_timeout=settings.DB_QUERY_TIMEOUT_SECONDS,
        )
        redis_pool = redis.ConnectionPool.from_url(
            settings.APPLICATION_REDIS_URL,
            decode_responses=True,
            socket_timeout=settings.REDIS_TIMEOUT_SECONDS,
            socket_connect_timeout=settings.REDIS_TIMEOUT_SECONDS,
        )

        app.state.postgres_pool = postgres_pool
        app.state.redis_pool = redis_pool
        logger.info("PostgreSQL ve Redis bağlantı havuzları başarıyla oluşturuldu.")

        student_cache = build_student_cache(
            settings.STUDENT_CACHE_BACKEND,
            ttl_seconds=settings.STUDENT_CACHE_TTL_SECONDS,
            redis_client=RedisClient(pool=redis_pool),
        )
        app.state.student_cache = student_cache
        logger.info(f"Öğrenci önbelleği hazır (backend={student_cache.backend}, ttl={settings.STUDENT_CACHE_TTL_SECONDS}s).")

        scheduler = Scheduler()
        scheduler.add_job(
            purge_expired_cache_task, "interval",
            minutes=settings.CACHE_PURGE_INTERVAL_MINUTES,
            args=[student_cache],
            id="purge_student_cache",
        )
        scheduler.start()

        app.state.scheduler = scheduler
        logger.info("Zamanlanmış görevler (cron jobs) başarıyla başlatıldı.")

    except Exception as e:
        logger.error(f"HATA: Başlangıç sırasında bir hata oluştu: {e}", exc_info=True)
        # Hata durumunda istekler 503 ile döner.
        app.state.postgres_pool = None
        app.state.redis_pool = None
        app.state.scheduler = None

    yield

    logger.info("Uygulama kapatılıyor...")
    if getattr(app.state, "scheduler", None):
        app.state.scheduler.shutdown(wait=False)
        logger.info("Scheduler kapatıldı.")
    if getattr(app.state, "postgres_pool", None):
        await app.state.postgres_pool.close()
        logger.info("PostgreSQL bağlantı havuzu kapatıldı.")
    if getattr(app.state, "redis_pool", None):
        await app.state.redis_pool.disconnect()
        logger.info("Redis bağlantı havuzu kapatıldı.")


async def scan_error_handler(request: Request, exc: ScanError) -> JSONResponse:
    """Tüm ScanError türlerini {success: false, error, message} gövdesine çevirir."""
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_response(), headers=headers)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """İstek gövdesi hataları 422 yerine 400 olarak, aynı hata gövdesiyle döner."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query"))
    message = f"{field}: {first.get('msg')}" if field else str(first.get("msg", "Invalid request"))
    return await scan_error_handler(request, RequestValidationFailed(message))


app = FastAPI(
    title="DTP Attendance Scan API",
    description="QR tabanlı yoklama tarama ve kayıt servisi",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_exception_handler(ScanError, scan_error_handler)
app.add_exception_handler(RequestValidationError, validation_error_handler)

app.include_router(scan.router, prefix="/api/v1")


@app.get("/health", tags=["System"])
def health_check():
    """Uygulamanın ayakta olup olmadığını kontrol etmek için basit bir endpoint."""
    return {"status": "ok", "message": "DTP Attendance Scan API is running."}
