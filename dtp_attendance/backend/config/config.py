import os
from dotenv import load_dotenv

load_dotenv()


def _as_bool(value: str) -> bool:
    return str(value).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """
    Ortam değişkenlerinden ayarları doğrudan ve basit bir şekilde tutan sınıf.
    """
    # Veritabanı
    DATABASE_URL: str = os.environ.get("DATABASE_URL")
    DB_POOL_MIN_SIZE: int = int(os.environ.get("DB_POOL_MIN_SIZE", 5))
    DB_POOL_MAX_SIZE: int = int(os.environ.get("DB_POOL_MAX_SIZE", 20))
    # Her sorgu bu süreyi aşarsa TransientError (503) olarak döner.
    DB_QUERY_TIMEOUT_SECONDS: float = float(os.environ.get("DB_QUERY_TIMEOUT_SECONDS", 5))

    # Redis
    APPLICATION_REDIS_URL: str = os.environ.get("APPLICATION_REDIS_URL", "redis://localhost:6379/0")
    # Redis komutları ve bağlantı kurulumu bu süreyi aşarsa hata verir.
    REDIS_TIMEOUT_SECONDS: float = float(os.environ.get("REDIS_TIMEOUT_SECONDS", 2))
    # Rate limiter için ayrı bir Redis; tanımlı değilse bellek içi depolama kullanılır.
    RATE_LIMITER_REDIS_URL: str = os.environ.get("RATE_LIMITER_REDIS_URL") or "memory://"
    RATE_LIMIT_ENABLED: bool = _as_bool(os.environ.get("RATE_LIMIT_ENABLED", "true"))
    SCAN_RATE_LIMIT: str = os.environ.get("SCAN_RATE_LIMIT", "120/minute")

    # JWT
    SECRET_KEY: str = os.environ.get("SECRET_KEY")
    ALGORITHM: str = os.environ.get("ALGORITHM", "HS256")

    # Öğrenci arama önbelleği: memory | redis | none
    STUDENT_CACHE_BACKEND: str = os.environ.get("STUDENT_CACHE_BACKEND", "memory")
    STUDENT_CACHE_TTL_SECONDS: int = int(os.environ.get("STUDENT_CACHE_TTL_SECONDS", 300))
    CACHE_PURGE_INTERVAL_MINUTES: int = int(os.environ.get("CACHE_PURGE_INTERVAL_MINUTES", 5))

    # Tarama penceresi mesajlarında kullanılan saat dilimi
    SCAN_TIMEZONE: str = os.environ.get("SCAN_TIMEZONE", "UTC")
    STATUS_RECENT_SCANS_LIMIT: int = int(os.environ.get("STATUS_RECENT_SCANS_LIMIT", 10))

    LOG_DIR: str = os.environ.get("LOG_DIR", "logs")

# Ayarların tek ve içe aktarılabilir bir örneğini oluştur
settings = Config()
