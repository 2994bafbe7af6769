import logging
import threading
import time
from typing import Callable, Dict, Optional, Tuple

from pydantic import BaseModel
from redis.exceptions import RedisError

from ..models.db_models import Student
from .redis_client import RedisClient
from ..services.errors import TransientError

logger = logging.getLogger(__name__)


class CacheStats(BaseModel):
    backend: str
    entries: int = 0
    expired: int = 0
    hits: int = 0
    misses: int = 0
    errors: int = 0
    ttl_seconds: int = 0


class StudentCache:
    """
    Öğrenci numarasıyla yapılan aramalar için okuma-üzerinden (read-through)
    önbellek arayüzü. Doğruluk kaynağı değildir; yalnızca bulunan öğrenciler saklanır.
    """
    backend = "base"

    async def get(self, student_id_number: str) -> Optional[Student]:
        raise NotImplementedError

    async def set(self, student: Student) -> None:
        raise NotImplementedError

    async def invalidate(self, student_id_number: str) -> None:
        raise NotImplementedError

    async def clear(self) -> None:
        raise NotImplementedError

    async def purge_expired(self) -> int:
        return 0

    async def stats(self) -> CacheStats:
        raise NotImplementedError


class NullStudentCache(StudentCache):
    """Hiçbir şey saklamayan önbellek; testlerde ve önbelleğin kapalı olduğu durumda kullanılır."""
    backend = "none"

    async def get(self, student_id_number: str) -> Optional[Student]:
        return None

    async def set(self, student: Student) -> None:
        return None

    async def invalidate(self, student_id_number: str) -> None:
        return None

    async def clear(self) -> None:
        return None

    async def stats(self) -> CacheStats:
        return CacheStats(backend=self.backend)


class InMemoryStudentCache(StudentCache):
    """
    Süreç içi TTL'li önbellek. Uygulama örneğine aittir (app.state), global değildir.
    Girdiler istek yaşam döngüsünden bağımsız olarak süresi dolunca geçersizleşir;
    süresi dolanlar ayrıca zamanlanmış görevle temizlenir.
    """
    backend = "memory"

    def __init__(self, ttl_seconds: int = 300, clock: Callable[[], float] = time.monotonic):
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[Student, float]] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    async def get(self, student_id_number: str) -> Optional[Student]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(student_id_number)
            if entry is None:
                self._misses += 1
                return None
            student, expires_at = entry
            if now >= expires_at:
                del self._entries[student_id_number]
                self._misses += 1
                return None
            self._hits += 1
            return student

    async def set(self, student: Student) -> None:
        expires_at = self._clock() + self._ttl
        with self._lock:
            self._entries[student.student_id_number] = (student, expires_at)

    async def invalidate(self, student_id_number: str) -> None:
        with self._lock:
            self._entries.pop(student_id_number, None)

    async def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0

    async def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [key for key, (_, expires_at) in self._entries.items() if now >= expires_at]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.info(f"Öğrenci önbelleğinden {len(expired)} süresi dolmuş kayıt temizlendi.")
        return len(expired)

    async def stats(self) -> CacheStats:
        now = self._clock()
        with self._lock:
            expired = sum(1 for _, expires_at in self._entries.values() if now >= expires_at)
            return CacheStats(
                backend=self.backend,
                entries=len(self._entries) - expired,
                expired=expired,
                hits=self._hits,
                misses=self._misses,
                ttl_seconds=self._ttl,
            )


class RedisStudentCache(StudentCache):
    """
    Birden çok worker arasında paylaşılan önbellek; süre dolumunu Redis'in EX'i yapar.
    Doğruluk kaynağı veritabanıdır: okuma ve yazma hatalarında arama depoya düşer.
    """
    backend = "redis"

    def __init__(self, redis_client: RedisClient, ttl_seconds: int = 300):
        self._client = redis_client
        self._ttl = ttl_seconds
        self._hits = 0
        self._misses = 0
        self._errors = 0

    async def get(self, student_id_number: str) -> Optional[Student]:
        try:
            student = await self._client.get_cached_student(student_id_number)
        except RedisError as e:
            self._errors += 1
            self._misses += 1
            logger.warning(f"Redis önbelleği okunamadı, veritabanına düşülüyor: {e!r}")
            return None
        if student is None:
            self._misses += 1
        else:
            self._hits += 1
        return student

    async def set(self, student: Student) -> None:
        try:
            await self._client.cache_student(student, ttl=self._ttl)
        except RedisError as e:
            self._errors += 1
            logger.warning(f"Öğrenci Redis önbelleğine yazılamadı ({student.student_id_number}): {e!r}")

    async def invalidate(self, student_id_number: str) -> None:
        try:
            await self._client.evict_student(student_id_number)
        except RedisError as e:
            raise TransientError("The student cache is temporarily unavailable. Please retry.") from e

    async def clear(self) -> None:
        try:
            await self._client.clear_student_cache()
        except RedisError as e:
            raise TransientError("The student cache is temporarily unavailable. Please retry.") from e

    async def stats(self) -> CacheStats:
        try:
            entries = await self._client.count_cached_students()
        except RedisError as e:
            raise TransientError("The student cache is temporarily unavailable. Please retry.") from e
        return CacheStats(
            backend=self.backend,
            entries=entries,
            hits=self._hits,
            misses=self._misses,
            errors=self._errors,
            ttl_seconds=self._ttl,
        )


def build_student_cache(backend: str, ttl_seconds: int, redis_client: Optional[RedisClient] = None) -> StudentCache:
    """Ayardaki STUDENT_CACHE_BACKEND değerine göre önbellek örneği oluşturur."""
    backend = (backend or "memory").lower()
    if backend == "none":
        return NullStudentCache()
    if backend == "redis":
        if redis_client is None:
            raise ValueError("Redis student cache requires a Redis client")
        return RedisStudentCache(redis_client, ttl_seconds=ttl_seconds)
    if backend == "memory":
        return InMemoryStudentCache(ttl_seconds=ttl_seconds)
    raise ValueError(f"Unknown student cache backend: {backend}")
