import logging
from typing import Optional
import redis.asyncio as redis

from ..models.db_models import Student
from ..models.redis_models import UserSessionRedis

logger = logging.getLogger(__name__)


class RedisClient:
    """
    Oturum ve öğrenci önbelleği operasyonlarını yöneten Redis istemcisi.
    """

    def __init__(self, pool: redis.ConnectionPool):
        self._redis = redis.Redis(connection_pool=pool, decode_responses=True)

    # ===== User Session Management =====

    async def save_user_session(self, user: UserSessionRedis, ttl: int):
        """Kullanıcı oturumunu TTL ile Redis'e kaydeder."""
        key = f"users:{user.user_data.user_id}"
        await self._redis.set(key, user.model_dump_json(), ex=ttl)

    async def get_user_session(self, user_id: str) -> Optional[UserSessionRedis]:
        """Kullanıcı oturumunu Redis'ten alır."""
        key = f"users:{user_id}"
        user_json = await self._redis.get(key)
        return UserSessionRedis.model_validate_json(user_json) if user_json else None

    async def delete_user_session(self, user_id: str) -> int:
        key = f"users:{user_id}"
        return await self._redis.delete(key)

    # ===== Student Lookup Cache =====

    async def cache_student(self, student: Student, ttl: int):
        """Öğrenciyi numarasıyla TTL'li olarak önbelleğe yazar."""
        key = f"student_cache:{student.student_id_number}"
        await self._redis.set(key, student.model_dump_json(), ex=ttl)

    async def get_cached_student(self, student_id_number: str) -> Optional[Student]:
        key = f"student_cache:{student_id_number}"
        student_json = await self._redis.get(key)
        return Student.model_validate_json(student_json) if student_json else None

    async def evict_student(self, student_id_number: str) -> int:
        return await self._redis.delete(f"student_cache:{student_id_number}")

    async def clear_student_cache(self) -> int:
        """Tüm öğrenci önbelleği anahtarlarını siler."""
        deleted = 0
        async for key in self._redis.scan_iter("student_cache:*"):
            deleted += await self._redis.delete(key)
        return deleted

    async def count_cached_students(self) -> int:
        count = 0
        async for _ in self._redis.scan_iter("student_cache:*"):
            count += 1
        return count
