import logging

from ..db.student_cache import StudentCache

logger = logging.getLogger(__name__)


async def purge_expired_cache_task(student_cache: StudentCache) -> int:
    """
    Öğrenci önbelleğindeki süresi dolmuş girdileri periyodik olarak temizler.
    Girdiler okuma sırasında da geçersizleşir; bu görev belleğin şişmesini önler.
    """
    try:
        purged = await student_cache.purge_expired()
        stats = await student_cache.stats()
        logger.info(
            f"Önbellek temizliği tamamlandı: {purged} girdi silindi, "
            f"{stats.entries} aktif girdi, {stats.hits} isabet / {stats.misses} ıska."
        )
        return purged
    except Exception as e:
        logger.error(f"Önbellek temizliği başarısız oldu: {e}", exc_info=True)
        return 0
