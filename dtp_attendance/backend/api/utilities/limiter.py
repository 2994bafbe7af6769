# dtp_attendance/backend/api/utilities/limiter.py

from fastapi import Request
import jwt

from slowapi import Limiter
from slowapi.util import get_remote_address

from ...config.config import settings


def get_limiter_key(request: Request) -> str:
    """
    Rate limit için bir anahtar döndürür.
    İstekte çözülebilen bir JWT varsa organizatör kimliği, yoksa istemcinin IP adresi kullanılır.
    """
    auth_header = request.headers.get("authorization")
    if auth_header and auth_header.lower().startswith("bearer ") and settings.SECRET_KEY:
        token = auth_header.split(" ", 1)[1]
        try:
            # Süre kontrolü gerekmez, sadece kimliği okuyoruz.
            payload = jwt.decode(
                token,
                settings.SECRET_KEY,
                algorithms=[settings.ALGORITHM],
                options={"verify_exp": False}
            )
            user_id = payload.get("user_id")
            if user_id:
                return f"user:{user_id}"
        except jwt.PyJWTError:
            # Token geçersizse IP bazlı limite geri dön.
            pass

    return get_remote_address(request)


# RATE_LIMITER_REDIS_URL tanımlı değilse memory:// kullanılır.
limiter = Limiter(
    key_func=get_limiter_key,
    storage_uri=settings.RATE_LIMITER_REDIS_URL,
    enabled=settings.RATE_LIMIT_ENABLED,
)
