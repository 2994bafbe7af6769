import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import ValidationError
from redis.exceptions import RedisError

from .schemas.user import TokenData
from ..config.config import settings
from ..db.redis_client import RedisClient
from ..models.redis_models import CallerIdentity
from ..services.errors import AuthenticationError, TransientError
from .dependencies import get_redis_client

logger = logging.getLogger(__name__)

# Token'lar kimlik servisinde üretilir; burada yalnızca doğrulanır.
bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(data: dict, expires_delta: timedelta):
    """Verilen data ve süre ile yeni bir JWT access token oluşturur."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + expires_delta
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    return encoded_jwt


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    redis_client: RedisClient = Depends(get_redis_client),
) -> Optional[CallerIdentity]:
    """
    Token'ı decode eder, Pydantic ile doğrular ve Redis'te aktif bir oturum olup
    olmadığını kontrol eder. Token hiç yoksa None döner; kimlik zorunluluğunu
    tarama hattının ilk adımı uygular. Token var ama geçersizse 401 döner.
    """
    if credentials is None:
        return None

    try:
        payload = jwt.decode(credentials.credentials, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        token_data = TokenData.model_validate(payload)
    except (jwt.PyJWTError, ValidationError) as e:
        # Hem JWT hataları (süre dolması, imza) hem de Pydantic doğrulama hataları.
        logger.warning(f"Token validation error: {e}")
        raise AuthenticationError("Could not validate credentials", code="invalid_token")

    if token_data.user_id is None:
        logger.warning(f"Token is valid but missing 'user_id': {payload}")
        raise AuthenticationError("Could not validate credentials", code="invalid_token")

    try:
        user_session = await redis_client.get_user_session(token_data.user_id)
    except RedisError as e:
        logger.error(f"Redis oturum kontrolü başarısız: {e!r}")
        raise TransientError("The session store is temporarily unavailable. Please retry.") from e

    if user_session is None:
        logger.warning(f"User '{token_data.user_id}' has a valid token but no active session in Redis. Denying access.")
        raise AuthenticationError("Your session has expired. Please sign in again.", code="session_expired")

    # Her zaman Redis'teki en güncel kimliği döndür
    return user_session.user_data
