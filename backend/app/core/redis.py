from functools import lru_cache
from typing import Optional
import logging
import redis
from app.core.config import settings

logger = logging.getLogger(__name__)


@lru_cache
def get_redis_client() -> Optional[redis.Redis]:
    """Единый Redis-клиент приложения (None если кэш выключен)"""
    if not settings.REDIS_ENABLED:
        logger.info("Redis disabled by configuration, caching is off")
        return None

    # Соединение ленивое: недоступный Redis не мешает старту приложения
    client = redis.Redis(
        host=settings.REDIS_HOST,
        port=settings.REDIS_PORT,
        db=settings.REDIS_DB,
        password=settings.REDIS_PASSWORD,
        decode_responses=True,
        socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT,
        socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
    )
    logger.info("Redis client configured for %s:%s/%s", settings.REDIS_HOST, settings.REDIS_PORT, settings.REDIS_DB)
    return client
