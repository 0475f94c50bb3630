"""
Rate Limiting Module
Uses slowapi to protect the file endpoints from abuse.
"""
import logging
from slowapi import Limiter
from slowapi.util import get_remote_address
from cloudstore.core.config import settings
from cloudstore.core.redis_client import create_redis_client, ping_redis

logger = logging.getLogger(__name__)

def resolve_storage_uri() -> str:
    """Share the queue's Redis for counters when it is reachable."""
    if not (settings.RATE_LIMIT_ENABLED and settings.REDIS_URL):
        return "memory://"

    client = create_redis_client()
    try:
        reachable = ping_redis(client)
    finally:
        client.close()

    if reachable:
        logger.info(f"Rate Limiter connected to Redis at {settings.REDIS_URL}")
        return settings.REDIS_URL
    logger.warning("Rate Limiter: falling back to memory storage.")
    return "memory://"


limiter = Limiter(
    key_func=get_remote_address,
    enabled=settings.RATE_LIMIT_ENABLED,
    default_limits=[settings.RATE_LIMIT_DEFAULT],
    storage_uri=resolve_storage_uri(),
)

# Endpoint-specific limits
UPLOAD_LIMIT = "10/minute"
READ_LIMIT = "120/minute"
WRITE_LIMIT = "30/minute"

logger.info(f"Rate limiting {'ENABLED' if settings.RATE_LIMIT_ENABLED else 'DISABLED'}")
