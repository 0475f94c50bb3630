"""
Redis client factory.
The same Redis instance backs the tagging queue (list) and the result cache (hashes).
"""
import logging

import redis

from cloudstore.core.config import settings

logger = logging.getLogger(__name__)

def create_redis_client(url: str | None = None, tls_verify: bool | None = None) -> redis.Redis:
    """
    Build a client from a redis:// or rediss:// URL.
    Connection is lazy; call ping_redis() to check reachability.
    """
    url = url or settings.REDIS_URL
    tls_verify = settings.REDIS_TLS_VERIFY if tls_verify is None else tls_verify

    kwargs = {"decode_responses": True, "socket_connect_timeout": 5}
    if url.startswith("rediss://") and not tls_verify:
        kwargs["ssl_cert_reqs"] = "none"

    return redis.from_url(url, **kwargs)

def ping_redis(client: redis.Redis) -> bool:
    """True if Redis answered PING. Never raises."""
    try:
        client.ping()
        return True
    except redis.RedisError as e:
        logger.warning(f"Redis not available ({e}).")
        return False
