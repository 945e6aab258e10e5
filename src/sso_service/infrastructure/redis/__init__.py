"""Redis infrastructure."""

from sso_service.infrastructure.redis.client import RedisClient, close_redis_client, get_redis_client

__all__ = ["RedisClient", "get_redis_client", "close_redis_client"]
