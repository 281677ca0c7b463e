"""
Redis 客户端

限流计数在多实例部署时共享到 Redis
"""
import redis.asyncio as redis
from typing import Optional

from sj_core.config import get_settings

_redis_client: Optional[redis.Redis] = None
_connection_pool: Optional[redis.ConnectionPool] = None


async def get_redis() -> redis.Redis:
    """获取 Redis 异步客户端单例（共享连接池，max_connections=50）"""
    global _redis_client, _connection_pool

    if _redis_client is None:
        settings = get_settings()
        _connection_pool = redis.ConnectionPool.from_url(
            settings.redis_url,
            max_connections=50,
            encoding="utf-8",
            decode_responses=True,
        )
        _redis_client = redis.Redis(connection_pool=_connection_pool)

    return _redis_client


async def close_redis() -> None:
    """关闭 Redis 连接和连接池"""
    global _redis_client, _connection_pool

    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None

    if _connection_pool is not None:
        await _connection_pool.disconnect()
        _connection_pool = None
