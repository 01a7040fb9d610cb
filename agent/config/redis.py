"""
Redis configuration for the PostCare scheduling system

REDIS_URL wins when set; otherwise the URL is assembled from
REDIS_HOST / REDIS_PORT / REDIS_DB / REDIS_PASSWORD.
"""
import logging
import os
from dataclasses import dataclass
from typing import Optional

import redis

logger = logging.getLogger("redis-config")


@dataclass
class RedisSettings:
    host: str = 'localhost'
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    socket_timeout: int = 5
    url: Optional[str] = None

    @classmethod
    def from_env(cls) -> "RedisSettings":
        return cls(
            host=os.getenv('REDIS_HOST', 'localhost'),
            port=int(os.getenv('REDIS_PORT', '6379')),
            db=int(os.getenv('REDIS_DB', '0')),
            password=os.getenv('REDIS_PASSWORD') or None,
            socket_timeout=int(os.getenv('REDIS_SOCKET_TIMEOUT', '5')),
            url=os.getenv('REDIS_URL') or None,
        )

    def to_url(self) -> str:
        if self.url:
            return self.url
        auth = f":{self.password}@" if self.password else ""
        return f"redis://{auth}{self.host}:{self.port}/{self.db}"


def get_redis_url() -> str:
    """Connection URL shared by the store and the RQ workers"""
    return RedisSettings.from_env().to_url()


def create_redis_connection() -> redis.Redis:
    """Connection for the schedule store and directory (str responses)"""
    settings = RedisSettings.from_env()
    return redis.from_url(
        settings.to_url(),
        decode_responses=True,
        socket_timeout=settings.socket_timeout,
        socket_connect_timeout=settings.socket_timeout,
    )


def create_queue_connection() -> redis.Redis:
    """Connection for RQ, which keeps pickled job payloads as bytes"""
    return redis.from_url(get_redis_url())


def test_redis_connection() -> bool:
    try:
        create_redis_connection().ping()
        return True
    except redis.RedisError as e:
        logger.error(f"Redis connection failed at {get_redis_url()}: {e}")
        return False
