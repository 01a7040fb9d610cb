"""
Configuration module for the PostCare scheduling system
"""

from .redis import create_redis_connection, create_queue_connection, get_redis_url, test_redis_connection
from .settings import Settings, load_settings

__all__ = [
    'create_redis_connection',
    'create_queue_connection',
    'get_redis_url',
    'test_redis_connection',
    'Settings',
    'load_settings',
]
