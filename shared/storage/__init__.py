"""
Storage abstractions for distribution modeling services.

Provides async clients for:
- Redis (shared cache and queue state)
- In-memory (local development and tests)
- PostgreSQL (materialized view maintenance)
"""

from .base import CacheBackend
from .memory import MemoryClient
from .postgres import PostgresClient
from .redis import RedisClient

__all__ = [
    "CacheBackend",
    "MemoryClient",
    "PostgresClient",
    "RedisClient",
]
