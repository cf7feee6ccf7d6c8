"""
Redis Infrastructure Module

Store client interface and its implementations:
- StoreClient / StorePipeline: narrow command interface used by the core
- RedisStoreClient: redis-py asyncio implementation with key prefixing
- InMemoryStoreClient: process-local double with expiry and fault injection
- RedisConnectionFactory: connection pool with short command timeouts
- Store exception taxonomy
"""

from .store_client import StoreClient, StorePipeline
from .redis_store_client import RedisStoreClient, RedisStorePipeline
from .memory_store import InMemoryStoreClient, InMemoryPipeline
from .connection_factory import RedisConnectionFactory
from .exceptions import (
    CacheStoreException,
    StoreUnavailableException,
    StoreProtocolException,
    SerializationException,
)

__all__ = [
    # Interface
    "StoreClient",
    "StorePipeline",
    # Implementations
    "RedisStoreClient",
    "RedisStorePipeline",
    "InMemoryStoreClient",
    "InMemoryPipeline",
    # Connection management
    "RedisConnectionFactory",
    # Exceptions
    "CacheStoreException",
    "StoreUnavailableException",
    "StoreProtocolException",
    "SerializationException",
]
