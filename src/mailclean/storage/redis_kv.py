"""
Redis-based key-value storage for cache snapshots.

Keeps group caches alive across CLI invocations, so a listing made in one run
can drive a delete in the next.
"""

from __future__ import annotations
from typing import Optional
import redis
from mailclean.logging import logger


class RedisKVStorage:
    """
    Redis-backed implementation of the SnapshotStorage protocol.

    All keys live under `namespace`, and `clear()` only removes that
    namespace, never the whole database.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        namespace: str = "mailclean:",
        client: Optional[redis.Redis] = None,
    ) -> None:
        """
        Initialize Redis connection.

        Args:
            host: Redis server hostname
            port: Redis server port
            db: Redis database number
            namespace: Prefix applied to every key
            client: Pre-built client (connection parameters are then ignored)

        Raises:
            redis.ConnectionError: If connection to Redis fails
        """
        self.namespace = namespace
        try:
            self.client = client or redis.Redis(
                host=host,
                port=port,
                db=db,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
            )
            self.client.ping()
            logger.info(f"Connected to Redis at {host}:{port}/{db} (namespace '{namespace}')")
        except redis.ConnectionError as e:
            logger.error(f"Failed to connect to Redis: {e}")
            raise

    def _key(self, key: str) -> str:
        return f"{self.namespace}{key}"

    def get(self, key: str) -> Optional[str]:
        """
        Get value by key from Redis.

        Returns:
            Stored string, or None if the key doesn't exist or Redis errored
        """
        try:
            return self.client.get(self._key(key))
        except redis.RedisError as e:
            logger.error(f"Redis GET error for key '{key}': {e}")
            return None

    def set(self, key: str, value: str) -> None:
        """
        Set value by key in Redis.

        Raises:
            redis.RedisError: If Redis operation fails
        """
        try:
            self.client.set(self._key(key), value)
            logger.debug(f"Set Redis key '{key}' ({len(value)} bytes)")
        except redis.RedisError as e:
            logger.error(f"Redis SET error for key '{key}': {e}")
            raise

    def delete(self, key: str) -> None:
        """Delete one key; errors are logged, not raised."""
        try:
            self.client.delete(self._key(key))
            logger.debug(f"Deleted Redis key '{key}'")
        except redis.RedisError as e:
            logger.warning(f"Redis DELETE error for key '{key}': {e}")

    def clear(self) -> None:
        """
        Remove every key under the namespace.

        Raises:
            redis.RedisError: If Redis operation fails
        """
        try:
            keys = list(self.client.scan_iter(match=f"{self.namespace}*"))
            if keys:
                self.client.delete(*keys)
            logger.debug(f"Cleared {len(keys)} Redis key(s) under '{self.namespace}'")
        except redis.RedisError as e:
            logger.error(f"Redis CLEAR error for namespace '{self.namespace}': {e}")
            raise
