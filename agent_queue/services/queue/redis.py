"""Redis connection management for the queue system."""

import logging
from typing import Optional

from arq.connections import ArqRedis
from redis.asyncio import ConnectionPool
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError

from agent_queue.services.queue.models import QueueConnectionError

logger = logging.getLogger(__name__)


class BorrowedArqRedis(ArqRedis):
    """ArqRedis client over a pool owned by someone else.

    arq workers close their pool when they stop; closing this client leaves
    the shared pool connected for the remaining queues and workers.
    """

    async def aclose(self, close_connection_pool: Optional[bool] = None) -> None:
        logger.debug("Ignoring close on borrowed Redis client")

    async def close(self, close_connection_pool: Optional[bool] = None) -> None:
        logger.debug("Ignoring close on borrowed Redis client")


class RedisConnection:
    """Owns the single broker connection pool of a process."""

    def __init__(
        self,
        url: str = "redis://localhost:6379",
        max_connections: int = 50,
    ):
        """Initialize Redis connection manager.

        Args:
            url: Redis connection URL
            max_connections: Maximum connections in pool
        """
        self._url = url
        self._max_connections = max_connections
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[ArqRedis] = None

    async def connect(self) -> None:
        """Establish connection to Redis.

        Raises:
            QueueConnectionError: If connection fails
        """
        try:
            self._pool = ConnectionPool.from_url(
                self._url,
                max_connections=self._max_connections,
            )
            self._client = ArqRedis(connection_pool=self._pool)

            # Test connection
            await self._client.ping()
            logger.info("Connected to Redis at %s", self._url)
        except RedisConnectionError as e:
            logger.error("Failed to connect to Redis: %s", e)
            raise QueueConnectionError(
                f"Failed to connect to Redis: {e}",
                {"url": self._url},
            ) from e
        except RedisError as e:
            logger.error("Redis error during connection: %s", e)
            raise QueueConnectionError(
                f"Redis error: {e}",
                {"url": self._url},
            ) from e

    async def disconnect(self) -> None:
        """Close Redis connection and pool."""
        if self._client:
            await self._client.aclose()
            self._client = None
        if self._pool:
            await self._pool.disconnect()
            self._pool = None
        logger.info("Disconnected from Redis")

    async def health_check(self) -> bool:
        """Check if Redis connection is healthy.

        Returns:
            True if connection is healthy, False otherwise
        """
        if not self._client:
            return False
        try:
            await self._client.ping()
            return True
        except (RedisConnectionError, RedisError) as e:
            logger.warning("Redis health check failed: %s", e)
            return False

    def borrow(self) -> BorrowedArqRedis:
        """Return a client sharing this connection's pool that cannot close it.

        Raises:
            QueueConnectionError: If not connected
        """
        if not self._pool:
            raise QueueConnectionError("Not connected to Redis")
        return BorrowedArqRedis(connection_pool=self._pool)

    @property
    def client(self) -> ArqRedis:
        """Get the Redis client instance.

        Returns:
            Redis client

        Raises:
            QueueConnectionError: If not connected
        """
        if not self._client:
            raise QueueConnectionError("Not connected to Redis")
        return self._client

    @property
    def is_connected(self) -> bool:
        """Check if client is connected."""
        return self._client is not None
