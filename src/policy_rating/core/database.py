"""Database connection management with asyncpg and connection pooling.

The rating catalog only reads from (and appends to) the ``rating_tables``
relation, so a single pool is enough. Every query accepts an optional
``timeout`` so that callers can propagate their own deadline.
"""

import contextlib
import time
from collections.abc import AsyncIterator
from typing import Any

import asyncpg
from attrs import field, frozen
from beartype import beartype

from .config import Settings, get_settings
from .logging_utils import get_logger

logger = get_logger(__name__)

SLOW_QUERY_THRESHOLD_MS = 1000.0


@frozen
class PoolConfig:
    """Immutable pool configuration."""

    url: str = field()
    min_size: int = field(default=2)
    max_size: int = field(default=10)
    acquire_timeout: float = field(default=10.0)
    command_timeout: float = field(default=30.0)
    server_settings: dict[str, str] = field(factory=dict)

    @classmethod
    def from_settings(cls, settings: Settings) -> "PoolConfig":
        """Build the pool configuration from application settings."""
        return cls(
            url=settings.database_url,
            min_size=settings.database_pool_min,
            max_size=settings.database_pool_max,
            acquire_timeout=settings.database_pool_timeout,
            command_timeout=settings.database_command_timeout,
            server_settings={
                "application_name": "policy_rating",
                "jit": "off",
            },
        )


@frozen
class PoolMetrics:
    """Immutable pool metrics snapshot."""

    size: int = field()
    free_size: int = field()
    queries_total: int = field()
    queries_slow: int = field()


class Database:
    """asyncpg pool manager used by the rating catalog."""

    def __init__(self, config: PoolConfig | None = None) -> None:
        """Initialize database manager."""
        self._config = config or PoolConfig.from_settings(get_settings())
        self._pool: asyncpg.Pool | None = None
        self._queries_total = 0
        self._queries_slow = 0

    @beartype
    async def connect(self) -> None:
        """Create the connection pool."""
        if self._pool is not None:
            return

        self._pool = await asyncpg.create_pool(
            self._config.url,
            min_size=self._config.min_size,
            max_size=self._config.max_size,
            command_timeout=self._config.command_timeout,
            server_settings=self._config.server_settings,
        )
        logger.info(
            "Rating database pool ready (min=%d, max=%d)",
            self._config.min_size,
            self._config.max_size,
        )

    @beartype
    async def disconnect(self) -> None:
        """Close the connection pool."""
        if self._pool is not None:
            await self._pool.close()
        self._pool = None

    @contextlib.asynccontextmanager
    async def acquire(
        self, *, timeout: float | None = None
    ) -> AsyncIterator[asyncpg.Connection]:
        """Acquire a connection, tracking query counts and slow queries."""
        if self._pool is None:
            raise RuntimeError("Database not connected")

        start_time = time.perf_counter()
        async with self._pool.acquire(
            timeout=timeout or self._config.acquire_timeout
        ) as conn:
            self._queries_total += 1
            yield conn

        duration_ms = (time.perf_counter() - start_time) * 1000
        if duration_ms > SLOW_QUERY_THRESHOLD_MS:
            self._queries_slow += 1
            logger.warning("Slow rating query: %.1fms", duration_ms)

    @beartype
    async def execute(
        self, query: str, *args: Any, timeout: float | None = None
    ) -> str:
        """Execute a query without returning rows."""
        async with self.acquire(timeout=timeout) as conn:
            return await conn.execute(query, *args, timeout=timeout)

    @beartype
    async def fetch(
        self, query: str, *args: Any, timeout: float | None = None
    ) -> list[Any]:
        """Execute a query and fetch all results."""
        async with self.acquire(timeout=timeout) as conn:
            return await conn.fetch(query, *args, timeout=timeout)

    @beartype
    async def fetchrow(
        self, query: str, *args: Any, timeout: float | None = None
    ) -> Any | None:
        """Execute a query and fetch a single row."""
        async with self.acquire(timeout=timeout) as conn:
            return await conn.fetchrow(query, *args, timeout=timeout)

    @beartype
    def get_pool_stats(self) -> PoolMetrics:
        """Snapshot of the pool state."""
        return PoolMetrics(
            size=self._pool.get_size() if self._pool else 0,
            free_size=self._pool.get_free_size() if self._pool else 0,
            queries_total=self._queries_total,
            queries_slow=self._queries_slow,
        )

    @property
    def is_connected(self) -> bool:
        """Check if database is connected."""
        return self._pool is not None


# Global database instance
_database: Database | None = None


@beartype
def get_database() -> Database:
    """Get global database instance."""
    global _database
    if _database is None:
        _database = Database()
    return _database


@beartype
async def init_db_pool() -> None:
    """Initialize the database connection pool."""
    await get_database().connect()


@beartype
async def close_db_pool() -> None:
    """Close the database connection pool."""
    await get_database().disconnect()
