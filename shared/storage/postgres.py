"""
PostgreSQL async client wrapper for materialized view maintenance and reads.

Provides connection pooling and error handling around the
statements the refresh executor and view reader issue.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional
from dataclasses import dataclass
import structlog

import asyncpg


logger = structlog.get_logger()

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")


@dataclass
class PostgresConfig:
    """PostgreSQL configuration."""
    dsn: str
    min_size: int = 1
    max_size: int = 5
    timeout: int = 300


class PostgresClient:
    """
    Async PostgreSQL client with connection pooling.

    Connects lazily on first use and logs then re-raises every failure.
    """

    def __init__(self, config: PostgresConfig | str):
        if isinstance(config, str):
            config = PostgresConfig(dsn=config)
        self.config = config
        self.logger = structlog.get_logger("postgres-client")
        self._pool: Optional[asyncpg.Pool] = None
        self.is_connected: bool = False

    async def connect(self) -> None:
        """Connect to PostgreSQL."""
        if self._pool:
            return

        self._pool = await asyncpg.create_pool(
            self.config.dsn,
            min_size=self.config.min_size,
            max_size=self.config.max_size,
            command_timeout=self.config.timeout
        )

        self.is_connected = True
        self.logger.info("Connected to PostgreSQL")

    async def disconnect(self) -> None:
        """Disconnect from PostgreSQL."""
        if self._pool:
            await self._pool.close()
            self._pool = None

        self.is_connected = False
        self.logger.info("Disconnected from PostgreSQL")

    async def close(self) -> None:
        """Alias for disconnect to mirror other storage clients."""
        await self.disconnect()

    async def execute_command(self, query: str, *args: Any) -> str:
        """Execute a statement that returns no rows."""
        if not self._pool:
            await self.connect()

        async with self._pool.acquire() as conn:
            try:
                return await conn.execute(query, *args)
            except Exception as e:
                self.logger.error("PostgreSQL command error", error=str(e), query=query)
                raise

    async def execute_scalar(self, query: str, *args: Any) -> Any:
        """Execute a SELECT query returning a scalar value."""
        if not self._pool:
            await self.connect()

        async with self._pool.acquire() as conn:
            try:
                return await conn.fetchval(query, *args)
            except Exception as e:
                self.logger.error("PostgreSQL query error", error=str(e), query=query)
                raise

    async def fetch(self, query: str, *args: Any) -> List[Dict[str, Any]]:
        """Execute a SELECT query and return its rows as dictionaries."""
        if not self._pool:
            await self.connect()

        async with self._pool.acquire() as conn:
            try:
                records = await conn.fetch(query, *args)
            except Exception as e:
                self.logger.error("PostgreSQL query error", error=str(e), query=query)
                raise
        return [dict(record) for record in records]

    async def refresh_materialized_view(self, view_name: str, concurrently: bool = True) -> None:
        """Refresh a materialized view by name."""
        if not _IDENTIFIER.match(view_name):
            raise ValueError(f"Invalid view name: {view_name!r}")

        mode = " CONCURRENTLY" if concurrently else ""
        await self.execute_command(f"REFRESH MATERIALIZED VIEW{mode} {view_name}")
        self.logger.debug("Materialized view refreshed", view=view_name)

    async def health_check(self) -> bool:
        """Check PostgreSQL health."""
        try:
            result = await self.execute_scalar("SELECT 1")
            return result == 1
        except Exception as e:
            self.logger.error("PostgreSQL health check failed", error=str(e))
            return False

    async def __aenter__(self):
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.disconnect()
