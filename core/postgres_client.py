"""
PostgreSQL Client Wrapper

Centralized PostgreSQL access on an asyncpg connection pool.
Provides service discovery integration and a consistent database access pattern.

Usage:
    from core.postgres_client import PostgresClient

    db = PostgresClient.from_config(ConfigManager("communication_service"))
    await db.connect()
    rows = await db.query("SELECT * FROM communication.broadcasts WHERE status = $1", ["draft"])
"""

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import asyncpg
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)


async def _init_connection(conn: asyncpg.Connection) -> None:
    """Decode json/jsonb columns into Python objects"""
    for type_name in ("json", "jsonb"):
        await conn.set_type_codec(
            type_name,
            encoder=json.dumps,
            decoder=json.loads,
            schema="pg_catalog",
        )


class PostgresClient:
    """
    PostgreSQL client on an asyncpg pool.

    - Lazily creates the pool on first use
    - Retries pool creation with exponential backoff
    - Returns rows as plain dictionaries
    """

    def __init__(
        self,
        service_name: str,
        host: str = "localhost",
        port: int = 5432,
        database: str = "postgres",
        username: str = "postgres",
        password: str = "",
        min_size: int = 1,
        max_size: int = 10,
    ):
        self.service_name = service_name
        self.host = host
        self.port = port
        self.database = database
        self.username = username
        self.password = password
        self.min_size = min_size
        self.max_size = max_size
        self._pool: Optional[asyncpg.Pool] = None

        logger.info(f"PostgreSQL client initialized for {service_name}: {host}:{port}/{database}")

    @classmethod
    def from_config(cls, config) -> "PostgresClient":
        """Build a client from a ConfigManager, discovering host and port"""
        infra = config.settings.infra
        host, port = config.discover_service(
            service_name="postgres_service",
            default_host=infra.postgres_host,
            default_port=infra.postgres_port,
            env_host_key="POSTGRES_HOST",
            env_port_key="POSTGRES_PORT",
        )
        return cls(
            service_name=config.service_name,
            host=host,
            port=port,
            database=infra.postgres_db,
            username=infra.postgres_user,
            password=infra.postgres_password,
            min_size=infra.postgres_min_pool,
            max_size=infra.postgres_max_pool,
        )

    @retry(
        retry=retry_if_exception_type((OSError, asyncpg.PostgresError)),
        stop=stop_after_attempt(5),
        wait=wait_exponential(multiplier=0.5, max=10),
        reraise=True,
    )
    async def connect(self) -> None:
        """Create the connection pool"""
        if self._pool is not None:
            return
        self._pool = await asyncpg.create_pool(
            host=self.host,
            port=self.port,
            database=self.database,
            user=self.username,
            password=self.password,
            min_size=self.min_size,
            max_size=self.max_size,
            init=_init_connection,
        )
        logger.info(f"PostgreSQL pool ready for {self.service_name}")

    async def _get_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            await self.connect()
        return self._pool

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def health_check(self) -> bool:
        """Check database health"""
        try:
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                return await conn.fetchval("SELECT 1") == 1
        except Exception as e:
            logger.warning(f"PostgreSQL health check failed: {e}")
            return False

    async def query(self, sql: str, params: Optional[List[Any]] = None) -> List[Dict[str, Any]]:
        """Execute query and return results"""
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(sql, *(params or []))
        return [dict(row) for row in rows]

    async def query_row(self, sql: str, params: Optional[List[Any]] = None) -> Optional[Dict[str, Any]]:
        """Execute query and return single row"""
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(sql, *(params or []))
        return dict(row) if row else None

    async def execute(self, sql: str, params: Optional[List[Any]] = None) -> str:
        """Execute SQL statement, returning the command status tag"""
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            return await conn.execute(sql, *(params or []))

    async def execute_many(self, sql: str, params_list: List[List[Any]]) -> None:
        """Execute SQL statement with multiple parameter sets"""
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            await conn.executemany(sql, params_list)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """Yield a connection inside a transaction"""
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                yield conn

    async def close(self):
        """Close the pool"""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.info(f"PostgreSQL pool closed for {self.service_name}")


__all__ = ["PostgresClient"]
