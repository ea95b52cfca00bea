"""
Database Module
===============
Shared PostgreSQL connection pool for the durable stores.

This module provides:
- AsyncPG connection pool with lifecycle tied to the app lifespan
- Schema migrations for pending_orders and leads
- Small query helpers used by storage.repositories

pip install asyncpg
"""

from contextlib import asynccontextmanager
from typing import List, Optional

import asyncpg
import structlog

logger = structlog.get_logger(component="database")


MIGRATIONS = [
    # Checkout attempts awaiting (or past) their payment confirmation
    """
    CREATE TABLE IF NOT EXISTS pending_orders (
        correlation_id TEXT PRIMARY KEY,
        session_id TEXT NOT NULL,
        data JSONB NOT NULL,
        state VARCHAR(20) NOT NULL DEFAULT 'pending',
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        fulfilled_at TIMESTAMPTZ
    )
    """,

    # Paying customers' contact details, one per order
    """
    CREATE TABLE IF NOT EXISTS leads (
        id BIGSERIAL PRIMARY KEY,
        correlation_id TEXT NOT NULL UNIQUE,
        name TEXT,
        email TEXT NOT NULL,
        whatsapp TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,

    "CREATE UNIQUE INDEX IF NOT EXISTS idx_pending_orders_session ON pending_orders(session_id)",
    "CREATE INDEX IF NOT EXISTS idx_pending_orders_state ON pending_orders(state, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_leads_email ON leads(email)",
]


class Database:
    """Async database connection pool manager"""

    def __init__(
        self,
        dsn: str,
        min_size: int = 1,
        max_size: int = 10,
        acquire_timeout: float = 10.0,
    ):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.acquire_timeout = acquire_timeout
        self._pool: Optional[asyncpg.Pool] = None

    async def initialize(self) -> None:
        """Open the pool and run migrations"""
        if self._pool:
            return

        try:
            self._pool = await asyncpg.create_pool(
                self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=10,
            )
            logger.info("database_pool_initialized")
            await self._run_migrations()
        except Exception as e:
            logger.error("database_init_failed", error=str(e))
            raise

    async def close(self) -> None:
        """Close the connection pool"""
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("database_pool_closed")

    @asynccontextmanager
    async def acquire(self):
        """Acquire a connection from the pool"""
        if not self._pool:
            await self.initialize()

        async with self._pool.acquire(timeout=self.acquire_timeout) as conn:
            yield conn

    async def execute(self, query: str, *args) -> str:
        async with self.acquire() as conn:
            return await conn.execute(query, *args)

    async def fetch_one(self, query: str, *args) -> Optional[asyncpg.Record]:
        async with self.acquire() as conn:
            return await conn.fetchrow(query, *args)

    async def fetch_all(self, query: str, *args) -> List[asyncpg.Record]:
        async with self.acquire() as conn:
            return await conn.fetch(query, *args)

    async def _run_migrations(self) -> None:
        async with self.acquire() as conn:
            for migration in MIGRATIONS:
                await conn.execute(migration)

        logger.info("database_migrations_complete", count=len(MIGRATIONS))


def affected_rows(status: str) -> int:
    """Parse asyncpg's command tag, e.g. 'UPDATE 1' or 'INSERT 0 1'."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (ValueError, AttributeError):
        return 0
