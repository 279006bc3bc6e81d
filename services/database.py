"""
Database Service
================
Async PostgreSQL connection pool and query helpers using psycopg3.
Uses psycopg3 (not asyncpg) for compatibility with LangGraph's AsyncPostgresSaver.

One DatabaseService instance is created by the entry point and handed to the
record services (plans, jobs, inventory, preferences) that need it.
"""

import logging
import uuid
from datetime import date, datetime, time
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional

from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from config.settings import get_database_url, DATABASE

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).with_name("schema.sql")


class DatabaseService:
    """Async PostgreSQL database service with connection pooling."""

    def __init__(self, dsn: Optional[str] = None):
        self.dsn = dsn or get_database_url()
        self._pool: Optional[AsyncConnectionPool] = None

    async def initialize(self) -> None:
        """Open the connection pool."""
        if self._pool is not None:
            return

        self._pool = AsyncConnectionPool(
            conninfo=self.dsn,
            min_size=DATABASE["min_connections"],
            max_size=DATABASE["max_connections"],
            kwargs={"row_factory": dict_row},
            open=False,
        )
        await self._pool.open()
        logger.info("Database connection pool initialized")

    async def close(self) -> None:
        """Close the connection pool."""
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("Database connection pool closed")

    @property
    def pool(self) -> AsyncConnectionPool:
        if self._pool is None:
            raise RuntimeError("DatabaseService.initialize() has not been awaited")
        return self._pool

    async def apply_schema(self, path: Path = SCHEMA_PATH) -> None:
        """Create tables, indexes and the change-notification trigger."""
        async with self.pool.connection() as conn:
            await conn.execute(path.read_text())
            await conn.commit()
        logger.info(f"Applied schema from {path.name}")

    async def _run(self, query: str, params: Optional[tuple], rows: str, commit: bool):
        async with self.pool.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(query, params)
                if rows == "one":
                    result = await cur.fetchone()
                    result = dict(result) if result else None
                elif rows == "all":
                    result = [dict(row) for row in await cur.fetchall()]
                else:
                    result = cur.rowcount
            if commit:
                await conn.commit()
            return result

    async def fetch_one(self, query: str, params: Optional[tuple] = None) -> Optional[dict[str, Any]]:
        """Execute a query and return a single row as a dict."""
        return await self._run(query, params, "one", commit=False)

    async def fetch_all(self, query: str, params: Optional[tuple] = None) -> list[dict[str, Any]]:
        """Execute a query and return all rows as a list of dicts."""
        return await self._run(query, params, "all", commit=False)

    async def execute(self, query: str, params: Optional[tuple] = None) -> int:
        """Run a write without returning rows; gives back the affected row count."""
        return await self._run(query, params, "count", commit=True)

    async def execute_returning(self, query: str, params: Optional[tuple] = None) -> Optional[dict[str, Any]]:
        """Run an INSERT/UPDATE ... RETURNING and give back its first row."""
        return await self._run(query, params, "one", commit=True)

    async def execute_returning_all(self, query: str, params: Optional[tuple] = None) -> list[dict[str, Any]]:
        """Run a bulk UPDATE ... RETURNING and give back every row."""
        return await self._run(query, params, "all", commit=True)


def plain_row(row: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
    """Convert driver types (UUID, date, Decimal) to JSON-friendly values."""
    if row is None:
        return None
    plain = {}
    for key, value in row.items():
        if isinstance(value, uuid.UUID):
            value = str(value)
        elif isinstance(value, (datetime, date, time)):
            value = value.isoformat()
        elif isinstance(value, Decimal):
            value = float(value)
        elif isinstance(value, list):
            value = [str(v) if isinstance(v, uuid.UUID) else v for v in value]
        plain[key] = value
    return plain
