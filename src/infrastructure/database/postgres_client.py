"""PostgreSQL database client for local development.

This module provides a connection pool and helper functions for interacting with
a local PostgreSQL database as an alternative to Supabase for development/demo purposes.
The driver is blocking, so every helper has an ``a``-prefixed coroutine twin that
runs it in a worker thread and keeps the event loop free.
"""
from __future__ import annotations

import asyncio
import logging
import os
from contextlib import contextmanager
from typing import Any, Generator

import psycopg2
from psycopg2 import pool
from psycopg2.extras import Json, RealDictCursor

from src.domain.errors import StorageFailure

logger = logging.getLogger(__name__)

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS images (
        id TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
        owner_id TEXT NOT NULL,
        visibility TEXT NOT NULL DEFAULT 'private' CHECK (visibility IN ('public', 'private')),
        title TEXT NOT NULL,
        description TEXT,
        tags TEXT[] NOT NULL DEFAULT '{}',
        format TEXT NOT NULL,
        size BIGINT NOT NULL DEFAULT 0,
        width INTEGER NOT NULL DEFAULT 0,
        height INTEGER NOT NULL DEFAULT 0,
        storage_path TEXT,
        original_filename TEXT,
        created_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS images_owner_visibility_idx ON images (owner_id, visibility)",
    "CREATE INDEX IF NOT EXISTS images_visibility_created_idx ON images (visibility, created_at DESC)",
    """
    CREATE TABLE IF NOT EXISTS metadata_versions (
        id TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
        seq BIGSERIAL NOT NULL UNIQUE,
        image_id TEXT NOT NULL REFERENCES images (id) ON DELETE CASCADE,
        created_at TIMESTAMPTZ NOT NULL,
        author TEXT,
        change_type TEXT NOT NULL CHECK (change_type IN ('initial', 'edit', 'strip', 'restore')),
        metadata JSONB NOT NULL,
        description TEXT
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS metadata_versions_image_created_idx
        ON metadata_versions (image_id, created_at DESC, seq DESC)
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS metadata_versions_one_initial_idx
        ON metadata_versions (image_id) WHERE change_type = 'initial'
    """,
    """
    CREATE TABLE IF NOT EXISTS profiles (
        id TEXT PRIMARY KEY,
        email TEXT,
        display_name TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
)


class PostgresClient:
    """PostgreSQL database client with connection pooling."""

    def __init__(self) -> None:
        """Initialize PostgreSQL connection pool."""
        self.enabled = os.getenv("USE_LOCAL_DB", "0") == "1"
        self._pool: Any = None

        if self.enabled:
            try:
                self._pool = pool.ThreadedConnectionPool(
                    minconn=1,
                    maxconn=10,
                    host=os.getenv("POSTGRES_HOST", "localhost"),
                    port=int(os.getenv("POSTGRES_PORT", "5432")),
                    database=os.getenv("POSTGRES_DB", "localcdn"),
                    user=os.getenv("POSTGRES_USER", "localcdn"),
                    password=os.getenv("POSTGRES_PASSWORD", "localcdn_dev_password"),
                )
            except psycopg2.Error as exc:
                raise StorageFailure(f"Failed to initialize PostgreSQL connection pool: {exc}") from exc

    @contextmanager
    def get_connection(self) -> Generator[Any, None, None]:
        """Get a database connection from the pool.

        Yields:
            Database connection with automatic return to pool on exit.

        Raises:
            StorageFailure: If local database is not enabled.
        """
        if not self.enabled or self._pool is None:
            raise StorageFailure("Local PostgreSQL database is not enabled")

        conn = None
        try:
            conn = self._pool.getconn()
            yield conn
            conn.commit()
        except Exception:
            if conn:
                conn.rollback()
            raise
        finally:
            if conn:
                self._pool.putconn(conn)

    @contextmanager
    def get_cursor(self, dict_cursor: bool = True) -> Generator[Any, None, None]:
        """Get a database cursor.

        Args:
            dict_cursor: If True, returns results as dictionaries (default: True).
        """
        with self.get_connection() as conn:
            cursor_factory = RealDictCursor if dict_cursor else None
            cursor = conn.cursor(cursor_factory=cursor_factory)
            try:
                yield cursor
            finally:
                cursor.close()

    def execute_one(self, query: str, params: tuple = ()) -> dict[str, Any] | None:
        """Execute a query and return a single result, or None if no rows."""
        with self.get_cursor() as cursor:
            cursor.execute(query, params)
            result = cursor.fetchone()
            return dict(result) if result else None

    def execute_many(self, query: str, params: tuple = ()) -> list[dict[str, Any]]:
        """Execute a query and return all rows as dictionaries."""
        with self.get_cursor() as cursor:
            cursor.execute(query, params)
            results = cursor.fetchall()
            return [dict(row) for row in results]

    def execute_insert(self, query: str, params: tuple = ()) -> dict[str, Any]:
        """Execute an INSERT query with a RETURNING clause and return the inserted row."""
        with self.get_cursor() as cursor:
            cursor.execute(query, params)
            result = cursor.fetchone()
            if not result:
                raise StorageFailure("Insert query did not return a row")
            return dict(result)

    def execute_update(self, query: str, params: tuple = ()) -> int:
        """Execute an UPDATE or DELETE query and return the number of rows affected."""
        with self.get_cursor(dict_cursor=False) as cursor:
            cursor.execute(query, params)
            return cursor.rowcount

    async def aexecute_one(self, query: str, params: tuple = ()) -> dict[str, Any] | None:
        return await asyncio.to_thread(self.execute_one, query, params)

    async def aexecute_many(self, query: str, params: tuple = ()) -> list[dict[str, Any]]:
        return await asyncio.to_thread(self.execute_many, query, params)

    async def aexecute_insert(self, query: str, params: tuple = ()) -> dict[str, Any]:
        return await asyncio.to_thread(self.execute_insert, query, params)

    async def aexecute_update(self, query: str, params: tuple = ()) -> int:
        return await asyncio.to_thread(self.execute_update, query, params)

    def ensure_schema(self) -> None:
        """Create tables and indexes used by the repositories if missing."""
        with self.get_cursor(dict_cursor=False) as cursor:
            for statement in SCHEMA_STATEMENTS:
                cursor.execute(statement)
        logger.info("PostgreSQL schema ensured", extra={"event": "lifecycle"})

    def close(self) -> None:
        """Close all connections in the pool."""
        if self._pool:
            self._pool.closeall()


def as_json(value: Any) -> Json:
    """Adapt a Python mapping for a JSONB parameter."""
    return Json(value)
