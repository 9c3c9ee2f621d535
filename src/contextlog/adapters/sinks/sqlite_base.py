"""Connection handling for SQLite-backed sinks."""

import asyncio
import json
import logging
import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import aiosqlite

logger = logging.getLogger(__name__)

MEMORY_PATH = ":memory:"


def _safe_json_loads(
    data: str | None, default: dict[str, Any] | None = None
) -> dict[str, Any]:
    """Safely parse a JSON object, returning default on decode error.

    Args:
        data: JSON string to parse (``None`` is treated as empty).
        default: Value to return if parsing fails. Defaults to empty dict.

    Returns:
        Parsed JSON as dict, or default if parsing fails.
    """
    if default is None:
        default = {}
    if not data:
        return default
    try:
        result = json.loads(data)
    except json.JSONDecodeError:
        return default
    return result if isinstance(result, dict) else default


class SinkConnection:
    """One long-lived aiosqlite connection owned by a single sink.

    The connection is opened lazily and reused for every write. When an
    operation on a file database fails with ``sqlite3.OperationalError``
    (locked file, vanished directory, missing table) the connection is
    dropped, so the dispatcher's next retry reconnects and provisions the
    schema again. A ``:memory:`` database lives only as long as its
    connection and is therefore never dropped on error.

    Args:
        db_path: Database file path, or ":memory:".
        schema: SQL script run once per new connection; ``None`` assumes
            the table already exists.
    """

    def __init__(self, db_path: str, schema: str | None) -> None:
        self._db_path = db_path
        self._schema = schema
        self._conn: aiosqlite.Connection | None = None
        self._lock: asyncio.Lock | None = None

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def _get_lock(self) -> asyncio.Lock:
        """Get or create the open lock (lazy to bind to the running loop)."""
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    async def ensure_open(self) -> aiosqlite.Connection:
        """Return the open connection, connecting and provisioning if needed."""
        if self._conn is not None:
            return self._conn
        async with self._get_lock():
            if self._conn is not None:
                return self._conn
            conn = await aiosqlite.connect(self._db_path)
            try:
                if self._db_path != MEMORY_PATH:
                    await conn.execute("PRAGMA journal_mode=WAL")
                if self._schema:
                    await conn.executescript(self._schema)
            except BaseException:
                await conn.close()
                raise
            self._conn = conn
            return conn

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Yield the shared connection for one operation."""
        conn = await self.ensure_open()
        try:
            yield conn
        except sqlite3.OperationalError:
            if self._db_path != MEMORY_PATH:
                logger.debug("Dropping SQLite connection to %s", self._db_path)
                await self.close()
            raise

    async def close(self) -> None:
        """Close the connection; a later operation reconnects."""
        conn, self._conn = self._conn, None
        if conn is not None:
            await conn.close()
