"""SQLite backend implementation using aiosqlite."""

from __future__ import annotations

from pathlib import Path

import aiosqlite

MEMORY_PATH = ":memory:"


class SQLiteBackend:
    """Async SQLite connection holder.

    One connection per process; aiosqlite serializes statements on its worker
    thread, so DAOs share it without extra locking.
    """

    def __init__(self, db_path: str | Path) -> None:
        """Initialize SQLite backend.

        Args:
            db_path: Path to SQLite database file, or ``:memory:``.
        """
        self.db_path = str(db_path)
        self._connection: aiosqlite.Connection | None = None

    @property
    def is_memory(self) -> bool:
        return self.db_path == MEMORY_PATH

    async def connect(self) -> None:
        """Establish database connection."""
        if not self.is_memory:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._connection = await aiosqlite.connect(self.db_path)
        self._connection.row_factory = aiosqlite.Row
        if not self.is_memory:
            await self._connection.execute("PRAGMA journal_mode = WAL")

    async def disconnect(self) -> None:
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    @property
    def connection(self) -> aiosqlite.Connection:
        """Get the database connection."""
        if not self._connection:
            raise RuntimeError("Database not connected")
        return self._connection

    async def initialize(self, schema_sql: str) -> None:
        """Initialize database schema."""
        conn = self.connection
        await conn.executescript(schema_sql)
        await conn.commit()
