"""Database connection and initialization.

The persistence collaborator is a single SQLite database reached through
aiosqlite. The location comes from ``CRAWLGATE_DATABASE_URL``:

- sqlite:///path/to/crawlgate.db (default, under the data directory)
- sqlite:///:memory: (tests)
"""

from __future__ import annotations

from pathlib import Path

import aiosqlite

from crawlgate.storage.sqlite_backend import SQLiteBackend

_SQLITE_PREFIXES = ("sqlite+aiosqlite:///", "sqlite:///")


def parse_database_url(url: str) -> str:
    """Return the SQLite file path encoded in ``url``."""
    for prefix in _SQLITE_PREFIXES:
        if url.startswith(prefix):
            return url[len(prefix) :]
    raise ValueError(f"Unsupported database URL: {url}")


class Database:
    """Thin wrapper exposing the aiosqlite connection to DAOs."""

    def __init__(self, database_url: str) -> None:
        self.db_path = parse_database_url(database_url)
        self._backend: SQLiteBackend | None = None

    async def connect(self) -> None:
        """Connect to the database."""
        self._backend = SQLiteBackend(self.db_path)
        await self._backend.connect()

    async def disconnect(self) -> None:
        """Disconnect from the database."""
        if self._backend:
            await self._backend.disconnect()
            self._backend = None

    async def initialize(self) -> None:
        """Initialize the database schema."""
        if not self._backend:
            await self.connect()
        schema = (Path(__file__).parent / "schema.sql").read_text()
        await self.backend.initialize(schema)

    @property
    def backend(self) -> SQLiteBackend:
        if not self._backend:
            raise RuntimeError("Database not connected")
        return self._backend

    @property
    def connection(self) -> aiosqlite.Connection:
        return self.backend.connection


async def create_database(database_url: str) -> Database:
    """Create, connect and initialize a database instance.

    Args:
        database_url: Database URL (``sqlite:///...``).

    Returns:
        A ready-to-use Database.
    """
    db = Database(database_url)
    await db.connect()
    await db.initialize()
    return db
