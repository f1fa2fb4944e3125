"""
DuckDB-backed key-value store for chatline.
Keeps credentials and the message history mirror in a single local database file.
"""

import asyncio
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

import duckdb

from config import get_data_paths
from errors import StorageError

logger = logging.getLogger(__name__)

# Database location
DB_PATH = get_data_paths()["data"] / "chatline.duckdb"

KV_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv_store (
    key TEXT PRIMARY KEY,
    value TEXT,
    updated_at TIMESTAMP
);
"""


class DuckDBKeyValueStore:
    """Durable key-value store on top of a DuckDB file."""

    def __init__(self, db_path: Path | None = None):
        self.db_path = Path(db_path) if db_path else DB_PATH
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self) -> None:
        """Create the key-value table if needed."""
        with self.get_connection() as conn:
            conn.execute(KV_SCHEMA)
        logger.debug(f"DuckDB key-value store initialized at {self.db_path}")

    @contextmanager
    def get_connection(self) -> Iterator[duckdb.DuckDBPyConnection]:
        """Get database connection, translating driver faults to StorageError."""
        try:
            conn = duckdb.connect(str(self.db_path))
        except (duckdb.Error, OSError) as e:
            raise StorageError(f"Cannot open {self.db_path}: {e}") from e
        try:
            yield conn
        except duckdb.Error as e:
            raise StorageError(str(e)) from e
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Blocking primitives
    # ------------------------------------------------------------------
    def _get(self, key: str) -> str | None:
        with self.get_connection() as conn:
            row = conn.execute(
                "SELECT value FROM kv_store WHERE key = ?", [key]
            ).fetchone()
            return str(row[0]) if row and row[0] is not None else None

    def _set(self, key: str, value: str) -> None:
        with self.get_connection() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO kv_store(key, value, updated_at) "
                "VALUES(?, ?, ?)",
                [key, value, datetime.now()],
            )

    def _remove(self, key: str) -> None:
        with self.get_connection() as conn:
            conn.execute("DELETE FROM kv_store WHERE key = ?", [key])

    # ------------------------------------------------------------------
    # KeyValueStore interface
    # ------------------------------------------------------------------
    async def get(self, key: str) -> str | None:
        return await asyncio.to_thread(self._get, key)

    async def set(self, key: str, value: str) -> None:
        await asyncio.to_thread(self._set, key, value)

    async def remove(self, key: str) -> None:
        await asyncio.to_thread(self._remove, key)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------
    def keys(self) -> list[str]:
        with self.get_connection() as conn:
            rows = conn.execute("SELECT key FROM kv_store ORDER BY key").fetchall()
            return [str(r[0]) for r in rows]

    def clear(self) -> None:
        """Delete every stored key."""
        with self.get_connection() as conn:
            conn.execute("DELETE FROM kv_store")
        logger.info(f"Cleared local store at {self.db_path}")


# Global DuckDB store instance
_duckdb_instance: DuckDBKeyValueStore | None = None


def get_duckdb(db_path: Path | None = None) -> DuckDBKeyValueStore:
    """Get global DuckDB store instance."""
    global _duckdb_instance
    if _duckdb_instance is None or (
        db_path is not None and Path(db_path) != _duckdb_instance.db_path
    ):
        _duckdb_instance = DuckDBKeyValueStore(db_path)
    return _duckdb_instance
