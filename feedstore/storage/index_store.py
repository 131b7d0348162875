"""
DuckDB-backed index store.

The index is a small ordered key/value table. It holds every alias the
registry needs to find a feed again after a restart:
- discovery key -> public key
- local name -> public key (and the inverse)
- public key -> existence marker

Writes are buffered in memory and committed together by `flush()`.
Nothing is durable until a flush completes.
"""

import asyncio
from pathlib import Path
from typing import Optional, Union
import structlog

import duckdb

from feedstore.errors import StoreFailureError

logger = structlog.get_logger(__name__)

MEMORY = ":memory:"


class IndexStore:
    """
    Ordered, transactional key/value store.

    Design principles:
    - Keys are short prefix-namespaced strings, values are raw bytes
    - Reads see buffered writes that have not been flushed yet
    - One flush = one transaction (all buffered writes or none)
    """

    def __init__(self, db_path: Union[str, Path] = MEMORY):
        """
        Initialize the index store.

        Args:
            db_path: Path to the DuckDB file, or ":memory:"
        """
        self.db_path = str(db_path)
        self._pending: dict[str, bytes] = {}

        if self.db_path != MEMORY:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            self.conn = duckdb.connect(self.db_path)
            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS kv (
                    key VARCHAR PRIMARY KEY,
                    value BLOB NOT NULL
                )
            """)
        except duckdb.Error as e:
            logger.error("index_store_open_failed", path=self.db_path, error=str(e))
            raise StoreFailureError(f"cannot open index at {self.db_path}") from e

        logger.info("index_store_initialized", path=self.db_path)

    @property
    def pending_count(self) -> int:
        """Number of buffered writes waiting for a flush."""
        return len(self._pending)

    async def get(self, key: str) -> Optional[bytes]:
        """Get the value for a key, or None if absent."""
        if key in self._pending:
            return self._pending[key]

        try:
            row = self.conn.execute(
                "SELECT value FROM kv WHERE key = ?", [key]
            ).fetchone()
        except duckdb.Error as e:
            logger.error("index_store_read_failed", key=key, error=str(e))
            raise StoreFailureError(f"cannot read {key!r}") from e

        return bytes(row[0]) if row else None

    def put(self, key: str, value: bytes) -> None:
        """Buffer a write. It becomes durable on the next flush."""
        self._pending[key] = bytes(value)

    async def flush(self) -> None:
        """
        Commit every buffered write in a single transaction.

        On failure the transaction is rolled back and the batch goes back
        into the buffer under any newer writes, so a later flush commits it
        (or fails on it) again. A flush returns only once every write
        buffered before it is durable.
        """
        # Let concurrent writers add to this batch
        await asyncio.sleep(0)

        if not self._pending:
            return

        batch, self._pending = self._pending, {}

        try:
            self.conn.begin()
            self.conn.executemany(
                "INSERT OR REPLACE INTO kv VALUES (?, ?)",
                list(batch.items()),
            )
            self.conn.commit()
        except duckdb.Error as e:
            logger.error("index_store_flush_failed", count=len(batch), error=str(e))
            self._rollback()
            self._pending = {**batch, **self._pending}
            raise StoreFailureError(f"flush of {len(batch)} writes failed") from e

        logger.debug("index_store_flushed", count=len(batch))

    async def scan(self, prefix: str) -> list[tuple[str, bytes]]:
        """All committed and buffered entries under a prefix, in key order."""
        try:
            rows = self.conn.execute(
                "SELECT key, value FROM kv WHERE starts_with(key, ?) ORDER BY key",
                [prefix],
            ).fetchall()
        except duckdb.Error as e:
            logger.error("index_store_scan_failed", prefix=prefix, error=str(e))
            raise StoreFailureError(f"cannot scan {prefix!r}") from e

        entries = {key: bytes(value) for key, value in rows}
        for key, value in self._pending.items():
            if key.startswith(prefix):
                entries[key] = value

        return sorted(entries.items())

    def close(self) -> None:
        """Close the database connection. Unflushed writes are discarded."""
        if self._pending:
            logger.warning("index_store_closed_with_pending", count=len(self._pending))
        self.conn.close()
        logger.info("index_store_closed", path=self.db_path)

    def _rollback(self) -> None:
        try:
            self.conn.rollback()
        except duckdb.Error as e:
            logger.warning("index_store_rollback_failed", error=str(e))
