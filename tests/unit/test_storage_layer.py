"""
Storage layer tests.

Tests IndexStore (DuckDB), AliasIndex and storage namespaces, including
durability across reopen and failure paths.
"""

import pytest
import tempfile
import shutil
from pathlib import Path
from unittest.mock import MagicMock

import duckdb

from feedstore.errors import FeedNotFoundError, StoreFailureError
from feedstore.storage.alias_index import AliasIndex
from feedstore.storage.index_store import IndexStore
from feedstore.storage.namespace import DeferredStorage, StorageRoot, StorageState

KEY = bytes(range(32))
OTHER_KEY = bytes(range(32, 64))


class TestIndexStore:
    """Buffered writes, flush and reopen."""

    def setup_method(self):
        """Create temp database for each test."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = Path(self.temp_dir) / "db" / "index.duckdb"
        self.store = IndexStore(self.db_path)

    def teardown_method(self):
        """Clean up."""
        self.store.close()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    @pytest.mark.asyncio
    async def test_missing_key_is_none(self):
        assert await self.store.get("k!missing") is None

    @pytest.mark.asyncio
    async def test_buffered_write_is_readable(self):
        self.store.put("k!a", b"value")

        assert self.store.pending_count == 1
        assert await self.store.get("k!a") == b"value"

    @pytest.mark.asyncio
    async def test_flush_is_durable_across_reopen(self):
        self.store.put("k!a", b"one")
        self.store.put("k!b", b"")
        await self.store.flush()
        assert self.store.pending_count == 0

        self.store.close()
        self.store = IndexStore(self.db_path)

        assert await self.store.get("k!a") == b"one"
        assert await self.store.get("k!b") == b""

    @pytest.mark.asyncio
    async def test_unflushed_writes_are_lost_on_close(self):
        self.store.put("k!a", b"one")
        self.store.close()
        self.store = IndexStore(self.db_path)

        assert await self.store.get("k!a") is None

    @pytest.mark.asyncio
    async def test_put_overwrites(self):
        self.store.put("l!name", KEY)
        await self.store.flush()
        self.store.put("l!name", OTHER_KEY)
        await self.store.flush()

        assert await self.store.get("l!name") == OTHER_KEY

    @pytest.mark.asyncio
    async def test_scan_is_ordered_and_prefixed(self):
        self.store.put("k!b", b"")
        self.store.put("k!a", b"")
        await self.store.flush()
        self.store.put("k!c", b"")
        self.store.put("d!a", b"")

        entries = await self.store.scan("k!")

        assert [key for key, _ in entries] == ["k!a", "k!b", "k!c"]

    @pytest.mark.asyncio
    async def test_empty_flush_is_noop(self):
        await self.store.flush()

    @pytest.mark.asyncio
    async def test_flush_failure_raises_store_failure(self):
        conn = MagicMock()
        conn.executemany.side_effect = duckdb.Error("disk full")
        real_conn, self.store.conn = self.store.conn, conn

        self.store.put("k!a", b"")
        with pytest.raises(StoreFailureError):
            await self.store.flush()

        conn.rollback.assert_called_once()
        self.store.conn = real_conn

    @pytest.mark.asyncio
    async def test_failed_batch_is_kept_for_next_flush(self):
        conn = MagicMock()
        conn.executemany.side_effect = duckdb.Error("disk full")
        real_conn, self.store.conn = self.store.conn, conn

        self.store.put("k!a", b"old")
        self.store.put("k!b", b"")
        with pytest.raises(StoreFailureError):
            await self.store.flush()

        self.store.conn = real_conn
        self.store.put("k!a", b"new")
        assert self.store.pending_count == 2

        await self.store.flush()

        assert self.store.pending_count == 0
        assert await self.store.get("k!a") == b"new"
        assert await self.store.get("k!b") == b""

    @pytest.mark.asyncio
    async def test_flush_after_failure_fails_while_store_is_broken(self):
        conn = MagicMock()
        conn.executemany.side_effect = duckdb.Error("disk full")
        real_conn, self.store.conn = self.store.conn, conn

        self.store.put("k!a", b"")
        with pytest.raises(StoreFailureError):
            await self.store.flush()
        with pytest.raises(StoreFailureError):
            await self.store.flush()

        assert conn.executemany.call_count == 2
        self.store.conn = real_conn

    @pytest.mark.asyncio
    async def test_memory_store(self):
        store = IndexStore()
        store.put("k!a", b"x")
        await store.flush()

        assert await store.get("k!a") == b"x"
        store.close()


class TestAliasIndex:
    """Prefix-namespaced relations."""

    def setup_method(self):
        self.store = IndexStore()
        self.aliases = AliasIndex(self.store)

    def teardown_method(self):
        self.store.close()

    @pytest.mark.asyncio
    async def test_lookups_absent_are_none(self):
        assert await self.aliases.by_discovery_key("00" * 32) is None
        assert await self.aliases.by_local_name("alpha") is None
        assert await self.aliases.local_name_of(KEY.hex()) is None
        assert await self.aliases.exists(KEY.hex()) is False

    @pytest.mark.asyncio
    async def test_relations_do_not_collide(self):
        # The same string used in every relation
        token = KEY.hex()
        self.aliases.put_discovery_key(token, KEY)
        self.aliases.put_local_name(token, OTHER_KEY)
        self.aliases.mark_exists(token)
        await self.aliases.flush()

        assert await self.aliases.by_discovery_key(token) == KEY
        assert await self.aliases.by_local_name(token) == OTHER_KEY
        assert await self.aliases.exists(token) is True

    @pytest.mark.asyncio
    async def test_local_name_writes_inverse(self):
        self.aliases.put_local_name("alpha", KEY)
        await self.aliases.flush()

        assert await self.aliases.by_local_name("alpha") == KEY
        assert await self.aliases.local_name_of(KEY.hex()) == "alpha"
        assert await self.store.get(f"L!{KEY.hex()}") == b"alpha"

    @pytest.mark.asyncio
    async def test_keys_lists_existence_markers(self):
        self.aliases.mark_exists(OTHER_KEY.hex())
        self.aliases.mark_exists(KEY.hex())
        self.aliases.put_discovery_key("ff" * 32, KEY)

        assert await self.aliases.keys() == [KEY.hex(), OTHER_KEY.hex()]


class TestStorageNamespaces:
    """Per-feed directories and deferred resolution."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.root = StorageRoot(Path(self.temp_dir) / "root")

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_namespace_is_scoped(self):
        storage = self.root.namespace("f_abc")

        path = storage.file("data.jsonl")

        assert path == self.root.root_path / "f_abc" / "data.jsonl"
        assert path.parent.is_dir()

    @pytest.mark.asyncio
    async def test_erase_removes_namespace(self):
        storage = self.root.namespace("f_abc")
        storage.file("data.jsonl").write_text("x")

        await self.root.erase("f_abc")

        assert not storage.path.exists()

    @pytest.mark.asyncio
    async def test_erase_missing_namespace_is_noop(self):
        await self.root.erase("f_missing")

    @pytest.mark.asyncio
    async def test_deferred_resolves_once(self):
        calls = []
        target = self.root.namespace("f_abc")

        async def resolver():
            calls.append(1)
            return target

        deferred = DeferredStorage(resolver)
        assert deferred.state is StorageState.PENDING

        first = await deferred.resolve()
        second = await deferred.resolve()

        assert first is target and second is target
        assert calls == [1]
        assert deferred.state is StorageState.RESOLVED

    @pytest.mark.asyncio
    async def test_deferred_failure_reaches_every_caller(self):
        async def resolver():
            raise FeedNotFoundError("alpha")

        deferred = DeferredStorage(resolver)

        for _ in range(2):
            with pytest.raises(FeedNotFoundError):
                await deferred.resolve()

        assert deferred.state is StorageState.FAILED
