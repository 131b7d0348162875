"""
Integration test for registry persistence.

Tests the full flow:
create → append → shutdown → fresh registry → resolve → read
"""

import pytest

from feedstore.crypto.keys import discovery_key, generate_keypair
from feedstore.registry.feed_registry import FeedRegistry
from feedstore.storage.index_store import IndexStore


@pytest.fixture
def root(tmp_path):
    return tmp_path / "feeds"


@pytest.mark.asyncio
async def test_local_name_survives_restart(root):
    """A name bound at creation resolves after a restart."""
    remote = generate_keypair().public_key

    first = FeedRegistry(root)
    await first.create_remote(remote, "alpha")
    await first.shutdown()

    second = FeedRegistry(root)
    try:
        assert await second.from_local_name("alpha") == remote
        assert await second.local_name_of(remote) == "alpha"
        assert await second.from_discovery_key(discovery_key(remote)) == remote
        assert await second.has(remote)
        assert not second.is_open(remote)
    finally:
        await second.shutdown()


@pytest.mark.asyncio
async def test_entries_survive_restart(root):
    """Data appended before shutdown is readable through the name afterwards."""
    first = FeedRegistry(root)
    feed = await first.create_local("journal")
    await feed.append_batch([b"one", b"two", b"three"])
    key = feed.key
    await first.shutdown()

    second = FeedRegistry(root)
    try:
        reopened = second.get("journal")
        assert await reopened.get(2) == b"three"
        assert reopened.key == key
        assert reopened.length == 3
        assert reopened.writable

        await reopened.append(b"four")
        assert reopened.length == 4
    finally:
        await second.shutdown()


@pytest.mark.asyncio
async def test_loaded_keys_are_listed(root):
    """Feeds reached through get() are recorded like created ones."""
    remote = generate_keypair().public_key

    first = FeedRegistry(root)
    created = await first.create_local("mine")
    first.get(remote)
    await first.shutdown()

    second = FeedRegistry(root)
    try:
        keys = await second.list_keys()
        assert sorted(keys) == sorted([created.key, remote])
        assert await second.local_name_of(created.key) == "mine"
        assert await second.local_name_of(remote) is None
    finally:
        await second.shutdown()


@pytest.mark.asyncio
async def test_deleted_feed_keeps_aliases(root):
    """Deleting erases data; the name still resolves to the key."""
    first = FeedRegistry(root)
    feed = await first.create_local("gone")
    await feed.append(b"data")
    await first.delete("gone")
    await first.shutdown()

    second = FeedRegistry(root)
    try:
        assert await second.from_local_name("gone") == feed.key
        assert not (root / f"f_{feed.key.hex()}").exists()
    finally:
        await second.shutdown()


@pytest.mark.asyncio
async def test_separate_index_path(tmp_path):
    """The index can live outside the storage root."""
    index_path = tmp_path / "elsewhere" / "aliases.duckdb"

    first = FeedRegistry(tmp_path / "feeds", IndexStore(index_path))
    feed = await first.create_local("beta")
    await first.shutdown()

    assert index_path.exists()
    assert not (tmp_path / "feeds" / "db").exists()

    second = FeedRegistry(tmp_path / "feeds", IndexStore(index_path))
    try:
        assert await second.from_local_name("beta") == feed.key
    finally:
        await second.shutdown()


@pytest.mark.asyncio
async def test_name_resolves_onto_feed_opened_by_key(root):
    """After a restart, a name reaches the handle already opened by key."""
    remote = generate_keypair().public_key

    first = FeedRegistry(root)
    await first.create_remote(remote, "alpha")
    await first.shutdown()

    second = FeedRegistry(root)
    try:
        by_key = second.get(remote)
        await by_key.ready()

        by_name = second.get("alpha")
        await by_name.ready()

        assert by_name.key == remote
        assert second.is_open("alpha")
    finally:
        await second.shutdown()


@pytest.mark.asyncio
async def test_shutdown_closes_unresolved_name_handle(root):
    registry = FeedRegistry(root)
    feed = registry.get("x")

    await registry.shutdown()

    assert feed.closed
