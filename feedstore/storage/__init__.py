"""
Storage layer with separated concerns.

- IndexStore: DuckDB key/value table holding every alias
- AliasIndex: prefix-namespaced relations over the index
- StorageRoot: one directory per feed, erasable as a unit
"""

from feedstore.storage.alias_index import AliasIndex
from feedstore.storage.index_store import IndexStore
from feedstore.storage.namespace import DeferredStorage, FeedStorage, StorageRoot, StorageState

__all__ = [
    "AliasIndex",
    "DeferredStorage",
    "FeedStorage",
    "IndexStore",
    "StorageRoot",
    "StorageState",
]
