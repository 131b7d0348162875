"""Feed registry: creation, lookup, close and delete of feeds."""

from feedstore.registry.creation import PendingCreation
from feedstore.registry.feed_registry import FEED_PREFIX, FeedRegistry

__all__ = ["FEED_PREFIX", "FeedRegistry", "PendingCreation"]
