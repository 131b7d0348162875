"""Feed engine: the live handle on one append-only feed."""

from feedstore.engine.feed import Feed

__all__ = ["Feed"]
