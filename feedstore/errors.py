"""
Error types raised by the registry, the index and the feed engine.

Nothing here is retried or swallowed: each call path raises the first
failure it meets to its own caller.
"""


class FeedStoreError(Exception):
    """Base class for all feedstore errors."""


class FeedNotFoundError(FeedStoreError):
    """Unknown discovery key, local name or feed."""

    def __init__(self, identifier):
        self.identifier = identifier
        super().__init__(f"feed not found: {identifier!r}")


class FeedNotLoadedError(FeedStoreError):
    """The operation needs an open handle and there is none."""

    def __init__(self, identifier):
        self.identifier = identifier
        super().__init__(f"feed not loaded: {identifier!r}")


class StoreFailureError(FeedStoreError):
    """The index store failed to read, write or flush."""


class EngineFailureError(FeedStoreError):
    """The feed engine failed."""


class FeedNotWritableError(EngineFailureError):
    """Append attempted on a feed without a secret key."""


class KeyMismatchError(EngineFailureError):
    """A storage namespace already holds a different feed."""


class LocalNameConflictError(FeedStoreError):
    """A local name is already bound to a different public key."""

    def __init__(self, local_name: str, existing_key: str):
        self.local_name = local_name
        self.existing_key = existing_key
        super().__init__(
            f"local name {local_name!r} is already bound to {existing_key}"
        )
