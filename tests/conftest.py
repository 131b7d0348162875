"""
Pytest configuration and fixtures.

Shared fixtures for all tests.
"""

import pytest
import os
from pathlib import Path
import tempfile
import shutil

from feedstore.registry.feed_registry import FeedRegistry

# Keep environment overrides out of the tests
for var in ("FEEDSTORE_ROOT", "FEEDSTORE_INDEX_PATH", "FEEDSTORE_LOG_LEVEL"):
    os.environ.pop(var, None)


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests."""
    temp_path = Path(tempfile.mkdtemp())
    yield temp_path
    shutil.rmtree(temp_path)


@pytest.fixture
def registry(temp_dir):
    """Registry over a fresh storage root."""
    reg = FeedRegistry(temp_dir / "feeds")
    yield reg
    reg.store.close()


@pytest.fixture
def remote_key():
    """A public key this registry does not own."""
    from feedstore.crypto.keys import generate_keypair

    return generate_keypair().public_key
