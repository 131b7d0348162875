"""
feedstore - a registry of independently persisted append-only feeds.

Each feed lives in its own storage namespace and is known by:
- its 32-byte public key
- its discovery key (safe to share, does not reveal the public key)
- an optional local name, private to this registry

The alias mappings live in a small transactional index (DuckDB) so that
a fresh registry over the same storage root can find every feed again.
"""

__version__ = "0.1.0"
__author__ = "feedstore contributors"
