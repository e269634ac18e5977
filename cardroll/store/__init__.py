"""
Store - Session persistence, side-channel secrets and stats.

The session store is the single source of truth every client polls.
Writes are whole-session and versioned.
"""

from .base import SessionStore, SecretStore, StatsStore, LeaderboardEntry
from .codec import SessionDocument, dump_session, load_session
from .memory import InMemoryStore

__all__ = [
    "SessionStore",
    "SecretStore",
    "StatsStore",
    "LeaderboardEntry",
    "SessionDocument",
    "dump_session",
    "load_session",
    "InMemoryStore",
    "create_store",
]


def create_store(redis_url: str | None = None):
    """Redis store when a URL is configured, in-memory otherwise."""
    if redis_url:
        from .redis_store import RedisStore
        return RedisStore(url=redis_url)
    return InMemoryStore()
