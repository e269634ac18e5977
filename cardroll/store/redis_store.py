"""
Redis-backed store.

Keys (prefix defaults to "cardroll"):
    {prefix}:session:{code}      session JSON, SET ... EX ttl
    {prefix}:sessions            set of tracked session codes
    {prefix}:secret:{round_id}   reveal hex, SET ... EX ttl
    {prefix}:stats:player:{id}   hash: display_name, games, wins
    {prefix}:stats:index         set of player ids with stats

compare_and_set uses WATCH/MULTI so a transition only commits if no
other client wrote the session in between.
"""

from __future__ import annotations
import logging

import redis

from ..engine_core.state import Session
from .base import SessionStore, SecretStore, StatsStore, LeaderboardEntry, rank_entries
from .codec import dump_session, load_session

logger = logging.getLogger(__name__)


class RedisStore(SessionStore, SecretStore, StatsStore):
    """
    Store over a redis.Redis client.

    Usage:
        store = RedisStore(url="redis://localhost:6379/0")
        store = RedisStore(client=redis.Redis(decode_responses=True))
    """

    def __init__(
        self,
        client: redis.Redis | None = None,
        url: str | None = None,
        prefix: str = "cardroll",
    ):
        self.redis = client or redis.Redis.from_url(
            url or "redis://localhost:6379/0",
            decode_responses=True,
            health_check_interval=30,
        )
        self.prefix = prefix

    def _session_key(self, code: str) -> str:
        return f"{self.prefix}:session:{code}"

    def _secret_key(self, round_id: int) -> str:
        return f"{self.prefix}:secret:{round_id}"

    def _stats_key(self, player_id: str) -> str:
        return f"{self.prefix}:stats:player:{player_id}"

    @property
    def _stats_index(self) -> str:
        return f"{self.prefix}:stats:index"

    # =========================================================================
    # Sessions
    # =========================================================================

    def get(self, code: str) -> Session | None:
        raw = self.redis.get(self._session_key(code))
        return load_session(raw) if raw else None

    def set(self, code: str, session: Session, ttl: int):
        stored = session.clone()
        stored.version = session.version + 1
        self.redis.set(self._session_key(code), dump_session(stored), ex=ttl)
        session.version = stored.version

    def compare_and_set(
        self,
        code: str,
        session: Session,
        expected_version: int,
        ttl: int,
    ) -> bool:
        key = self._session_key(code)
        with self.redis.pipeline() as pipe:
            try:
                pipe.watch(key)
                raw = pipe.get(key)
                current = load_session(raw).version if raw else 0
                if current != expected_version:
                    pipe.unwatch()
                    return False

                stored = session.clone()
                stored.version = expected_version + 1
                pipe.multi()
                pipe.set(key, dump_session(stored), ex=ttl)
                pipe.execute()
            except redis.WatchError:
                logger.debug(f"Lost write race on session {code}")
                return False

        session.version = expected_version + 1
        return True

    def track(self, code: str):
        self.redis.sadd(f"{self.prefix}:sessions", code)

    def untrack(self, code: str):
        self.redis.srem(f"{self.prefix}:sessions", code)

    def tracked_codes(self) -> list[str]:
        return sorted(self.redis.smembers(f"{self.prefix}:sessions"))

    # =========================================================================
    # Secrets
    # =========================================================================

    def set_secret(self, round_id: int, reveal_hex: str, ttl: int):
        self.redis.set(self._secret_key(round_id), reveal_hex, ex=ttl)

    def get_secret(self, round_id: int) -> str | None:
        return self.redis.get(self._secret_key(round_id))

    # =========================================================================
    # Stats
    # =========================================================================

    def record_result(self, player_id: str, display_name: str, won: bool):
        key = self._stats_key(player_id)
        pipe = self.redis.pipeline()
        pipe.hset(key, "display_name", display_name)
        pipe.hincrby(key, "games", 1)
        pipe.hincrby(key, "wins", 1 if won else 0)
        pipe.sadd(self._stats_index, player_id)
        pipe.execute()

    def leaderboard(self, limit: int = 10) -> list[LeaderboardEntry]:
        rows = []
        for player_id in self.redis.smembers(self._stats_index):
            row = self.redis.hgetall(self._stats_key(player_id))
            if not row:
                continue
            rows.append((
                player_id,
                row.get("display_name", player_id),
                int(row.get("games", 0)),
                int(row.get("wins", 0)),
            ))
        return rank_entries(rows, limit)
