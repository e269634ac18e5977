"""
In-memory store.

Single-process stand-in for the key-value backend. Entries are kept
as serialized JSON, so two "clients" sharing this store never share
Python objects, just like two processes sharing Redis.
"""

from __future__ import annotations
from typing import Callable
import threading
import time

from ..engine_core.state import Session
from .base import SessionStore, SecretStore, StatsStore, LeaderboardEntry, rank_entries
from .codec import dump_session, load_session


class InMemoryStore(SessionStore, SecretStore, StatsStore):
    """
    Dict-backed store with expiry.

    Args:
        clock: Time source for expiry checks (tests pass a fake clock)
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._sessions: dict[str, tuple[str, float]] = {}
        self._secrets: dict[int, tuple[str, float]] = {}
        self._tracked: dict[str, None] = {}
        self._stats: dict[str, dict] = {}
        self._lock = threading.Lock()

    # =========================================================================
    # Sessions
    # =========================================================================

    def _read(self, code: str) -> str | None:
        entry = self._sessions.get(code)
        if entry is None:
            return None
        payload, expires_at = entry
        if self._clock() >= expires_at:
            del self._sessions[code]
            return None
        return payload

    def _write(self, code: str, session: Session, version: int, ttl: int):
        stored = session.clone()
        stored.version = version
        self._sessions[code] = (dump_session(stored), self._clock() + ttl)
        session.version = version

    def get(self, code: str) -> Session | None:
        with self._lock:
            payload = self._read(code)
        return load_session(payload) if payload else None

    def set(self, code: str, session: Session, ttl: int):
        with self._lock:
            payload = self._read(code)
            current = load_session(payload).version if payload else 0
            self._write(code, session, max(current, session.version) + 1, ttl)

    def compare_and_set(
        self,
        code: str,
        session: Session,
        expected_version: int,
        ttl: int,
    ) -> bool:
        with self._lock:
            payload = self._read(code)
            current = load_session(payload).version if payload else 0
            if current != expected_version:
                return False
            self._write(code, session, expected_version + 1, ttl)
            return True

    def track(self, code: str):
        with self._lock:
            self._tracked[code] = None

    def untrack(self, code: str):
        with self._lock:
            self._tracked.pop(code, None)

    def tracked_codes(self) -> list[str]:
        with self._lock:
            return list(self._tracked)

    # =========================================================================
    # Secrets
    # =========================================================================

    def set_secret(self, round_id: int, reveal_hex: str, ttl: int):
        with self._lock:
            self._secrets[round_id] = (reveal_hex, self._clock() + ttl)

    def get_secret(self, round_id: int) -> str | None:
        with self._lock:
            entry = self._secrets.get(round_id)
            if entry is None:
                return None
            reveal_hex, expires_at = entry
            if self._clock() >= expires_at:
                del self._secrets[round_id]
                return None
            return reveal_hex

    # =========================================================================
    # Stats
    # =========================================================================

    def record_result(self, player_id: str, display_name: str, won: bool):
        with self._lock:
            row = self._stats.setdefault(player_id, {"display_name": display_name, "games": 0, "wins": 0})
            row["display_name"] = display_name
            row["games"] += 1
            if won:
                row["wins"] += 1

    def leaderboard(self, limit: int = 10) -> list[LeaderboardEntry]:
        with self._lock:
            rows = [
                (pid, row["display_name"], row["games"], row["wins"])
                for pid, row in self._stats.items()
            ]
        return rank_entries(rows, limit)
