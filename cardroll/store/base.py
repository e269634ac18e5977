"""
Store interfaces.

SessionStore   whole-session get/set with TTL, plus a versioned
               compare_and_set so only one concurrent writer wins a
               transition
SecretStore    side-channel for reveal secrets, keyed by round id
StatsStore     per-player win/loss counts for the leaderboard
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable

from ..engine_core.state import Session


class SessionStore(ABC):
    """
    Durable session storage.

    Every write stores the whole session (no field-level updates) and
    bumps its version. The session object passed in gets the new version.
    """

    @abstractmethod
    def get(self, code: str) -> Session | None:
        ...

    @abstractmethod
    def set(self, code: str, session: Session, ttl: int):
        """Unconditional write (last write wins)."""

    @abstractmethod
    def compare_and_set(
        self,
        code: str,
        session: Session,
        expected_version: int,
        ttl: int,
    ) -> bool:
        """Write only if the stored version is still expected_version."""

    @abstractmethod
    def track(self, code: str):
        """Add a session to the crank's work list."""

    @abstractmethod
    def tracked_codes(self) -> list[str]:
        ...

    @abstractmethod
    def untrack(self, code: str):
        ...


class SecretStore(ABC):

    @abstractmethod
    def set_secret(self, round_id: int, reveal_hex: str, ttl: int):
        ...

    @abstractmethod
    def get_secret(self, round_id: int) -> str | None:
        ...


@dataclass
class LeaderboardEntry:
    rank: int
    player_id: str
    display_name: str
    games: int
    wins: int

    @property
    def win_rate(self) -> float:
        """Percentage, one decimal."""
        if not self.games:
            return 0.0
        return round(100.0 * self.wins / self.games, 1)


def rank_entries(rows: Iterable[tuple[str, str, int, int]], limit: int) -> list[LeaderboardEntry]:
    """
    Rank (player_id, display_name, games, wins) rows.

    Order: win rate desc, wins desc, games desc, player id.
    """
    def key(row):
        player_id, _, games, wins = row
        rate = wins / games if games else 0.0
        return (-rate, -wins, -games, player_id)

    ranked = sorted(rows, key=key)[:limit]
    return [
        LeaderboardEntry(rank=i + 1, player_id=pid, display_name=name, games=games, wins=wins)
        for i, (pid, name, games, wins) in enumerate(ranked)
    ]


class StatsStore(ABC):

    @abstractmethod
    def record_result(self, player_id: str, display_name: str, won: bool):
        ...

    @abstractmethod
    def leaderboard(self, limit: int = 10) -> list[LeaderboardEntry]:
        ...
