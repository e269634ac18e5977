"""
Leader Coordinator - Picks the one client that submits the randomness request.

Election is deterministic: among connected players, the lowest join
ordinal leads. Every client computes it from the same session snapshot,
so no coordination messages are needed.

The leader holds a lease. If the lease runs out before a request is
recorded, the duty moves to the next connected player in join order.
"""

from __future__ import annotations
from dataclasses import dataclass, field
import logging

from ..engine_core.state import Session, Player, RollingPhase, LeaderLease

logger = logging.getLogger(__name__)


def elect_leader(session: Session) -> Player | None:
    """Connected player with the lowest join ordinal."""
    connected = session.connected_players()
    if not connected:
        return None
    return min(connected, key=lambda p: p.ordinal)


def next_leader(session: Session, after_id: str | None) -> Player | None:
    """
    Next connected player after after_id in join order, wrapping around.

    Falls back to plain election when after_id is unknown.
    """
    connected = sorted(session.connected_players(), key=lambda p: p.ordinal)
    if not connected:
        return None
    current = session.get_player(after_id) if after_id else None
    if current is None:
        return connected[0]
    for player in connected:
        if player.ordinal > current.ordinal:
            return player
    return connected[0]


@dataclass
class RoundTracker:
    """
    Per-client memory of the highest round id already acted on.

    Keeps a client from re-driving a round after a state refresh.
    """
    highest: dict[str, int] = field(default_factory=dict)

    def seen(self, session_code: str, round_id: int) -> bool:
        return round_id <= self.highest.get(session_code, -1)

    def mark(self, session_code: str, round_id: int):
        if round_id > self.highest.get(session_code, -1):
            self.highest[session_code] = round_id


@dataclass
class LeaderCoordinator:
    """
    Lease bookkeeping for the rolling phase.

    Usage:
        coordinator = LeaderCoordinator(lease_seconds=15)
        lease = coordinator.assign(session, now)
        ...
        if coordinator.should_submit(session, my_id, now, tracker):
            manager.drive_randomness(code, my_id)
    """
    lease_seconds: float = 15.0

    def assign(self, session: Session, now: float) -> LeaderLease:
        """Fresh lease for the elected leader."""
        leader = elect_leader(session)
        return LeaderLease(
            leader_id=leader.player_id if leader else None,
            expires_at=now + self.lease_seconds,
        )

    def handover(self, session: Session, lease: LeaderLease, now: float) -> LeaderLease | None:
        """
        New lease for the next player in line once the current one expired.

        Returns None while the current lease is still live.
        """
        if lease.is_live(now):
            return None
        successor = next_leader(session, lease.leader_id)
        new_lease = LeaderLease(
            leader_id=successor.player_id if successor else None,
            expires_at=now + self.lease_seconds,
        )
        logger.info(
            f"Lease for {session.code} moved from {lease.leader_id} to {new_lease.leader_id}"
        )
        return new_lease

    def holds_lease(self, session: Session, client_id: str | None, now: float) -> bool:
        phase = session.phase
        if not isinstance(phase, RollingPhase):
            return False
        return phase.lease.leader_id == client_id and phase.lease.is_live(now)

    def should_submit(
        self,
        session: Session,
        client_id: str,
        now: float,
        tracker: RoundTracker | None = None,
    ) -> bool:
        """
        True when this client should drive the request for the current round.

        Requires: rolling, nothing claimed or recorded yet, a live lease
        held by this client, and a round id this client has not acted on.
        """
        phase = session.phase
        if not isinstance(phase, RollingPhase):
            return False
        if not phase.roll_requested or phase.submission_claimed or phase.request_ref:
            return False
        if tracker is not None and tracker.seen(session.code, phase.round_id):
            return False
        return self.holds_lease(session, client_id, now)
