"""
Session State - The durable representation of one game.

Design principles:
- The phase is a tagged union: each phase type carries only the fields
  valid while it is active (no loose dict of optional deadlines)
- Serializable: store.codec round-trips every field
- The pending randomness request lives inside the session
  (round_id, roll_requested), so any process can resume a round
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import ClassVar, Union
from copy import deepcopy
from enum import Enum


class PhaseName(Enum):
    """Phase identifiers, in cycle order."""
    WAITING = "waiting"
    COMMIT = "commit"
    ROLLING = "rolling"
    RESOLVE = "resolve"
    ENDED = "ended"
    FAILED = "failed"


@dataclass
class Card:
    """A numbered card in a player's hand. Burning is one-way."""
    value: int
    burned: bool = False

    def burn(self):
        self.burned = True


@dataclass
class Commitment:
    """
    A player's secret choice for the round.

    Either a skip or a selected card value.
    """
    skip: bool = False
    selected_value: int | None = None

    @classmethod
    def skipped(cls) -> Commitment:
        return cls(skip=True)

    @classmethod
    def select(cls, value: int) -> Commitment:
        return cls(skip=False, selected_value=value)


@dataclass
class Player:
    """
    A player in a session.

    Players are never removed, only marked disconnected.
    ordinal is the join index and drives tie-breaks and leader election.
    """
    player_id: str
    display_name: str
    ordinal: int
    avatar_ref: str | None = None
    hand: list[Card] = field(default_factory=list)
    credits: int = 0
    first_correct_round: int | None = None
    connected: bool = True

    @property
    def unburned_cards(self) -> list[Card]:
        return [c for c in self.hand if not c.burned]

    def has_unburned(self, value: int) -> bool:
        """Check if an unburned card with this value is in hand."""
        return any(c.value == value for c in self.unburned_cards)

    def burn_card(self, value: int) -> bool:
        """Burn the first unburned card with this value. Returns True if one burned."""
        for card in self.hand:
            if card.value == value and not card.burned:
                card.burn()
                return True
        return False


@dataclass
class LeaderLease:
    """Who may submit the randomness request, and until when."""
    leader_id: str | None
    expires_at: float

    def is_live(self, now: float) -> bool:
        return now <= self.expires_at


# =============================================================================
# Phases
# =============================================================================

@dataclass
class WaitingPhase:
    """Lobby. Starts once start_deadline passes with at least one player."""
    name: ClassVar[PhaseName] = PhaseName.WAITING
    start_deadline: float


@dataclass
class CommitPhase:
    """
    Players pick a card or skip.

    recovered is set when this phase was re-entered through the
    rolling -> commit recovery edge.
    """
    name: ClassVar[PhaseName] = PhaseName.COMMIT
    commit_deadline: float
    recovered: bool = False
    last_failure: str | None = None


@dataclass
class RollingPhase:
    """
    Waiting for the randomness oracle.

    roll_requested guards against a second request for round_id.
    submission_claimed is set by the lease holder before it submits;
    request_ref is the oracle transaction once the request went out.
    """
    name: ClassVar[PhaseName] = PhaseName.ROLLING
    commit_deadline: float
    round_id: int
    started_at: float
    lease: LeaderLease
    roll_requested: bool = True
    submission_claimed: bool = False
    request_ref: str | None = None
    requested_at: float | None = None


@dataclass
class ResolvePhase:
    """Outcome is known and shown until resolve_deadline."""
    name: ClassVar[PhaseName] = PhaseName.RESOLVE
    resolve_deadline: float
    outcome: int
    proof_ref: str | None = None


@dataclass
class EndedPhase:
    name: ClassVar[PhaseName] = PhaseName.ENDED
    ended_at: float


@dataclass
class FailedPhase:
    """Terminal: randomness could not be obtained within the attempt budget."""
    name: ClassVar[PhaseName] = PhaseName.FAILED
    failed_at: float
    reason: str


Phase = Union[WaitingPhase, CommitPhase, RollingPhase, ResolvePhase, EndedPhase, FailedPhase]


@dataclass
class Session:
    """
    One game instance.

    This is the only shared mutable resource. Every change is a
    read-modify-write of the whole session through the store;
    version is bumped on each write for optimistic concurrency.
    """
    code: str
    phase: Phase
    round: int = 0
    players: list[Player] = field(default_factory=list)
    commitments: dict[str, Commitment] = field(default_factory=dict)
    last_roll: int | None = None
    last_roll_proof: str | None = None
    stats_recorded: bool = False
    roll_attempts: int = 0
    created_at: float = 0.0
    updated_at: float = 0.0
    version: int = 0

    @property
    def phase_name(self) -> PhaseName:
        return self.phase.name

    @property
    def start_deadline(self) -> float | None:
        if isinstance(self.phase, WaitingPhase):
            return self.phase.start_deadline
        return None

    @property
    def commit_deadline(self) -> float | None:
        if isinstance(self.phase, (CommitPhase, RollingPhase)):
            return self.phase.commit_deadline
        return None

    @property
    def resolve_deadline(self) -> float | None:
        if isinstance(self.phase, ResolvePhase):
            return self.phase.resolve_deadline
        return None

    @property
    def current_round_id(self) -> int | None:
        if isinstance(self.phase, RollingPhase):
            return self.phase.round_id
        return None

    @property
    def roll_requested(self) -> bool:
        return isinstance(self.phase, RollingPhase) and self.phase.roll_requested

    @property
    def is_over(self) -> bool:
        return self.phase_name in {PhaseName.ENDED, PhaseName.FAILED}

    def get_player(self, player_id: str) -> Player | None:
        """Get player by ID."""
        for p in self.players:
            if p.player_id == player_id:
                return p
        return None

    def connected_players(self) -> list[Player]:
        return [p for p in self.players if p.connected]

    def clone(self) -> Session:
        """Deep copy the session."""
        return deepcopy(self)
