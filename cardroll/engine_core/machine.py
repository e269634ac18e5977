"""
State Machine - Advances a session through its phases.

The machine is the single point of session mutation.
All changes go through the methods below.

Design principles:
- Validate first, then mutate a clone: a raised error never leaves a
  half-updated session behind
- tick() is idempotent: it checks phase and deadline before acting, so
  redundant callers are harmless
- tick() never talks to the oracle; it only reports needs_randomness

Phase cycle:
    waiting -> commit -> rolling -> resolve -> commit -> ... -> ended
    rolling -> commit    (recovery edge on request failure or timeout)
    rolling -> failed    (attempt budget exhausted)
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import TYPE_CHECKING
import logging
import secrets
import string
import time
import uuid

from ..config import GameConfig
from ..errors import (
    InvalidPhase, PlayerNotFound, CardUnavailable, CommitmentExists,
    DuplicateRequest, StaleFulfillment, NotLeader,
)
from .action import PlayerInfo, TickResult, TransitionKind
from .rules import score_round, check_game_end, determine_winner
from .state import (
    Session, Player, Card, Commitment, PhaseName,
    WaitingPhase, CommitPhase, RollingPhase, ResolvePhase, EndedPhase, FailedPhase,
)

if TYPE_CHECKING:
    from ..coordination.leader import LeaderCoordinator

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_session_code(length: int = 6) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def generate_player_id() -> str:
    return uuid.uuid4().hex[:13]


def new_round_id(now: float) -> int:
    """
    Millisecond timestamp with 16 random low bits.

    Increases over time for a given session, which RoundTracker relies on.
    """
    return (int(now * 1000) << 16) | secrets.randbits(16)


def _now(now: float | None) -> float:
    return time.time() if now is None else now


@dataclass
class GameStateMachine:
    """
    Applies player actions and deadline transitions to sessions.

    Stateless - all state is in Session.
    Config provides the timers and the game constants.
    """
    config: GameConfig = field(default_factory=GameConfig)
    coordinator: LeaderCoordinator | None = None

    def __post_init__(self):
        if self.coordinator is None:
            from ..coordination.leader import LeaderCoordinator
            self.coordinator = LeaderCoordinator(lease_seconds=self.config.lease_seconds)

    # =========================================================================
    # Player-facing operations
    # =========================================================================

    def create_session(
        self,
        start_delay: float | None = None,
        now: float | None = None,
        code: str | None = None,
    ) -> Session:
        """New session in the waiting phase."""
        now = _now(now)
        delay = self.config.start_delay if start_delay is None else start_delay
        return Session(
            code=code or generate_session_code(),
            phase=WaitingPhase(start_deadline=now + delay),
            created_at=now,
            updated_at=now,
        )

    def join_session(
        self,
        session: Session,
        info: PlayerInfo,
        now: float | None = None,
    ) -> tuple[Session, Player]:
        """
        Add a player, or refresh an existing one with the same id.

        Only allowed while waiting.
        """
        if session.phase_name != PhaseName.WAITING:
            raise InvalidPhase("Match already in progress")

        new_session = session.clone()
        new_session.updated_at = _now(now)

        existing = new_session.get_player(info.player_id) if info.player_id else None
        if existing:
            existing.connected = True
            if info.display_name:
                existing.display_name = info.display_name
            if info.avatar_ref:
                existing.avatar_ref = info.avatar_ref
            return new_session, existing

        ordinal = len(new_session.players)
        player = Player(
            player_id=info.player_id or generate_player_id(),
            display_name=info.display_name or f"Player {ordinal + 1}",
            ordinal=ordinal,
            avatar_ref=info.avatar_ref,
            hand=[Card(value=v) for v in self.config.card_values],
        )
        new_session.players.append(player)
        logger.info(f"Player {player.player_id} joined {session.code} as #{ordinal}")
        return new_session, player

    def set_connected(
        self,
        session: Session,
        player_id: str,
        connected: bool,
        now: float | None = None,
    ) -> Session:
        """Liveness flag only; players are never removed."""
        if session.get_player(player_id) is None:
            raise PlayerNotFound(f"Player {player_id} not in session {session.code}")
        new_session = session.clone()
        new_session.get_player(player_id).connected = connected
        new_session.updated_at = _now(now)
        return new_session

    def leave_session(self, session: Session, player_id: str, now: float | None = None) -> Session:
        """Mark a player disconnected."""
        return self.set_connected(session, player_id, False, now)

    def submit_commitment(
        self,
        session: Session,
        player_id: str,
        choice: Commitment,
        now: float | None = None,
    ) -> Session:
        """Record a player's card choice (or skip) for this round."""
        if session.phase_name != PhaseName.COMMIT:
            raise InvalidPhase(f"Commitments closed (phase: {session.phase_name.value})")

        player = session.get_player(player_id)
        if not player:
            raise PlayerNotFound(f"Player {player_id} not in session {session.code}")

        if player_id in session.commitments:
            raise CommitmentExists(f"{player_id} already committed in round {session.round}")

        if not choice.skip and (
            choice.selected_value is None or not player.has_unburned(choice.selected_value)
        ):
            raise CardUnavailable(f"No unburned card {choice.selected_value} for {player_id}")

        new_session = session.clone()
        new_session.commitments[player_id] = Commitment(
            skip=choice.skip,
            selected_value=None if choice.skip else choice.selected_value,
        )
        new_session.updated_at = _now(now)
        return new_session

    # =========================================================================
    # Deadline-driven advancement
    # =========================================================================

    def tick(self, session: Session, now: float | None = None) -> TickResult:
        """
        Perform at most one transition whose deadline has elapsed.

        Calling it again with the same now after nothing elapsed is a no-op.
        """
        now = _now(now)
        phase = session.phase

        if isinstance(phase, WaitingPhase):
            # Join-gated: an empty lobby never starts
            if now > phase.start_deadline and session.players:
                return self._start_game(session, now)
        elif isinstance(phase, CommitPhase):
            if now > phase.commit_deadline:
                return self._close_commits(session, now)
        elif isinstance(phase, RollingPhase):
            return self._check_rolling(session, phase, now)
        elif isinstance(phase, ResolvePhase):
            if now > phase.resolve_deadline:
                return self._advance_round(session, now)

        return TickResult.unchanged(session)

    def _start_game(self, session: Session, now: float) -> TickResult:
        new_session = session.clone()
        new_session.round = 1
        new_session.commitments = {}
        new_session.roll_attempts = 0
        new_session.phase = CommitPhase(commit_deadline=now + self.config.commit_duration)
        new_session.updated_at = now
        logger.info(f"Session {session.code} started with {len(session.players)} players")
        return TickResult(
            session=new_session,
            transition=TransitionKind.START,
            changes=["Round 1 started"],
        )

    def _close_commits(self, session: Session, now: float) -> TickResult:
        if session.roll_attempts >= self.config.max_roll_attempts:
            return self._fail(session, "roll attempts exhausted", now)

        new_session = session.clone()
        for player in new_session.players:
            if player.player_id not in new_session.commitments:
                new_session.commitments[player.player_id] = Commitment.skipped()

        new_session.roll_attempts += 1
        phase = RollingPhase(
            commit_deadline=session.commit_deadline,
            round_id=new_round_id(now),
            started_at=now,
            lease=self.coordinator.assign(new_session, now),
        )
        new_session.phase = phase
        new_session.updated_at = now
        logger.info(
            f"Session {session.code} round {session.round} rolling "
            f"(round_id={phase.round_id}, attempt={new_session.roll_attempts}, "
            f"leader={phase.lease.leader_id})"
        )
        return TickResult(
            session=new_session,
            transition=TransitionKind.CLOSE_COMMITS,
            needs_randomness=True,
            changes=[f"Commitments closed for round {session.round}"],
        )

    def _check_rolling(self, session: Session, phase: RollingPhase, now: float) -> TickResult:
        if phase.request_ref is not None:
            if phase.requested_at is not None and (
                now > phase.requested_at + self.config.fulfillment_timeout
            ):
                return self.recover_roll(session, "fulfillment timeout", now)
            return TickResult.unchanged(session)

        # Nobody got a request out: counts as a failed attempt
        if now > phase.started_at + self.config.fulfillment_timeout:
            return self.recover_roll(session, "no randomness request submitted", now)

        lease = self.coordinator.handover(session, phase.lease, now)
        if lease is None:
            return TickResult.unchanged(session)

        new_session = session.clone()
        new_phase = new_session.phase
        new_phase.lease = lease
        if new_phase.submission_claimed:
            # The claimant may have reached the oracle before vanishing;
            # a fresh round id makes any late fulfillment for it stale.
            if new_session.roll_attempts >= self.config.max_roll_attempts:
                return self._fail(session, "leader vanished after final attempt", now)
            new_session.roll_attempts += 1
            new_phase.round_id = new_round_id(now)
            new_phase.submission_claimed = False
        new_session.updated_at = now
        return TickResult(
            session=new_session,
            transition=TransitionKind.HANDOVER,
            needs_randomness=True,
            changes=[f"Leadership passed to {lease.leader_id}"],
        )

    def _advance_round(self, session: Session, now: float) -> TickResult:
        new_session = session.clone()
        new_session.updated_at = now

        if self.check_game_end(new_session):
            new_session.phase = EndedPhase(ended_at=now)
            winner = self.determine_winner(new_session)
            logger.info(
                f"Session {session.code} ended after round {session.round}, "
                f"winner={winner.player_id if winner else None}"
            )
            return TickResult(
                session=new_session,
                transition=TransitionKind.END,
                changes=["Game over"],
            )

        new_session.round += 1
        new_session.commitments = {}
        new_session.last_roll = None
        new_session.roll_attempts = 0
        new_session.phase = CommitPhase(commit_deadline=now + self.config.commit_duration)
        return TickResult(
            session=new_session,
            transition=TransitionKind.NEXT_ROUND,
            changes=[f"Round {new_session.round} started"],
        )

    # =========================================================================
    # Randomness lifecycle
    # =========================================================================

    def claim_submission(
        self,
        session: Session,
        client_id: str | None,
        now: float | None = None,
    ) -> Session:
        """
        Mark the request as being submitted.

        client_id None is the backend crank, which is not bound by the lease.
        """
        now = _now(now)
        phase = session.phase
        if not isinstance(phase, RollingPhase):
            raise InvalidPhase(f"No roll pending (phase: {session.phase_name.value})")
        if phase.submission_claimed or phase.request_ref is not None:
            raise DuplicateRequest(f"Round {phase.round_id} already requested")
        if client_id is not None and not self.coordinator.holds_lease(session, client_id, now):
            raise NotLeader(f"{client_id} does not hold the lease for {session.code}")

        new_session = session.clone()
        new_phase = new_session.phase
        new_phase.submission_claimed = True
        new_phase.lease.expires_at = now + self.coordinator.lease_seconds
        new_session.updated_at = now
        return new_session

    def record_submission(
        self,
        session: Session,
        round_id: int,
        request_ref: str,
        now: float | None = None,
    ) -> Session:
        """Store the oracle transaction for the pending round."""
        now = _now(now)
        phase = session.phase
        if not isinstance(phase, RollingPhase):
            raise InvalidPhase(f"No roll pending (phase: {session.phase_name.value})")
        if phase.round_id != round_id:
            raise StaleFulfillment(f"Round {round_id} superseded by {phase.round_id}")
        if phase.request_ref is not None:
            raise DuplicateRequest(f"Round {round_id} already has request {phase.request_ref}")

        new_session = session.clone()
        new_session.phase.request_ref = request_ref
        new_session.phase.requested_at = now
        new_session.phase.submission_claimed = True
        new_session.updated_at = now
        return new_session

    def recover_roll(
        self,
        session: Session,
        reason: str,
        now: float | None = None,
    ) -> TickResult:
        """
        rolling -> commit recovery edge.

        Keeps the round's commitments, clears the request guard and
        schedules a retry after the backoff. Moves to failed once the
        attempt budget is spent.
        """
        now = _now(now)
        if not isinstance(session.phase, RollingPhase):
            raise InvalidPhase(f"Nothing to recover (phase: {session.phase_name.value})")

        if session.roll_attempts >= self.config.max_roll_attempts:
            return self._fail(session, reason, now)

        new_session = session.clone()
        new_session.phase = CommitPhase(
            commit_deadline=now + self.config.recovery_backoff,
            recovered=True,
            last_failure=reason,
        )
        new_session.updated_at = now
        logger.warning(
            f"Session {session.code} round {session.round} recovering after "
            f"attempt {session.roll_attempts}: {reason}"
        )
        return TickResult(
            session=new_session,
            transition=TransitionKind.RECOVER,
            changes=[f"Retrying roll: {reason}"],
        )

    def _fail(self, session: Session, reason: str, now: float) -> TickResult:
        new_session = session.clone()
        new_session.phase = FailedPhase(failed_at=now, reason=reason)
        new_session.updated_at = now
        logger.error(
            f"Session {session.code} failed in round {session.round} after "
            f"{session.roll_attempts} attempts: {reason}"
        )
        return TickResult(
            session=new_session,
            transition=TransitionKind.FAIL,
            changes=[f"Round abandoned: {reason}"],
        )

    def apply_fulfillment(
        self,
        session: Session,
        round_id: int,
        outcome: int,
        proof_ref: str | None,
        now: float | None = None,
    ) -> Session:
        """
        Resolve the round if the fulfillment is for the pending request.

        Late or duplicate fulfillments raise StaleFulfillment.
        """
        phase = session.phase
        if not isinstance(phase, RollingPhase) or not phase.roll_requested:
            raise StaleFulfillment(
                f"Session {session.code} not rolling (phase: {session.phase_name.value})"
            )
        if phase.round_id != round_id:
            raise StaleFulfillment(f"Round {round_id} is not pending ({phase.round_id} is)")
        return self.resolve_round(session, outcome, proof_ref, now)

    def resolve_round(
        self,
        session: Session,
        outcome: int,
        proof_ref: str | None,
        now: float | None = None,
    ) -> Session:
        """
        Score the round and move to resolve.

        Must run exactly once per round; apply_fulfillment is the guarded
        entry point.
        """
        now = _now(now)
        if session.phase_name != PhaseName.ROLLING:
            raise InvalidPhase(f"Cannot resolve (phase: {session.phase_name.value})")
        if not 1 <= outcome <= self.config.die_faces:
            raise ValueError(f"Outcome {outcome} outside 1..{self.config.die_faces}")

        new_session = session.clone()
        changes = score_round(new_session, outcome)
        new_session.last_roll = outcome
        new_session.last_roll_proof = proof_ref
        new_session.phase = ResolvePhase(
            resolve_deadline=now + self.config.resolve_duration,
            outcome=outcome,
            proof_ref=proof_ref,
        )
        new_session.updated_at = now
        logger.info(f"Session {session.code} round {session.round} rolled {outcome}: {changes}")
        return new_session

    # =========================================================================
    # Queries
    # =========================================================================

    def check_game_end(self, session: Session) -> bool:
        return check_game_end(session, self.config.max_rounds)

    def determine_winner(self, session: Session) -> Player | None:
        return determine_winner(session)
