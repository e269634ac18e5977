"""
Session Manager - Durable read-modify-write over the session store.

LIFECYCLE:
1. create_session writes a waiting session and tracks it for the crank
2. Players join and commit; every call is a whole-session CAS write
3. tick() advances deadlines; any client (or the crank) may call it
4. On commit -> rolling, the lease holder calls drive_randomness():
   - claim the submission in the session (one winner)
   - submit the request out-of-band, record the tx, submit the reveal
5. DiceRolled arrives -> handle_fulfillment() resolves the round
   (duplicates and late events are dropped)
6. poll_pending() covers lost events and vanished submitters
7. On ended, stats are recorded exactly once

CONCURRENCY RULES:
- No in-process locks: the store version is the only arbiter
- A write that loses the race is re-read and re-applied
- Validation errors propagate and nothing is written
"""

from __future__ import annotations
from concurrent.futures import Executor
from typing import Any, Callable, TYPE_CHECKING
import logging
import time

from ..config import GameConfig
from ..errors import (
    CardrollError, SessionNotFound, ConcurrentUpdate, CommitmentSubmissionFailed,
    FulfillmentTimeout, StaleFulfillment, DuplicateRequest, InvalidPhase,
)
from ..engine_core.action import PlayerInfo, TickResult
from ..engine_core.machine import GameStateMachine
from ..engine_core.state import Session, Player, Commitment, PhaseName, RollingPhase
from ..randomness.bridge import RandomnessBridge, Fulfillment, SubmissionReceipt
from ..store.base import SessionStore, StatsStore, LeaderboardEntry

if TYPE_CHECKING:
    from ..api.schemas import PublicView

logger = logging.getLogger(__name__)


def _log_submission_error(future):
    error = future.exception()
    if error is not None:
        logger.error(f"Randomness submission crashed: {error!r}")


class SessionManager:
    """
    Manages game sessions in a shared store.

    Several managers (one per client process) may share one store and
    one oracle; they agree through compare_and_set only.

    Args:
        store: Session store (also the stats store when it implements both)
        bridge: Randomness bridge; omit for sessions that never roll
        executor: Runs submissions out-of-band; inline when None
        subscribe: Listen for DiceRolled events through the bridge
    """

    def __init__(
        self,
        store: SessionStore,
        bridge: RandomnessBridge | None = None,
        config: GameConfig | None = None,
        machine: GameStateMachine | None = None,
        executor: Executor | None = None,
        stats_store: StatsStore | None = None,
        requester: str | None = None,
        subscribe: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.config = config or GameConfig()
        self.machine = machine or GameStateMachine(config=self.config)
        self.bridge = bridge
        self.executor = executor
        self.stats_store = stats_store or (store if isinstance(store, StatsStore) else None)
        self.requester = requester or self.config.requester_address
        self.clock = clock
        self._unsubscribe: Callable[[], None] | None = None
        if bridge is not None and subscribe:
            self._unsubscribe = bridge.subscribe(self.handle_fulfillment)

    def _now(self, now: float | None) -> float:
        return self.clock() if now is None else now

    def close(self):
        """Stop listening for oracle events."""
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    # =========================================================================
    # Read-modify-write
    # =========================================================================

    def _mutate(
        self,
        code: str,
        fn: Callable[[Session], tuple[Session, Any]],
    ) -> tuple[Session, Any]:
        """
        Apply fn to the stored session and write the result with CAS.

        fn returns (new_session, extra). Returning the input session
        unchanged skips the write. On a lost race the session is re-read
        and fn runs again.
        """
        for attempt in range(self.config.max_write_retries):
            current = self.store.get(code)
            if current is None:
                raise SessionNotFound(f"Session {code} not found")

            updated, extra = fn(current)
            if updated is current:
                return current, extra

            record_stats = (
                updated.phase_name == PhaseName.ENDED and not updated.stats_recorded
            )
            if record_stats:
                updated.stats_recorded = True

            if self.store.compare_and_set(code, updated, current.version, self.config.session_ttl):
                if record_stats:
                    self._record_stats(updated)
                return updated, extra

            logger.debug(f"Write conflict on {code} (attempt {attempt + 1}), retrying")

        raise ConcurrentUpdate(
            f"Session {code} kept changing; gave up after {self.config.max_write_retries} attempts"
        )

    def _record_stats(self, session: Session):
        if self.stats_store is None:
            return
        winner = self.machine.determine_winner(session)
        for player in session.players:
            won = winner is not None and player.player_id == winner.player_id
            self.stats_store.record_result(player.player_id, player.display_name, won)
        logger.info(f"Recorded stats for {session.code} ({len(session.players)} players)")

    # =========================================================================
    # Player-facing operations
    # =========================================================================

    def create_session(
        self,
        start_delay: float | None = None,
        now: float | None = None,
    ) -> Session:
        """Create and store a waiting session under a fresh code."""
        for _ in range(self.config.max_write_retries):
            session = self.machine.create_session(start_delay=start_delay, now=self._now(now))
            if self.store.compare_and_set(session.code, session, 0, self.config.session_ttl):
                self.store.track(session.code)
                logger.info(f"Created session {session.code}")
                return session
            logger.debug(f"Session code {session.code} taken, regenerating")
        raise ConcurrentUpdate("Could not allocate a session code")

    def get_session(self, code: str) -> Session:
        session = self.store.get(code)
        if session is None:
            raise SessionNotFound(f"Session {code} not found")
        return session

    def join_session(
        self,
        code: str,
        info: PlayerInfo,
        now: float | None = None,
    ) -> tuple[Session, Player]:
        return self._mutate(code, lambda s: self.machine.join_session(s, info, self._now(now)))

    def leave_session(self, code: str, player_id: str, now: float | None = None) -> Session:
        """Mark a player disconnected. They stay in the session."""
        session, _ = self._mutate(
            code,
            lambda s: (self.machine.leave_session(s, player_id, self._now(now)), None),
        )
        return session

    def submit_commitment(
        self,
        code: str,
        player_id: str,
        choice: Commitment,
        now: float | None = None,
    ) -> Session:
        session, _ = self._mutate(
            code,
            lambda s: (self.machine.submit_commitment(s, player_id, choice, self._now(now)), None),
        )
        return session

    def tick(self, code: str, now: float | None = None) -> TickResult:
        """Advance the session if a deadline passed. Safe to call from any client."""
        now = self._now(now)

        def advance(session: Session) -> tuple[Session, TickResult]:
            result = self.machine.tick(session, now)
            return result.session, result

        session, result = self._mutate(code, advance)
        result.session = session
        return result

    def get_public_view(
        self,
        code: str,
        viewer_id: str | None = None,
        now: float | None = None,
    ) -> PublicView:
        from ..api.view import get_public_view
        return get_public_view(self.get_session(code), viewer_id, self._now(now), self.config)

    def leaderboard(self, limit: int = 10) -> list[LeaderboardEntry]:
        if self.stats_store is None:
            return []
        return self.stats_store.leaderboard(limit)

    # =========================================================================
    # Randomness
    # =========================================================================

    def drive_randomness(
        self,
        code: str,
        client_id: str | None,
        now: float | None = None,
    ) -> Session:
        """
        Claim the round's submission, then submit it out-of-band.

        Raises NotLeader or DuplicateRequest when this caller should not
        submit. Returns the session as claimed.
        """
        if self.bridge is None:
            raise InvalidPhase("No randomness bridge configured")
        now = self._now(now)

        session, _ = self._mutate(
            code,
            lambda s: (self.machine.claim_submission(s, client_id, now), None),
        )
        logger.info(
            f"{client_id or 'crank'} claimed submission for {code} "
            f"round {session.current_round_id}"
        )
        if self.executor is not None:
            future = self.executor.submit(self._submit, code, session, now)
            future.add_done_callback(_log_submission_error)
        else:
            self._submit(code, session, now)
        return session

    def _submit(
        self,
        code: str,
        session: Session,
        now: float,
    ) -> SubmissionReceipt | None:
        round_id = session.current_round_id
        try:
            receipt = self.bridge.submit_request(session, self.requester)
        except CommitmentSubmissionFailed as e:
            self._recover(code, round_id, f"commitment submission failed: {e}", now)
            return None
        except DuplicateRequest as e:
            logger.warning(f"Skipped submission for {code}: {e}")
            return None

        try:
            self._mutate(
                code,
                lambda s: (self.machine.record_submission(s, round_id, receipt.request_ref, now), None),
            )
        except (StaleFulfillment, DuplicateRequest, InvalidPhase) as e:
            # Round already moved on (resolved by a fast event, or handed over)
            logger.warning(f"Request {receipt.request_ref} for {code} not recorded: {e}")

        try:
            self.bridge.complete(round_id, receipt.request_ref)
        except FulfillmentTimeout as e:
            logger.warning(f"Reveal for {code} round {round_id} deferred to poller: {e}")
        return receipt

    def _recover(self, code: str, round_id: int, reason: str, now: float):

        def recover(session: Session) -> tuple[Session, None]:
            if session.current_round_id != round_id:
                return session, None
            return self.machine.recover_roll(session, reason, now).session, None

        self._mutate(code, recover)

    def handle_fulfillment(self, fulfillment: Fulfillment, now: float | None = None) -> bool:
        """
        Resolve the round a fulfillment belongs to.

        Returns False when the fulfillment was stale or a duplicate, or
        when it could not be written.
        """
        now = self._now(now)
        try:
            self._mutate(
                fulfillment.session_code,
                lambda s: (
                    self.machine.apply_fulfillment(
                        s, fulfillment.round_id, fulfillment.outcome, fulfillment.proof_ref, now,
                    ),
                    None,
                ),
            )
        except (StaleFulfillment, SessionNotFound) as e:
            logger.warning(f"Dropped fulfillment for round {fulfillment.round_id}: {e}")
            return False
        except (CardrollError, ValueError) as e:
            # Runs inside oracle event callbacks; the poller retries later
            logger.error(f"Could not apply fulfillment for round {fulfillment.round_id}: {e}")
            return False
        return True

    def poll_pending(self, code: str, now: float | None = None) -> bool:
        """
        Fallback poller and fulfiller for a recorded request.

        After fallback_poll_after seconds without resolution, reads the
        result directly; if there is none yet, submits the reveal from
        the side-channel. Returns True once the round is resolved with
        the oracle's result, whether this call or the event its reveal
        triggered applied it.
        """
        if self.bridge is None:
            return False
        session = self.get_session(code)
        phase = session.phase
        if not isinstance(phase, RollingPhase) or phase.request_ref is None:
            return False

        now = self._now(now)
        if phase.requested_at is not None and now < phase.requested_at + self.config.fallback_poll_after:
            return False

        result = self.bridge.fetch_result(phase.round_id)
        if not result.fulfilled:
            logger.info(f"No result for {code} round {phase.round_id}, submitting reveal")
            try:
                self.bridge.complete(phase.round_id)
            except FulfillmentTimeout as e:
                logger.warning(f"Fallback reveal for {code} failed: {e}")
                return False
            result = self.bridge.fetch_result(phase.round_id)
            if not result.fulfilled:
                return False

        applied = self.handle_fulfillment(
            Fulfillment(
                round_id=phase.round_id,
                session_code=code,
                outcome=result.outcome,
                proof_ref=result.proof_ref,
            ),
            now,
        )
        if applied:
            return True
        current = self.store.get(code)
        return current is not None and current.last_roll_proof == result.proof_ref

    # =========================================================================
    # Backend crank
    # =========================================================================

    def crank(self, now: float | None = None) -> list[TickResult]:
        """
        Tick every tracked session and cover stalled rolls.

        Finished sessions are untracked. Errors in one session are logged
        and do not stop the others.
        """
        now = self._now(now)
        results = []
        for code in self.store.tracked_codes():
            try:
                session = self.store.get(code)
                if session is None or session.is_over:
                    self.store.untrack(code)
                    continue
                result = self.tick(code, now)
                results.append(result)
                self._crank_rolling(code, result.session, now)
            except (SessionNotFound, ConcurrentUpdate, InvalidPhase) as e:
                logger.warning(f"Crank skipped {code}: {e}")
        return results

    def _crank_rolling(self, code: str, session: Session, now: float):
        phase = session.phase
        if not isinstance(phase, RollingPhase) or self.bridge is None:
            return
        if phase.request_ref is not None:
            self.poll_pending(code, now)
            return
        if phase.submission_claimed:
            return

        if phase.lease.leader_id is None or now > phase.started_at + self.config.rolling_grace:
            try:
                self.drive_randomness(code, None, now)
            except DuplicateRequest:
                pass
