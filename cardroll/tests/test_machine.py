"""
Tests for the session state machine.

Tests:
- Session creation and joining
- Commitment validation
- Deadline-driven transitions and idempotent ticks
- Round resolution and scoring
- Recovery edge, terminal failure and lease handover
"""

import pytest

from ..errors import (
    InvalidPhase, PlayerNotFound, CardUnavailable, CommitmentExists,
    DuplicateRequest, StaleFulfillment, NotLeader,
)
from ..engine_core.action import PlayerInfo, TransitionKind
from ..engine_core.machine import generate_session_code, new_round_id
from ..engine_core.state import (
    Commitment, PhaseName, CommitPhase, RollingPhase, ResolvePhase, FailedPhase,
)
from .conftest import T0


class TestCreateAndJoin:
    """Tests for session creation and the lobby."""

    def test_create_session_waiting(self, machine):
        """New sessions wait until start_deadline."""
        session = machine.create_session(start_delay=30, now=T0)

        assert session.phase_name == PhaseName.WAITING
        assert session.start_deadline == T0 + 30
        assert session.round == 0
        assert session.players == []

    def test_default_start_delay(self, machine):
        session = machine.create_session(now=T0)
        assert session.start_deadline == T0 + 60

    def test_session_code_format(self):
        code = generate_session_code()
        assert len(code) == 6
        assert code.isalnum() and code.upper() == code

    def test_join_deals_hand(self, waiting_session):
        """Each player gets one card of each value, in join order."""
        ana, ben = waiting_session.players

        assert [c.value for c in ana.hand] == [1, 2, 3]
        assert not any(c.burned for c in ana.hand)
        assert (ana.ordinal, ben.ordinal) == (0, 1)
        assert ana.credits == 0 and ana.first_correct_round is None

    def test_join_generates_id(self, machine):
        session = machine.create_session(now=T0)
        _, player = machine.join_session(session, PlayerInfo(display_name="Cy"), now=T0)

        assert player.player_id
        assert player.display_name == "Cy"

    def test_rejoin_is_idempotent(self, machine, waiting_session):
        """Re-joining by id updates profile and liveness, never duplicates."""
        session = machine.set_connected(waiting_session, "ana", False, now=T0)
        session, player = machine.join_session(
            session, PlayerInfo(player_id="ana", display_name="Ana B"), now=T0 + 1
        )

        assert len(session.players) == 2
        assert player.connected
        assert player.display_name == "Ana B"
        assert player.ordinal == 0

    def test_join_after_start_fails(self, machine, commit_session):
        with pytest.raises(InvalidPhase):
            machine.join_session(commit_session, PlayerInfo(player_id="cy"), now=T0 + 62)

    def test_set_connected_unknown_player(self, machine, waiting_session):
        with pytest.raises(PlayerNotFound):
            machine.set_connected(waiting_session, "nobody", False)


class TestCommitments:
    """Tests for submit_commitment validation."""

    def test_commit_card(self, machine, commit_session):
        session = machine.submit_commitment(commit_session, "ana", Commitment.select(3), now=T0 + 62)

        assert session.commitments["ana"] == Commitment(skip=False, selected_value=3)
        assert "ana" not in commit_session.commitments  # input untouched

    def test_commit_skip(self, machine, commit_session):
        session = machine.submit_commitment(commit_session, "ben", Commitment.skipped(), now=T0 + 62)
        assert session.commitments["ben"].skip

    def test_commit_outside_commit_phase(self, machine, waiting_session):
        with pytest.raises(InvalidPhase):
            machine.submit_commitment(waiting_session, "ana", Commitment.select(1))

    def test_commit_unknown_player(self, machine, commit_session):
        with pytest.raises(PlayerNotFound):
            machine.submit_commitment(commit_session, "zed", Commitment.select(1))

    def test_commit_twice_rejected(self, machine, commit_session):
        session = machine.submit_commitment(commit_session, "ana", Commitment.select(1))
        with pytest.raises(CommitmentExists):
            machine.submit_commitment(session, "ana", Commitment.select(2))

    def test_commit_value_not_in_hand(self, machine, commit_session):
        with pytest.raises(CardUnavailable):
            machine.submit_commitment(commit_session, "ana", Commitment.select(7))

    def test_all_cards_burned_raises_before_mutation(self, machine, commit_session):
        """A player with every card burned cannot commit a card."""
        session = commit_session.clone()
        for card in session.get_player("ana").hand:
            card.burn()

        with pytest.raises(CardUnavailable):
            machine.submit_commitment(session, "ana", Commitment.select(1))
        assert session.commitments == {}

        # Skipping is still allowed
        skipped = machine.submit_commitment(session, "ana", Commitment.skipped())
        assert skipped.commitments["ana"].skip


class TestTick:
    """Tests for deadline-driven transitions."""

    def test_no_transition_before_deadline(self, machine, waiting_session):
        result = machine.tick(waiting_session, T0 + 60)

        assert not result.changed
        assert result.session is waiting_session

    def test_empty_lobby_never_starts(self, machine):
        """waiting -> commit is join-gated."""
        session = machine.create_session(now=T0)
        for later in (T0 + 61, T0 + 3600, T0 + 86400):
            result = machine.tick(session, later)
            assert not result.changed
            assert result.session.phase_name == PhaseName.WAITING

    def test_start_game(self, machine, waiting_session):
        result = machine.tick(waiting_session, T0 + 61)

        assert result.transition == TransitionKind.START
        assert result.session.phase_name == PhaseName.COMMIT
        assert result.session.round == 1
        assert result.session.commit_deadline == T0 + 61 + 25

    def test_tick_twice_same_now_is_noop(self, machine, waiting_session):
        """A second tick at the same instant changes nothing."""
        first = machine.tick(waiting_session, T0 + 61)
        second = machine.tick(first.session, T0 + 61)

        assert first.changed
        assert not second.changed
        assert second.session == first.session

    def test_close_commits_fills_skips(self, machine, commit_session):
        session = machine.submit_commitment(commit_session, "ana", Commitment.select(2))
        result = machine.tick(session, T0 + 87)
        rolled = result.session

        assert result.transition == TransitionKind.CLOSE_COMMITS
        assert result.needs_randomness
        assert rolled.phase_name == PhaseName.ROLLING
        assert rolled.commitments["ben"] == Commitment.skipped()
        assert rolled.commitments["ana"].selected_value == 2
        assert rolled.roll_requested
        assert rolled.current_round_id is not None
        assert rolled.roll_attempts == 1

    def test_rolling_lease_goes_to_first_joiner(self, rolling_session):
        phase = rolling_session.phase
        assert phase.lease.leader_id == "ana"
        assert phase.lease.expires_at == T0 + 87 + 15

    def test_rolling_waits_while_lease_live(self, machine, rolling_session):
        result = machine.tick(rolling_session, T0 + 100)
        assert not result.changed

    def test_round_ids_increase(self):
        assert new_round_id(T0 + 1) > new_round_id(T0)


class TestResolve:
    """Tests for resolution and scoring."""

    def _resolve(self, machine, session, outcome, now=T0 + 90):
        return machine.apply_fulfillment(session, session.current_round_id, outcome, "0xproof", now)

    def test_match_scores_credit(self, machine, rolling_session):
        """A commits 2, B skips, roll 2: A scores, B keeps all cards."""
        session = self._resolve(machine, rolling_session, 2)
        ana, ben = session.get_player("ana"), session.get_player("ben")

        assert ana.credits == 1
        assert ana.first_correct_round == 1
        assert not any(c.burned for c in ana.hand)
        assert not any(c.burned for c in ben.hand)
        assert ben.credits == 0

    def test_miss_burns_card(self, machine, rolling_session):
        """A commits 2, roll 3: A's 2 burns, credits unchanged."""
        session = self._resolve(machine, rolling_session, 3)
        ana = session.get_player("ana")

        assert ana.credits == 0
        assert [c.burned for c in ana.hand] == [False, True, False]

    def test_resolve_sets_phase(self, machine, rolling_session):
        session = self._resolve(machine, rolling_session, 1, now=T0 + 90)

        assert isinstance(session.phase, ResolvePhase)
        assert session.resolve_deadline == T0 + 95
        assert session.last_roll == 1
        assert session.last_roll_proof == "0xproof"

    def test_outcome_out_of_range(self, machine, rolling_session):
        with pytest.raises(ValueError):
            machine.resolve_round(rolling_session, 4, None)
        with pytest.raises(ValueError):
            machine.resolve_round(rolling_session, 0, None)

    def test_resolve_requires_rolling(self, machine, commit_session):
        with pytest.raises(InvalidPhase):
            machine.resolve_round(commit_session, 1, None)

    def test_wrong_round_id_is_stale(self, machine, rolling_session):
        with pytest.raises(StaleFulfillment):
            machine.apply_fulfillment(rolling_session, rolling_session.current_round_id + 1, 2, None)

    def test_duplicate_fulfillment_is_stale(self, machine, rolling_session):
        round_id = rolling_session.current_round_id
        session = self._resolve(machine, rolling_session, 2)

        with pytest.raises(StaleFulfillment):
            machine.apply_fulfillment(session, round_id, 2, None)
        assert session.get_player("ana").credits == 1

    def test_next_round(self, machine, rolling_session):
        session = self._resolve(machine, rolling_session, 2, now=T0 + 90)
        result = machine.tick(session, T0 + 96)
        nxt = result.session

        assert result.transition == TransitionKind.NEXT_ROUND
        assert nxt.round == 2
        assert nxt.commitments == {}
        assert nxt.last_roll is None
        assert nxt.roll_attempts == 0
        assert nxt.commit_deadline == T0 + 96 + 25

    def test_round_five_ends_game(self, machine, rolling_session):
        """Game ends after round 5 even with unburned cards left."""
        session = rolling_session.clone()
        session.round = 5
        session = self._resolve(machine, session, 1, now=T0 + 90)

        assert machine.check_game_end(session)
        result = machine.tick(session, T0 + 96)

        assert result.transition == TransitionKind.END
        assert result.session.phase_name == PhaseName.ENDED
        assert result.session.is_over

    def test_winner_after_end(self, machine, rolling_session):
        session = rolling_session.clone()
        session.round = 5
        session = self._resolve(machine, session, 2)
        assert machine.determine_winner(session).player_id == "ana"


class TestRandomnessLifecycle:
    """Tests for claim, record, recovery and failure."""

    def test_claim_by_leader(self, machine, rolling_session):
        session = machine.claim_submission(rolling_session, "ana", now=T0 + 88)

        assert session.phase.submission_claimed
        assert session.phase.lease.expires_at == T0 + 88 + 15

    def test_claim_by_follower_rejected(self, machine, rolling_session):
        with pytest.raises(NotLeader):
            machine.claim_submission(rolling_session, "ben", now=T0 + 88)

    def test_claim_twice_rejected(self, machine, rolling_session):
        session = machine.claim_submission(rolling_session, "ana", now=T0 + 88)
        with pytest.raises(DuplicateRequest):
            machine.claim_submission(session, "ana", now=T0 + 89)

    def test_crank_claim_bypasses_lease(self, machine, rolling_session):
        session = machine.claim_submission(rolling_session, None, now=T0 + 200)
        assert session.phase.submission_claimed

    def test_record_submission(self, machine, rolling_session):
        round_id = rolling_session.current_round_id
        session = machine.record_submission(rolling_session, round_id, "0xtx", now=T0 + 89)

        assert session.phase.request_ref == "0xtx"
        assert session.phase.requested_at == T0 + 89
        with pytest.raises(DuplicateRequest):
            machine.record_submission(session, round_id, "0xtx2", now=T0 + 90)

    def test_record_for_superseded_round(self, machine, rolling_session):
        with pytest.raises(StaleFulfillment):
            machine.record_submission(rolling_session, 1, "0xtx")

    def test_recover_keeps_commitments(self, machine, rolling_session):
        result = machine.recover_roll(rolling_session, "rpc error", now=T0 + 90)
        session = result.session

        assert result.transition == TransitionKind.RECOVER
        assert isinstance(session.phase, CommitPhase)
        assert session.phase.recovered
        assert session.phase.last_failure == "rpc error"
        assert session.commit_deadline == T0 + 100
        assert not session.roll_requested
        assert session.commitments == rolling_session.commitments
        assert session.round == 1

    def test_retry_after_recovery(self, machine, rolling_session):
        recovered = machine.recover_roll(rolling_session, "rpc error", now=T0 + 90).session
        result = machine.tick(recovered, T0 + 101)

        assert result.session.phase_name == PhaseName.ROLLING
        assert result.session.roll_attempts == 2
        assert result.session.current_round_id != rolling_session.current_round_id

    def test_fails_after_max_attempts(self, machine, rolling_session):
        """Three failed attempts end in the terminal failed phase."""
        session, now = rolling_session, T0 + 90
        for _ in range(2):
            session = machine.recover_roll(session, "reverted", now=now).session
            now += 11
            session = machine.tick(session, now).session
            assert session.phase_name == PhaseName.ROLLING

        result = machine.recover_roll(session, "reverted", now=now + 1)

        assert session.roll_attempts == 3
        assert result.transition == TransitionKind.FAIL
        assert isinstance(result.session.phase, FailedPhase)
        assert result.session.phase.reason == "reverted"
        assert result.session.is_over

    def test_fulfillment_timeout_recovers(self, machine, rolling_session):
        round_id = rolling_session.current_round_id
        session = machine.record_submission(rolling_session, round_id, "0xtx", now=T0 + 88)

        assert not machine.tick(session, T0 + 88 + 60).changed
        result = machine.tick(session, T0 + 88 + 61)

        assert result.transition == TransitionKind.RECOVER
        assert result.session.phase.last_failure == "fulfillment timeout"

    def test_unrequested_roll_times_out(self, machine, rolling_session):
        """Leases keep rotating, but a roll nobody requests still recovers."""
        assert machine.tick(rolling_session, T0 + 103).transition == TransitionKind.HANDOVER

        result = machine.tick(rolling_session, T0 + 87 + 61)

        assert result.transition == TransitionKind.RECOVER
        assert result.session.phase.last_failure == "no randomness request submitted"
        assert result.session.commitments == rolling_session.commitments

    def test_abandoned_rolls_end_in_failure(self, machine, rolling_session):
        """Polling an unattended game ends in failed within the attempt budget."""
        session, now = rolling_session, T0 + 87
        seen = set()
        while not session.is_over and now < T0 + 3600:
            now += 5
            session = machine.tick(session, now).session
            seen.add(session.phase_name)

        assert isinstance(session.phase, FailedPhase)
        assert session.roll_attempts == machine.config.max_roll_attempts
        assert PhaseName.COMMIT in seen
        assert now < T0 + 400

    def test_recover_requires_rolling(self, machine, commit_session):
        with pytest.raises(InvalidPhase):
            machine.recover_roll(commit_session, "x")


class TestLeaseHandover:
    """Tests for leader handover on lease expiry."""

    def test_handover_to_next_player(self, machine, rolling_session):
        result = machine.tick(rolling_session, T0 + 103)
        phase = result.session.phase

        assert result.transition == TransitionKind.HANDOVER
        assert result.needs_randomness
        assert phase.lease.leader_id == "ben"
        assert phase.lease.expires_at == T0 + 103 + 15
        # Nothing was claimed, so the round id stays
        assert phase.round_id == rolling_session.current_round_id
        assert result.session.roll_attempts == 1

    def test_handover_skips_disconnected(self, machine, rolling_session):
        session = machine.set_connected(rolling_session, "ben", False)
        result = machine.tick(session, T0 + 103)
        assert result.session.phase.lease.leader_id == "ana"

    def test_handover_after_abandoned_claim(self, machine, rolling_session):
        """A claimed but unrecorded submission gets a fresh round id."""
        claimed = machine.claim_submission(rolling_session, "ana", now=T0 + 88)
        result = machine.tick(claimed, T0 + 104)
        phase = result.session.phase

        assert isinstance(phase, RollingPhase)
        assert phase.lease.leader_id == "ben"
        assert not phase.submission_claimed
        assert phase.round_id != rolling_session.current_round_id
        assert result.session.roll_attempts == 2

    def test_no_handover_once_requested(self, machine, rolling_session):
        round_id = rolling_session.current_round_id
        session = machine.record_submission(rolling_session, round_id, "0xtx", now=T0 + 88)

        result = machine.tick(session, T0 + 120)
        assert not result.changed


class TestPhaseCycle:
    """Walk whole games and check the transition relation."""

    ALLOWED = {
        (PhaseName.WAITING, PhaseName.COMMIT),
        (PhaseName.COMMIT, PhaseName.ROLLING),
        (PhaseName.ROLLING, PhaseName.ROLLING),
        (PhaseName.ROLLING, PhaseName.RESOLVE),
        (PhaseName.ROLLING, PhaseName.COMMIT),
        (PhaseName.ROLLING, PhaseName.FAILED),
        (PhaseName.RESOLVE, PhaseName.COMMIT),
        (PhaseName.RESOLVE, PhaseName.ENDED),
    }

    @pytest.mark.parametrize("outcomes", [[1, 2, 3], [3, 3, 3], [2, 1]])
    def test_full_game_edges(self, machine, waiting_session, outcomes):
        session, now = waiting_session, T0
        edges = set()
        burned = set()
        rolls = 0

        for _ in range(2000):
            if session.is_over:
                break
            now += 1
            before = session.phase_name

            if before == PhaseName.COMMIT and "ana" not in session.commitments:
                ana = session.get_player("ana")
                if ana.unburned_cards:
                    session = machine.submit_commitment(
                        session, "ana", Commitment.select(ana.unburned_cards[0].value), now
                    )

            if before == PhaseName.ROLLING:
                outcome = outcomes[rolls % len(outcomes)]
                rolls += 1
                session = machine.apply_fulfillment(
                    session, session.current_round_id, outcome, None, now
                )
            else:
                session = machine.tick(session, now).session

            if session.phase_name != before:
                edges.add((before, session.phase_name))

            # Burned cards stay burned
            now_burned = {
                (p.player_id, i) for p in session.players
                for i, c in enumerate(p.hand) if c.burned
            }
            assert burned <= now_burned
            burned = now_burned

        assert session.phase_name == PhaseName.ENDED
        assert session.round <= 5
        assert edges <= self.ALLOWED
        assert (PhaseName.WAITING, PhaseName.ROLLING) not in edges
