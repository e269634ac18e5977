"""
Public View - What one viewer may see of a session.

Hidden information:
- Other players' commitments stay hidden until the round resolves
  (has_committed is always visible)
- Reveal secrets and request refs never leave the server
"""

from __future__ import annotations
import time

from ..config import GameConfig
from ..engine_core.rules import determine_winner
from ..engine_core.state import (
    Session, Player, PhaseName, CommitPhase, RollingPhase, FailedPhase,
)
from .schemas import PublicView, PlayerView, CardView, CommitmentView, PhaseValue

REVEALED_PHASES = {PhaseName.RESOLVE, PhaseName.ENDED}


def _player_view(session: Session, player: Player, viewer_id: str | None) -> PlayerView:
    commitment = session.commitments.get(player.player_id)
    show = commitment is not None and (
        player.player_id == viewer_id or session.phase_name in REVEALED_PHASES
    )
    return PlayerView(
        player_id=player.player_id,
        display_name=player.display_name,
        ordinal=player.ordinal,
        avatar_ref=player.avatar_ref,
        cards=[CardView.model_validate(c) for c in player.hand],
        credits=player.credits,
        connected=player.connected,
        has_committed=commitment is not None,
        commitment=CommitmentView.model_validate(commitment) if show else None,
    )


def _retry_in_progress(session: Session, now: float, config: GameConfig) -> bool:
    phase = session.phase
    if isinstance(phase, CommitPhase):
        return phase.recovered
    if isinstance(phase, RollingPhase):
        return session.roll_attempts > 1 or now > phase.started_at + config.rolling_grace
    return False


def get_public_view(
    session: Session,
    viewer_id: str | None = None,
    now: float | None = None,
    config: GameConfig | None = None,
) -> PublicView:
    """
    Project a session for one viewer.

    viewer_id None gives the spectator view (no commitments until reveal).
    """
    config = config or GameConfig()
    now = time.time() if now is None else now

    players = [_player_view(session, p, viewer_id) for p in session.players]
    me = next((p for p in players if p.player_id == viewer_id), None)

    winner = None
    if session.phase_name == PhaseName.ENDED:
        best = determine_winner(session)
        winner = next((p for p in players if best and p.player_id == best.player_id), None)

    phase = session.phase
    return PublicView(
        code=session.code,
        round=session.round,
        max_rounds=config.max_rounds,
        phase=PhaseValue(session.phase_name.value),
        players=players,
        me=me,
        start_deadline=session.start_deadline,
        commit_deadline=session.commit_deadline,
        resolve_deadline=session.resolve_deadline,
        server_time=now,
        last_roll=session.last_roll,
        last_roll_proof=session.last_roll_proof,
        retry_in_progress=_retry_in_progress(session, now, config),
        failure_reason=phase.reason if isinstance(phase, FailedPhase) else None,
        winner=winner,
        leader_id=phase.lease.leader_id if isinstance(phase, RollingPhase) else None,
    )
