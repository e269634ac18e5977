"""
Engine Core - Session state and the phase state machine.

The engine:
1. Holds the Session model (phases as a tagged union)
2. Validates player actions
3. Advances phases on deadlines
4. Scores rounds and ranks players
"""

from .state import (
    Session,
    Player,
    Card,
    Commitment,
    LeaderLease,
    PhaseName,
    WaitingPhase,
    CommitPhase,
    RollingPhase,
    ResolvePhase,
    EndedPhase,
    FailedPhase,
)
from .action import PlayerInfo, TickResult, TransitionKind
from .rules import check_game_end, determine_winner, rank_players
from .machine import GameStateMachine

__all__ = [
    "Session",
    "Player",
    "Card",
    "Commitment",
    "LeaderLease",
    "PhaseName",
    "WaitingPhase",
    "CommitPhase",
    "RollingPhase",
    "ResolvePhase",
    "EndedPhase",
    "FailedPhase",
    "PlayerInfo",
    "TickResult",
    "TransitionKind",
    "check_game_end",
    "determine_winner",
    "rank_players",
    "GameStateMachine",
]
