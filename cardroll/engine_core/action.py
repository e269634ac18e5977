"""
Transition inputs and results.

PlayerInfo is what a client supplies on join.
TickResult describes what one tick did, so callers (the session manager,
tests, the crank) can react without diffing sessions.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum

from .state import Session, PhaseName


class TransitionKind(Enum):
    """Edges of the phase cycle, plus in-phase lease handover."""
    START = "waiting->commit"
    CLOSE_COMMITS = "commit->rolling"
    RESOLVE = "rolling->resolve"
    NEXT_ROUND = "resolve->commit"
    END = "resolve->ended"
    RECOVER = "rolling->commit"
    FAIL = "failed"
    HANDOVER = "lease_handover"


@dataclass
class PlayerInfo:
    """Profile supplied when joining. player_id is generated if missing."""
    player_id: str | None = None
    display_name: str | None = None
    avatar_ref: str | None = None


@dataclass
class TickResult:
    """
    Result of one tick.

    session is always the (possibly unchanged) session to write back.
    """
    session: Session
    transition: TransitionKind | None = None
    needs_randomness: bool = False
    changes: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return self.transition is not None

    @property
    def phase(self) -> PhaseName:
        return self.session.phase_name

    @classmethod
    def unchanged(cls, session: Session) -> TickResult:
        return cls(session=session)
