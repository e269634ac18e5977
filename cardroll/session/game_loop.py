"""
Game Loop - One polling client.

Each player runs the same loop against the shared store:
1. Tick the session (advances any elapsed deadline)
2. If this client holds the rolling lease, drive the randomness request
3. Otherwise, if a request is out, help with the fallback poller
4. Fetch the redacted view and hand it to the UI
5. Sleep poll_interval, repeat

No client is special; the session decides who leads each roll.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING
import logging
import threading

from ..errors import NotLeader, DuplicateRequest, CardrollError
from ..coordination.leader import RoundTracker
from ..engine_core.action import TickResult
from ..engine_core.state import PhaseName, RollingPhase

if TYPE_CHECKING:
    from ..api.schemas import PublicView
    from .manager import SessionManager

logger = logging.getLogger(__name__)


class LoopState(Enum):
    """What the client is doing, from its own point of view."""
    WAITING = "waiting"
    COMMITTING = "committing"
    ROLLING = "rolling"
    SHOWING_RESULT = "showing_result"
    GAME_OVER = "game_over"


_LOOP_STATES = {
    PhaseName.WAITING: LoopState.WAITING,
    PhaseName.COMMIT: LoopState.COMMITTING,
    PhaseName.ROLLING: LoopState.ROLLING,
    PhaseName.RESOLVE: LoopState.SHOWING_RESULT,
    PhaseName.ENDED: LoopState.GAME_OVER,
    PhaseName.FAILED: LoopState.GAME_OVER,
}


@dataclass
class StepResult:
    """
    Result of one poll.

    drove_roll is True when this client submitted the round's request;
    resolved_by_poll when its fallback poll resolved the round.
    """
    loop_state: LoopState
    view: PublicView
    tick: TickResult
    drove_roll: bool = False
    resolved_by_poll: bool = False
    errors: list[str] = field(default_factory=list)

    @property
    def finished(self) -> bool:
        return self.loop_state == LoopState.GAME_OVER


class GameClient:
    """
    Polling driver for one player.

    Usage:
        client = GameClient(manager, code, player_id)

        result = client.step()
        render(result.view)

        # or in a background thread
        client.run(stop_event)
    """

    def __init__(
        self,
        manager: SessionManager,
        code: str,
        player_id: str,
        tracker: RoundTracker | None = None,
    ):
        self.manager = manager
        self.code = code
        self.player_id = player_id
        self.tracker = tracker or RoundTracker()

    def step(self, now: float | None = None) -> StepResult:
        now = self.manager.clock() if now is None else now
        errors = []

        tick = self.manager.tick(self.code, now)
        session = tick.session

        drove_roll = False
        resolved_by_poll = False
        phase = session.phase
        coordinator = self.manager.machine.coordinator
        if coordinator.should_submit(session, self.player_id, now, self.tracker):
            self.tracker.mark(self.code, phase.round_id)
            try:
                self.manager.drive_randomness(self.code, self.player_id, now)
                drove_roll = True
            except (NotLeader, DuplicateRequest) as e:
                logger.debug(f"{self.player_id} lost the submission for {self.code}: {e}")
        elif isinstance(phase, RollingPhase) and phase.request_ref is not None:
            try:
                resolved_by_poll = self.manager.poll_pending(self.code, now)
            except CardrollError as e:
                errors.append(e.message)

        view = self.manager.get_public_view(self.code, self.player_id, now)
        return StepResult(
            loop_state=_LOOP_STATES[PhaseName(view.phase.value)],
            view=view,
            tick=tick,
            drove_roll=drove_roll,
            resolved_by_poll=resolved_by_poll,
            errors=errors,
        )

    def run(self, stop_event: threading.Event) -> StepResult | None:
        """Poll until the game is over or stop_event is set."""
        result = None
        while not stop_event.is_set():
            try:
                result = self.step()
            except CardrollError as e:
                logger.warning(f"Client {self.player_id} poll failed: {e}")
            else:
                if result.finished:
                    break
            stop_event.wait(self.manager.config.poll_interval)
        return result
