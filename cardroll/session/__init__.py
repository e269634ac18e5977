"""
Session Module - Shared-store session management and polling clients.
"""

from .manager import SessionManager
from .game_loop import GameClient, LoopState, StepResult

__all__ = [
    "SessionManager",
    "GameClient",
    "LoopState",
    "StepResult",
]
