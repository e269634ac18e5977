"""
Coordination - deciding which client drives the randomness request.
"""

from .leader import LeaderCoordinator, RoundTracker, elect_leader, next_leader

__all__ = [
    "LeaderCoordinator",
    "RoundTracker",
    "elect_leader",
    "next_leader",
]
