"""
Cardroll - Card-versus-die multiplayer game server

Players commit a card (1-3) or skip each round, then a verifiable die
roll decides who scores. The package provides:
- A deadline-driven session state machine
- A commit-reveal randomness bridge with retry and recovery
- Leader election so one client submits each roll
- A redacted public view and an HTTP API
"""

__version__ = "0.1.0"
