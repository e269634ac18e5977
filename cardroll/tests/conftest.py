"""
Pytest fixtures for Cardroll tests.
"""

import pytest

from ..config import GameConfig
from ..engine_core.action import PlayerInfo
from ..engine_core.machine import GameStateMachine
from ..engine_core.state import Session, Commitment
from ..randomness.bridge import RandomnessBridge
from ..randomness.oracle import SimulatedOracle
from ..session.manager import SessionManager
from ..store.memory import InMemoryStore

# Base wall-clock time for every test
T0 = 1_000_000.0


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: float = T0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


@pytest.fixture
def config() -> GameConfig:
    return GameConfig()


@pytest.fixture
def machine(config: GameConfig) -> GameStateMachine:
    return GameStateMachine(config=config)


@pytest.fixture
def waiting_session(machine: GameStateMachine) -> Session:
    """Lobby with Ana (ordinal 0) and Ben (ordinal 1), start deadline T0+60."""
    session = machine.create_session(now=T0, code="ABC123")
    for name in ("Ana", "Ben"):
        session, _ = machine.join_session(
            session, PlayerInfo(player_id=name.lower(), display_name=name), now=T0
        )
    return session


@pytest.fixture
def commit_session(machine: GameStateMachine, waiting_session: Session) -> Session:
    """Round 1 commit phase, commit deadline T0+86."""
    return machine.tick(waiting_session, T0 + 61).session


@pytest.fixture
def rolling_session(machine: GameStateMachine, commit_session: Session) -> Session:
    """Round 1 rolling: Ana committed 2, Ben was auto-skipped. Ana holds the lease until T0+102."""
    session = machine.submit_commitment(commit_session, "ana", Commitment.select(2), now=T0 + 70)
    return machine.tick(session, T0 + 87).session


# =============================================================================
# Shared-store fixtures
# =============================================================================

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> InMemoryStore:
    return InMemoryStore(clock=clock)


@pytest.fixture
def oracle() -> SimulatedOracle:
    return SimulatedOracle(provider_secret=bytes(32))


@pytest.fixture
def make_manager(store, oracle, config, clock):
    """
    Factory for client managers.

    Every manager gets its own bridge (like a separate browser) and
    shares the store, oracle and clock.
    """
    managers = []

    def factory(**kwargs) -> SessionManager:
        bridge = RandomnessBridge(kwargs.pop("oracle", oracle), store, config)
        manager = SessionManager(store, bridge=bridge, config=config, clock=clock, **kwargs)
        managers.append(manager)
        return manager

    yield factory
    for manager in managers:
        manager.close()


@pytest.fixture
def manager(make_manager) -> SessionManager:
    return make_manager()


@pytest.fixture
def lobby(manager: SessionManager) -> str:
    """Stored session with Ana and Ben joined at T0. Returns the code."""
    session = manager.create_session()
    for name in ("Ana", "Ben"):
        manager.join_session(session.code, PlayerInfo(player_id=name.lower(), display_name=name))
    return session.code
