"""
API Service - Business logic layer between the API and the session manager.

The service:
1. Translates API requests to SessionManager calls
2. Advances deadlines on every state poll
3. Turns game errors into ErrorResponse objects
4. Formats responses for clients

This layer is framework-agnostic (can be used with FastAPI, Flask, etc.)
"""

from __future__ import annotations
from dataclasses import dataclass, field
import logging

from ..config import GameConfig
from ..errors import CardrollError
from ..engine_core.action import PlayerInfo
from ..engine_core.state import Commitment
from ..randomness.bridge import RandomnessBridge, Fulfillment
from ..randomness.oracle import RandomnessOracle, SimulatedOracle
from ..coordination.leader import RoundTracker
from ..session.game_loop import GameClient
from ..session.manager import SessionManager
from ..store import create_store
from .schemas import (
    # Requests
    CreateSessionRequest,
    JoinRequest,
    CommitRequest,
    FulfillmentRequest,
    SecretRequest,
    # Responses
    SessionCreatedResponse,
    JoinResponse,
    PublicView,
    FulfillmentResponse,
    SecretResponse,
    LeaderboardResponse,
    LeaderboardEntryInfo,
    ErrorResponse,
    # Enums
    ErrorCode,
    PhaseValue,
)

logger = logging.getLogger(__name__)


def build_session_manager(
    config: GameConfig | None = None,
    oracle: RandomnessOracle | None = None,
) -> SessionManager:
    """
    Wire store, oracle and bridge from config.

    Uses Redis when CARDROLL_REDIS_URL is set and the in-process
    SimulatedOracle unless another oracle client is passed in.
    """
    config = config or GameConfig.from_env()
    store = create_store(config.redis_url)
    bridge = RandomnessBridge(oracle or SimulatedOracle(faces=config.die_faces), store, config)
    return SessionManager(store, bridge=bridge, config=config)


def _error(e: CardrollError) -> ErrorResponse:
    return ErrorResponse(error=e.message, error_code=ErrorCode(e.error_code))


@dataclass
class APIService:
    """
    Main API service for game clients.

    Usage:
        service = APIService()

        created = service.create_session(CreateSessionRequest())
        joined = service.join_session(created.code, JoinRequest(display_name="Ana"))
        view = service.get_state(created.code, joined.player_id)
    """
    session_manager: SessionManager = field(default_factory=build_session_manager)
    trackers: dict[str, RoundTracker] = field(default_factory=dict)

    @property
    def config(self) -> GameConfig:
        return self.session_manager.config

    def create_session(self, request: CreateSessionRequest) -> SessionCreatedResponse:
        session = self.session_manager.create_session(start_delay=request.start_delay)
        return SessionCreatedResponse(
            code=session.code,
            phase=PhaseValue(session.phase_name.value),
            start_deadline=session.start_deadline,
            server_time=session.created_at,
        )

    def join_session(self, code: str, request: JoinRequest) -> JoinResponse | ErrorResponse:
        info = PlayerInfo(
            player_id=request.player_id,
            display_name=request.display_name,
            avatar_ref=request.avatar_ref,
        )
        try:
            _, player = self.session_manager.join_session(code, info)
            view = self.session_manager.get_public_view(code, player.player_id)
        except CardrollError as e:
            return _error(e)
        return JoinResponse(code=code, player_id=player.player_id, view=view)

    def commit(self, code: str, request: CommitRequest) -> PublicView | ErrorResponse:
        choice = (
            Commitment.skipped() if request.skip
            else Commitment.select(request.selected_value)
        )
        try:
            self.session_manager.submit_commitment(code, request.player_id, choice)
            return self.session_manager.get_public_view(code, request.player_id)
        except CardrollError as e:
            return _error(e)

    def get_state(self, code: str, player_id: str | None = None) -> PublicView | ErrorResponse:
        """
        Current view for a player.

        Polling drives the game: each read first ticks the session. A
        player's poll also submits the roll when they hold the lease,
        and helps with the fallback poller once a request is out.
        Spectator polls only tick.
        """
        try:
            if player_id is None:
                self.session_manager.tick(code)
                return self.session_manager.get_public_view(code)
            tracker = self.trackers.setdefault(player_id, RoundTracker())
            result = GameClient(self.session_manager, code, player_id, tracker).step()
            for message in result.errors:
                logger.warning(f"Fallback poll for {code} by {player_id} failed: {message}")
            return result.view
        except CardrollError as e:
            return _error(e)

    def fulfill(self, request: FulfillmentRequest) -> FulfillmentResponse | ErrorResponse:
        """Push resolution for a pending round. Stale pushes are not errors."""
        if request.outcome > self.config.die_faces:
            return ErrorResponse(
                error=f"Outcome {request.outcome} outside 1..{self.config.die_faces}",
                error_code=ErrorCode.VALIDATION_ERROR,
            )
        applied = self.session_manager.handle_fulfillment(Fulfillment(
            round_id=request.round_id,
            session_code=request.session_code,
            outcome=request.outcome,
            proof_ref=request.proof_ref,
        ))
        return FulfillmentResponse(applied=applied, round_id=request.round_id)

    def store_secret(self, request: SecretRequest) -> SecretResponse | ErrorResponse:
        bridge = self.session_manager.bridge
        if bridge is None:
            return ErrorResponse(
                error="No randomness bridge configured",
                error_code=ErrorCode.INTERNAL_ERROR,
            )
        reveal = request.reveal.lower().removeprefix("0x")
        bridge.secret_store.set_secret(request.round_id, reveal, self.config.secret_ttl)
        logger.info(f"Stored side-channel secret for round {request.round_id}")
        return SecretResponse(stored=True, round_id=request.round_id)

    def leaderboard(self, limit: int = 10) -> LeaderboardResponse:
        entries = self.session_manager.leaderboard(limit)
        return LeaderboardResponse(entries=[
            LeaderboardEntryInfo(
                rank=e.rank,
                player_id=e.player_id,
                display_name=e.display_name,
                games=e.games,
                wins=e.wins,
                win_rate=e.win_rate,
            )
            for e in entries
        ])
