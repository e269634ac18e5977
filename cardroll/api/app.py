"""
FastAPI Application - REST API for game clients.

Endpoints:
    POST   /api/v1/sessions               Create a session (waiting phase)
    POST   /api/v1/sessions/{code}/join   Join or re-join
    POST   /api/v1/sessions/{code}/commit Commit a card or skip
    GET    /api/v1/sessions/{code}/state  Public view (ticks the session)
    POST   /api/v1/oracle/fulfilled       Push resolution for a pending round
    POST   /api/v1/secrets                Store a reveal in the side-channel
    GET    /api/v1/leaderboard            Win/loss leaderboard
    GET    /health                        Health check

Clients poll /state about once a second; every poll advances elapsed
deadlines, so the game moves forward as long as anyone is watching.

All responses are JSON with explicit Pydantic schemas.
"""

from typing import Optional, Union
import logging

from ..config import GameConfig
from .schemas import ErrorCode

logger = logging.getLogger(__name__)

# Error code -> HTTP status; anything unlisted is a 400
STATUS_BY_CODE = {
    ErrorCode.SESSION_NOT_FOUND: 404,
    ErrorCode.PLAYER_NOT_FOUND: 404,
    ErrorCode.COMMITMENT_EXISTS: 409,
    ErrorCode.CONCURRENT_UPDATE: 409,
    ErrorCode.INTERNAL_ERROR: 500,
}


def create_app(service=None, config: Optional[GameConfig] = None):
    """
    Create the FastAPI application.

    Args:
        service: Optional APIService instance (creates new if not provided)
        config: Optional config (read from the environment if not provided)

    Returns:
        FastAPI application instance
    """
    try:
        from fastapi import FastAPI, Query
        from fastapi.middleware.cors import CORSMiddleware
        from fastapi.responses import JSONResponse
    except ImportError:
        raise ImportError(
            "FastAPI not installed. Install with: pip install fastapi uvicorn"
        )

    from .. import __version__
    from .service import APIService, build_session_manager
    from .schemas import (
        # Request models
        CreateSessionRequest,
        JoinRequest,
        CommitRequest,
        FulfillmentRequest,
        SecretRequest,
        # Response models
        SessionCreatedResponse,
        JoinResponse,
        PublicView,
        FulfillmentResponse,
        SecretResponse,
        LeaderboardResponse,
        ErrorResponse,
        HealthResponse,
    )

    config = config or (service.config if service else GameConfig.from_env())

    app = FastAPI(
        title="Cardroll API",
        description="""
Card-versus-die multiplayer game with verifiable dice rolls.

## Round flow

1. `commit`: every player picks an unburned card or skips
2. `rolling`: one client requests a commit-reveal die roll
3. `resolve`: the roll is shown; matching cards score and burn
4. After round 5 (or when nobody can play) the game `ended`

## Error Codes

| Code | Description |
|------|-------------|
| `INVALID_PHASE` | Not allowed in the current phase |
| `SESSION_NOT_FOUND` | Session does not exist or has expired |
| `PLAYER_NOT_FOUND` | Player is not in the session |
| `CARD_UNAVAILABLE` | Card burned or not in hand |
| `COMMITMENT_EXISTS` | Already committed this round |
        """,
        version=__version__,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    api_service = service or APIService(session_manager=build_session_manager(config))

    # =========================================================================
    # Error helpers
    # =========================================================================

    def error_response(error: ErrorResponse) -> JSONResponse:
        return JSONResponse(
            status_code=STATUS_BY_CODE.get(error.error_code, 400),
            content=error.model_dump(mode="json"),
        )

    def respond(result):
        if isinstance(result, ErrorResponse):
            return error_response(result)
        return result

    # =========================================================================
    # Session Endpoints
    # =========================================================================

    @app.post(
        "/api/v1/sessions",
        response_model=SessionCreatedResponse,
        tags=["Sessions"],
        summary="Create a new game session",
    )
    def create_session(request: Optional[CreateSessionRequest] = None) -> SessionCreatedResponse:
        """Create a session in the waiting phase. Share the returned code."""
        return api_service.create_session(request or CreateSessionRequest())

    @app.post(
        "/api/v1/sessions/{code}/join",
        response_model=JoinResponse,
        responses={
            400: {"model": ErrorResponse, "description": "Game already started"},
            404: {"model": ErrorResponse, "description": "Session not found"},
        },
        tags=["Sessions"],
        summary="Join a session",
    )
    def join_session(code: str, request: JoinRequest) -> Union[JoinResponse, JSONResponse]:
        """
        Join while the session is waiting.

        Re-joining with a known `player_id` marks the player connected again.
        """
        return respond(api_service.join_session(code.upper(), request))

    @app.post(
        "/api/v1/sessions/{code}/commit",
        response_model=PublicView,
        responses={
            400: {"model": ErrorResponse, "description": "Wrong phase or card unavailable"},
            404: {"model": ErrorResponse},
            409: {"model": ErrorResponse, "description": "Already committed"},
        },
        tags=["Game Loop"],
        summary="Commit a card or skip",
    )
    def commit(code: str, request: CommitRequest) -> Union[PublicView, JSONResponse]:
        return respond(api_service.commit(code.upper(), request))

    @app.get(
        "/api/v1/sessions/{code}/state",
        response_model=PublicView,
        responses={404: {"model": ErrorResponse}},
        tags=["Game Loop"],
        summary="Get the public view of a session",
    )
    def get_state(
        code: str,
        player_id: Optional[str] = Query(None, description="Viewer; omit for spectator view"),
    ) -> Union[PublicView, JSONResponse]:
        return respond(api_service.get_state(code.upper(), player_id))

    # =========================================================================
    # Randomness Endpoints
    # =========================================================================

    @app.post(
        "/api/v1/oracle/fulfilled",
        response_model=FulfillmentResponse,
        responses={400: {"model": ErrorResponse}},
        tags=["Randomness"],
        summary="Push an oracle outcome",
    )
    def oracle_fulfilled(request: FulfillmentRequest) -> Union[FulfillmentResponse, JSONResponse]:
        """
        Resolve the pending round with an observed outcome.

        Outcomes for superseded or already-resolved rounds are ignored
        (`applied=false`).
        """
        return respond(api_service.fulfill(request))

    @app.post(
        "/api/v1/secrets",
        response_model=SecretResponse,
        tags=["Randomness"],
        summary="Store a reveal secret",
    )
    def store_secret(request: SecretRequest) -> Union[SecretResponse, JSONResponse]:
        """Side-channel copy of a round's reveal, so any instance can finish the round."""
        return respond(api_service.store_secret(request))

    # =========================================================================
    # Leaderboard / Health
    # =========================================================================

    @app.get(
        "/api/v1/leaderboard",
        response_model=LeaderboardResponse,
        tags=["Stats"],
        summary="Leaderboard",
    )
    def leaderboard(limit: int = Query(10, ge=1, le=100)) -> LeaderboardResponse:
        return api_service.leaderboard(limit)

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    def health() -> HealthResponse:
        return HealthResponse(status="ok", service="cardroll", version=__version__)

    return app


# For running directly: uvicorn cardroll.api.app:app
app = None
try:
    app = create_app()
except ImportError:
    # FastAPI not installed
    pass
